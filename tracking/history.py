from __future__ import annotations

import time
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional

from .models import Position


def _compact(text: str) -> str:
    return "".join(text.split())


def _coord_key(p: Position) -> str:
    return f"{p.lng:.6f},{p.lat:.6f}"


@dataclass(frozen=True)
class RouteHistoryItem:
    origin_text: str
    dest_text: str
    origin: Optional[Position] = None
    destination: Optional[Position] = None
    mode: str = "driving"
    item_id: str = ""
    updated_at: float = 0.0

    def _coords(self) -> Optional[str]:
        if self.origin is None or self.destination is None:
            return None
        return f"{_coord_key(self.origin)};{_coord_key(self.destination)}"

    def same_route(self, other: "RouteHistoryItem") -> bool:
        mine, theirs = self._coords(), other._coords()
        if mine is not None and theirs is not None:
            return mine == theirs
        return (_compact(self.origin_text), _compact(self.dest_text)) == (_compact(other.origin_text), _compact(other.dest_text))

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.item_id,
            "origin_text": self.origin_text,
            "dest_text": self.dest_text,
            "origin": self.origin.as_list() if self.origin else None,
            "destination": self.destination.as_list() if self.destination else None,
            "mode": self.mode,
            "updated_at": self.updated_at,
        }


def _stable_id(item: RouteHistoryItem) -> str:
    # coordinates keep same-named routes to different places apart
    text = f"{_compact(item.origin_text)}=>{_compact(item.dest_text)}"
    coords = item._coords()
    return f"{text}@{coords}" if coords else text


class RouteHistory:
    """Most-recent-first route search history, deduplicated by route."""

    def __init__(self, limit: int = 12):
        self.limit = limit
        self._items: List[RouteHistoryItem] = []

    def add(self, item: RouteHistoryItem) -> Optional[RouteHistoryItem]:
        if not item.origin_text.strip() or not item.dest_text.strip():
            return None
        stored = replace(item, item_id=_stable_id(item), updated_at=time.time())
        rest = [h for h in self._items if not h.same_route(item)]
        self._items = [stored, *rest][: self.limit]
        return stored

    def remove(self, item_id: str) -> bool:
        before = len(self._items)
        self._items = [h for h in self._items if h.item_id != item_id]
        return len(self._items) != before

    def clear(self) -> None:
        self._items = []

    def items(self) -> List[RouteHistoryItem]:
        return list(self._items)
