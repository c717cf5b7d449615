from __future__ import annotations

import copy
import itertools
from typing import Any, Dict, List, Optional, Tuple

from .exceptions import RenderSurfaceError
from .geo import bounds
from .models import Position

Handle = int


class RenderSurface:
    """Imperative map drawing API the reconciler targets.

    ``position`` arguments are whatever :func:`tracking.entities.render_options`
    produced for the entity: an ``(lng, lat)`` pair for markers, labels and
    circles, a sequence of pairs for polylines and polygons.
    """

    def add(self, options: Dict[str, Any]) -> Handle:
        raise NotImplementedError

    def remove(self, handle: Handle) -> None:
        raise NotImplementedError

    def set_position(self, handle: Handle, position: Any) -> None:
        raise NotImplementedError

    def set_icon(self, handle: Handle, icon: Optional[str]) -> None:
        raise NotImplementedError

    def set_label(self, handle: Handle, label: Optional[str]) -> None:
        raise NotImplementedError

    def set_radius(self, handle: Handle, radius: Optional[float]) -> None:
        raise NotImplementedError

    def show(self, handle: Handle) -> None:
        raise NotImplementedError

    def hide(self, handle: Handle) -> None:
        raise NotImplementedError

    def get_bounds(self) -> Optional[Tuple[Position, Position]]:
        raise NotImplementedError

    def get_center(self) -> Position:
        raise NotImplementedError

    def get_zoom(self) -> int:
        raise NotImplementedError


class CommandSurface(RenderSurface):
    """Render surface backed by a command queue.

    Keeps its own table of live objects and records every call as a JSON
    command; the browser drains the queue over the websocket and replays it
    on the real map SDK.
    """

    def __init__(self, center: Position, zoom: int = 12):
        self._ids = itertools.count(1)
        self._objects: Dict[Handle, Dict[str, Any]] = {}
        self._pending: List[Dict[str, Any]] = []
        self._center = center
        self._zoom = zoom
        self.closed = False

    def _live(self, handle: Handle) -> Dict[str, Any]:
        if self.closed:
            raise RenderSurfaceError("surface is closed")
        obj = self._objects.get(handle)
        if obj is None:
            raise RenderSurfaceError(f"unknown handle {handle}")
        return obj

    def _emit(self, op: str, handle: Handle, **fields: Any) -> None:
        self._pending.append({"op": op, "handle": handle, **fields})

    def add(self, options: Dict[str, Any]) -> Handle:
        if self.closed:
            raise RenderSurfaceError("surface is closed")
        handle = next(self._ids)
        self._objects[handle] = copy.deepcopy(options)
        self._emit("add", handle, options=copy.deepcopy(options))
        return handle

    def remove(self, handle: Handle) -> None:
        self._live(handle)
        del self._objects[handle]
        self._emit("remove", handle)

    def set_position(self, handle: Handle, position: Any) -> None:
        self._live(handle)["position"] = position
        self._emit("set_position", handle, position=position)

    def set_icon(self, handle: Handle, icon: Optional[str]) -> None:
        self._live(handle)["icon"] = icon
        self._emit("set_icon", handle, icon=icon)

    def set_label(self, handle: Handle, label: Optional[str]) -> None:
        self._live(handle)["label"] = label
        self._emit("set_label", handle, label=label)

    def set_radius(self, handle: Handle, radius: Optional[float]) -> None:
        self._live(handle)["radius"] = radius
        self._emit("set_radius", handle, radius=radius)

    def show(self, handle: Handle) -> None:
        self._live(handle)["visible"] = True
        self._emit("show", handle)

    def hide(self, handle: Handle) -> None:
        self._live(handle)["visible"] = False
        self._emit("hide", handle)

    def get_bounds(self) -> Optional[Tuple[Position, Position]]:
        points: List[Position] = []
        for obj in self._objects.values():
            points.extend(_positions(obj.get("position")))
        return bounds(points)

    def get_center(self) -> Position:
        return self._center

    def get_zoom(self) -> int:
        return self._zoom

    # ---- console side ----
    def set_view(self, center: Position, zoom: Optional[int] = None) -> None:
        self._center = center
        if zoom is not None:
            self._zoom = zoom
        self._pending.append({"op": "set_view", "center": center.as_list(), "zoom": self._zoom})

    def drain(self) -> List[Dict[str, Any]]:
        out, self._pending = self._pending, []
        return out

    def close(self) -> None:
        self.closed = True
        self._objects.clear()
        self._pending.clear()

    @property
    def objects(self) -> Dict[Handle, Dict[str, Any]]:
        return dict(self._objects)


def _positions(value: Any) -> List[Position]:
    if not value:
        return []
    if isinstance(value[0], (int, float)):
        return [Position(lng=float(value[0]), lat=float(value[1]))]
    out: List[Position] = []
    for pair in value:
        out.append(Position(lng=float(pair[0]), lat=float(pair[1])))
    return out
