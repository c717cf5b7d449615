from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urlencode
from urllib.request import urlopen

from .config import TrackingConfig
from .exceptions import ExternalServiceError
from .geo import haversine_m
from .models import Position

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Place:
    place_id: str
    name: str
    address: str
    location: Position
    tel: str = ""
    category: str = ""

    def as_dict(self, bias: Optional[Position] = None) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.place_id,
            "name": self.name,
            "address": self.address,
            "location": self.location.as_list(),
            "tel": self.tel,
            "category": self.category,
        }
        if bias is not None:
            out["distance_m"] = round(haversine_m(bias, self.location), 1)
        return out


class PlaceSearchService:
    def text_search(self, keywords: str, bias: Optional[Position] = None, limit: int = 10) -> List[Place]:
        raise NotImplementedError


class StaticPlaceSearch(PlaceSearchService):
    """Search over an in-memory catalogue.

    Ranking: exact name match, then name prefix, then substring in name or
    address; ties broken by distance to ``bias`` when given.
    """

    def __init__(self, places: Sequence[Place] = ()):
        self.places = list(places)

    def text_search(self, keywords, bias=None, limit=10) -> List[Place]:
        q = (keywords or "").strip().lower()
        if not q:
            return []

        scored = []
        for p in self.places:
            name = p.name.lower()
            if name == q:
                rank = 0
            elif name.startswith(q):
                rank = 1
            elif q in name or q in p.address.lower():
                rank = 2
            else:
                continue
            dist = haversine_m(bias, p.location) if bias is not None else 0.0
            scored.append((rank, dist, p))

        scored.sort(key=lambda x: (x[0], x[1]))
        return [p for _, _, p in scored[:limit]]


class AmapPlaceSearch(PlaceSearchService):
    """AMap web-service keyword search (``/v3/place/text``)."""

    def __init__(self, cfg: TrackingConfig):
        self.cfg = cfg

    def text_search(self, keywords, bias=None, limit=10) -> List[Place]:
        if not self.cfg.amap_key:
            raise ExternalServiceError("AMap key is not configured", service="amap", code="NO_KEY")

        params = {"key": self.cfg.amap_key, "keywords": keywords, "offset": max(1, min(limit, 25)), "extensions": "base"}
        if bias is not None:
            params["location"] = f"{bias.lng:.6f},{bias.lat:.6f}"
        url = f"{self.cfg.amap_base_url}/v3/place/text?{urlencode(params)}"

        try:
            with urlopen(url, timeout=self.cfg.http_timeout_sec) as resp:
                payload = json.loads(resp.read().decode("utf-8"))
        except (OSError, ValueError) as exc:
            raise ExternalServiceError(f"AMap request failed: {exc}", service="amap") from exc

        if str(payload.get("status")) != "1":
            raise ExternalServiceError(payload.get("info") or "AMap search failed", service="amap", code=str(payload.get("infocode", "")))

        out: List[Place] = []
        for poi in payload.get("pois") or []:
            try:
                lng, lat = (float(x) for x in str(poi["location"]).split(","))
            except (KeyError, ValueError):
                _logger.debug("Skipping POI without location: %s", poi.get("id"))
                continue
            out.append(
                Place(
                    place_id=str(poi.get("id", "")),
                    name=str(poi.get("name", "")),
                    address=poi.get("address") if isinstance(poi.get("address"), str) else "",
                    location=Position(lng=lng, lat=lat),
                    tel=poi.get("tel") if isinstance(poi.get("tel"), str) else "",
                    category=str(poi.get("type", "")),
                )
            )
        return out[:limit]


def make_place_search(cfg: TrackingConfig, catalogue: Sequence[Place] = ()) -> PlaceSearchService:
    if cfg.amap_key:
        return AmapPlaceSearch(cfg)
    return StaticPlaceSearch(catalogue)
