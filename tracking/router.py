from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Sequence
from urllib.parse import urlencode
from urllib.request import urlopen

from .config import TrackingConfig
from .exceptions import ExternalServiceError
from .geo import haversine_m, path_length_m
from .models import Position

_logger = logging.getLogger(__name__)

Mode = Literal["driving", "walking", "riding"]
RouteStatus = Literal["success", "error"]

FASTEST, SHORTEST, AVOID_HIGHWAY, AVOID_CONGESTION = 0, 1, 2, 3
STRATEGIES = (FASTEST, SHORTEST, AVOID_HIGHWAY, AVOID_CONGESTION)

_SPEED_KMH: Dict[str, float] = {"driving": 35.0, "walking": 5.0, "riding": 15.0}


@dataclass
class RouteStep:
    instruction: str
    distance: float  # m
    duration: float  # s
    polyline: List[Position] = field(default_factory=list)


@dataclass
class RoutePlan:
    status: RouteStatus
    polyline: List[Position] = field(default_factory=list)
    distance: float = 0.0  # m
    duration: float = 0.0  # s
    steps: List[RouteStep] = field(default_factory=list)
    alternate_plans: List["RoutePlan"] = field(default_factory=list)
    error: Optional[Dict[str, str]] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "polyline": [p.as_list() for p in self.polyline],
            "distance": round(self.distance, 1),
            "duration": round(self.duration, 1),
            "steps": [
                {
                    "instruction": s.instruction,
                    "distance": round(s.distance, 1),
                    "duration": round(s.duration, 1),
                    "polyline": [p.as_list() for p in s.polyline],
                }
                for s in self.steps
            ],
            "alternate_plans": [p.as_dict() for p in self.alternate_plans],
            "error": self.error,
        }


def travel_sec(meters: float, mode: str) -> float:
    speed = _SPEED_KMH.get(mode, _SPEED_KMH["driving"])
    return meters / 1000.0 / speed * 3600.0


class RoutePlanner:
    def plan_route(
        self,
        origin: Position,
        destination: Position,
        mode: Mode = "driving",
        waypoints: Optional[Sequence[Position]] = None,
        strategy: int = 0,
    ) -> RoutePlan:
        raise NotImplementedError


class StraightLinePlanner(RoutePlanner):
    """Offline planner: straight legs through the waypoints."""

    def plan_route(self, origin, destination, mode="driving", waypoints=None, strategy=0) -> RoutePlan:
        pts = [origin, *(waypoints or []), destination]
        steps: List[RouteStep] = []
        for i in range(len(pts) - 1):
            d = haversine_m(pts[i], pts[i + 1])
            label = "Arrive at destination" if i == len(pts) - 2 else f"Continue to waypoint {i + 1}"
            steps.append(RouteStep(instruction=label, distance=d, duration=travel_sec(d, mode), polyline=[pts[i], pts[i + 1]]))
        total = path_length_m(pts)
        return RoutePlan(
            status="success",
            polyline=pts,
            distance=total,
            duration=travel_sec(total, mode),
            steps=steps,
        )


class OsrmPlanner(RoutePlanner):
    """
    Real-road routing via an OSRM server.
    Lookup failures come back as an error plan; they never raise.

    OSRM always returns its alternatives; FASTEST keeps its ordering,
    SHORTEST re-sorts by distance, AVOID_HIGHWAY excludes motorways on the
    car profile. AVOID_CONGESTION needs traffic data OSRM does not have and
    is answered with an UNSUPPORTED_STRATEGY error plan.
    """
    def __init__(self, cfg: TrackingConfig):
        self.cfg = cfg

    def _profile(self, mode: str) -> str:
        if mode == "walking":
            return "foot"
        if mode == "riding":
            return "cycling"
        return "driving"

    def _query(self, profile: str, strategy: int) -> str:
        params = {
            "overview": "full",
            "geometries": "geojson",
            "steps": "true",
            "alternatives": "true",
        }
        # motorway class only exists on the car profile
        if strategy == AVOID_HIGHWAY and profile == "driving":
            params["exclude"] = "motorway"
        return urlencode(params)

    def _fetch(self, url: str) -> Dict[str, Any]:
        try:
            with urlopen(url, timeout=self.cfg.http_timeout_sec) as resp:
                payload = json.loads(resp.read().decode("utf-8"))
        except (OSError, ValueError) as exc:
            raise ExternalServiceError(f"OSRM request failed: {exc}", service="osrm") from exc
        if payload.get("code") != "Ok":
            raise ExternalServiceError(
                payload.get("message") or "OSRM returned no route",
                service="osrm",
                code=str(payload.get("code", "")),
            )
        return payload

    def _plan_from(self, route: Dict[str, Any]) -> RoutePlan:
        coords = (route.get("geometry") or {}).get("coordinates") or []
        steps: List[RouteStep] = []
        for leg in route.get("legs") or []:
            for s in leg.get("steps") or []:
                maneuver = s.get("maneuver") or {}
                name = s.get("name") or ""
                instruction = " ".join(x for x in (maneuver.get("type", ""), maneuver.get("modifier", ""), name) if x)
                steps.append(
                    RouteStep(
                        instruction=instruction,
                        distance=float(s.get("distance", 0.0)),
                        duration=float(s.get("duration", 0.0)),
                        polyline=[Position(lng=c[0], lat=c[1]) for c in (s.get("geometry") or {}).get("coordinates") or []],
                    )
                )
        return RoutePlan(
            status="success",
            polyline=[Position(lng=c[0], lat=c[1]) for c in coords],
            distance=float(route["distance"]),
            duration=float(route["duration"]),
            steps=steps,
        )

    def plan_route(self, origin, destination, mode="driving", waypoints=None, strategy=0) -> RoutePlan:
        if strategy not in STRATEGIES or strategy == AVOID_CONGESTION:
            _logger.info("OSRM cannot honour strategy %s", strategy)
            return RoutePlan(
                status="error",
                error={"code": "UNSUPPORTED_STRATEGY", "message": f"strategy {strategy} is not supported by OSRM"},
            )

        pts = [origin, *(waypoints or []), destination]
        coords = ";".join(f"{p.lng},{p.lat}" for p in pts)
        profile = self._profile(mode)
        url = f"{self.cfg.osrm_base_url}/route/v1/{profile}/{coords}?{self._query(profile, strategy)}"

        try:
            payload = self._fetch(url)
            routes = payload.get("routes") or []
            if not routes:
                raise ExternalServiceError("OSRM returned no routes", service="osrm", code="NoRoute")
            try:
                plans = [self._plan_from(r) for r in routes]
            except (KeyError, TypeError, ValueError) as exc:
                raise ExternalServiceError(f"malformed OSRM route: {exc}", service="osrm", code="BadResponse") from exc
        except ExternalServiceError as exc:
            _logger.warning("Route planning failed: %s", exc)
            return RoutePlan(status="error", error={"code": exc.code or "UNAVAILABLE", "message": str(exc)})

        if strategy == SHORTEST:
            plans.sort(key=lambda p: p.distance)
        best = plans[0]
        best.alternate_plans = plans[1:]
        return best


def make_planner(cfg: TrackingConfig) -> RoutePlanner:
    if cfg.routing_mode == "osrm":
        return OsrmPlanner(cfg)
    return StraightLinePlanner()
