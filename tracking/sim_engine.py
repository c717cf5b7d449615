from __future__ import annotations

import logging
import random
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from .config import TrackingConfig
from .exceptions import StaleTargetError, UnknownEntityError
from .geo import bbox_center, haversine_m, planar_distance, step_toward
from .lifecycle import apply_arrivals
from .models import ArrivalEvent, DeliveryTask, Position, SimState, TrackPoint, Vehicle

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TickResult:
    state: SimState
    arrivals: List[ArrivalEvent] = field(default_factory=list)
    moved: List[str] = field(default_factory=list)
    stale: List[StaleTargetError] = field(default_factory=list)


def step_size(cfg: TrackingConfig, task: Optional[DeliveryTask]) -> float:
    if task is not None and task.priority == "URGENT":
        return cfg.step_urgent_deg
    return cfg.step_normal_deg


def tick(state: SimState, cfg: TrackingConfig, rng: random.Random, now: datetime) -> TickResult:
    """Advance every EN_ROUTE vehicle one step toward its target.

    Reads only ``state`` and returns a new state; vehicles, trails and the
    derived sub-states of one tick are all computed from the same snapshot.
    """
    vehicles: Dict[str, Vehicle] = dict(state.vehicles)
    trails: Dict[str, Tuple[Position, ...]] = dict(state.trails)
    result = TickResult(state=state)

    for vid, v in state.vehicles.items():
        if v.status != "EN_ROUTE":
            continue

        target = state.targets.get(vid)
        if target is None:
            result.stale.append(StaleTargetError(vid))
            continue

        distance = planar_distance(v.position, target)
        if distance < cfg.arrival_epsilon_deg:
            result.arrivals.append(ArrivalEvent(vehicle_id=vid, target=target))
            continue

        new_pos = step_toward(v.position, target, step_size(cfg, state.active_task(vid)))
        vehicles[vid] = replace(
            v,
            position=new_pos,
            speed=round(distance * 1000),
            battery_level=max(0.0, v.battery_level - rng.random() * cfg.battery_drain_max),
            last_update=now,
        )
        trails[vid] = trails.get(vid, ()) + (new_pos,)
        result.moved.append(vid)

    next_state = replace(state, vehicles=vehicles, trails=trails, tick=state.tick + 1)
    result.state = apply_arrivals(next_state, result.arrivals, cfg.arrival_epsilon_deg)
    return result


def follow_center(state: SimState) -> Optional[Position]:
    moving = [v.position for v in state.vehicles.values() if v.status == "EN_ROUTE"]
    return bbox_center(moving)


class SimEngine:
    def __init__(
        self,
        cfg: TrackingConfig,
        *,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.cfg = cfg
        self.rng = rng or random.Random(cfg.seed)
        self.clock = clock

        self.loaded = False
        self.state = SimState(warehouse=self._warehouse_position())
        self.arrival_log: List[Dict[str, Any]] = []
        self.tracks: Dict[str, Deque[TrackPoint]] = {}

    def _warehouse_position(self) -> Position:
        if self.cfg.warehouse_lng is not None and self.cfg.warehouse_lat is not None:
            return Position(lng=self.cfg.warehouse_lng, lat=self.cfg.warehouse_lat)
        spread = self.cfg.warehouse_spread_deg
        return Position(
            lng=self.cfg.center_lng + (self.rng.random() - 0.5) * spread,
            lat=self.cfg.center_lat + (self.rng.random() - 0.5) * spread,
        )

    def load(self, vehicles: List[Vehicle]):
        now = self.clock()
        self.state = SimState(
            warehouse=self.state.warehouse,
            vehicles={v.vehicle_id: replace(v, last_update=v.last_update or now) for v in vehicles},
        )
        self.arrival_log = []
        self.tracks = {}
        self._record_tracks(now)
        self.loaded = True
        _logger.info("Fleet loaded: %d vehicles, warehouse at %s", len(vehicles), self.state.warehouse)

    def step(self) -> TickResult:
        if not self.loaded:
            raise RuntimeError("Fleet not loaded")

        now = self.clock()
        result = tick(self.state, self.cfg, self.rng, now)
        self.state = result.state
        self._record_tracks(now)

        for err in result.stale:
            _logger.warning("Tick %d: %s", self.state.tick, err)
        for ev in result.arrivals:
            self.arrival_log.append({
                "tick": self.state.tick,
                "vehicle_id": ev.vehicle_id,
                "target": ev.target.as_list(),
                "status": self.state.vehicles[ev.vehicle_id].status,
            })
            _logger.info("Vehicle %s arrived at %s", ev.vehicle_id, ev.target)
        return result

    def run(self, ticks: int) -> List[TickResult]:
        return [self.step() for _ in range(max(0, ticks))]

    def _record_tracks(self, now: datetime) -> None:
        # a point per move or status change; a parked vehicle adds nothing
        limit = max(1, self.cfg.track_history_limit)
        for vid, v in self.state.vehicles.items():
            track = self.tracks.get(vid)
            if track is None:
                track = self.tracks[vid] = deque(maxlen=limit)
            if track and track[-1].position == v.position and track[-1].status == v.status:
                continue
            track.append(TrackPoint(position=v.position, timestamp=now, speed=v.speed, status=v.status))

    def track(self, vehicle_id: str) -> List[TrackPoint]:
        if vehicle_id not in self.state.vehicles:
            raise UnknownEntityError(f"unknown vehicle {vehicle_id}")
        return list(self.tracks.get(vehicle_id, ()))

    # ---------- views ----------
    def counts(self) -> Dict[str, int]:
        out: Dict[str, int] = {}
        for v in self.state.vehicles.values():
            out[v.status] = out.get(v.status, 0) + 1
        return out

    def snapshot(self) -> Dict[str, Any]:
        s = self.state
        center = follow_center(s)

        def _remaining_m(v: Vehicle) -> Optional[float]:
            target = s.targets.get(v.vehicle_id)
            if target is None:
                return None
            return round(haversine_m(v.position, target), 1)

        return {
            "tick": s.tick,
            "warehouse": s.warehouse.as_list(),
            "follow_center": center.as_list() if center else None,
            "counts": self.counts(),
            "vehicles": [
                {
                    "vehicle_id": v.vehicle_id,
                    "license_plate": v.license_plate,
                    "driver": v.driver,
                    "status": v.status,
                    "position": v.position.as_list(),
                    "battery_level": round(v.battery_level, 2),
                    "speed": v.speed,
                    "temperature": v.temperature,
                    "last_update": v.last_update.isoformat() if v.last_update else None,
                    "target": s.targets[v.vehicle_id].as_list() if v.vehicle_id in s.targets else None,
                    "remaining_m": _remaining_m(v),
                    "trail_points": len(s.trails.get(v.vehicle_id, ())),
                }
                for v in s.vehicles.values()
            ],
            "tasks": [_task_view(t) for t in s.tasks.values()],
        }


def _task_view(t: DeliveryTask) -> Dict[str, Any]:
    return {
        "task_id": t.task_id,
        "order_id": t.order_id,
        "vehicle_id": t.vehicle_id,
        "status": t.status,
        "priority": t.priority,
        "customer_name": t.customer_name,
        "customer_phone": t.customer_phone,
        "pickup_address": t.pickup_address.as_list(),
        "delivery_address": t.delivery_address.as_list(),
        "estimated_arrival": t.estimated_arrival.isoformat() if t.estimated_arrival else None,
        "actual_arrival": t.actual_arrival.isoformat() if t.actual_arrival else None,
        "items": list(t.items),
        "notes": t.notes,
    }
