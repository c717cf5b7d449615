"""Declarative entity lists for each map layer, and the reconcilers that own them."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Sequence

from .entities import Circle, Label, MapEntity, PointMarker, Polygon, Polyline
from .geo import centroid, format_distance, path_length_m, ring_area_m2
from .models import Drawing, Measurement, ServiceArea, SimState, TrackPoint
from .reconciler import EntityReconciler, ReconcileStats
from .surface import RenderSurface

_logger = logging.getLogger(__name__)

LAYER_NAMES = ("fleet", "service_areas", "drawings", "measurements")

_VEHICLE_TRAIL_COLORS = {"NORMAL": "#1890ff", "URGENT": "#ff4d4f"}


# ----------------------------
# fleet (vehicles, pickup/delivery pins, trails)
# ----------------------------

def fleet_entities(state: SimState) -> List[MapEntity]:
    out: List[MapEntity] = [
        PointMarker(id="warehouse", position=state.warehouse, role="warehouse", title="Warehouse"),
    ]

    for v in state.vehicles.values():
        out.append(
            PointMarker(
                id=f"vehicle:{v.vehicle_id}",
                position=v.position,
                role="vehicle",
                title=f"{v.license_plate} ({v.driver})",
                label=f"{v.license_plate} {v.speed} km/h" if v.status == "EN_ROUTE" else v.license_plate,
            )
        )

    for t in state.tasks.values():
        if t.status not in ("ASSIGNED", "IN_TRANSIT"):
            continue
        out.append(
            PointMarker(
                id=f"delivery:{t.task_id}",
                position=t.delivery_address,
                role="delivery",
                title=f"Deliver {t.order_id}",
                label=t.customer_name or None,
            )
        )
        if t.status == "ASSIGNED":
            out.append(
                PointMarker(
                    id=f"pickup:{t.task_id}",
                    position=t.pickup_address,
                    role="pickup",
                    title=f"Pick up {t.order_id}",
                )
            )

    for vid, trail in state.trails.items():
        if len(trail) < 2:
            continue
        task = state.active_task(vid)
        color = _VEHICLE_TRAIL_COLORS[task.priority] if task else _VEHICLE_TRAIL_COLORS["NORMAL"]
        out.append(Polyline(id=f"trail:{vid}", path=tuple(trail), stroke_color=color))

    return out


# ----------------------------
# store locator service areas
# ----------------------------

def service_area_entities(areas: Iterable[ServiceArea]) -> List[MapEntity]:
    return [
        Circle(
            id=f"area:{a.area_id}",
            center=a.center,
            radius=a.radius_m,
            stroke_color=a.stroke_color,
            fill_color=a.fill_color,
            visible=a.visible,
        )
        for a in areas
    ]


# ----------------------------
# drawing tool
# ----------------------------

def drawing_entities(drawings: Iterable[Drawing]) -> List[MapEntity]:
    out: List[MapEntity] = []
    for d in drawings:
        if d.drawing_type == "circle":
            if not d.radius_m or not d.positions:
                _logger.debug("Skipping incomplete circle drawing %s", d.drawing_id)
                continue
            out.append(Circle(id=f"drawing:{d.drawing_id}", center=d.positions[0], radius=d.radius_m, fill_opacity=0.3))
        elif len(d.positions) > 2:
            out.append(Polygon(id=f"drawing:{d.drawing_id}", path=tuple(d.positions)))
        else:
            _logger.debug("Skipping polygon drawing %s with %d points", d.drawing_id, len(d.positions))
    return out


# ----------------------------
# measurement tool
# ----------------------------

def measure(measurement: Measurement) -> Measurement:
    """Fill in value/unit from the measured points."""
    pts = measurement.positions
    if measurement.measurement_type == "distance":
        meters = path_length_m(pts)
        if meters >= 1000:
            return Measurement(measurement.measurement_id, "distance", pts, value=meters / 1000, unit="km")
        return Measurement(measurement.measurement_id, "distance", pts, value=meters, unit="m")
    sq_m = ring_area_m2(pts)
    if sq_m >= 1_000_000:
        return Measurement(measurement.measurement_id, "area", pts, value=sq_m / 1_000_000, unit="km²")
    return Measurement(measurement.measurement_id, "area", pts, value=sq_m, unit="m²")


def measurement_entities(measurements: Iterable[Measurement]) -> List[MapEntity]:
    out: List[MapEntity] = []
    for m in measurements:
        pts = m.positions
        text = f"{m.value:.2f} {m.unit}"
        prefix = f"measure:{m.measurement_id}"

        if m.measurement_type == "distance" and len(pts) >= 2:
            for i in range(len(pts) - 1):
                out.append(Polyline(id=f"{prefix}:seg{i}", path=(pts[i], pts[i + 1]), stroke_color="#fa8c16", stroke_weight=3))
            out.append(Label(id=f"{prefix}:label", position=pts[len(pts) // 2], text=text, color="#fa8c16"))
        elif m.measurement_type == "area" and len(pts) >= 3:
            out.append(Polygon(id=f"{prefix}:area", path=tuple(pts), stroke_color="#722ed1", fill_color="#722ed1", fill_opacity=0.2))
            out.append(Label(id=f"{prefix}:label", position=centroid(pts), text=text, color="#722ed1"))
    return out


def route_preview_entities(route_id: str, polyline: Sequence, mode: str) -> List[MapEntity]:
    if len(polyline) < 2:
        return []
    color = "#1890ff" if mode == "driving" else "#52c41a"
    return [
        Polyline(id=f"route:{route_id}", path=tuple(polyline), stroke_color=color, stroke_weight=6),
        Label(id=f"route:{route_id}:distance", position=polyline[-1], text=format_distance(path_length_m(polyline))),
    ]


# ----------------------------
# track playback
# ----------------------------

def playback_entities(vehicle_id: str, points: Sequence[TrackPoint], index: int) -> List[MapEntity]:
    """Played part of a recorded track plus a cursor at the current point."""
    if not points:
        return []
    played = points[: index + 1]
    current = played[-1]
    out: List[MapEntity] = [
        PointMarker(
            id=f"playback:{vehicle_id}",
            position=current.position,
            role="vehicle",
            title=f"Track of {vehicle_id}",
            label=f"{current.speed} km/h",
        )
    ]
    if len(played) >= 2:
        out.append(
            Polyline(
                id=f"playback:{vehicle_id}:path",
                path=tuple(p.position for p in played),
                stroke_color="#fa8c16",
            )
        )
    return out


# ----------------------------
# layer set
# ----------------------------

class LayerSet:
    """One reconciler per named layer, all drawing on the same surface."""

    def __init__(self, surface: RenderSurface, names: Sequence[str] = LAYER_NAMES):
        self.surface = surface
        self._reconcilers: Dict[str, EntityReconciler] = {n: EntityReconciler(surface, name=n) for n in names}

    def names(self) -> List[str]:
        return list(self._reconcilers)

    def reconciler(self, name: str) -> EntityReconciler:
        rec = self._reconcilers.get(name)
        if rec is None:
            rec = EntityReconciler(self.surface, name=name)
            self._reconcilers[name] = rec
        return rec

    def sync(self, name: str, entities: Iterable[MapEntity]) -> ReconcileStats:
        return self.reconciler(name).apply(entities)

    def rendered(self) -> Dict[str, List[str]]:
        return {n: sorted(r.rendered_ids) for n, r in self._reconcilers.items()}

    def teardown(self, name: str = "") -> int:
        if name:
            rec = self._reconcilers.get(name)
            return rec.teardown() if rec else 0
        return sum(r.teardown() for r in self._reconcilers.values())
