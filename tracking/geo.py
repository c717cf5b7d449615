from __future__ import annotations

import math
from typing import Optional, Sequence, Tuple

from .models import Position

EARTH_RADIUS_M = 6371000.0


def haversine_m(a: Position, b: Position) -> float:
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    dphi = math.radians(b.lat - a.lat)
    dl = math.radians(b.lng - a.lng)

    x = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dl / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(x))


def planar_distance(a: Position, b: Position) -> float:
    # degree space; motion/threshold logic only, never shown to users
    return math.hypot(b.lng - a.lng, b.lat - a.lat)


def step_toward(origin: Position, target: Position, step: float) -> Position:
    d = planar_distance(origin, target)
    if d <= 0:
        return origin
    step = min(step, d)
    return Position(
        lng=origin.lng + (target.lng - origin.lng) / d * step,
        lat=origin.lat + (target.lat - origin.lat) / d * step,
    )


def path_length_m(points: Sequence[Position]) -> float:
    return sum(haversine_m(points[i], points[i + 1]) for i in range(len(points) - 1))


def ring_area_m2(points: Sequence[Position]) -> float:
    """Spherical area of a closed ring, in square meters."""
    if len(points) < 3:
        return 0.0
    total = 0.0
    n = len(points)
    for i in range(n):
        p1 = points[i]
        p2 = points[(i + 1) % n]
        total += math.radians(p2.lng - p1.lng) * (
            2 + math.sin(math.radians(p1.lat)) + math.sin(math.radians(p2.lat))
        )
    return abs(total * EARTH_RADIUS_M * EARTH_RADIUS_M / 2.0)


def centroid(points: Sequence[Position]) -> Position:
    return Position(
        lng=sum(p.lng for p in points) / len(points),
        lat=sum(p.lat for p in points) / len(points),
    )


def bbox_center(points: Sequence[Position]) -> Optional[Position]:
    if not points:
        return None
    lngs = [p.lng for p in points]
    lats = [p.lat for p in points]
    return Position(lng=(min(lngs) + max(lngs)) / 2, lat=(min(lats) + max(lats)) / 2)


def bounds(points: Sequence[Position]) -> Optional[Tuple[Position, Position]]:
    """(south-west, north-east) corners, or None for no points."""
    if not points:
        return None
    lngs = [p.lng for p in points]
    lats = [p.lat for p in points]
    return Position(lng=min(lngs), lat=min(lats)), Position(lng=max(lngs), lat=max(lats))


def format_distance(meters: float) -> str:
    if meters >= 1000:
        return f"{meters / 1000:.1f} km"
    return f"{round(meters)} m"


def format_duration(seconds: float) -> str:
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    if hours > 0:
        return f"{hours} h {minutes} min"
    return f"{minutes} min"
