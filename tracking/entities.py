"""Renderable map entities and their surface representation.

Every entity kind is its own frozen dataclass; ``MapEntity`` is the union of
them and :func:`render_options` is the single place that turns an entity
into the option dict a render surface understands.
"""

from __future__ import annotations

import html
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional, Tuple, Union

from .models import Position

MARKER_ICONS: Dict[str, str] = {
    "store": "https://webapi.amap.com/theme/v1.3/markers/n/mark_b.png",
    "warehouse": "https://webapi.amap.com/theme/v1.3/markers/n/mark_r.png",
    "vehicle": "https://webapi.amap.com/theme/v1.3/markers/n/mark_r.png",
    "pickup": "https://webapi.amap.com/theme/v1.3/markers/n/mark_b.png",
    "delivery": "https://webapi.amap.com/theme/v1.3/markers/n/mark_r.png",
    "confirmed_place": "star",
    "default": "https://webapi.amap.com/theme/v1.3/markers/n/mark_bs.png",
}

# Fields a surface can change in place; anything else forces a re-add.
MUTABLE_FIELDS: Tuple[str, ...] = ("position", "icon", "label", "radius", "visible")


@dataclass(frozen=True)
class PointMarker:
    kind: ClassVar[str] = "point-marker"

    id: str
    position: Position
    role: str = "default"
    icon: Optional[str] = None
    title: str = ""
    label: Optional[str] = None
    visible: bool = True


@dataclass(frozen=True)
class Circle:
    kind: ClassVar[str] = "circle"

    id: str
    center: Position
    radius: float
    stroke_color: str = "#1890ff"
    fill_color: str = "#1890ff"
    fill_opacity: float = 0.1
    label: Optional[str] = None
    visible: bool = True


@dataclass(frozen=True)
class Polygon:
    kind: ClassVar[str] = "polygon"

    id: str
    path: Tuple[Position, ...]
    stroke_color: str = "#52c41a"
    fill_color: str = "#52c41a"
    fill_opacity: float = 0.3
    visible: bool = True


@dataclass(frozen=True)
class Polyline:
    kind: ClassVar[str] = "polyline"

    id: str
    path: Tuple[Position, ...]
    stroke_color: str = "#1890ff"
    stroke_weight: int = 4
    visible: bool = True


@dataclass(frozen=True)
class Label:
    kind: ClassVar[str] = "label"

    id: str
    position: Position
    text: str
    color: str = "#333333"
    visible: bool = True


MapEntity = Union[PointMarker, Circle, Polygon, Polyline, Label]


def marker_icon(role: str, icon: Optional[str] = None) -> str:
    if icon:
        return icon
    return MARKER_ICONS.get(role, MARKER_ICONS["default"])


def _escape(text: Optional[str]) -> Optional[str]:
    if text is None or text == "":
        return None
    return html.escape(str(text), quote=False)


def _path(points: Tuple[Position, ...]) -> Tuple[Tuple[float, float], ...]:
    return tuple((p.lng, p.lat) for p in points)


def render_options(entity: MapEntity) -> Dict[str, Any]:
    """Resolve the surface representation of ``entity``.

    Pure function of the entity's kind and payload. The result always
    carries every key of ``MUTABLE_FIELDS`` plus ``kind`` and ``style``.
    """
    if isinstance(entity, PointMarker):
        return {
            "kind": entity.kind,
            "position": (entity.position.lng, entity.position.lat),
            "icon": marker_icon(entity.role, entity.icon),
            "label": _escape(entity.label),
            "radius": None,
            "visible": entity.visible,
            "style": {"title": entity.title, "size": (32, 32) if entity.role == "confirmed_place" else (19, 31)},
        }
    if isinstance(entity, Circle):
        return {
            "kind": entity.kind,
            "position": (entity.center.lng, entity.center.lat),
            "icon": None,
            "label": _escape(entity.label),
            "radius": float(entity.radius),
            "visible": entity.visible and entity.radius > 0,
            "style": {
                "strokeColor": entity.stroke_color,
                "strokeWeight": 2,
                "fillColor": entity.fill_color,
                "fillOpacity": entity.fill_opacity,
            },
        }
    if isinstance(entity, Polygon):
        return {
            "kind": entity.kind,
            "position": _path(entity.path),
            "icon": None,
            "label": None,
            "radius": None,
            "visible": entity.visible,
            "style": {
                "strokeColor": entity.stroke_color,
                "strokeWeight": 2,
                "fillColor": entity.fill_color,
                "fillOpacity": entity.fill_opacity,
            },
        }
    if isinstance(entity, Polyline):
        return {
            "kind": entity.kind,
            "position": _path(entity.path),
            "icon": None,
            "label": None,
            "radius": None,
            "visible": entity.visible,
            "style": {"strokeColor": entity.stroke_color, "strokeWeight": entity.stroke_weight},
        }
    if isinstance(entity, Label):
        return {
            "kind": entity.kind,
            "position": (entity.position.lng, entity.position.lat),
            "icon": None,
            "label": _escape(entity.text),
            "radius": None,
            "visible": entity.visible,
            "style": {"color": entity.color},
        }
    raise TypeError(f"unsupported map entity: {entity!r}")
