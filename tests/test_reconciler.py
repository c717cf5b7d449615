from __future__ import annotations

from typing import Any, Dict

import pytest

from tracking.entities import Circle, Label, PointMarker, Polyline, render_options
from tracking.exceptions import RenderSurfaceError
from tracking.models import Position
from tracking.reconciler import EntityReconciler
from tracking.surface import CommandSurface


def _surface() -> CommandSurface:
    return CommandSurface(center=Position(lng=114.05, lat=22.54))


def _markers(n: int = 3):
    return [
        PointMarker(id=f"m{i}", position=Position(lng=114.0 + i * 0.01, lat=22.5), role="store", title=f"Store {i}")
        for i in range(n)
    ]


class FlakySurface(CommandSurface):
    """Fails ``add`` for titles in ``bad_titles`` and the next ``fail_moves`` moves."""

    def __init__(self) -> None:
        super().__init__(center=Position(lng=0.0, lat=0.0))
        self.bad_titles = set()
        self.fail_moves = 0

    def add(self, options: Dict[str, Any]) -> int:
        if options["style"].get("title") in self.bad_titles:
            raise RenderSurfaceError("rejected")
        return super().add(options)

    def set_position(self, handle: int, position: Any) -> None:
        if self.fail_moves:
            self.fail_moves -= 1
            raise RenderSurfaceError("move rejected")
        super().set_position(handle, position)


def test_same_list_twice_issues_no_calls() -> None:
    surface = _surface()
    rec = EntityReconciler(surface)
    entities = _markers()

    first = rec.apply(entities)
    assert first.added == 3
    surface.drain()

    second = rec.apply(list(entities))
    assert second.surface_calls == 0
    assert surface.drain() == []


def test_every_entity_rendered_exactly_once() -> None:
    surface = _surface()
    rec = EntityReconciler(surface)
    entities = _markers(5)

    rec.apply(entities)

    assert rec.rendered_ids == {e.id for e in entities}
    assert len(surface.objects) == 5
    assert len({rec.handle_of(e.id) for e in entities}) == 5


def test_position_change_is_one_mutator_call() -> None:
    surface = _surface()
    rec = EntityReconciler(surface)
    rec.apply(_markers(2))
    surface.drain()

    moved = [
        PointMarker(id="m0", position=Position(lng=114.5, lat=22.6), role="store", title="Store 0"),
        _markers(2)[1],
    ]
    stats = rec.apply(moved)

    commands = surface.drain()
    assert stats.updated_fields == 1
    assert [c["op"] for c in commands] == ["set_position"]
    assert commands[0]["handle"] == rec.handle_of("m0")
    assert surface.objects[rec.handle_of("m0")]["position"] == (114.5, 22.6)


def test_calls_bounded_by_changed_fields() -> None:
    surface = _surface()
    rec = EntityReconciler(surface)
    rec.apply([PointMarker(id="v", position=Position(lng=1.0, lat=1.0), role="vehicle", label="A")])
    surface.drain()

    stats = rec.apply([PointMarker(id="v", position=Position(lng=2.0, lat=2.0), role="vehicle", label="B", visible=False)])

    ops = sorted(c["op"] for c in surface.drain())
    assert ops == ["hide", "set_label", "set_position"]
    assert stats.surface_calls == 3


def test_removed_ids_are_removed_from_surface() -> None:
    surface = _surface()
    rec = EntityReconciler(surface)
    rec.apply(_markers(3))
    handles_before = rec.handle_of("m2")
    surface.drain()

    stats = rec.apply(_markers(2))

    assert stats.removed == 1
    assert surface.drain() == [{"op": "remove", "handle": handles_before}]
    assert rec.rendered_ids == {"m0", "m1"}


def test_style_change_replaces_object() -> None:
    surface = _surface()
    rec = EntityReconciler(surface)
    path = (Position(lng=0.0, lat=0.0), Position(lng=1.0, lat=1.0))
    rec.apply([Polyline(id="trail", path=path, stroke_color="#1890ff")])
    old_handle = rec.handle_of("trail")
    surface.drain()

    stats = rec.apply([Polyline(id="trail", path=path, stroke_color="#ff4d4f")])

    assert stats.replaced == 1
    assert [c["op"] for c in surface.drain()] == ["remove", "add"]
    assert rec.handle_of("trail") != old_handle
    assert surface.objects[rec.handle_of("trail")]["style"]["strokeColor"] == "#ff4d4f"


def test_duplicate_ids_first_wins() -> None:
    surface = _surface()
    rec = EntityReconciler(surface)

    rec.apply([
        Label(id="dup", position=Position(lng=1.0, lat=1.0), text="first"),
        Label(id="dup", position=Position(lng=2.0, lat=2.0), text="second"),
    ])

    assert len(surface.objects) == 1
    (obj,) = surface.objects.values()
    assert obj["label"] == "first"


def test_failed_add_is_isolated_and_retried() -> None:
    surface = FlakySurface()
    surface.bad_titles = {"Store 1"}
    rec = EntityReconciler(surface)

    stats = rec.apply(_markers(3))

    assert stats.failures == 1
    assert stats.added == 2
    assert rec.rendered_ids == {"m0", "m2"}

    surface.bad_titles = set()
    retry = rec.apply(_markers(3))
    assert retry.added == 1
    assert rec.rendered_ids == {"m0", "m1", "m2"}


def test_failed_mutator_is_retried_next_pass() -> None:
    surface = FlakySurface()
    rec = EntityReconciler(surface)
    rec.apply([PointMarker(id="v", position=Position(lng=1.0, lat=1.0))])

    surface.fail_moves = 1
    moved = [PointMarker(id="v", position=Position(lng=3.0, lat=3.0))]
    stats = rec.apply(moved)
    assert stats.failures == 1
    assert surface.objects[rec.handle_of("v")]["position"] == (1.0, 1.0)

    again = rec.apply(moved)
    assert again.updated_fields == 1
    assert surface.objects[rec.handle_of("v")]["position"] == (3.0, 3.0)


def test_teardown_removes_everything_once() -> None:
    surface = _surface()
    rec = EntityReconciler(surface)
    rec.apply(_markers(4))

    assert rec.teardown() == 4
    assert surface.objects == {}
    assert rec.rendered_ids == set()
    assert rec.teardown() == 0


def test_teardown_on_closed_surface_does_not_raise() -> None:
    surface = _surface()
    rec = EntityReconciler(surface)
    rec.apply(_markers(2))
    surface.close()

    assert rec.teardown() == 0
    assert rec.rendered_ids == set()


def test_render_options_escapes_label_and_hides_empty_circle() -> None:
    marker = render_options(PointMarker(id="x", position=Position(lng=1.0, lat=2.0), label="<b>A&B</b>"))
    assert marker["label"] == "&lt;b&gt;A&amp;B&lt;/b&gt;"
    assert marker["position"] == (1.0, 2.0)

    circle = render_options(Circle(id="c", center=Position(lng=1.0, lat=2.0), radius=0))
    assert circle["visible"] is False
    assert circle["radius"] == 0.0


def test_render_options_rejects_unknown_entity() -> None:
    with pytest.raises(TypeError):
        render_options(object())
