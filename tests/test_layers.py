from __future__ import annotations

import pytest
from conftest import DROP_OFF

from tracking.dispatch import DispatchController
from tracking.entities import Circle, Label, Polygon, Polyline
from tracking.layers import (
    LayerSet,
    drawing_entities,
    fleet_entities,
    measure,
    measurement_entities,
    route_preview_entities,
    service_area_entities,
)
from tracking.models import Drawing, Measurement, Position, ServiceArea
from tracking.sim_engine import SimEngine
from tracking.surface import CommandSurface


def test_fleet_entities_follow_task_progress(engine: SimEngine) -> None:
    ids = {e.id for e in fleet_entities(engine.state)}
    assert ids == {"warehouse", "vehicle:v1"}

    d = DispatchController(engine)
    d.assign("v1", DROP_OFF, customer_name="Li Hua")
    d.start_navigation_to_pickup("t0001")
    engine.run(2)

    entities = {e.id: e for e in fleet_entities(engine.state)}
    assert {"delivery:t0001", "pickup:t0001", "trail:v1"} <= set(entities)
    assert entities["vehicle:v1"].label.startswith("YUE-A12345 ")
    assert isinstance(entities["trail:v1"], Polyline)

    engine.run(30)
    d.confirm_pickup("t0001")
    ids = {e.id for e in fleet_entities(engine.state)}
    assert "pickup:t0001" not in ids
    assert "delivery:t0001" in ids


def test_service_areas_become_circles() -> None:
    areas = [
        ServiceArea(area_id="a1", center=Position(lng=114.0, lat=22.5), radius_m=3000),
        ServiceArea(area_id="a2", center=Position(lng=114.1, lat=22.5), radius_m=1500, visible=False),
    ]
    entities = service_area_entities(areas)
    assert [e.id for e in entities] == ["area:a1", "area:a2"]
    assert all(isinstance(e, Circle) for e in entities)
    assert entities[1].visible is False


def test_incomplete_drawings_are_skipped() -> None:
    p = Position(lng=114.0, lat=22.5)
    drawings = [
        Drawing(drawing_id="c1", drawing_type="circle", positions=(p,), radius_m=200.0),
        Drawing(drawing_id="c2", drawing_type="circle", positions=(p,)),
        Drawing(drawing_id="p1", drawing_type="polygon", positions=(p, p)),
        Drawing(
            drawing_id="p2",
            drawing_type="polygon",
            positions=(p, Position(lng=114.01, lat=22.5), Position(lng=114.01, lat=22.51)),
        ),
    ]
    entities = drawing_entities(drawings)
    assert [e.id for e in entities] == ["drawing:c1", "drawing:p2"]
    assert isinstance(entities[1], Polygon)


def test_measure_distance_switches_to_km() -> None:
    m = measure(Measurement("d1", "distance", (Position(lng=0.0, lat=0.0), Position(lng=0.0, lat=0.01))))
    assert m.unit == "km"
    assert m.value == pytest.approx(1.112, rel=1e-3)

    short = measure(Measurement("d2", "distance", (Position(lng=0.0, lat=0.0), Position(lng=0.0, lat=0.001))))
    assert short.unit == "m"
    assert short.value == pytest.approx(111.2, rel=1e-3)


def test_measure_area_of_small_square() -> None:
    square = (
        Position(lng=0.0, lat=0.0),
        Position(lng=0.001, lat=0.0),
        Position(lng=0.001, lat=0.001),
        Position(lng=0.0, lat=0.001),
    )
    m = measure(Measurement("a1", "area", square))
    assert m.unit == "m²"
    assert m.value == pytest.approx(111.195 ** 2, rel=0.01)


def test_measurement_entities_segments_and_label() -> None:
    pts = (Position(lng=0.0, lat=0.0), Position(lng=0.0, lat=0.01), Position(lng=0.01, lat=0.01))
    entities = measurement_entities([measure(Measurement("d1", "distance", pts))])

    assert [e.id for e in entities] == ["measure:d1:seg0", "measure:d1:seg1", "measure:d1:label"]
    label = entities[-1]
    assert isinstance(label, Label)
    assert label.position == pts[1]
    assert label.text.endswith(" km")


def test_route_preview_needs_two_points() -> None:
    assert route_preview_entities("r", [Position(lng=0.0, lat=0.0)], "driving") == []
    entities = route_preview_entities("r", [Position(lng=0.0, lat=0.0), Position(lng=0.0, lat=0.01)], "walking")
    assert [e.id for e in entities] == ["route:r", "route:r:distance"]
    assert entities[0].stroke_color == "#52c41a"
    assert entities[1].text == "1.1 km"


def test_layer_set_keeps_layers_independent() -> None:
    surface = CommandSurface(center=Position(lng=114.0, lat=22.5))
    layers = LayerSet(surface)
    areas = [ServiceArea(area_id="a1", center=Position(lng=114.0, lat=22.5), radius_m=1000)]

    layers.sync("service_areas", service_area_entities(areas))
    layers.sync("route", route_preview_entities("r", [Position(lng=0.0, lat=0.0), Position(lng=0.0, lat=0.01)], "driving"))

    rendered = layers.rendered()
    assert rendered["service_areas"] == ["area:a1"]
    assert rendered["route"] == ["route:r", "route:r:distance"]

    assert layers.teardown("route") == 2
    assert len(surface.objects) == 1
    assert layers.teardown() == 1
    assert surface.objects == {}
