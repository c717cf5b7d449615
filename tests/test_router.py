from __future__ import annotations

import json
from typing import Any, Dict, List
from urllib.parse import parse_qs, urlsplit

import pytest

from tracking import router
from tracking.config import TrackingConfig
from tracking.models import Position
from tracking.router import OsrmPlanner, StraightLinePlanner, make_planner, travel_sec

A = Position(lng=114.05, lat=22.54)
B = Position(lng=114.07, lat=22.56)
VIA = Position(lng=114.06, lat=22.54)


class _FakeResponse:
    def __init__(self, payload: Dict[str, Any]) -> None:
        self._body = json.dumps(payload).encode("utf-8")

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "_FakeResponse":
        return self

    def __exit__(self, *exc: Any) -> bool:
        return False


def _osrm_route(distance: float, coords: List[List[float]]) -> Dict[str, Any]:
    return {
        "distance": distance,
        "duration": distance / 10,
        "geometry": {"coordinates": coords},
        "legs": [
            {
                "steps": [
                    {
                        "distance": distance,
                        "duration": distance / 10,
                        "name": "Shennan Blvd",
                        "maneuver": {"type": "depart", "modifier": "left"},
                        "geometry": {"coordinates": coords},
                    }
                ]
            }
        ],
    }


def test_straight_line_plan_goes_through_waypoints() -> None:
    plan = StraightLinePlanner().plan_route(A, B, "walking", [VIA])

    assert plan.status == "success"
    assert plan.polyline == [A, VIA, B]
    assert len(plan.steps) == 2
    assert plan.steps[-1].instruction == "Arrive at destination"
    assert plan.distance == pytest.approx(sum(s.distance for s in plan.steps))
    assert plan.duration == pytest.approx(travel_sec(plan.distance, "walking"))


def test_osrm_failure_becomes_error_plan(monkeypatch: pytest.MonkeyPatch) -> None:
    def boom(url: str, timeout: float) -> Any:
        raise OSError("connection refused")

    monkeypatch.setattr(router, "urlopen", boom)

    plan = OsrmPlanner(TrackingConfig(routing_mode="osrm")).plan_route(A, B)

    assert plan.status == "error"
    assert plan.error["code"] == "UNAVAILABLE"
    assert "connection refused" in plan.error["message"]


def test_osrm_no_route_code_is_forwarded(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(router, "urlopen", lambda url, timeout: _FakeResponse({"code": "NoRoute", "message": "Impossible route"}))

    plan = OsrmPlanner(TrackingConfig()).plan_route(A, B)

    assert plan.status == "error"
    assert plan.error == {"code": "NoRoute", "message": "Impossible route"}


def test_osrm_shortest_strategy_orders_alternatives(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: List[str] = []
    payload = {
        "code": "Ok",
        "routes": [
            _osrm_route(3200.0, [[114.05, 22.54], [114.06, 22.55], [114.07, 22.56]]),
            _osrm_route(2900.0, [[114.05, 22.54], [114.07, 22.56]]),
        ],
    }

    def fake_urlopen(url: str, timeout: float) -> _FakeResponse:
        seen.append(url)
        return _FakeResponse(payload)

    monkeypatch.setattr(router, "urlopen", fake_urlopen)

    plan = OsrmPlanner(TrackingConfig(osrm_base_url="http://osrm.local")).plan_route(A, B, "riding", strategy=1)

    assert seen[0].startswith("http://osrm.local/route/v1/cycling/114.05,22.54;114.07,22.56?")
    assert parse_qs(urlsplit(seen[0]).query)["alternatives"] == ["true"]
    assert plan.status == "success"
    assert plan.distance == 2900.0
    assert [p.distance for p in plan.alternate_plans] == [3200.0]
    assert plan.steps[0].instruction == "depart left Shennan Blvd"
    assert plan.polyline[-1] == B


def test_osrm_malformed_route_is_an_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(router, "urlopen", lambda url, timeout: _FakeResponse({"code": "Ok", "routes": [{"geometry": {}}]}))

    plan = OsrmPlanner(TrackingConfig()).plan_route(A, B)

    assert plan.status == "error"
    assert plan.error["code"] == "BadResponse"


def test_make_planner_follows_routing_mode() -> None:
    assert isinstance(make_planner(TrackingConfig()), StraightLinePlanner)
    assert isinstance(make_planner(TrackingConfig(routing_mode="osrm")), OsrmPlanner)


def _capture_urls(monkeypatch: pytest.MonkeyPatch) -> List[str]:
    seen: List[str] = []

    def fake_urlopen(url: str, timeout: float) -> _FakeResponse:
        seen.append(url)
        return _FakeResponse({"code": "Ok", "routes": [_osrm_route(2900.0, [[114.05, 22.54], [114.07, 22.56]])]})

    monkeypatch.setattr(router, "urlopen", fake_urlopen)
    return seen


def test_osrm_avoid_highway_excludes_motorways(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = _capture_urls(monkeypatch)
    planner = OsrmPlanner(TrackingConfig())

    plan = planner.plan_route(A, B, "driving", strategy=router.AVOID_HIGHWAY)
    planner.plan_route(A, B, "driving", strategy=router.FASTEST)

    assert plan.status == "success"
    avoid, fastest = (parse_qs(urlsplit(u).query) for u in seen)
    assert avoid["exclude"] == ["motorway"]
    assert avoid["alternatives"] == ["true"]
    assert "exclude" not in fastest


def test_osrm_avoid_highway_on_foot_sends_no_exclude(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = _capture_urls(monkeypatch)

    OsrmPlanner(TrackingConfig()).plan_route(A, B, "walking", strategy=router.AVOID_HIGHWAY)

    assert "/route/v1/foot/" in seen[0]
    assert "exclude" not in parse_qs(urlsplit(seen[0]).query)


@pytest.mark.parametrize("strategy", [router.AVOID_CONGESTION, 7])
def test_osrm_rejects_strategies_it_cannot_honour(monkeypatch: pytest.MonkeyPatch, strategy: int) -> None:
    seen = _capture_urls(monkeypatch)

    plan = OsrmPlanner(TrackingConfig()).plan_route(A, B, strategy=strategy)

    assert plan.status == "error"
    assert plan.error["code"] == "UNSUPPORTED_STRATEGY"
    assert seen == []
