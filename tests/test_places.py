from __future__ import annotations

import json
from typing import Any

import pytest

from tracking import places as places_mod
from tracking.config import TrackingConfig
from tracking.exceptions import ExternalServiceError
from tracking.models import Position
from tracking.places import AmapPlaceSearch, Place, StaticPlaceSearch, make_place_search

CATALOGUE = [
    Place("p1", "Coffee Lab", "1 Market St", Position(lng=114.10, lat=22.54)),
    Place("p2", "Coffee", "9 Harbour Rd", Position(lng=114.06, lat=22.54)),
    Place("p3", "Tea House", "Coffee Alley 3", Position(lng=114.051, lat=22.54)),
    Place("p4", "Coffee Corner", "2 Park Ave", Position(lng=114.052, lat=22.54)),
]


class _FakeResponse:
    def __init__(self, payload: Any) -> None:
        self._body = json.dumps(payload).encode("utf-8")

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "_FakeResponse":
        return self

    def __exit__(self, *exc: Any) -> bool:
        return False


def test_static_search_ranks_exact_then_prefix_then_substring() -> None:
    bias = Position(lng=114.05, lat=22.54)
    found = StaticPlaceSearch(CATALOGUE).text_search("coffee", bias)

    assert [p.place_id for p in found] == ["p2", "p4", "p1", "p3"]
    assert found[0].as_dict(bias)["distance_m"] > 0


def test_static_search_blank_query() -> None:
    assert StaticPlaceSearch(CATALOGUE).text_search("   ") == []


def test_amap_requires_key() -> None:
    with pytest.raises(ExternalServiceError) as exc_info:
        AmapPlaceSearch(TrackingConfig()).text_search("coffee")
    assert exc_info.value.code == "NO_KEY"


def test_amap_parses_pois(monkeypatch: pytest.MonkeyPatch) -> None:
    payload = {
        "status": "1",
        "pois": [
            {"id": "B1", "name": "Coffee Lab", "address": "1 Market St", "location": "114.1,22.54", "tel": [], "type": "cafe"},
            {"id": "B2", "name": "No Location"},
        ],
    }
    monkeypatch.setattr(places_mod, "urlopen", lambda url, timeout: _FakeResponse(payload))

    found = AmapPlaceSearch(TrackingConfig(amap_key="k")).text_search("coffee")

    assert len(found) == 1
    assert found[0].location == Position(lng=114.1, lat=22.54)
    assert found[0].tel == ""


def test_amap_error_status_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    payload = {"status": "0", "info": "INVALID_USER_KEY", "infocode": "10001"}
    monkeypatch.setattr(places_mod, "urlopen", lambda url, timeout: _FakeResponse(payload))

    with pytest.raises(ExternalServiceError) as exc_info:
        AmapPlaceSearch(TrackingConfig(amap_key="bad")).text_search("coffee")
    assert exc_info.value.code == "10001"
    assert exc_info.value.service == "amap"


def test_make_place_search_prefers_amap_when_keyed() -> None:
    assert isinstance(make_place_search(TrackingConfig()), StaticPlaceSearch)
    assert isinstance(make_place_search(TrackingConfig(amap_key="k")), AmapPlaceSearch)
