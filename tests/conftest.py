from __future__ import annotations

import random
from datetime import datetime, timezone

import pytest

from tracking.config import TrackingConfig
from tracking.models import Position, Vehicle
from tracking.sim_engine import SimEngine

FIXED_NOW = datetime(2026, 1, 1, 8, 0, tzinfo=timezone.utc)

WAREHOUSE = Position(lng=114.06, lat=22.55)
START = Position(lng=114.05, lat=22.54)
DROP_OFF = Position(lng=114.07, lat=22.56)


@pytest.fixture
def cfg() -> TrackingConfig:
    return TrackingConfig(
        center_lng=114.05,
        center_lat=22.54,
        warehouse_lng=WAREHOUSE.lng,
        warehouse_lat=WAREHOUSE.lat,
        seed=7,
    )


@pytest.fixture
def engine(cfg: TrackingConfig) -> SimEngine:
    eng = SimEngine(cfg, rng=random.Random(1), clock=lambda: FIXED_NOW)
    eng.load([Vehicle(vehicle_id="v1", license_plate="YUE-A12345", driver="Driver Zhang", position=START)])
    return eng
