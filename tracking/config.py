from __future__ import annotations

import os
from typing import Literal, Optional

from pydantic import BaseModel


class TrackingConfig(BaseModel):
    # Simulation tick
    tick_ms: int = 1000

    # Motion (degrees per tick, planar)
    arrival_epsilon_deg: float = 1e-3  # ~100 m at mid-latitudes
    step_normal_deg: float = 0.0005
    step_urgent_deg: float = 0.001
    battery_drain_max: float = 0.05

    # Map + fleet seeding
    center_lng: float = 116.3974
    center_lat: float = 39.9093
    warehouse_lng: Optional[float] = None  # random near center when unset
    warehouse_lat: Optional[float] = None
    warehouse_spread_deg: float = 0.05
    fleet_spread_deg: float = 0.02
    seed: Optional[int] = None

    # ETA model (minutes after assignment)
    eta_normal_min: int = 30
    eta_urgent_min: int = 15

    # ---- Routing / place search ----
    routing_mode: Literal["straight", "osrm"] = "straight"
    osrm_base_url: str = "http://127.0.0.1:5000"
    amap_key: str = ""
    amap_base_url: str = "https://restapi.amap.com"
    http_timeout_sec: float = 3.0
    route_history_limit: int = 12

    # Track playback
    track_history_limit: int = 7200  # points kept per vehicle

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "TrackingConfig":
        """Build a config, overriding defaults from ``TRACKING_*`` variables."""
        overrides = {}
        for name in cls.model_fields:
            value = os.environ.get(f"TRACKING_{name.upper()}")
            if value is not None and value != "":
                overrides[name] = value
        return cls.model_validate(overrides)
