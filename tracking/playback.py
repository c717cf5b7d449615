"""Replay of one vehicle's recorded track on the map."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from .entities import MapEntity
from .exceptions import InvalidStateTransition
from .layers import playback_entities
from .models import TrackPoint

_logger = logging.getLogger(__name__)

PLAYBACK_SPEEDS = (0.5, 1.0, 2.0, 4.0)


class TrackPlayback:
    """Cursor over a recorded track.

    While playing, the cursor moves one point every ``1000 / speed`` ms of
    elapsed time and stops by itself on the last point. Pressing play at the
    end rewinds to the first point.
    """

    def __init__(self) -> None:
        self.vehicle_id: Optional[str] = None
        self.points: List[TrackPoint] = []
        self.index = 0
        self.playing = False
        self.speed = 1.0
        self._elapsed_ms = 0.0

    @property
    def at_end(self) -> bool:
        return self.index >= len(self.points) - 1

    def select(self, vehicle_id: str, points: Sequence[TrackPoint]) -> None:
        self.vehicle_id = vehicle_id
        self.points = list(points)
        self.index = 0
        self.playing = False
        self._elapsed_ms = 0.0
        _logger.info("Track of %s selected (%d points)", vehicle_id, len(self.points))

    def clear(self) -> None:
        self.vehicle_id = None
        self.points = []
        self.index = 0
        self.playing = False
        self._elapsed_ms = 0.0

    def toggle(self) -> bool:
        if not self.points:
            raise InvalidStateTransition("NO_TRACK_SELECTED", "select a vehicle track first")
        if not self.playing and self.at_end:
            self.index = 0
        self.playing = not self.playing
        self._elapsed_ms = 0.0
        return self.playing

    def set_speed(self, speed: float) -> None:
        if speed not in PLAYBACK_SPEEDS:
            raise ValueError(f"speed must be one of {PLAYBACK_SPEEDS}")
        self.speed = float(speed)

    def step(self, points: int = 1) -> int:
        """Move the cursor by hand; negative values rewind."""
        if not self.points:
            return 0
        target = min(max(0, self.index + points), len(self.points) - 1)
        moved, self.index = target - self.index, target
        return moved

    def advance(self, elapsed_ms: float) -> int:
        """Let ``elapsed_ms`` of play time pass. Returns points advanced."""
        if not self.playing:
            return 0
        self._elapsed_ms += elapsed_ms
        interval = 1000.0 / self.speed
        due = int(self._elapsed_ms // interval)
        self._elapsed_ms -= due * interval

        moved = min(due, len(self.points) - 1 - self.index)
        self.index += moved
        if self.at_end:
            self.playing = False
            self._elapsed_ms = 0.0
        return moved

    def current(self) -> Optional[TrackPoint]:
        return self.points[self.index] if self.points else None

    def progress(self) -> float:
        if not self.points:
            return 0.0
        if len(self.points) == 1:
            return 100.0
        return self.index / (len(self.points) - 1) * 100.0

    def entities(self) -> List[MapEntity]:
        if self.vehicle_id is None:
            return []
        return playback_entities(self.vehicle_id, self.points, self.index)

    def as_dict(self) -> Dict[str, Any]:
        cur = self.current()
        return {
            "vehicle_id": self.vehicle_id,
            "playing": self.playing,
            "speed": self.speed,
            "index": self.index,
            "total": len(self.points),
            "progress": round(self.progress(), 1),
            "current": cur.as_dict() if cur else None,
        }
