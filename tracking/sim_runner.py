from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from .layers import LayerSet, fleet_entities
from .playback import TrackPlayback
from .sim_engine import SimEngine, follow_center
from .surface import CommandSurface
from .ws_manager import SurfaceBroadcaster

_logger = logging.getLogger(__name__)


class SimRunner:
    """Drives the simulator from a single asyncio task.

    ``start`` is a no-op while a loop is alive and ``stop`` cancels it once,
    so toggling play/pause quickly never leaves two loops running.
    """

    def __init__(
        self,
        engine: SimEngine,
        layers: LayerSet,
        surface: CommandSurface,
        manager: SurfaceBroadcaster,
        lock: asyncio.Lock,
        playback: Optional[TrackPlayback] = None,
    ):
        self.engine = engine
        self.layers = layers
        self.surface = surface
        self.manager = manager
        self.lock = lock
        self.playback = playback or TrackPlayback()

        self.tick_ms: int = engine.cfg.tick_ms
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, tick_ms: Optional[int] = None) -> bool:
        if tick_ms is not None:
            self.tick_ms = max(50, int(tick_ms))

        if self.running:
            return False

        self._task = asyncio.create_task(self._loop())
        _logger.info("Simulation started (tick %d ms)", self.tick_ms)
        return True

    async def stop(self) -> bool:
        task, self._task = self._task, None
        if task is None or task.done():
            return False
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        _logger.info("Simulation stopped")
        return True

    async def _loop(self):
        while True:
            await asyncio.sleep(self.tick_ms / 1000.0)

            if not self.engine.loaded:
                continue

            try:
                await self.tick_once()
            except Exception:
                # keep the clock alive; one bad tick must not stop the fleet
                _logger.exception("Simulation tick failed")

    async def tick_once(self) -> Dict[str, Any]:
        async with self.lock:
            self.engine.step()
            self.playback.advance(self.tick_ms)
            message = self._render()
        await self.manager.broadcast(message)
        return message

    async def push_state(self) -> Dict[str, Any]:
        async with self.lock:
            message = self._render()
        await self.manager.broadcast(message)
        return message

    def _render(self) -> Dict[str, Any]:
        state = self.engine.state
        self.layers.sync("fleet", fleet_entities(state))
        self.layers.sync("playback", self.playback.entities())

        center = follow_center(state)
        if center is not None and center != self.surface.get_center():
            self.surface.set_view(center)

        return {
            "type": "state",
            "commands": self.surface.drain(),
            "state": self.engine.snapshot(),
            "playback": self.playback.as_dict(),
        }
