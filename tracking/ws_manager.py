from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List

from fastapi import WebSocket

_logger = logging.getLogger(__name__)


class SurfaceBroadcaster:
    """Fans surface command batches out to every connected map client.

    Messages are encoded once per broadcast; a client whose send fails is
    dropped and never retried.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._clients: Dict[int, WebSocket] = {}
        self.messages_sent = 0

    def __len__(self) -> int:
        return len(self._clients)

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        async with self._lock:
            self._clients[id(ws)] = ws
        _logger.debug("Map client connected (%d total)", len(self._clients))

    async def disconnect(self, ws: WebSocket) -> None:
        async with self._lock:
            self._clients.pop(id(ws), None)

    async def send(self, ws: WebSocket, message: Dict[str, Any]) -> None:
        await ws.send_text(json.dumps(message))

    async def broadcast(self, message: Dict[str, Any]) -> int:
        """Send ``message`` to every client. Returns how many received it."""
        async with self._lock:
            clients = list(self._clients.items())
        if not clients:
            return 0

        text = json.dumps(message)
        dropped: List[int] = []
        for key, ws in clients:
            try:
                await ws.send_text(text)
            except Exception as exc:
                _logger.debug("Dropping map client: %s", exc)
                dropped.append(key)

        if dropped:
            async with self._lock:
                for key in dropped:
                    self._clients.pop(key, None)

        delivered = len(clients) - len(dropped)
        self.messages_sent += delivered
        return delivered
