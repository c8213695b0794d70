"""Plantwatch — WebSocket broadcast.

Tracks connected dashboard clients and fans out ``{"event", "data"}``
messages. A client whose send fails is dropped; broadcasting never raises.
"""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import WebSocket

from logger import get_logger

logger = get_logger(__name__)


class ConnectionManager:
    """Registry of live WebSocket connections."""

    def __init__(self) -> None:
        self._clients: dict[WebSocket, int] = {}
        self._lock = asyncio.Lock()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def connect(self, websocket: WebSocket, user_id: int) -> None:
        await websocket.accept()
        async with self._lock:
            self._clients[websocket] = user_id
        logger.info("WebSocket client connected", user_id=user_id, clients=self.client_count)

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            user_id = self._clients.pop(websocket, None)
        if user_id is not None:
            logger.info("WebSocket client disconnected", user_id=user_id, clients=self.client_count)

    async def broadcast(self, event: str, data: Any) -> int:
        """Send one event to every client. Returns the number of successful sends."""
        async with self._lock:
            clients = list(self._clients)

        message = {"event": event, "data": data}
        delivered = 0
        for websocket in clients:
            try:
                await websocket.send_json(message)
                delivered += 1
            except Exception as exc:
                logger.warning(
                    "WebSocket send failed, dropping client",
                    event_name=event,
                    error_type=type(exc).__name__,
                )
                await self.disconnect(websocket)
        return delivered


manager = ConnectionManager()
