"""Live connection registry.

Tracks open WebSocket sessions per user and pushes events to them. One
instance is created per process by the app lifespan and handed to whoever
needs it; nothing here is module-global.
"""

from __future__ import annotations

import json
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

import structlog
from fastapi import WebSocket

logger = structlog.get_logger()


@dataclass
class LiveConnection:
    """A single authenticated WebSocket session."""

    websocket: WebSocket
    user_id: str
    last_known_location: tuple[float, float] | None = None
    connected_at: float = field(default_factory=time.time)
    messages_sent: int = 0


class ConnectionManager:
    """Maps users to their open connections.

    A user may be connected from several devices at once; events go to all
    of them. Only ever touched from the event loop.
    """

    def __init__(self) -> None:
        self._connections: dict[str, LiveConnection] = {}  # conn_id -> connection
        self._user_connections: dict[str, set[str]] = defaultdict(set)  # user_id -> {conn_ids}

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket, conn_id: str, user_id: str) -> None:
        """Accept a new WebSocket connection."""
        await websocket.accept()
        self._connections[conn_id] = LiveConnection(websocket=websocket, user_id=user_id)
        self._user_connections[user_id].add(conn_id)
        logger.info("ws_connected", conn_id=conn_id, user_id=user_id)

    async def disconnect(self, conn_id: str) -> None:
        """Forget a connection."""
        conn = self._connections.pop(conn_id, None)
        if conn is None:
            return

        self._user_connections[conn.user_id].discard(conn_id)
        if not self._user_connections[conn.user_id]:
            del self._user_connections[conn.user_id]

        logger.info("ws_disconnected", conn_id=conn_id, user_id=conn.user_id)

    def is_online(self, user_id: str) -> bool:
        return bool(self._user_connections.get(user_id))

    def update_location(self, user_id: str, latitude: float, longitude: float) -> None:
        """Record the user's latest position on each of their connections."""
        for conn_id in self._user_connections.get(user_id, ()):
            conn = self._connections.get(conn_id)
            if conn is not None:
                conn.last_known_location = (latitude, longitude)

    async def emit(self, user_id: str, event: str, payload: dict[str, Any]) -> int:
        """Send ``event`` to every connection of ``user_id``.

        Best-effort with no acknowledgment. Connections that fail to send are
        dropped. Returns the number of connections reached.
        """
        conn_ids = list(self._user_connections.get(user_id, set()))
        if not conn_ids:
            return 0

        message = json.dumps({"type": event, "payload": payload}, default=str)
        sent = 0
        for conn_id in conn_ids:
            conn = self._connections.get(conn_id)
            if conn is None:
                continue
            try:
                await conn.websocket.send_text(message)
                conn.messages_sent += 1
                sent += 1
            except Exception:
                logger.warning("ws_send_failed", conn_id=conn_id, user_id=user_id)
                await self.disconnect(conn_id)
        return sent

    def get_stats(self) -> dict:
        """Get connection statistics."""
        return {
            "total_connections": len(self._connections),
            "unique_users": len(self._user_connections),
        }
