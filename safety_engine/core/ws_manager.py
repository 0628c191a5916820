"""WebSocket connection manager for live SOS status."""

import asyncio
import json
import logging
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)

DASHBOARD_ROLES = frozenset({"police", "operator", "admin"})


class ConnectionManager:
    """Tracks active WebSocket connections keyed by user_id.

    Connections opened by dashboard roles also receive every SOS event.
    """

    def __init__(self) -> None:
        # user_id -> set of active websocket connections
        self._connections: dict[str, set[WebSocket]] = {}
        self._dashboards: set[str] = set()

    async def connect(self, websocket: WebSocket, user_id: str, role: str = "user") -> None:
        await websocket.accept()
        self._connections.setdefault(user_id, set()).add(websocket)
        if role in DASHBOARD_ROLES:
            self._dashboards.add(user_id)
        logger.info("WS connected: user=%s role=%s (total=%s)", user_id, role, self.total_connections)

    def disconnect(self, websocket: WebSocket, user_id: str) -> None:
        conns = self._connections.get(user_id)
        if conns:
            conns.discard(websocket)
            if not conns:
                del self._connections[user_id]
                self._dashboards.discard(user_id)
        logger.info("WS disconnected: user=%s (total=%s)", user_id, self.total_connections)

    async def send_to_user(self, user_id: str, event: str, data: Any) -> None:
        """Send event to all connections for a user."""
        conns = self._connections.get(user_id, set())
        payload = json.dumps({"event": event, "data": data}, default=str)
        dead: list[WebSocket] = []
        for ws in conns:
            try:
                await ws.send_text(payload)
            except Exception:
                logger.debug("Dropping dead socket for user=%s", user_id)
                dead.append(ws)
        for ws in dead:
            conns.discard(ws)

    async def broadcast(self, owner_id: str | None, event: str, data: Any) -> None:
        """Send event to the event owner and every connected dashboard."""
        targets = set(self._dashboards)
        if owner_id is not None:
            targets.add(owner_id)
        for uid in targets:
            await self.send_to_user(uid, event, data)

    @property
    def total_connections(self) -> int:
        return sum(len(c) for c in self._connections.values())

    @property
    def dashboard_count(self) -> int:
        return len(self._dashboards)


# Singleton instance used across the app
ws_manager = ConnectionManager()


class WebSocketPublisher:
    """StatusPublisher that pushes engine events through a ConnectionManager.

    Engine calls arrive on worker threads, so coroutines are handed to the
    application loop bound at startup.
    """

    def __init__(self, manager: ConnectionManager) -> None:
        self.manager = manager
        self._loop: asyncio.AbstractEventLoop | None = None

    def bind(self, loop: asyncio.AbstractEventLoop | None) -> None:
        self._loop = loop

    def publish(self, topic: str, owner_id: str | None, payload: dict[str, Any]) -> None:
        if self._loop is None or self._loop.is_closed():
            logger.debug("No event loop bound; dropping %s", topic)
            return
        asyncio.run_coroutine_threadsafe(self.manager.broadcast(owner_id, topic, payload), self._loop)


ws_publisher = WebSocketPublisher(ws_manager)
