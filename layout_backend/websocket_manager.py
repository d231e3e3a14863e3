"""
WebSocket Manager - Handles real-time connections and broadcasts.

This module manages WebSocket connections and pushes position snapshots
to all connected rendering clients.
"""
import asyncio
import json
import logging
from typing import Set

from fastapi import WebSocket

from layout_core import PositionSnapshot

logger = logging.getLogger(__name__)


class WebSocketManager:
    """
    Manages WebSocket connections and broadcasts.

    All connected clients receive a `positions` message whenever the
    session publishes a new snapshot revision.
    """

    def __init__(self):
        self._connections: Set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket):
        """Accept and register a new WebSocket connection."""
        await websocket.accept()
        async with self._lock:
            self._connections.add(websocket)
        logger.info("WebSocket connected. Total connections: %d", len(self._connections))

    async def disconnect(self, websocket: WebSocket):
        """Remove a WebSocket connection."""
        async with self._lock:
            self._connections.discard(websocket)
        logger.info("WebSocket disconnected. Total connections: %d", len(self._connections))

    async def broadcast(self, message: dict):
        """
        Broadcast a message to all connected clients.

        Failed sends (disconnected clients) drop that connection.
        """
        if not self._connections:
            return

        # Serialize once for all clients
        message_text = json.dumps(message)
        failed: Set[WebSocket] = set()

        async with self._lock:
            for websocket in self._connections:
                try:
                    await websocket.send_text(message_text)
                except Exception:
                    failed.add(websocket)

            self._connections -= failed

        if failed:
            logger.debug("Dropped %d stale WebSocket connection(s)", len(failed))

    async def notify_positions(self, snapshot: PositionSnapshot):
        """Push a position snapshot to every client."""
        await self.broadcast(positions_message(snapshot))

    @property
    def connection_count(self) -> int:
        """Get the number of active connections."""
        return len(self._connections)


def positions_message(snapshot: PositionSnapshot) -> dict:
    """Wire format of a snapshot push."""
    return {"type": "positions", **snapshot.to_json_dict()}


# Global instance
ws_manager = WebSocketManager()
