"""
WebSocket transport: connection lifecycle and the push primitive.

Frames are JSON objects of the form {"event": <name>, "data": {...}}.
Delivery is best effort; a push to a connection that is gone is dropped.
"""

import asyncio
import logging
import uuid
from typing import Any, Protocol

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect, WebSocketState

from skillswap.metrics import connection_closed, connection_opened, record_push
from skillswap.presence import PresenceRegistry

logger = logging.getLogger(__name__)


class Transport(Protocol):
    async def push(self, connection_id: str, event_name: str, payload: dict[str, Any]) -> bool:
        ...


class WebSocketTransport:
    """Owns the open sockets, keyed by server-assigned connection id."""

    def __init__(self, presence: PresenceRegistry):
        self._presence = presence
        self._sockets: dict[str, WebSocket] = {}
        self._send_locks: dict[str, asyncio.Lock] = {}

    async def on_connect(self, websocket: WebSocket) -> str:
        """Accept the socket and assign it a connection id."""
        await websocket.accept()
        connection_id = uuid.uuid4().hex
        self._sockets[connection_id] = websocket
        self._send_locks[connection_id] = asyncio.Lock()
        connection_opened()
        logger.info(f"Connection opened: {connection_id}")
        return connection_id

    def on_disconnect(self, connection_id: str) -> None:
        """Forget the socket and remove it from its room at once."""
        if self._sockets.pop(connection_id, None) is None:
            return
        self._send_locks.pop(connection_id, None)
        user_id = self._presence.unregister(connection_id)
        connection_closed()
        logger.info(f"Connection closed: {connection_id}", extra={"user_id": user_id})

    async def push(self, connection_id: str, event_name: str, payload: dict[str, Any]) -> bool:
        """
        Send one frame to one connection.

        Returns:
            True if the frame was handed to the socket, False otherwise
        """
        websocket = self._sockets.get(connection_id)
        lock = self._send_locks.get(connection_id)
        if websocket is None or lock is None:
            logger.debug(f"Dropping {event_name} for unknown connection {connection_id}")
            return False

        async with lock:
            if websocket.application_state != WebSocketState.CONNECTED:
                return False
            try:
                await websocket.send_json({"event": event_name, "data": payload})
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                logger.debug(f"Push of {event_name} to {connection_id} failed: {e}")
                return False

        record_push(event_name)
        return True

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._sockets

    def __len__(self) -> int:
        return len(self._sockets)
