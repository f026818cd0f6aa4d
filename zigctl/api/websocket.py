"""
WebSocket support for the domain event feed.
"""

import asyncio
import json
import logging
from typing import Optional, Set

from fastapi import WebSocket, WebSocketDisconnect

from ..events.bus import Subscription
from ..events.models import EventKind, event_to_dict

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks WebSocket clients of the event feed."""

    def __init__(self):
        self.active_connections: Set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> None:
        """Accept a new WebSocket connection."""
        await websocket.accept()
        async with self._lock:
            self.active_connections.add(websocket)
        logger.debug(f"WebSocket connected, total: {len(self.active_connections)}")

    async def disconnect(self, websocket: WebSocket) -> None:
        """Remove a WebSocket connection."""
        async with self._lock:
            self.active_connections.discard(websocket)
        logger.debug(f"WebSocket disconnected, total: {len(self.active_connections)}")


# Global connection manager
manager = ConnectionManager()


def parse_kinds(value: Optional[str]) -> Optional[Set[EventKind]]:
    """
    Parse a comma-separated ``kinds`` filter.

    Raises:
        ValueError: On an unknown event kind
    """
    if not value:
        return None
    return {EventKind(part.strip()) for part in value.split(",") if part.strip()}


async def _forward(websocket: WebSocket, events: Subscription) -> None:
    async for event in events:
        await websocket.send_json(event_to_dict(event))
    await websocket.close()


async def _receive(websocket: WebSocket) -> None:
    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                continue
            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        return


async def events_endpoint(websocket: WebSocket, events: Subscription) -> None:
    """
    Stream domain events to one client until either side goes away.

    Clients may send ``{"type": "ping"}`` and get ``{"type": "pong"}`` back.
    """
    try:
        await manager.connect(websocket)
        sender = asyncio.create_task(_forward(websocket, events))
        receiver = asyncio.create_task(_receive(websocket))
        done, pending = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.error(f"WebSocket error: {error}")
    finally:
        events.close()
        await manager.disconnect(websocket)
