from typing import Set
from fastapi import WebSocket
import asyncio

from chatshelf.core.events import EventType, OrganizationEvent


class EventBus:
    """Pushes outbound organization events (view refresh requests) to websocket clients."""

    def __init__(self):
        self.connections: Set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        async with self._lock:
            self.connections.add(websocket)

    async def disconnect(self, websocket: WebSocket):
        async with self._lock:
            self.connections.discard(websocket)

    async def publish(self, event: OrganizationEvent):
        """Send an event to every client, forgetting clients that went away."""
        message = event.model_dump_json()
        disconnected = set()

        for ws in self.connections.copy():
            try:
                await ws.send_text(message)
            except Exception:
                disconnected.add(ws)

        if disconnected:
            async with self._lock:
                self.connections -= disconnected

    async def request_view_refresh(self):
        await self.publish(OrganizationEvent.create(EventType.VIEW_REFRESH_REQUESTED))


# Singleton instance
event_bus = EventBus()
