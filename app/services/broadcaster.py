from typing import Set
from fastapi import WebSocket
from pydantic import BaseModel
import asyncio
import logging

logger = logging.getLogger(__name__)

class EventBroadcaster:
    """Fans ledger events (app.schemas.events) out to connected admin websocket clients."""

    def __init__(self):
        self.connections: Set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        async with self._lock:
            self.connections.add(websocket)
            logger.info("Event client connected, total connections=%d", len(self.connections))

    async def disconnect(self, websocket: WebSocket):
        async with self._lock:
            self.connections.discard(websocket)
            logger.info("Event client disconnected, total connections=%d", len(self.connections))

    async def broadcast(self, event: BaseModel):
        data = event.model_dump_json()
        async with self._lock:
            conns = list(self.connections)
        if not conns:
            return
        logger.info("Broadcasting %s to %d clients", getattr(event, "type", type(event).__name__), len(conns))
        dead = []
        for ws in conns:
            try:
                await ws.send_text(data)
            except Exception:
                logger.exception("Failed to send event, dropping client")
                dead.append(ws)
        if dead:
            async with self._lock:
                self.connections.difference_update(dead)

# singleton
broadcaster = EventBroadcaster()


async def publish(event: BaseModel):
    """Broadcast an event after the change it describes has committed; never raises."""
    try:
        await broadcaster.broadcast(event)
    except Exception:
        logger.exception("Broadcast of %s failed", type(event).__name__)
