"""
Status broadcaster for realtime clients.

Every message is an envelope ``{"event": <name>, "data": <payload>}``.
Delivery is fire-and-forget: a client that is disconnected misses updates
and resynchronizes by requesting ``services:status`` after reconnecting.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Protocol

logger = logging.getLogger(__name__)

EVENT_STATUS = "services:status"
EVENT_UPDATE = "services:update"
EVENT_ERROR = "services:error"
EVENT_START = "services:start"
EVENT_STOP = "services:stop"


class RealtimeClient(Protocol):
    async def send_json(self, data: Any) -> None:
        ...


def envelope(event: str, data: Any) -> Dict[str, Any]:
    return {"event": event, "data": data}


def update_payload(service: str, view: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "service": service,
        "data": view,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class StatusBroadcaster:
    """Registry of connected realtime clients with concurrent fan-out."""

    def __init__(self):
        self._clients: List[RealtimeClient] = []
        self._lock = asyncio.Lock()
        self.messages_sent = 0

    async def connect(self, client: RealtimeClient) -> None:
        async with self._lock:
            if client not in self._clients:
                self._clients.append(client)
        logger.info(f"[WebSocket] Client connected ({len(self._clients)} total)")

    async def disconnect(self, client: RealtimeClient) -> None:
        async with self._lock:
            if client in self._clients:
                self._clients.remove(client)
        logger.info(f"[WebSocket] Client disconnected ({len(self._clients)} total)")

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def send(self, client: RealtimeClient, event: str, data: Any) -> bool:
        """Send one event to one client. Returns False if delivery failed."""
        try:
            await client.send_json(envelope(event, data))
        except Exception as e:
            logger.debug(f"[WebSocket] Send of '{event}' failed: {e}")
            return False
        self.messages_sent += 1
        return True

    async def broadcast(self, event: str, data: Any) -> int:
        """
        Push an event to every connected client.

        Clients whose send fails are dropped.

        Returns:
            Number of clients the event was delivered to
        """
        async with self._lock:
            clients = list(self._clients)

        if not clients:
            return 0

        results = await asyncio.gather(*(self.send(c, event, data) for c in clients))

        dead = [c for c, ok in zip(clients, results) if not ok]
        for client in dead:
            await self.disconnect(client)

        return len(clients) - len(dead)

    async def broadcast_update(self, service: str, view: Dict[str, Any]) -> int:
        return await self.broadcast(EVENT_UPDATE, update_payload(service, view))

    async def broadcast_error(self, service: str, error: str, kind: str) -> int:
        return await self.broadcast(
            EVENT_ERROR, {"service": service, "error": error, "kind": kind}
        )
