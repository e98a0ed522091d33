"""In-process WebSocket connection manager."""
from __future__ import annotations

import logging
from typing import Any

from fastapi import WebSocket

from messaging_service.infrastructure.ws.protocol import WsOutbound

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks WebSocket connections per principal and their topic subscriptions."""

    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = {}
        self._subscriptions: dict[str, set[str]] = {}

    async def connect(self, ws: WebSocket, principal_key: str) -> None:
        await ws.accept()
        self._connections.setdefault(principal_key, set()).add(ws)
        logger.debug("WS connected: %s (total=%d)", principal_key, len(self._connections))

    def disconnect(self, ws: WebSocket, principal_key: str) -> None:
        conns = self._connections.get(principal_key)
        if conns:
            conns.discard(ws)
            if not conns:
                del self._connections[principal_key]
        if principal_key not in self._connections:
            for subs in self._subscriptions.values():
                subs.discard(principal_key)
        logger.debug("WS disconnected: %s", principal_key)

    def subscribe(self, principal_key: str, topic: str) -> None:
        self._subscriptions.setdefault(topic, set()).add(principal_key)

    def unsubscribe(self, principal_key: str, topic: str) -> None:
        subs = self._subscriptions.get(topic)
        if subs:
            subs.discard(principal_key)
            if not subs:
                del self._subscriptions[topic]

    def subscribers(self, topic: str) -> set[str]:
        return set(self._subscriptions.get(topic, ()))

    async def broadcast_to_topic(
        self,
        topic: str,
        event_type: str,
        data: dict[str, Any],
    ) -> None:
        """Send a WS message to all principals subscribed to ``topic``."""
        subs = self.subscribers(topic)
        if not subs:
            return
        raw = WsOutbound(type=event_type, topic=topic, data=data).model_dump_json()
        dead: list[tuple[str, WebSocket]] = []
        for pkey in subs:
            for ws in list(self._connections.get(pkey, set())):
                try:
                    await ws.send_text(raw)
                except Exception:
                    dead.append((pkey, ws))
        for pkey, ws in dead:
            self.disconnect(ws, pkey)

    async def send_to_principal(
        self,
        principal_key: str,
        event_type: str,
        data: dict[str, Any],
        topic: str | None = None,
    ) -> None:
        """Send a WS message to a specific principal."""
        raw = WsOutbound(type=event_type, topic=topic, data=data).model_dump_json()
        dead: list[WebSocket] = []
        for ws in list(self._connections.get(principal_key, set())):
            try:
                await ws.send_text(raw)
            except Exception:
                dead.append(ws)
        for ws in dead:
            self.disconnect(ws, principal_key)
