"""WebSocket message envelope models."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class WsInbound(BaseModel):
    """Client → Server."""

    # ping | subscribe | unsubscribe | publish | message.send | mark_read
    type: str
    data: dict[str, Any] = {}


class WsOutbound(BaseModel):
    """Server → Client."""

    # any ChatEvent or call signal | subscribed | error | pong
    type: str
    topic: str | None = None
    data: dict[str, Any] = {}
