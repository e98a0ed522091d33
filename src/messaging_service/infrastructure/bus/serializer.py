from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


class _Encoder(json.JSONEncoder):
    def default(self, o: object) -> Any:
        if isinstance(o, UUID):
            return str(o)
        if isinstance(o, datetime):
            return o.isoformat()
        if isinstance(o, Enum):
            return o.value
        return super().default(o)


def serialize_event(event_type: str, payload: dict[str, Any]) -> str:
    """Wire envelope shared by the outbox worker, the API and realtime channels."""
    envelope = {"event": str(event_type), "data": payload}
    return json.dumps(envelope, cls=_Encoder)


def deserialize_event(raw: str | bytes) -> tuple[str, dict[str, Any]]:
    data = json.loads(raw)
    if not isinstance(data, dict) or "event" not in data:
        raise ValueError("not an event envelope")
    return data["event"], data.get("data") or {}
