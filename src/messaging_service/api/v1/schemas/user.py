from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from messaging_service.domain.value_objects.enums import DenyReason


class CanMessageResponse(BaseModel):
    allowed: bool
    reason: DenyReason | None = None


class PresenceResponse(BaseModel):
    user_id: str
    is_online: bool
    last_seen: datetime | None = None
    label: str
