"""Push payloads as received over a channel, validated once at the boundary."""
from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from messaging_service.api.v1.schemas.message import MessageResponse
from messaging_service.domain.entities.presence import PresenceRecord


class MessageInsertedPayload(BaseModel):
    conversation_id: UUID
    message: MessageResponse


class MessagesReadPayload(BaseModel):
    conversation_id: UUID
    reader_id: str
    message_ids: list[UUID]
    read_at: datetime


class MessagesDeletedPayload(BaseModel):
    conversation_id: UUID
    message_ids: list[UUID]


class ConversationDeletedPayload(BaseModel):
    conversation_id: UUID
    deleted_by: str


class PresenceUpdatedPayload(BaseModel):
    user_id: str
    is_online: bool
    last_seen: datetime | None = None

    @model_validator(mode="after")
    def _offline_has_last_seen(self) -> PresenceUpdatedPayload:
        if not self.is_online and self.last_seen is None:
            raise ValueError("offline presence needs last_seen")
        return self

    def to_record(self) -> PresenceRecord:
        if self.is_online or self.last_seen is None:
            return PresenceRecord.online(self.user_id)
        return PresenceRecord.offline(self.user_id, self.last_seen)


class SignalPayload(BaseModel):
    """Body of every call-room message; ``from`` is the publishing user."""

    sender: str = Field(alias="from")
    call_type: str | None = None
    sdp: dict[str, Any] | None = None
    candidate: dict[str, Any] | None = None

    model_config = {"populate_by_name": True}

    def dump(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
