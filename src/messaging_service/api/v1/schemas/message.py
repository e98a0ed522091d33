from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from messaging_service.application.dto.message import SendMessageDTO
from messaging_service.domain.entities.message import Message
from messaging_service.domain.value_objects.enums import MessageType


class SendMessageRequest(BaseModel):
    # Client-generated for optimistic sends; retries reuse it.
    id: UUID | None = None
    content: str = ""
    message_type: MessageType = MessageType.TEXT
    metadata: dict[str, Any] | None = None

    def to_dto(self) -> SendMessageDTO:
        return SendMessageDTO(
            content=self.content,
            message_type=self.message_type,
            metadata=self.metadata,
            message_id=self.id,
        )


class MessageIdsRequest(BaseModel):
    message_ids: list[UUID] = Field(default_factory=list, max_length=500)


class MessageResponse(BaseModel):
    id: UUID
    conversation_id: UUID
    sender_id: str
    content: str
    message_type: str
    metadata: dict[str, Any] | None = None
    read: bool = False
    read_at: datetime | None = None
    sent_at: datetime

    model_config = {"from_attributes": True}

    def to_entity(self) -> Message:
        return Message(
            id=self.id,
            conversation_id=self.conversation_id,
            sender_id=self.sender_id,
            content=self.content,
            message_type=self.message_type,
            sent_at=self.sent_at,
            metadata=self.metadata,
            read=self.read,
            read_at=self.read_at,
        )


class UnreadCountResponse(BaseModel):
    conversation_id: UUID
    unread_count: int


class DeletedMessagesResponse(BaseModel):
    deleted: list[UUID]
