from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar
from uuid import UUID

from messaging_service.domain.value_objects.enums import ChatEvent


@dataclass(frozen=True, slots=True)
class MessagesRead:
    event_type: ClassVar[str] = ChatEvent.MESSAGES_READ

    conversation_id: UUID
    reader_id: str
    message_ids: tuple[UUID, ...]
    read_at: datetime

    def to_payload(self) -> dict[str, Any]:
        return {
            "conversation_id": str(self.conversation_id),
            "reader_id": self.reader_id,
            "message_ids": [str(m) for m in self.message_ids],
            "read_at": self.read_at.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class MessagesDeleted:
    event_type: ClassVar[str] = ChatEvent.MESSAGES_DELETED

    conversation_id: UUID
    message_ids: tuple[UUID, ...]

    def to_payload(self) -> dict[str, Any]:
        return {
            "conversation_id": str(self.conversation_id),
            "message_ids": [str(m) for m in self.message_ids],
        }
