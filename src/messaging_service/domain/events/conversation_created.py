from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar
from uuid import UUID

from messaging_service.domain.value_objects.enums import ChatEvent


@dataclass(frozen=True, slots=True)
class ConversationCreated:
    event_type: ClassVar[str] = ChatEvent.CONVERSATION_CREATED

    conversation_id: UUID
    created_by: str
    participants: tuple[str, ...]
    is_group: bool

    def to_payload(self) -> dict[str, Any]:
        return {
            "conversation_id": str(self.conversation_id),
            "created_by": self.created_by,
            "participants": list(self.participants),
            "is_group": self.is_group,
        }


@dataclass(frozen=True, slots=True)
class ConversationDeleted:
    event_type: ClassVar[str] = ChatEvent.CONVERSATION_DELETED

    conversation_id: UUID
    deleted_by: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "conversation_id": str(self.conversation_id),
            "deleted_by": self.deleted_by,
        }
