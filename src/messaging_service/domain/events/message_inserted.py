from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

from messaging_service.domain.entities.message import Message
from messaging_service.domain.value_objects.enums import ChatEvent


@dataclass(frozen=True, slots=True)
class MessageInserted:
    event_type: ClassVar[str] = ChatEvent.MESSAGE_INSERTED

    message: Message

    def to_payload(self) -> dict[str, Any]:
        msg = self.message
        return {
            "conversation_id": str(msg.conversation_id),
            "message": {
                "id": str(msg.id),
                "conversation_id": str(msg.conversation_id),
                "sender_id": msg.sender_id,
                "content": msg.content,
                "message_type": msg.message_type,
                "metadata": msg.metadata,
                "read": msg.read,
                "read_at": msg.read_at.isoformat() if msg.read_at else None,
                "sent_at": msg.sent_at.isoformat(),
            },
        }
