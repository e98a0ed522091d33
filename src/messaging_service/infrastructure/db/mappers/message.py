from __future__ import annotations

from typing import Any

from messaging_service.domain.entities.message import Message
from messaging_service.infrastructure.db.models.message import MessageModel


def model_to_entity(model: MessageModel) -> Message:
    return Message(
        id=model.id,
        conversation_id=model.conversation_id,
        sender_id=model.sender_id,
        content=model.content,
        message_type=model.message_type,
        sent_at=model.sent_at,
        metadata=model.metadata_,
        read=model.read,
        read_at=model.read_at,
    )


def entity_to_values(entity: Message) -> dict[Any, Any]:
    """Insert values keyed by mapped attribute (the ``metadata`` column is renamed)."""
    return {
        MessageModel.id: entity.id,
        MessageModel.conversation_id: entity.conversation_id,
        MessageModel.sender_id: entity.sender_id,
        MessageModel.content: entity.content,
        MessageModel.message_type: str(entity.message_type),
        MessageModel.metadata_: entity.metadata,
        MessageModel.read: entity.read,
        MessageModel.read_at: entity.read_at,
        MessageModel.sent_at: entity.sent_at,
    }
