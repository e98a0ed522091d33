from __future__ import annotations

from messaging_service.domain.entities.conversation import Conversation
from messaging_service.infrastructure.db.models.conversation import ConversationModel
from messaging_service.infrastructure.db.models.participant import ParticipantModel


def model_to_entity(model: ConversationModel) -> Conversation:
    members = sorted(model.participants, key=lambda p: p.position)
    return Conversation(
        id=model.id,
        participants=tuple(p.user_id for p in members),
        is_group=model.is_group,
        group_name=model.group_name,
        group_avatar=model.group_avatar,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def entity_to_model(entity: Conversation) -> ConversationModel:
    return ConversationModel(
        id=entity.id,
        is_group=entity.is_group,
        group_name=entity.group_name,
        group_avatar=entity.group_avatar,
        created_at=entity.created_at,
        updated_at=entity.updated_at,
        participants=[
            ParticipantModel(conversation_id=entity.id, user_id=uid, position=i)
            for i, uid in enumerate(entity.participants)
        ],
    )
