from __future__ import annotations

from messaging_service.application.dto.principal import Principal
from messaging_service.application.exceptions import ForbiddenError, NotFoundError
from messaging_service.application.repositories.participant import ParticipantReader
from messaging_service.domain.entities.conversation import Conversation


async def assert_conversation_access(
    principal: Principal,
    conversation: Conversation | None,
    participants: ParticipantReader,
) -> Conversation:
    """Raise if conversation doesn't exist or principal is not in it."""
    if conversation is None:
        raise NotFoundError("Conversation not found")

    is_member = await participants.is_participant(conversation.id, principal.user_id)
    if not is_member:
        raise ForbiddenError("Not a participant of this conversation")

    return conversation
