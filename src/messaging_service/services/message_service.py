from __future__ import annotations

import logging
import uuid

from messaging_service.application.dto.message import SendMessageDTO
from messaging_service.application.dto.principal import Principal
from messaging_service.application.exceptions import ConflictError, ValidationError
from messaging_service.application.policies.direct_messages import (
    DirectMessagePermissionResolver,
)
from messaging_service.application.policies.permissions import assert_conversation_access
from messaging_service.application.policies.redaction import redact_pii
from messaging_service.application.ports.clock import Clock, SystemClock, monotonic_after
from messaging_service.application.uow import UnitOfWork
from messaging_service.domain.entities.message import Message
from messaging_service.domain.events.message_inserted import MessageInserted
from messaging_service.domain.events.messages_changed import MessagesDeleted, MessagesRead
from messaging_service.domain.value_objects.enums import MessageType
from messaging_service.domain.value_objects.topics import conversation_topic

logger = logging.getLogger(__name__)

_clock: Clock = SystemClock()


def _validate(dto: SendMessageDTO) -> None:
    if dto.message_type == MessageType.TEXT:
        if not dto.content.strip():
            raise ValidationError("Message text must not be empty")
    elif not dto.metadata:
        raise ValidationError(f"A {dto.message_type} message needs metadata")


async def send_message(
    conversation_id: uuid.UUID,
    principal: Principal,
    dto: SendMessageDTO,
    uow: UnitOfWork,
    clock: Clock = _clock,
) -> tuple[Message, bool]:
    """Persist a message idempotently.

    Returns (message, created). A retry carrying an id that is already stored
    returns the stored row with created=False and emits nothing.
    """
    conversation = await uow.conversations.get_by_id(conversation_id)
    conversation = await assert_conversation_access(principal, conversation, uow.participants)
    _validate(dto)

    resolver = DirectMessagePermissionResolver.from_uow(uow)
    for other in conversation.others(principal.user_id):
        await resolver.ensure_not_blocked(principal.user_id, other)

    content = dto.content
    if dto.message_type == MessageType.TEXT:
        content = redact_pii(content)

    latest = await uow.messages.latest_for_conversations([conversation_id])
    previous = latest.get(conversation_id)
    sent_at = monotonic_after(previous.sent_at if previous else None, clock.now())

    msg = Message(
        id=dto.message_id or uuid.uuid4(),
        conversation_id=conversation_id,
        sender_id=principal.user_id,
        content=content,
        message_type=dto.message_type,
        sent_at=sent_at,
        metadata=dto.metadata,
    )
    msg, created = await uow.messages_w.create_if_not_exists(msg)

    if not created:
        if msg.conversation_id != conversation_id or msg.sender_id != principal.user_id:
            raise ConflictError("Message id already used")
        return msg, False

    await uow.conversations_w.touch_updated_at(conversation_id, msg.sent_at)
    event = MessageInserted(message=msg)
    await uow.outbox.add(
        event.event_type, event.to_payload(), [conversation_topic(conversation_id)],
    )
    await uow.commit()
    logger.debug("Message %s stored in %s", msg.id, conversation_id)
    return msg, True


async def list_messages(
    conversation_id: uuid.UUID,
    principal: Principal,
    cursor: str | None,
    limit: int,
    uow: UnitOfWork,
) -> list[Message]:
    conversation = await uow.conversations.get_by_id(conversation_id)
    await assert_conversation_access(principal, conversation, uow.participants)
    return await uow.messages.list_messages(
        conversation_id, cursor=cursor, limit=limit,
    )


async def mark_as_read(
    conversation_id: uuid.UUID,
    principal: Principal,
    message_ids: list[uuid.UUID],
    uow: UnitOfWork,
    clock: Clock = _clock,
) -> int:
    """Mark ``message_ids`` read and return the caller's recomputed unread count."""
    conversation = await uow.conversations.get_by_id(conversation_id)
    await assert_conversation_access(principal, conversation, uow.participants)

    ids = list(dict.fromkeys(message_ids))
    if not ids:
        return await uow.messages.count_unread(conversation_id, principal.user_id)

    read_at = clock.now()
    changed = await uow.messages_w.mark_read(conversation_id, ids, read_at)
    if changed:
        event = MessagesRead(
            conversation_id=conversation_id,
            reader_id=principal.user_id,
            message_ids=tuple(ids),
            read_at=read_at,
        )
        await uow.outbox.add(
            event.event_type, event.to_payload(), [conversation_topic(conversation_id)],
        )
    await uow.commit()
    return await uow.messages.count_unread(conversation_id, principal.user_id)


async def delete_messages(
    conversation_id: uuid.UUID,
    principal: Principal,
    message_ids: list[uuid.UUID],
    uow: UnitOfWork,
) -> list[uuid.UUID]:
    """Delete the caller's own messages among ``message_ids``; others are skipped."""
    conversation = await uow.conversations.get_by_id(conversation_id)
    await assert_conversation_access(principal, conversation, uow.participants)

    ids = list(dict.fromkeys(message_ids))
    if not ids:
        return []

    removed = await uow.messages_w.delete_many(conversation_id, ids, principal.user_id)
    if removed:
        event = MessagesDeleted(conversation_id=conversation_id, message_ids=tuple(removed))
        await uow.outbox.add(
            event.event_type, event.to_payload(), [conversation_topic(conversation_id)],
        )
    await uow.commit()
    if len(removed) < len(ids):
        logger.info(
            "Skipped %d message(s) in %s not owned by %s",
            len(ids) - len(removed), conversation_id, principal.user_id,
        )
    return removed
