from __future__ import annotations

import logging
import uuid

from messaging_service.application.dto.conversation import (
    ConversationSummary,
    CreateConversationDTO,
    ParticipantSummary,
)
from messaging_service.application.dto.permission import PermissionDecision
from messaging_service.application.dto.principal import Principal
from messaging_service.application.exceptions import ValidationError
from messaging_service.application.policies.direct_messages import (
    DirectMessagePermissionResolver,
)
from messaging_service.application.policies.permissions import assert_conversation_access
from messaging_service.application.ports.clock import Clock, SystemClock
from messaging_service.application.uow import UnitOfWork
from messaging_service.domain.entities.conversation import Conversation
from messaging_service.domain.events.conversation_created import (
    ConversationCreated,
    ConversationDeleted,
)
from messaging_service.domain.value_objects.topics import (
    conversation_topic,
    user_status_topic,
)
from messaging_service.services import presence_service, unread_service

logger = logging.getLogger(__name__)

_clock: Clock = SystemClock()


async def list_conversations(
    principal: Principal,
    uow: UnitOfWork,
    clock: Clock = _clock,
) -> list[ConversationSummary]:
    """Conversations of the caller, newest activity first.

    Upstream joins can repeat rows and racing creators can leave two 1:1
    threads for the same pair; both kinds of duplicate are dropped here.
    """
    rows = await uow.conversations.list_for_user(principal.user_id)
    conversations = _dedupe(rows)

    other_ids = sorted({p for c in conversations for p in c.others(principal.user_id)})
    profiles = await uow.users.get_profiles(other_ids) if other_ids else {}
    presence = await presence_service.get_presence_many(other_ids, profiles, uow, clock)

    ids = [c.id for c in conversations]
    last_messages = await uow.messages.latest_for_conversations(ids) if ids else {}
    counts = await unread_service.unread_counts(ids, principal.user_id, uow)

    summaries: list[ConversationSummary] = []
    for conv in conversations:
        roster: list[ParticipantSummary] = []
        for uid in conv.others(principal.user_id):
            profile = profiles.get(uid)
            record = presence.get(uid)
            roster.append(
                ParticipantSummary(
                    id=uid,
                    display_name=profile.display_name if profile else "Unknown User",
                    handle=profile.handle if profile else None,
                    avatar_url=profile.avatar_url if profile else None,
                    verified=profile.verified if profile else False,
                    is_online=record.is_online if record else False,
                    last_seen=record.last_seen if record else None,
                )
            )
        summaries.append(
            ConversationSummary(
                conversation=conv,
                participant_profiles=roster,
                last_message=last_messages.get(conv.id),
                unread_count=counts.get(conv.id, 0),
            )
        )
    return summaries


def _dedupe(rows: list[Conversation]) -> list[Conversation]:
    ordered = sorted(rows, key=lambda c: (c.updated_at, str(c.id)), reverse=True)
    seen_ids: set[uuid.UUID] = set()
    seen_pairs: set[frozenset[str]] = set()
    result: list[Conversation] = []
    for conv in ordered:
        if conv.id in seen_ids:
            continue
        seen_ids.add(conv.id)
        if not conv.is_group:
            # The most recently active thread for a pair wins.
            if conv.participant_pair in seen_pairs:
                logger.debug("Dropping duplicate direct conversation %s", conv.id)
                continue
            seen_pairs.add(conv.participant_pair)
        result.append(conv)
    return result


async def can_direct_message(
    principal: Principal,
    other_user_id: str,
    uow: UnitOfWork,
) -> PermissionDecision:
    resolver = DirectMessagePermissionResolver.from_uow(uow)
    return await resolver.resolve(principal.user_id, other_user_id)


async def create_conversation(
    principal: Principal,
    dto: CreateConversationDTO,
    uow: UnitOfWork,
    clock: Clock = _clock,
) -> Conversation:
    participants = _participant_list(principal.user_id, dto.participant_ids)
    if len(participants) < 2:
        raise ValidationError("A conversation needs at least one other participant")

    resolver = DirectMessagePermissionResolver.from_uow(uow)
    if dto.is_group:
        for uid in participants[1:]:
            await resolver.ensure_not_blocked(principal.user_id, uid)
    else:
        if len(participants) != 2:
            raise ValidationError("A direct conversation has exactly two participants")
        await resolver.ensure_allowed(principal.user_id, participants[1])

    return await _create(principal.user_id, participants, dto, uow, clock)


async def get_or_create_direct_conversation(
    principal: Principal,
    other_user_id: str,
    uow: UnitOfWork,
    clock: Clock = _clock,
) -> tuple[Conversation, bool]:
    """Return the 1:1 thread with ``other_user_id``, creating it if absent.

    The permission check runs even when a thread already exists: a block
    added after creation must still close it.
    """
    resolver = DirectMessagePermissionResolver.from_uow(uow)
    await resolver.ensure_allowed(principal.user_id, other_user_id)

    existing = await uow.conversations.find_direct(principal.user_id, other_user_id)
    if existing is not None:
        return existing, False

    dto = CreateConversationDTO(participant_ids=[other_user_id])
    participants = [principal.user_id, other_user_id]
    conversation = await _create(principal.user_id, participants, dto, uow, clock)
    return conversation, True


async def _create(
    creator_id: str,
    participants: list[str],
    dto: CreateConversationDTO,
    uow: UnitOfWork,
    clock: Clock,
) -> Conversation:
    now = clock.now()
    conversation = Conversation(
        id=uuid.uuid4(),
        participants=tuple(participants),
        is_group=dto.is_group,
        group_name=dto.group_name if dto.is_group else None,
        group_avatar=dto.group_avatar if dto.is_group else None,
        created_at=now,
        updated_at=now,
    )
    conversation = await uow.conversations_w.create(conversation)

    event = ConversationCreated(
        conversation_id=conversation.id,
        created_by=creator_id,
        participants=conversation.participants,
        is_group=conversation.is_group,
    )
    await uow.outbox.add(
        event.event_type,
        event.to_payload(),
        [user_status_topic(uid) for uid in conversation.participants],
    )
    await uow.commit()
    logger.info(
        "Conversation %s created by %s (%d participants)",
        conversation.id, creator_id, len(conversation.participants),
    )
    return conversation


def _participant_list(self_id: str, participant_ids: list[str]) -> list[str]:
    result = [self_id]
    for uid in participant_ids:
        if uid not in result:
            result.append(uid)
    return result


async def get_conversation(
    conversation_id: uuid.UUID,
    principal: Principal,
    uow: UnitOfWork,
) -> Conversation:
    conversation = await uow.conversations.get_by_id(conversation_id)
    return await assert_conversation_access(principal, conversation, uow.participants)


async def delete_conversation(
    conversation_id: uuid.UUID,
    principal: Principal,
    uow: UnitOfWork,
) -> None:
    """Delete messages first, then the conversation row."""
    conversation = await uow.conversations.get_by_id(conversation_id)
    await assert_conversation_access(principal, conversation, uow.participants)

    removed = await uow.messages_w.delete_for_conversation(conversation_id)
    await uow.flush()
    await uow.conversations_w.delete(conversation_id)

    event = ConversationDeleted(conversation_id=conversation_id, deleted_by=principal.user_id)
    await uow.outbox.add(
        event.event_type, event.to_payload(), [conversation_topic(conversation_id)],
    )
    await uow.commit()
    logger.info(
        "Conversation %s deleted by %s (%d messages)",
        conversation_id, principal.user_id, removed,
    )
