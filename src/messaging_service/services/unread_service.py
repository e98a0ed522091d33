"""Per-conversation unread accounting.

``unread(C, u)`` is the number of messages in ``C`` with ``read = false`` sent
by someone other than ``u``. Counts are always read back from storage; after a
mark-as-read they are recomputed, never decremented, so concurrent inserts
cannot skew them.
"""
from __future__ import annotations

import logging
import uuid

from messaging_service.application.dto.principal import Principal
from messaging_service.application.exceptions import TransientIOError
from messaging_service.application.policies.permissions import assert_conversation_access
from messaging_service.application.uow import UnitOfWork

logger = logging.getLogger(__name__)


async def unread_count(
    conversation_id: uuid.UUID,
    user_id: str,
    uow: UnitOfWork,
) -> int:
    return await uow.messages.count_unread(conversation_id, user_id)


async def unread_counts(
    conversation_ids: list[uuid.UUID],
    user_id: str,
    uow: UnitOfWork,
) -> dict[uuid.UUID, int]:
    """Batched form used when hydrating a conversation list.

    Every requested id is present in the result, zero included. If the
    grouped query fails the counts are fetched one conversation at a time.
    """
    counts: dict[uuid.UUID, int] = {cid: 0 for cid in conversation_ids}
    if not counts:
        return counts

    try:
        batch = await uow.messages.count_unread_batch(list(counts), user_id)
    except TransientIOError:
        logger.warning(
            "Batched unread count failed for %d conversations, falling back to single queries",
            len(counts),
            exc_info=True,
        )
        for cid in counts:
            counts[cid] = await uow.messages.count_unread(cid, user_id)
        return counts

    for cid, n in batch.items():
        if cid in counts:
            counts[cid] = n
    return counts


async def conversation_unread(
    conversation_id: uuid.UUID,
    principal: Principal,
    uow: UnitOfWork,
) -> int:
    conversation = await uow.conversations.get_by_id(conversation_id)
    await assert_conversation_access(principal, conversation, uow.participants)
    return await unread_count(conversation_id, principal.user_id, uow)


async def member_unread_counts(
    conversation_ids: list[uuid.UUID],
    principal: Principal,
    uow: UnitOfWork,
) -> dict[uuid.UUID, int]:
    """Batched counts restricted to conversations the caller belongs to."""
    member_of = set(await uow.participants.conversation_ids_for_user(principal.user_id))
    wanted = [cid for cid in dict.fromkeys(conversation_ids) if cid in member_of]
    return await unread_counts(wanted, principal.user_id, uow)
