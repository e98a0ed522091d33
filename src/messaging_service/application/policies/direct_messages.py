from __future__ import annotations

import logging

from messaging_service.application.dto.permission import PermissionDecision
from messaging_service.application.exceptions import PermissionDeniedError
from messaging_service.application.repositories.user import RelationshipReader, UserReader
from messaging_service.application.uow import UnitOfWork
from messaging_service.domain.value_objects.enums import DenyReason

logger = logging.getLogger(__name__)


class DirectMessagePermissionResolver:
    """Decides whether ``from_user`` may open a 1:1 conversation with ``to_user``.

    Checks run in a fixed order: self, block (either direction), the target's
    ``allow_direct_messages`` flag, then the buddy-match override. A missing
    profile counts as ``allow_direct_messages=True`` so that users with an
    incomplete profile row are still reachable.

    Permission can change after a conversation exists, so callers run this
    before reusing an existing conversation too.
    """

    def __init__(self, users: UserReader, relationships: RelationshipReader) -> None:
        self._users = users
        self._relationships = relationships

    @classmethod
    def from_uow(cls, uow: UnitOfWork) -> DirectMessagePermissionResolver:
        return cls(uow.users, uow.relationships)

    async def resolve(self, from_user: str, to_user: str) -> PermissionDecision:
        if from_user == to_user:
            return PermissionDecision.deny(DenyReason.CANNOT_DM_SELF)

        if await self._relationships.block_exists_between(from_user, to_user):
            return PermissionDecision.deny(DenyReason.BLOCKED)

        profile = await self._users.get_profile(to_user)
        allow_dms = True if profile is None else profile.allow_direct_messages
        if allow_dms:
            return PermissionDecision.allow()

        if await self._relationships.buddy_match_exists(from_user, to_user):
            return PermissionDecision.allow()

        return PermissionDecision.deny(DenyReason.DMS_DISABLED)

    async def ensure_allowed(self, from_user: str, to_user: str) -> None:
        decision = await self.resolve(from_user, to_user)
        if not decision.allowed:
            assert decision.reason is not None
            logger.info(
                "DM %s -> %s denied: %s", from_user, to_user, decision.reason,
            )
            raise PermissionDeniedError(decision.reason)

    async def ensure_not_blocked(self, from_user: str, to_user: str) -> None:
        if await self._relationships.block_exists_between(from_user, to_user):
            raise PermissionDeniedError(DenyReason.BLOCKED)
