from __future__ import annotations

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from messaging_service.domain.entities.user import UserProfile
from messaging_service.domain.value_objects.topics import ordered_pair
from messaging_service.infrastructure.db.mappers import user as mapper
from messaging_service.infrastructure.db.models.user import (
    BlockedUserModel,
    BuddyMatchModel,
    UserProfileModel,
)


class UserReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_profile(self, user_id: str) -> UserProfile | None:
        model = await self._session.get(UserProfileModel, user_id)
        return mapper.profile_to_entity(model) if model else None

    async def get_profiles(self, user_ids: list[str]) -> dict[str, UserProfile]:
        if not user_ids:
            return {}
        stmt = select(UserProfileModel).where(UserProfileModel.id.in_(user_ids))
        result = await self._session.execute(stmt)
        return {m.id: mapper.profile_to_entity(m) for m in result.scalars().all()}


class RelationshipReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def block_exists_between(self, a: str, b: str) -> bool:
        stmt = (
            select(BlockedUserModel.blocker_id)
            .where(
                or_(
                    and_(BlockedUserModel.blocker_id == a, BlockedUserModel.blocked_id == b),
                    and_(BlockedUserModel.blocker_id == b, BlockedUserModel.blocked_id == a),
                )
            )
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def buddy_match_exists(self, a: str, b: str) -> bool:
        low, high = ordered_pair(a, b)
        stmt = (
            select(BuddyMatchModel.user_low)
            .where(BuddyMatchModel.user_low == low, BuddyMatchModel.user_high == high)
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None
