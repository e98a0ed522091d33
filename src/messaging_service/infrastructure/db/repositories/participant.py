from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from messaging_service.infrastructure.db.models.participant import ParticipantModel


class ParticipantReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def is_participant(self, conversation_id: UUID, user_id: str) -> bool:
        stmt = (
            select(ParticipantModel.id)
            .where(
                ParticipantModel.conversation_id == conversation_id,
                ParticipantModel.user_id == user_id,
            )
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def conversation_ids_for_user(self, user_id: str) -> list[UUID]:
        stmt = (
            select(ParticipantModel.conversation_id)
            .where(ParticipantModel.user_id == user_id)
            .distinct()
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
