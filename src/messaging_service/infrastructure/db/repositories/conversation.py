from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from messaging_service.domain.entities.conversation import Conversation
from messaging_service.infrastructure.db.mappers import conversation as mapper
from messaging_service.infrastructure.db.models.conversation import ConversationModel
from messaging_service.infrastructure.db.models.participant import ParticipantModel


def _member_of(user_id: str):
    return select(ParticipantModel.conversation_id).where(ParticipantModel.user_id == user_id)


class ConversationReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, conversation_id: UUID) -> Conversation | None:
        result = await self._session.get(ConversationModel, conversation_id)
        return mapper.model_to_entity(result) if result else None

    async def list_for_user(self, user_id: str) -> list[Conversation]:
        stmt = (
            select(ConversationModel)
            .join(
                ParticipantModel,
                ParticipantModel.conversation_id == ConversationModel.id,
            )
            .where(ParticipantModel.user_id == user_id)
            .order_by(ConversationModel.updated_at.desc(), ConversationModel.id)
        )
        result = await self._session.execute(stmt)
        return [mapper.model_to_entity(m) for m in result.scalars().all()]

    async def find_direct(self, a: str, b: str) -> Conversation | None:
        two_members = (
            select(ParticipantModel.conversation_id)
            .group_by(ParticipantModel.conversation_id)
            .having(func.count(ParticipantModel.user_id) == 2)
        )
        stmt = (
            select(ConversationModel)
            .where(
                ConversationModel.is_group.is_(False),
                ConversationModel.id.in_(_member_of(a)),
                ConversationModel.id.in_(_member_of(b)),
                ConversationModel.id.in_(two_members),
            )
            .order_by(ConversationModel.updated_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return mapper.model_to_entity(model) if model else None


class ConversationWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, conversation: Conversation) -> Conversation:
        model = mapper.entity_to_model(conversation)
        self._session.add(model)
        await self._session.flush()
        return mapper.model_to_entity(model)

    async def touch_updated_at(
        self,
        conversation_id: UUID,
        ts: datetime,
    ) -> None:
        stmt = (
            update(ConversationModel)
            .where(ConversationModel.id == conversation_id)
            .values(updated_at=ts)
        )
        await self._session.execute(stmt)

    async def delete(self, conversation_id: UUID) -> None:
        await self._session.execute(
            delete(ParticipantModel).where(ParticipantModel.conversation_id == conversation_id)
        )
        await self._session.execute(
            delete(ConversationModel).where(ConversationModel.id == conversation_id)
        )
