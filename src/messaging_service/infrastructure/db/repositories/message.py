from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from messaging_service.application.exceptions import TransientIOError
from messaging_service.domain.entities.message import Message
from messaging_service.infrastructure.db.mappers import message as mapper
from messaging_service.infrastructure.db.models.message import MessageModel
from messaging_service.infrastructure.db.repositories._cursor import decode_cursor


def _unread_for(user_id: str):
    return (
        MessageModel.read.is_(False),
        MessageModel.sender_id != user_id,
    )


class MessageReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_messages(
        self,
        conversation_id: UUID,
        *,
        cursor: str | None = None,
        limit: int = 50,
    ) -> list[Message]:
        stmt = (
            select(MessageModel)
            .where(MessageModel.conversation_id == conversation_id)
            .order_by(MessageModel.sent_at.asc(), MessageModel.id.asc())
            .limit(limit)
        )
        if cursor:
            ts, mid = decode_cursor(cursor)
            stmt = stmt.where(
                (MessageModel.sent_at > ts)
                | ((MessageModel.sent_at == ts) & (MessageModel.id > mid))
            )
        result = await self._session.execute(stmt)
        return [mapper.model_to_entity(m) for m in result.scalars().all()]

    async def latest_for_conversations(
        self, conversation_ids: list[UUID]
    ) -> dict[UUID, Message]:
        if not conversation_ids:
            return {}
        stmt = (
            select(MessageModel)
            .where(MessageModel.conversation_id.in_(conversation_ids))
            .order_by(
                MessageModel.conversation_id,
                MessageModel.sent_at.desc(),
                MessageModel.id.desc(),
            )
            .distinct(MessageModel.conversation_id)
        )
        result = await self._session.execute(stmt)
        return {m.conversation_id: mapper.model_to_entity(m) for m in result.scalars().all()}

    async def count_unread(self, conversation_id: UUID, user_id: str) -> int:
        stmt = select(func.count(MessageModel.id)).where(
            MessageModel.conversation_id == conversation_id,
            *_unread_for(user_id),
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def count_unread_batch(
        self, conversation_ids: list[UUID], user_id: str
    ) -> dict[UUID, int]:
        stmt = (
            select(MessageModel.conversation_id, func.count(MessageModel.id))
            .where(MessageModel.conversation_id.in_(conversation_ids), *_unread_for(user_id))
            .group_by(MessageModel.conversation_id)
        )
        try:
            # Savepoint so a failed batch leaves the session usable for the fallback.
            async with self._session.begin_nested():
                result = await self._session.execute(stmt)
                rows = result.all()
        except SQLAlchemyError as exc:
            raise TransientIOError("Batched unread count failed") from exc
        return {cid: int(n) for cid, n in rows}


class MessageWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create_if_not_exists(self, message: Message) -> tuple[Message, bool]:
        """Insert message idempotently. Returns (message, created_flag)."""
        values = mapper.entity_to_values(message)
        stmt = (
            pg_insert(MessageModel)
            .values(values)
            .on_conflict_do_nothing(index_elements=[MessageModel.id])
            .returning(MessageModel)
        )
        result = await self._session.execute(stmt)
        row = result.scalar_one_or_none()

        if row is not None:
            return mapper.model_to_entity(row), True

        existing = await self._session.get(MessageModel, message.id)
        assert existing is not None
        return mapper.model_to_entity(existing), False

    async def mark_read(
        self,
        conversation_id: UUID,
        message_ids: list[UUID],
        read_at: datetime,
    ) -> int:
        stmt = (
            update(MessageModel)
            .where(
                MessageModel.conversation_id == conversation_id,
                MessageModel.id.in_(message_ids),
                MessageModel.read.is_(False),
            )
            .values(read=True, read_at=read_at)
        )
        result = await self._session.execute(stmt)
        return result.rowcount or 0

    async def delete_many(
        self,
        conversation_id: UUID,
        message_ids: list[UUID],
        sender_id: str,
    ) -> list[UUID]:
        stmt = (
            delete(MessageModel)
            .where(
                MessageModel.conversation_id == conversation_id,
                MessageModel.id.in_(message_ids),
                MessageModel.sender_id == sender_id,
            )
            .returning(MessageModel.id)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def delete_for_conversation(self, conversation_id: UUID) -> int:
        result = await self._session.execute(
            delete(MessageModel).where(MessageModel.conversation_id == conversation_id)
        )
        return result.rowcount or 0
