from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from messaging_service.domain.entities.presence import PresenceRecord
from messaging_service.infrastructure.db.mappers import user as mapper
from messaging_service.infrastructure.db.models.user import UserStatusModel


class PresenceReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, user_id: str) -> PresenceRecord | None:
        model = await self._session.get(UserStatusModel, user_id)
        return mapper.status_to_entity(model) if model else None

    async def get_many(self, user_ids: list[str]) -> dict[str, PresenceRecord]:
        if not user_ids:
            return {}
        stmt = select(UserStatusModel).where(UserStatusModel.user_id.in_(user_ids))
        result = await self._session.execute(stmt)
        return {m.user_id: mapper.status_to_entity(m) for m in result.scalars().all()}


class PresenceWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def upsert(self, record: PresenceRecord) -> None:
        stmt = (
            pg_insert(UserStatusModel)
            .values(
                user_id=record.user_id,
                is_online=record.is_online,
                last_seen=record.last_seen,
            )
            .on_conflict_do_update(
                index_elements=[UserStatusModel.user_id],
                set_={"is_online": record.is_online, "last_seen": record.last_seen},
            )
        )
        await self._session.execute(stmt)
