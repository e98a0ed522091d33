from __future__ import annotations

from types import TracebackType
from typing import Self

from sqlalchemy.ext.asyncio import AsyncSession

from messaging_service.infrastructure.db.repositories.conversation import (
    ConversationReaderRepo,
    ConversationWriterRepo,
)
from messaging_service.infrastructure.db.repositories.message import (
    MessageReaderRepo,
    MessageWriterRepo,
)
from messaging_service.infrastructure.db.repositories.outbox import OutboxWriterRepo
from messaging_service.infrastructure.db.repositories.participant import ParticipantReaderRepo
from messaging_service.infrastructure.db.repositories.presence import (
    PresenceReaderRepo,
    PresenceWriterRepo,
)
from messaging_service.infrastructure.db.repositories.user import (
    RelationshipReaderRepo,
    UserReaderRepo,
)


class SqlAlchemyUoW:
    """Concrete Unit-of-Work backed by a single AsyncSession."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self.conversations = ConversationReaderRepo(session)
        self.conversations_w = ConversationWriterRepo(session)
        self.participants = ParticipantReaderRepo(session)
        self.messages = MessageReaderRepo(session)
        self.messages_w = MessageWriterRepo(session)
        self.users = UserReaderRepo(session)
        self.relationships = RelationshipReaderRepo(session)
        self.presence = PresenceReaderRepo(session)
        self.presence_w = PresenceWriterRepo(session)
        self.outbox = OutboxWriterRepo(session)

    async def flush(self) -> None:
        await self._session.flush()

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is not None:
            await self.rollback()
