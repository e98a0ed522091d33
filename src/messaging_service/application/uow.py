from __future__ import annotations

from typing import Protocol

from messaging_service.application.repositories.conversation import (
    ConversationReader,
    ConversationWriter,
)
from messaging_service.application.repositories.message import MessageReader, MessageWriter
from messaging_service.application.repositories.outbox import OutboxWriter
from messaging_service.application.repositories.participant import ParticipantReader
from messaging_service.application.repositories.presence import (
    PresenceReader,
    PresenceWriter,
)
from messaging_service.application.repositories.user import RelationshipReader, UserReader


class UnitOfWork(Protocol):
    conversations: ConversationReader
    conversations_w: ConversationWriter
    participants: ParticipantReader
    messages: MessageReader
    messages_w: MessageWriter
    users: UserReader
    relationships: RelationshipReader
    presence: PresenceReader
    presence_w: PresenceWriter
    outbox: OutboxWriter

    async def commit(self) -> None: ...
    async def rollback(self) -> None: ...
    async def flush(self) -> None: ...
