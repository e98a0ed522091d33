from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from messaging_service.domain.entities.message import Message


class MessageReader(Protocol):
    async def list_messages(
        self,
        conversation_id: UUID,
        *,
        cursor: str | None = None,
        limit: int = 50,
    ) -> list[Message]:
        """Oldest first."""
        ...

    async def latest_for_conversations(
        self, conversation_ids: list[UUID]
    ) -> dict[UUID, Message]: ...

    async def count_unread(self, conversation_id: UUID, user_id: str) -> int: ...

    async def count_unread_batch(
        self, conversation_ids: list[UUID], user_id: str
    ) -> dict[UUID, int]:
        """Grouped count; conversations with nothing unread may be absent.

        Raises TransientIOError when the grouped query fails.
        """
        ...


class MessageWriter(Protocol):
    async def create_if_not_exists(self, message: Message) -> tuple[Message, bool]:
        """Insert message. Return (message, created). If the id already exists → return existing."""
        ...

    async def mark_read(
        self, conversation_id: UUID, message_ids: list[UUID], read_at: datetime
    ) -> int: ...

    async def delete_many(
        self, conversation_id: UUID, message_ids: list[UUID], sender_id: str
    ) -> list[UUID]: ...

    async def delete_for_conversation(self, conversation_id: UUID) -> int: ...
