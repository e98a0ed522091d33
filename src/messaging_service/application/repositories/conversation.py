from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from messaging_service.domain.entities.conversation import Conversation


class ConversationReader(Protocol):
    async def get_by_id(self, conversation_id: UUID) -> Conversation | None: ...

    async def list_for_user(self, user_id: str) -> list[Conversation]:
        """All conversations containing the user. May repeat rows; callers dedupe."""
        ...

    async def find_direct(self, a: str, b: str) -> Conversation | None:
        """Non-group conversation whose participants are exactly ``{a, b}``."""
        ...


class ConversationWriter(Protocol):
    async def create(self, conversation: Conversation) -> Conversation: ...

    async def touch_updated_at(self, conversation_id: UUID, ts: datetime) -> None: ...

    async def delete(self, conversation_id: UUID) -> None: ...
