from __future__ import annotations

from typing import Protocol
from uuid import UUID


class ParticipantReader(Protocol):
    async def is_participant(self, conversation_id: UUID, user_id: str) -> bool: ...

    async def conversation_ids_for_user(self, user_id: str) -> list[UUID]: ...
