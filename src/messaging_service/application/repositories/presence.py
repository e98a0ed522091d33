from __future__ import annotations

from typing import Protocol

from messaging_service.domain.entities.presence import PresenceRecord


class PresenceReader(Protocol):
    async def get(self, user_id: str) -> PresenceRecord | None: ...

    async def get_many(self, user_ids: list[str]) -> dict[str, PresenceRecord]: ...


class PresenceWriter(Protocol):
    async def upsert(self, record: PresenceRecord) -> None: ...
