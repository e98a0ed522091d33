from __future__ import annotations

from typing import Protocol

from messaging_service.domain.entities.user import UserProfile


class UserReader(Protocol):
    async def get_profile(self, user_id: str) -> UserProfile | None: ...

    async def get_profiles(self, user_ids: list[str]) -> dict[str, UserProfile]: ...


class RelationshipReader(Protocol):
    async def block_exists_between(self, a: str, b: str) -> bool:
        """True when either user has blocked the other."""
        ...

    async def buddy_match_exists(self, a: str, b: str) -> bool: ...
