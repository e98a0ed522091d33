from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from messaging_service.domain.value_objects.topics import ordered_pair


@dataclass(frozen=True, slots=True)
class BlockRelation:
    """Directed edge: ``blocker_id`` blocked ``blocked_id``."""

    blocker_id: str
    blocked_id: str
    created_at: datetime

    def involves(self, a: str, b: str) -> bool:
        return {self.blocker_id, self.blocked_id} == {a, b}


@dataclass(frozen=True, slots=True)
class BuddyMatch:
    """Undirected edge, stored with the lesser id first."""

    user_low: str
    user_high: str
    created_at: datetime

    @classmethod
    def between(cls, a: str, b: str, created_at: datetime) -> BuddyMatch:
        low, high = ordered_pair(a, b)
        return cls(user_low=low, user_high=high, created_at=created_at)

    def involves(self, a: str, b: str) -> bool:
        return (self.user_low, self.user_high) == ordered_pair(a, b)
