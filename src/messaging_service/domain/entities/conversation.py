from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True, slots=True)
class Conversation:
    id: UUID
    participants: tuple[str, ...]
    is_group: bool
    group_name: str | None
    group_avatar: str | None
    created_at: datetime
    updated_at: datetime

    def __post_init__(self) -> None:
        if len(set(self.participants)) < 2:
            raise ValueError("a conversation needs at least two distinct participants")

    @property
    def participant_pair(self) -> frozenset[str]:
        """Unordered participant set, used to spot duplicate 1:1 threads."""
        return frozenset(self.participants)

    def is_direct_between(self, a: str, b: str) -> bool:
        return not self.is_group and self.participant_pair == frozenset((a, b))

    def others(self, user_id: str) -> tuple[str, ...]:
        return tuple(p for p in self.participants if p != user_id)
