from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class PresenceRecord:
    user_id: str
    is_online: bool
    last_seen: datetime | None

    def __post_init__(self) -> None:
        if self.is_online and self.last_seen is not None:
            raise ValueError("an online presence record cannot carry last_seen")
        if not self.is_online and self.last_seen is None:
            raise ValueError("an offline presence record needs last_seen")

    @classmethod
    def online(cls, user_id: str) -> PresenceRecord:
        return cls(user_id=user_id, is_online=True, last_seen=None)

    @classmethod
    def offline(cls, user_id: str, at: datetime) -> PresenceRecord:
        return cls(user_id=user_id, is_online=False, last_seen=at)
