from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID


@dataclass(frozen=True, slots=True)
class Message:
    id: UUID
    conversation_id: UUID
    sender_id: str
    content: str
    message_type: str
    sent_at: datetime
    metadata: dict[str, Any] | None = None
    read: bool = False
    read_at: datetime | None = None

    @property
    def sort_key(self) -> tuple[datetime, str]:
        """Ordering inside a conversation; the id breaks ``sent_at`` ties."""
        return (self.sent_at, str(self.id))

    def is_unread_for(self, user_id: str) -> bool:
        return not self.read and self.sender_id != user_id
