from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

from messaging_service.domain.entities.presence import PresenceRecord
from messaging_service.domain.value_objects.enums import ChatEvent


@dataclass(frozen=True, slots=True)
class PresenceUpdated:
    """Fanned out to the user's status topic and every conversation they are in.

    The payload names only the user; the topic it arrives on is the scope.
    """

    event_type: ClassVar[str] = ChatEvent.PRESENCE_UPDATED

    record: PresenceRecord

    def to_payload(self) -> dict[str, Any]:
        return {
            "user_id": self.record.user_id,
            "is_online": self.record.is_online,
            "last_seen": self.record.last_seen.isoformat() if self.record.last_seen else None,
        }
