from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from uuid import UUID

from messaging_service.domain.value_objects.enums import MessageType


@dataclass(frozen=True, slots=True)
class SendMessageDTO:
    content: str
    message_type: MessageType = MessageType.TEXT
    metadata: dict[str, Any] | None = None
    # Client-generated id for optimistic sends; reused on retry.
    message_id: UUID | None = None
