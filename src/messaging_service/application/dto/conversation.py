from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from messaging_service.domain.entities.conversation import Conversation
from messaging_service.domain.entities.message import Message


@dataclass(frozen=True, slots=True)
class CreateConversationDTO:
    participant_ids: list[str]
    is_group: bool = False
    group_name: str | None = None
    group_avatar: str | None = None


@dataclass(frozen=True, slots=True)
class ParticipantSummary:
    """Roster entry shown next to a conversation (profile plus presence)."""

    id: str
    display_name: str
    handle: str | None
    avatar_url: str | None
    verified: bool
    is_online: bool
    last_seen: datetime | None


@dataclass(frozen=True, slots=True)
class ConversationSummary:
    conversation: Conversation
    participant_profiles: list[ParticipantSummary] = field(default_factory=list)
    last_message: Message | None = None
    unread_count: int = 0

    @property
    def id(self) -> UUID:
        return self.conversation.id

    @property
    def updated_at(self) -> datetime:
        return self.conversation.updated_at
