from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from messaging_service.api.v1.schemas.message import MessageResponse
from messaging_service.application.dto.conversation import (
    ConversationSummary,
    CreateConversationDTO,
    ParticipantSummary,
)
from messaging_service.domain.entities.conversation import Conversation


class CreateConversationRequest(BaseModel):
    participant_ids: list[str] = Field(min_length=1)
    is_group: bool = False
    group_name: str | None = Field(None, max_length=200)
    group_avatar: str | None = None

    def to_dto(self) -> CreateConversationDTO:
        return CreateConversationDTO(
            participant_ids=list(self.participant_ids),
            is_group=self.is_group,
            group_name=self.group_name,
            group_avatar=self.group_avatar,
        )


class DirectConversationRequest(BaseModel):
    user_id: str


class ConversationResponse(BaseModel):
    id: UUID
    participants: list[str]
    is_group: bool
    group_name: str | None
    group_avatar: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    def to_entity(self) -> Conversation:
        return Conversation(
            id=self.id,
            participants=tuple(self.participants),
            is_group=self.is_group,
            group_name=self.group_name,
            group_avatar=self.group_avatar,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class DirectConversationResponse(ConversationResponse):
    created: bool


class ParticipantResponse(BaseModel):
    id: str
    display_name: str
    handle: str | None = None
    avatar_url: str | None = None
    verified: bool = False
    is_online: bool = False
    last_seen: datetime | None = None

    model_config = {"from_attributes": True}


class ConversationSummaryResponse(ConversationResponse):
    participant_profiles: list[ParticipantResponse] = []
    last_message: MessageResponse | None = None
    unread_count: int = 0

    @classmethod
    def from_summary(cls, summary: ConversationSummary) -> ConversationSummaryResponse:
        conv = summary.conversation
        return cls(
            id=conv.id,
            participants=list(conv.participants),
            is_group=conv.is_group,
            group_name=conv.group_name,
            group_avatar=conv.group_avatar,
            created_at=conv.created_at,
            updated_at=conv.updated_at,
            participant_profiles=[
                ParticipantResponse.model_validate(p, from_attributes=True)
                for p in summary.participant_profiles
            ],
            last_message=(
                MessageResponse.model_validate(summary.last_message, from_attributes=True)
                if summary.last_message else None
            ),
            unread_count=summary.unread_count,
        )

    def to_summary(self) -> ConversationSummary:
        return ConversationSummary(
            conversation=self.to_entity(),
            participant_profiles=[ParticipantSummary(**p.model_dump()) for p in self.participant_profiles],
            last_message=self.last_message.to_entity() if self.last_message else None,
            unread_count=self.unread_count,
        )


class UnreadCountsResponse(BaseModel):
    counts: dict[UUID, int]
