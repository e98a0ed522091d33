from __future__ import annotations

from typing import Protocol
from uuid import UUID

from messaging_service.application.dto.conversation import ConversationSummary
from messaging_service.application.dto.message import SendMessageDTO
from messaging_service.application.dto.permission import PermissionDecision
from messaging_service.domain.entities.conversation import Conversation
from messaging_service.domain.entities.message import Message


class MessagingBackend(Protocol):
    """What the realtime client core needs from the messaging service."""

    async def list_conversations(self) -> list[ConversationSummary]: ...

    async def get_or_create_direct_conversation(self, peer_id: str) -> Conversation: ...

    async def can_direct_message(self, peer_id: str) -> PermissionDecision: ...

    async def delete_conversation(self, conversation_id: UUID) -> None: ...

    async def fetch_messages(self, conversation_id: UUID) -> list[Message]: ...

    async def send_message(self, conversation_id: UUID, dto: SendMessageDTO) -> Message: ...

    async def mark_as_read(self, conversation_id: UUID, message_ids: list[UUID]) -> int: ...

    async def delete_messages(self, conversation_id: UUID, message_ids: list[UUID]) -> int: ...

    async def unread_count(self, conversation_id: UUID) -> int: ...

    async def unread_counts(self, conversation_ids: list[UUID]) -> dict[UUID, int]: ...
