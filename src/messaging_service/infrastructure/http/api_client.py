"""REST client the realtime core uses to talk to the messaging API."""
from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

import httpx

from messaging_service.api.v1.schemas.conversation import (
    ConversationSummaryResponse,
    DirectConversationResponse,
    UnreadCountsResponse,
)
from messaging_service.api.v1.schemas.message import (
    DeletedMessagesResponse,
    MessageResponse,
    UnreadCountResponse,
)
from messaging_service.api.v1.schemas.user import CanMessageResponse
from messaging_service.application.dto.conversation import ConversationSummary
from messaging_service.application.dto.message import SendMessageDTO
from messaging_service.application.dto.permission import PermissionDecision
from messaging_service.application.exceptions import (
    AppError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PermissionDeniedError,
    TransientIOError,
    ValidationError,
)
from messaging_service.application.ports.auth import SessionProvider
from messaging_service.domain.entities.conversation import Conversation
from messaging_service.domain.entities.message import Message
from messaging_service.domain.value_objects.enums import DenyReason

logger = logging.getLogger(__name__)

_API = "/api/v1"


class HttpMessagingBackend:
    """Implements application.ports.backend.MessagingBackend over httpx."""

    def __init__(self, client: httpx.AsyncClient, session: SessionProvider) -> None:
        self._client = client
        self._session = session

    @classmethod
    def create(
        cls,
        base_url: str,
        session: SessionProvider,
        timeout: float = 10.0,
    ) -> HttpMessagingBackend:
        return cls(httpx.AsyncClient(base_url=base_url, timeout=timeout), session)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        token = await self._session.get_session()
        headers = {"Authorization": f"Bearer {token}"}
        try:
            response = await self._client.request(method, f"{_API}{path}", headers=headers, **kwargs)
        except httpx.TransportError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise TransientIOError(f"{method} {path} failed: {exc}") from exc
        if response.is_error:
            raise _error_from_response(response)
        return response

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._send(method, path, **kwargs)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def list_conversations(self) -> list[ConversationSummary]:
        data = await self._request("GET", "/conversations")
        return [ConversationSummaryResponse.model_validate(item).to_summary() for item in data]

    async def get_or_create_direct_conversation(self, peer_id: str) -> Conversation:
        data = await self._request("POST", "/conversations/direct", json={"user_id": peer_id})
        return DirectConversationResponse.model_validate(data).to_entity()

    async def can_direct_message(self, peer_id: str) -> PermissionDecision:
        data = CanMessageResponse.model_validate(
            await self._request("GET", f"/users/{peer_id}/can-message")
        )
        if data.allowed:
            return PermissionDecision.allow()
        return PermissionDecision.deny(data.reason or DenyReason.DMS_DISABLED)

    async def delete_conversation(self, conversation_id: UUID) -> None:
        await self._request("DELETE", f"/conversations/{conversation_id}")

    async def fetch_messages(self, conversation_id: UUID, limit: int = 200) -> list[Message]:
        """Full history, oldest first. ``limit`` is the page size; pages follow X-Next-Cursor."""
        path = f"/conversations/{conversation_id}/messages"
        params: dict[str, Any] = {"limit": limit}
        messages: list[Message] = []
        while True:
            response = await self._send("GET", path, params=params)
            messages.extend(MessageResponse.model_validate(item).to_entity() for item in response.json())
            cursor = response.headers.get("X-Next-Cursor")
            if not cursor:
                return messages
            params = {"limit": limit, "cursor": cursor}

    async def send_message(self, conversation_id: UUID, dto: SendMessageDTO) -> Message:
        body: dict[str, Any] = {
            "content": dto.content,
            "message_type": str(dto.message_type),
            "metadata": dto.metadata,
        }
        if dto.message_id is not None:
            body["id"] = str(dto.message_id)
        data = await self._request("POST", f"/conversations/{conversation_id}/messages", json=body)
        return MessageResponse.model_validate(data).to_entity()

    async def mark_as_read(self, conversation_id: UUID, message_ids: list[UUID]) -> int:
        data = await self._request(
            "POST",
            f"/conversations/{conversation_id}/read",
            json={"message_ids": [str(m) for m in message_ids]},
        )
        return UnreadCountResponse.model_validate(data).unread_count

    async def delete_messages(self, conversation_id: UUID, message_ids: list[UUID]) -> int:
        data = await self._request(
            "POST",
            f"/conversations/{conversation_id}/messages/delete",
            json={"message_ids": [str(m) for m in message_ids]},
        )
        return len(DeletedMessagesResponse.model_validate(data).deleted)

    async def unread_count(self, conversation_id: UUID) -> int:
        data = await self._request("GET", f"/conversations/{conversation_id}/unread")
        return UnreadCountResponse.model_validate(data).unread_count

    async def unread_counts(self, conversation_ids: list[UUID]) -> dict[UUID, int]:
        if not conversation_ids:
            return {}
        data = await self._request(
            "GET",
            "/conversations/unread",
            params={"ids": ",".join(str(c) for c in conversation_ids)},
        )
        return UnreadCountsResponse.model_validate(data).counts


def _error_from_response(response: httpx.Response) -> AppError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    detail = str(body.get("detail") or response.reason_phrase) if isinstance(body, dict) else response.text
    status = response.status_code

    if status == 403:
        reason = body.get("reason") if isinstance(body, dict) else None
        if reason in {r.value for r in DenyReason}:
            return PermissionDeniedError(DenyReason(reason), detail)
        return ForbiddenError(detail)
    if status == 404:
        return NotFoundError(detail)
    if status == 409:
        return ConflictError(detail)
    if status == 422:
        return ValidationError(detail)
    if status >= 500:
        return TransientIOError(detail)
    return AppError(detail)
