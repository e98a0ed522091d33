from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Query, Response, status

from messaging_service.api.deps import CurrentPrincipal, UoWDep
from messaging_service.api.v1.schemas.message import (
    DeletedMessagesResponse,
    MessageIdsRequest,
    MessageResponse,
    SendMessageRequest,
    UnreadCountResponse,
)
from messaging_service.infrastructure.db.repositories._cursor import encode_cursor
from messaging_service.services import message_service, unread_service

router = APIRouter(prefix="/api/v1/conversations", tags=["messages"])


@router.get("/{conversation_id}/messages", response_model=list[MessageResponse])
async def list_messages(
    conversation_id: UUID,
    principal: CurrentPrincipal,
    uow: UoWDep,
    response: Response,
    cursor: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
) -> list[MessageResponse]:
    messages = await message_service.list_messages(
        conversation_id, principal, cursor, limit, uow,
    )
    if len(messages) == limit:
        last = messages[-1]
        response.headers["X-Next-Cursor"] = encode_cursor(last.sent_at, last.id)
    return [MessageResponse.model_validate(m, from_attributes=True) for m in messages]


@router.post("/{conversation_id}/messages", response_model=MessageResponse, status_code=201)
async def send_message(
    conversation_id: UUID,
    body: SendMessageRequest,
    principal: CurrentPrincipal,
    uow: UoWDep,
    response: Response,
) -> MessageResponse:
    msg, created = await message_service.send_message(
        conversation_id, principal, body.to_dto(), uow,
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return MessageResponse.model_validate(msg, from_attributes=True)


@router.post("/{conversation_id}/read", response_model=UnreadCountResponse)
async def mark_as_read(
    conversation_id: UUID,
    body: MessageIdsRequest,
    principal: CurrentPrincipal,
    uow: UoWDep,
) -> UnreadCountResponse:
    count = await message_service.mark_as_read(
        conversation_id, principal, body.message_ids, uow,
    )
    return UnreadCountResponse(conversation_id=conversation_id, unread_count=count)


@router.post("/{conversation_id}/messages/delete", response_model=DeletedMessagesResponse)
async def delete_messages(
    conversation_id: UUID,
    body: MessageIdsRequest,
    principal: CurrentPrincipal,
    uow: UoWDep,
) -> DeletedMessagesResponse:
    deleted = await message_service.delete_messages(
        conversation_id, principal, body.message_ids, uow,
    )
    return DeletedMessagesResponse(deleted=deleted)


@router.get("/{conversation_id}/unread", response_model=UnreadCountResponse)
async def unread_count(
    conversation_id: UUID,
    principal: CurrentPrincipal,
    uow: UoWDep,
) -> UnreadCountResponse:
    count = await unread_service.conversation_unread(conversation_id, principal, uow)
    return UnreadCountResponse(conversation_id=conversation_id, unread_count=count)
