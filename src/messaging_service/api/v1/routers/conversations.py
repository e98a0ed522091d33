from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Query, Response, status

from messaging_service.api.deps import CurrentPrincipal, UoWDep
from messaging_service.api.v1.schemas.conversation import (
    ConversationResponse,
    ConversationSummaryResponse,
    CreateConversationRequest,
    DirectConversationRequest,
    DirectConversationResponse,
    UnreadCountsResponse,
)
from messaging_service.application.exceptions import ValidationError
from messaging_service.services import conversation_service, unread_service

router = APIRouter(prefix="/api/v1/conversations", tags=["conversations"])


@router.get("", response_model=list[ConversationSummaryResponse])
async def list_conversations(
    principal: CurrentPrincipal,
    uow: UoWDep,
) -> list[ConversationSummaryResponse]:
    summaries = await conversation_service.list_conversations(principal, uow)
    return [ConversationSummaryResponse.from_summary(s) for s in summaries]


@router.post("", response_model=ConversationResponse, status_code=201)
async def create_conversation(
    body: CreateConversationRequest,
    principal: CurrentPrincipal,
    uow: UoWDep,
) -> ConversationResponse:
    conv = await conversation_service.create_conversation(principal, body.to_dto(), uow)
    return ConversationResponse.model_validate(conv, from_attributes=True)


@router.post("/direct", response_model=DirectConversationResponse)
async def get_or_create_direct_conversation(
    body: DirectConversationRequest,
    principal: CurrentPrincipal,
    uow: UoWDep,
    response: Response,
) -> DirectConversationResponse:
    conv, created = await conversation_service.get_or_create_direct_conversation(
        principal, body.user_id, uow,
    )
    if created:
        response.status_code = status.HTTP_201_CREATED
    data = ConversationResponse.model_validate(conv, from_attributes=True).model_dump()
    return DirectConversationResponse(**data, created=created)


# Declared before /{conversation_id} so "unread" is not parsed as an id.
@router.get("/unread", response_model=UnreadCountsResponse)
async def unread_counts(
    principal: CurrentPrincipal,
    uow: UoWDep,
    ids: str = Query("", description="Comma-separated conversation ids"),
) -> UnreadCountsResponse:
    try:
        conversation_ids = [UUID(raw) for raw in ids.split(",") if raw.strip()]
    except ValueError as exc:
        raise ValidationError("ids must be comma-separated UUIDs") from exc
    counts = await unread_service.member_unread_counts(conversation_ids, principal, uow)
    return UnreadCountsResponse(counts=counts)


@router.get("/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: UUID,
    principal: CurrentPrincipal,
    uow: UoWDep,
) -> ConversationResponse:
    conv = await conversation_service.get_conversation(conversation_id, principal, uow)
    return ConversationResponse.model_validate(conv, from_attributes=True)


@router.delete("/{conversation_id}", status_code=204)
async def delete_conversation(
    conversation_id: UUID,
    principal: CurrentPrincipal,
    uow: UoWDep,
) -> Response:
    await conversation_service.delete_conversation(conversation_id, principal, uow)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
