from __future__ import annotations

from fastapi import APIRouter

from messaging_service.api.deps import CurrentPrincipal, UoWDep
from messaging_service.api.v1.schemas.user import CanMessageResponse
from messaging_service.services import conversation_service

router = APIRouter(prefix="/api/v1/users", tags=["users"])


@router.get("/{user_id}/can-message", response_model=CanMessageResponse)
async def can_message(
    user_id: str,
    principal: CurrentPrincipal,
    uow: UoWDep,
) -> CanMessageResponse:
    decision = await conversation_service.can_direct_message(principal, user_id, uow)
    return CanMessageResponse(allowed=decision.allowed, reason=decision.reason)
