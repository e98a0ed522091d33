from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter

from messaging_service.api.deps import CurrentPrincipal, UoWDep
from messaging_service.api.v1.schemas.user import PresenceResponse
from messaging_service.application.exceptions import NotFoundError
from messaging_service.domain.entities.presence import PresenceRecord
from messaging_service.services import presence_service

router = APIRouter(prefix="/api/v1/presence", tags=["presence"])


def _response(record: PresenceRecord) -> PresenceResponse:
    return PresenceResponse(
        user_id=record.user_id,
        is_online=record.is_online,
        last_seen=record.last_seen,
        label=presence_service.describe_presence(record, datetime.now(timezone.utc)),
    )


@router.put("/online", response_model=PresenceResponse)
async def set_online(principal: CurrentPrincipal, uow: UoWDep) -> PresenceResponse:
    record = await presence_service.set_online(principal.user_id, uow)
    return _response(record)


@router.put("/offline", response_model=PresenceResponse)
async def set_offline(principal: CurrentPrincipal, uow: UoWDep) -> PresenceResponse:
    record = await presence_service.set_offline(principal.user_id, uow)
    return _response(record)


@router.get("/{user_id}", response_model=PresenceResponse)
async def get_presence(
    user_id: str,
    principal: CurrentPrincipal,
    uow: UoWDep,
) -> PresenceResponse:
    record = await presence_service.get_presence(user_id, uow)
    if record is None:
        raise NotFoundError("User not found")
    return _response(record)
