from __future__ import annotations

import asyncio
import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PayloadError

from messaging_service.api.deps import get_verifier
from messaging_service.api.v1.schemas.message import MessageResponse, SendMessageRequest
from messaging_service.application.dto.principal import Principal
from messaging_service.application.exceptions import AppError, PermissionDeniedError
from messaging_service.config import settings
from messaging_service.domain.value_objects.enums import ChatEvent, SignalType
from messaging_service.infrastructure.bus.redis_pubsub import RedisPubSubPublisher
from messaging_service.infrastructure.db.session import AsyncSessionLocal
from messaging_service.infrastructure.db.uow import SqlAlchemyUoW
from messaging_service.infrastructure.ws.manager import ConnectionManager
from messaging_service.infrastructure.ws.protocol import WsInbound, WsOutbound
from messaging_service.services import message_service

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])

manager = ConnectionManager()

_SIGNALS = {s.value for s in SignalType}


def get_manager() -> ConnectionManager:
    return manager


async def _authenticate(token: str) -> Principal | None:
    try:
        verifier = get_verifier()
        return await verifier.verify(token)
    except Exception:
        logger.debug("WS auth failed", exc_info=True)
        return None


async def _send(ws: WebSocket, type_: str, data: dict[str, Any], topic: str | None = None) -> None:
    await ws.send_text(WsOutbound(type=type_, topic=topic, data=data).model_dump_json())


async def _error(ws: WebSocket, code: str, **extra: Any) -> None:
    await _send(ws, "error", {"code": code, **extra})


@router.websocket("/ws/realtime")
async def ws_realtime(
    websocket: WebSocket,
    token: str = Query(...),
) -> None:
    principal = await _authenticate(token)
    if principal is None:
        await websocket.close(code=4001, reason="Authentication failed")
        return

    pkey = principal.principal_key
    await manager.connect(websocket, pkey)

    heartbeat_task = asyncio.create_task(
        _heartbeat(websocket), name=f"ws-heartbeat-{pkey}",
    )
    try:
        await _read_loop(websocket, principal)
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("WS error for %s", pkey)
    finally:
        heartbeat_task.cancel()
        manager.disconnect(websocket, pkey)


async def _heartbeat(ws: WebSocket) -> None:
    interval = settings.WS_HEARTBEAT_SECONDS
    try:
        while True:
            await asyncio.sleep(interval)
            await _send(ws, "pong", {})
    except asyncio.CancelledError:
        pass
    except Exception:
        logger.debug("Heartbeat stopped", exc_info=True)


async def _read_loop(ws: WebSocket, principal: Principal) -> None:
    pkey = principal.principal_key
    while True:
        raw = await ws.receive_text()
        try:
            msg = WsInbound.model_validate_json(raw)
        except PayloadError:
            await _error(ws, "invalid_payload")
            continue

        if msg.type == "ping":
            await _send(ws, "pong", {})

        elif msg.type == "subscribe":
            topic = str(msg.data.get("topic", ""))
            if not await may_subscribe(principal, topic):
                await _error(ws, "forbidden", topic=topic)
                continue
            manager.subscribe(pkey, topic)
            await _send(ws, "subscribed", {}, topic=topic)

        elif msg.type == "unsubscribe":
            manager.unsubscribe(pkey, str(msg.data.get("topic", "")))

        elif msg.type == "publish":
            await _handle_publish(ws, principal, msg.data)

        elif msg.type == "message.send":
            await _handle_send(ws, principal, msg.data)

        elif msg.type == "mark_read":
            await _handle_mark_read(ws, principal, msg.data)

        else:
            await _error(ws, "unknown_type", type=msg.type)


async def may_subscribe(principal: Principal, topic: str) -> bool:
    kind, _, rest = topic.partition(":")
    if not rest:
        return False
    if kind == "user_status":
        # Carries conversation.created for this user only.
        return rest == principal.user_id
    if kind == "live_messages":
        return True
    if kind == "call":
        return principal.user_id in rest.split(":")
    if kind == "messages":
        try:
            conversation_id = UUID(rest)
        except ValueError:
            return False
        async with AsyncSessionLocal() as session:
            uow = SqlAlchemyUoW(session)
            return await uow.participants.is_participant(conversation_id, principal.user_id)
    return False


def _may_publish(topic: str, event: str) -> bool:
    if topic.startswith("call:"):
        return event in _SIGNALS
    if topic.startswith("live_messages:"):
        return event == ChatEvent.MESSAGE_INSERTED
    return False


async def _handle_publish(ws: WebSocket, principal: Principal, data: dict[str, Any]) -> None:
    """Relay a call signal or a live-event chat line; ``from`` is always the caller."""
    topic = str(data.get("topic", ""))
    event = str(data.get("event", ""))
    if not _may_publish(topic, event):
        await _error(ws, "invalid_data", detail="only call signals and live-event messages may be published")
        return
    if not await may_subscribe(principal, topic):
        await _error(ws, "forbidden", topic=topic)
        return
    payload = dict(data.get("data") or {})
    payload["from"] = principal.user_id
    publisher = RedisPubSubPublisher(ws.app.state.redis)
    await publisher.publish(topic, event, payload)


async def _handle_send(ws: WebSocket, principal: Principal, data: dict[str, Any]) -> None:
    try:
        conversation_id = UUID(str(data["conversation_id"]))
        body = SendMessageRequest.model_validate(data)
    except (KeyError, ValueError, PayloadError) as exc:
        await _error(ws, "invalid_data", detail=str(exc))
        return

    async with AsyncSessionLocal() as session:
        uow = SqlAlchemyUoW(session)
        try:
            msg, created = await message_service.send_message(
                conversation_id, principal, body.to_dto(), uow,
            )
        except PermissionDeniedError as exc:
            await _error(ws, "send_failed", detail=exc.detail, reason=exc.reason)
            return
        except AppError as exc:
            await _error(ws, "send_failed", detail=exc.detail)
            return

    # Fan-out to subscribers happens through the outbox; this only acks the sender.
    ack = MessageResponse.model_validate(msg, from_attributes=True).model_dump(mode="json")
    await _send(ws, "message.ack", {"created": created, "message": ack})


async def _handle_mark_read(ws: WebSocket, principal: Principal, data: dict[str, Any]) -> None:
    try:
        conversation_id = UUID(str(data["conversation_id"]))
        message_ids = [UUID(str(m)) for m in data.get("message_ids", [])]
    except (KeyError, ValueError, TypeError):
        await _error(ws, "invalid_data")
        return

    async with AsyncSessionLocal() as session:
        uow = SqlAlchemyUoW(session)
        try:
            count = await message_service.mark_as_read(
                conversation_id, principal, message_ids, uow,
            )
        except AppError as exc:
            await _error(ws, "mark_read_failed", detail=exc.detail)
            return
    await _send(ws, "unread", {"conversation_id": str(conversation_id), "unread_count": count})
