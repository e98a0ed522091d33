"""Deterministic pub/sub topic names shared by the service and its clients."""
from __future__ import annotations

from uuid import UUID

from messaging_service.domain.value_objects.enums import CallRole


def conversation_topic(conversation_id: UUID | str) -> str:
    return f"messages:{conversation_id}"


def user_status_topic(user_id: str) -> str:
    return f"user_status:{user_id}"


def live_event_topic(live_event_id: str) -> str:
    return f"live_messages:{live_event_id}"


def ordered_pair(a: str, b: str) -> tuple[str, str]:
    return (a, b) if a <= b else (b, a)


def call_room_name(a: str, b: str) -> str:
    """Room shared by both sides of a call: ``call_room_name(a, b) == call_room_name(b, a)``."""
    low, high = ordered_pair(a, b)
    return f"call:{low}:{high}"


def assign_call_role(self_id: str, peer_id: str) -> CallRole:
    """Tie-break without negotiation: the lesser id hosts and emits the offer.

    Plain string comparison, so ``"10" < "9"``; both sides only need to
    agree, not to order ids numerically.
    """
    if self_id == peer_id:
        raise ValueError("cannot call yourself")
    return CallRole.HOST if self_id < peer_id else CallRole.CALLER
