from __future__ import annotations

import uuid
from datetime import datetime, timezone

import jwt
import pytest

from messaging_service.domain.value_objects.enums import ChatEvent
from messaging_service.infrastructure.auth.hs256_verifier import HS256Verifier
from messaging_service.infrastructure.bus.serializer import deserialize_event, serialize_event


def test_envelope_encodes_uuid_datetime_and_enum():
    cid = uuid.uuid4()
    at = datetime(2026, 3, 1, tzinfo=timezone.utc)

    raw = serialize_event(
        ChatEvent.MESSAGES_READ, {"conversation_id": cid, "read_at": at, "kind": ChatEvent.MESSAGES_READ},
    )
    event, data = deserialize_event(raw)

    assert event == "messages.read"
    assert data == {
        "conversation_id": str(cid),
        "read_at": at.isoformat(),
        "kind": "messages.read",
    }


def test_deserialize_rejects_non_envelope():
    with pytest.raises(ValueError):
        deserialize_event('{"type": "x"}')


@pytest.mark.asyncio
async def test_hs256_verifier_reads_string_subject():
    token = jwt.encode({"sub": "8f14e45f", "role": "member"}, "s3cret", algorithm="HS256")

    principal = await HS256Verifier("s3cret").verify(token)

    assert principal.user_id == "8f14e45f"
    assert principal.roles == ["member"]
    assert principal.principal_key == "user:8f14e45f"


@pytest.mark.asyncio
async def test_hs256_verifier_requires_subject():
    token = jwt.encode({"role": "member"}, "s3cret", algorithm="HS256")

    with pytest.raises(jwt.PyJWTError):
        await HS256Verifier("s3cret").verify(token)
