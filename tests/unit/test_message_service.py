from __future__ import annotations

import uuid
from datetime import timedelta

import pytest

from messaging_service.application.dto.message import SendMessageDTO
from messaging_service.application.dto.principal import Principal
from messaging_service.application.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from messaging_service.domain.value_objects.enums import ChatEvent, MessageType
from messaging_service.services import message_service, unread_service
from tests.conftest import T0, FakeUoW, make_conversation, make_message


def _setup() -> tuple[FakeUoW, uuid.UUID]:
    uow = FakeUoW()
    conv = uow.conversations.add(make_conversation("a1", "b2"))
    return uow, conv.id


@pytest.mark.asyncio
async def test_send_message_creates(alice, clock):
    uow, cid = _setup()

    msg, created = await message_service.send_message(
        cid, alice, SendMessageDTO(content="hello"), uow, clock,
    )

    assert created is True
    assert msg.sender_id == "a1"
    assert msg.sent_at == clock.now()
    assert uow._committed is True
    assert uow.conversations._store[cid].updated_at == msg.sent_at
    [event] = uow.outbox.of_type(ChatEvent.MESSAGE_INSERTED)
    assert event["topics"] == [f"messages:{cid}"]
    assert event["payload"]["message"]["id"] == str(msg.id)


@pytest.mark.asyncio
async def test_send_message_idempotent(alice, clock):
    uow, cid = _setup()
    message_id = uuid.uuid4()
    dto = SendMessageDTO(content="hello", message_id=message_id)

    first, created1 = await message_service.send_message(cid, alice, dto, uow, clock)
    second, created2 = await message_service.send_message(cid, alice, dto, uow, clock)

    assert created1 is True
    assert created2 is False
    assert first.id == second.id == message_id
    assert len(uow.messages._messages) == 1
    assert len(uow.outbox.of_type(ChatEvent.MESSAGE_INSERTED)) == 1


@pytest.mark.asyncio
async def test_send_message_reused_id_from_other_sender(alice, bob, clock):
    uow, cid = _setup()
    message_id = uuid.uuid4()
    await message_service.send_message(
        cid, alice, SendMessageDTO(content="hi", message_id=message_id), uow, clock,
    )

    with pytest.raises(ConflictError):
        await message_service.send_message(
            cid, bob, SendMessageDTO(content="hi", message_id=message_id), uow, clock,
        )


@pytest.mark.asyncio
async def test_redaction_survives_send_and_fetch(alice, bob, clock):
    uow, cid = _setup()
    text = "reach me on 555-123-4567 or me@example.com"

    sent, _ = await message_service.send_message(
        cid, alice, SendMessageDTO(content=text), uow, clock,
    )
    [fetched] = await message_service.list_messages(cid, bob, None, 50, uow)

    assert sent.content == "reach me on [redacted phone] or [redacted email]"
    assert fetched.content == sent.content


@pytest.mark.asyncio
async def test_sent_at_is_monotonic_within_conversation(alice, bob, clock):
    uow, cid = _setup()
    a, _ = await message_service.send_message(cid, alice, SendMessageDTO(content="1"), uow, clock)
    b, _ = await message_service.send_message(cid, bob, SendMessageDTO(content="2"), uow, clock)

    assert b.sent_at > a.sent_at
    page = await message_service.list_messages(cid, alice, None, 50, uow)
    assert [m.id for m in page] == [a.id, b.id]


@pytest.mark.asyncio
async def test_send_message_not_participant(clock):
    uow, cid = _setup()

    with pytest.raises(ForbiddenError):
        await message_service.send_message(
            cid, Principal(user_id="c3"), SendMessageDTO(content="hi"), uow, clock,
        )


@pytest.mark.asyncio
async def test_send_message_conversation_not_found(alice, clock):
    with pytest.raises(NotFoundError):
        await message_service.send_message(
            uuid.uuid4(), alice, SendMessageDTO(content="hi"), FakeUoW(), clock,
        )


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "dto",
    [
        SendMessageDTO(content="   "),
        SendMessageDTO(content="", message_type=MessageType.IMAGE),
        SendMessageDTO(content="clip", message_type=MessageType.VIDEO, metadata={}),
    ],
)
async def test_send_message_validation(alice, clock, dto):
    uow, cid = _setup()

    with pytest.raises(ValidationError):
        await message_service.send_message(cid, alice, dto, uow, clock)
    assert uow.messages._messages == []


@pytest.mark.asyncio
async def test_send_image_with_metadata(alice, clock):
    uow, cid = _setup()
    dto = SendMessageDTO(
        content="",
        message_type=MessageType.IMAGE,
        metadata={"image_url": "https://cdn.example.com/p.png"},
    )

    msg, created = await message_service.send_message(cid, alice, dto, uow, clock)

    assert created is True
    assert msg.message_type == MessageType.IMAGE
    assert msg.metadata == {"image_url": "https://cdn.example.com/p.png"}


@pytest.mark.asyncio
async def test_send_message_blocked(alice, clock):
    uow, cid = _setup()
    uow.relationships.block("b2", "a1")

    with pytest.raises(PermissionDeniedError):
        await message_service.send_message(cid, alice, SendMessageDTO(content="hi"), uow, clock)


@pytest.mark.asyncio
async def test_unread_formula_after_send_and_mark_read(alice, bob, clock):
    uow, cid = _setup()
    sent = []
    for text in ("one", "two", "three"):
        clock.advance(seconds=1)
        msg, _ = await message_service.send_message(
            cid, bob, SendMessageDTO(content=text), uow, clock,
        )
        sent.append(msg)
    await message_service.send_message(cid, alice, SendMessageDTO(content="mine"), uow, clock)

    assert await unread_service.unread_count(cid, "a1", uow) == 3
    assert await unread_service.unread_count(cid, "b2", uow) == 1

    remaining = await message_service.mark_as_read(
        cid, alice, [sent[0].id, sent[1].id, sent[0].id], uow, clock,
    )

    assert remaining == 1
    assert await unread_service.unread_count(cid, "b2", uow) == 1
    [event] = uow.outbox.of_type(ChatEvent.MESSAGES_READ)
    assert event["payload"]["message_ids"] == [str(sent[0].id), str(sent[1].id)]


@pytest.mark.asyncio
async def test_mark_as_read_empty_is_noop(alice, clock):
    uow, cid = _setup()
    uow.messages.add(make_message(conversation_id=cid, sender_id="b2"))

    remaining = await message_service.mark_as_read(cid, alice, [], uow, clock)

    assert remaining == 1
    assert uow._committed is False
    assert uow.outbox._records == []


@pytest.mark.asyncio
async def test_mark_as_read_scoped_to_conversation(alice, clock):
    uow, cid = _setup()
    other = uow.conversations.add(make_conversation("a1", "c3"))
    foreign = make_message(conversation_id=other.id, sender_id="c3")
    uow.messages.add(foreign)

    await message_service.mark_as_read(cid, alice, [foreign.id], uow, clock)

    assert uow.messages.by_id(foreign.id).read is False
    assert uow.outbox.of_type(ChatEvent.MESSAGES_READ) == []


@pytest.mark.asyncio
async def test_mark_as_read_sets_read_at(alice, clock):
    uow, cid = _setup()
    msg = make_message(conversation_id=cid, sender_id="b2", sent_at=T0 - timedelta(hours=1))
    uow.messages.add(msg)

    await message_service.mark_as_read(cid, alice, [msg.id], uow, clock)

    stored = uow.messages.by_id(msg.id)
    assert stored.read is True
    assert stored.read_at == clock.now()


@pytest.mark.asyncio
async def test_delete_messages_only_own(alice):
    uow, cid = _setup()
    mine = make_message(conversation_id=cid, sender_id="a1")
    theirs = make_message(conversation_id=cid, sender_id="b2")
    uow.messages.add(mine, theirs)

    removed = await message_service.delete_messages(cid, alice, [mine.id, theirs.id], uow)

    assert removed == [mine.id]
    assert [m.id for m in uow.messages._messages] == [theirs.id]
    [event] = uow.outbox.of_type(ChatEvent.MESSAGES_DELETED)
    assert event["payload"]["message_ids"] == [str(mine.id)]


@pytest.mark.asyncio
async def test_delete_messages_nothing_owned(alice):
    uow, cid = _setup()
    theirs = make_message(conversation_id=cid, sender_id="b2")
    uow.messages.add(theirs)

    removed = await message_service.delete_messages(cid, alice, [theirs.id], uow)

    assert removed == []
    assert uow.outbox._records == []
