from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from pydantic import ValidationError as PayloadError

from messaging_service.application.dto.message import SendMessageDTO
from messaging_service.domain.value_objects.enums import ChatEvent
from messaging_service.domain.value_objects.topics import conversation_topic, user_status_topic
from messaging_service.realtime.conversation_store import LiveConversationStore
from messaging_service.realtime.events import PresenceUpdatedPayload
from messaging_service.services import presence_service
from tests.conftest import (
    T0,
    FakeUoW,
    GatedBus,
    InProcessBackend,
    make_conversation,
    make_profile,
)


@pytest.fixture
def uow():
    uow = FakeUoW()
    uow.users.add(make_profile("b2"), make_profile("c3"))
    return uow


@pytest.fixture
def with_bob(uow):
    return uow.conversations.add(make_conversation("a1", "b2", updated_at=T0))


@pytest.fixture
def with_carol(uow):
    return uow.conversations.add(
        make_conversation("c3", "a1", updated_at=T0 - timedelta(hours=1))
    )


@pytest.fixture
def backends(uow, bus, clock):
    return {uid: InProcessBackend(uid, uow, bus, clock) for uid in ("a1", "b2", "c3", "d4")}


@pytest.fixture
def store(backends, bus):
    return LiveConversationStore("a1", backends["a1"], bus)


@pytest.mark.asyncio
async def test_load_subscribes_per_conversation(store, bus, with_bob, with_carol):
    loaded = await store.load()

    assert [s.id for s in loaded] == [with_bob.id, with_carol.id]
    assert bus.subscribers(conversation_topic(with_bob.id)) == 1
    assert bus.subscribers(conversation_topic(with_carol.id)) == 1
    assert bus.subscribers(user_status_topic("a1")) == 1
    await store.close()


@pytest.mark.asyncio
async def test_insert_from_peer_bumps_and_counts(store, backends, bus, clock, with_bob, with_carol):
    await store.load()
    clock.advance(hours=2)

    sent = await backends["c3"].send_message(with_carol.id, SendMessageDTO(content="up?"))
    await bus.drain()

    summary = store.get(with_carol.id)
    assert summary.last_message.id == sent.id
    assert summary.unread_count == 1
    assert summary.updated_at == sent.sent_at
    assert [s.id for s in store.conversations] == [with_carol.id, with_bob.id]
    assert store.total_unread == 1
    await store.close()


@pytest.mark.asyncio
async def test_replayed_insert_counted_once(store, backends, bus, with_bob):
    await store.load()
    await backends["b2"].send_message(with_bob.id, SendMessageDTO(content="hi"))
    await bus.drain()

    [(topic, event, payload)] = [
        p for p in bus.published if p[1] == ChatEvent.MESSAGE_INSERTED
    ]
    await bus.deliver(topic, event, payload)
    await bus.drain()

    assert store.get(with_bob.id).unread_count == 1
    await store.close()


@pytest.mark.asyncio
async def test_own_message_not_unread(store, backends, bus, with_bob):
    await store.load()

    sent = await backends["a1"].send_message(with_bob.id, SendMessageDTO(content="hi"))
    await bus.drain()

    summary = store.get(with_bob.id)
    assert summary.last_message.id == sent.id
    assert summary.unread_count == 0
    await store.close()


@pytest.mark.asyncio
async def test_read_event_recomputes_unread(store, backends, bus, with_bob):
    await store.load()
    first = await backends["b2"].send_message(with_bob.id, SendMessageDTO(content="1"))
    await backends["b2"].send_message(with_bob.id, SendMessageDTO(content="2"))
    await bus.drain()
    assert store.get(with_bob.id).unread_count == 2

    await backends["a1"].mark_as_read(with_bob.id, [first.id])
    await bus.drain()

    assert store.get(with_bob.id).unread_count == 1
    await store.close()


@pytest.mark.asyncio
async def test_presence_patches_roster_entry(store, backends, bus, clock, uow, with_bob, with_carol):
    await store.load()
    before = store.get(with_carol.id)

    await presence_service.set_offline("b2", uow, clock)
    await backends["b2"].publish_outbox()
    await bus.drain()

    [entry] = store.get(with_bob.id).participant_profiles
    assert entry.id == "b2"
    assert entry.is_online is False
    assert entry.last_seen == clock.now()
    assert entry.display_name == "B2"
    assert store.get(with_carol.id) == before
    await store.close()


@pytest.mark.asyncio
async def test_offline_presence_without_last_seen_is_ignored(store, bus, with_bob):
    with pytest.raises(PayloadError):
        PresenceUpdatedPayload.model_validate({"user_id": "b2", "is_online": False})

    await store.load()
    before = store.get(with_bob.id)

    await bus.deliver(
        conversation_topic(with_bob.id),
        ChatEvent.PRESENCE_UPDATED,
        {"user_id": "b2", "is_online": False},
    )
    await bus.drain()

    assert store.get(with_bob.id) == before
    assert bus.subscribers(conversation_topic(with_bob.id)) == 1
    await store.close()


@pytest.mark.asyncio
async def test_remote_delete_forgets_conversation(store, backends, bus, with_bob, with_carol):
    await store.load()

    await backends["b2"].delete_conversation(with_bob.id)
    await bus.drain()

    assert store.get(with_bob.id) is None
    assert [s.id for s in store.conversations] == [with_carol.id]
    assert bus.subscribers(conversation_topic(with_bob.id)) == 0
    await store.close()


@pytest.mark.asyncio
async def test_created_elsewhere_triggers_reload(store, backends, bus, with_bob):
    await store.load()

    created = await backends["d4"].get_or_create_direct_conversation("a1")
    await bus.drain()

    assert store.get(created.id) is not None
    assert bus.subscribers(conversation_topic(created.id)) == 1
    await store.close()


@pytest.mark.asyncio
async def test_get_or_create_direct_through_store(store, backends, bus, with_bob):
    await store.load()

    existing = await store.get_or_create_direct_conversation("b2")
    created = await store.get_or_create_direct_conversation("c3")

    assert existing.id == with_bob.id
    assert store.get(created.id) is not None
    await store.close()


@pytest.mark.asyncio
async def test_delete_conversation_through_store(store, bus, uow, with_bob):
    await store.load()

    await store.delete_conversation(with_bob.id)

    assert store.conversations == []
    assert with_bob.id not in uow.conversations._store
    assert bus.subscribers(conversation_topic(with_bob.id)) == 0
    await store.close()


@pytest.mark.asyncio
async def test_close_detaches_everything(store, backends, bus, with_bob, with_carol):
    changes = []
    store._on_change = lambda: changes.append(1)
    await store.load()
    changes.clear()

    await store.close()
    await backends["b2"].send_message(with_bob.id, SendMessageDTO(content="late"))
    await bus.drain()

    assert changes == []
    assert bus.subscribers(conversation_topic(with_bob.id)) == 0
    assert bus.subscribers(user_status_topic("a1")) == 0


@pytest.mark.asyncio
async def test_overlapping_loads_subscribe_once(backends, bus, with_bob):
    store = LiveConversationStore("a1", backends["a1"], GatedBus(bus))

    await asyncio.gather(store.load(), store.load())

    assert bus.subscribers(conversation_topic(with_bob.id)) == 1
    assert bus.subscribers(user_status_topic("a1")) == 1
    await store.close()
    assert bus.subscribers(conversation_topic(with_bob.id)) == 0
    assert bus.subscribers(user_status_topic("a1")) == 0
