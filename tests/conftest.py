"""Shared test fixtures."""
from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Collection
from uuid import UUID

import pytest

from messaging_service.application.dto.conversation import ConversationSummary
from messaging_service.application.dto.message import SendMessageDTO
from messaging_service.application.dto.permission import PermissionDecision
from messaging_service.application.dto.principal import Principal
from messaging_service.application.exceptions import MediaUnavailableError, TransientIOError
from messaging_service.application.ports.bus import EventHandler, Unsubscribe, matches
from messaging_service.application.repositories.outbox import OutboxRecord
from messaging_service.domain.entities.call import IceCandidate, SessionDescription
from messaging_service.domain.entities.conversation import Conversation
from messaging_service.domain.entities.message import Message
from messaging_service.domain.entities.presence import PresenceRecord
from messaging_service.domain.entities.relations import BlockRelation, BuddyMatch
from messaging_service.domain.entities.user import UserProfile
from messaging_service.domain.value_objects.enums import MessageType
from messaging_service.infrastructure.db.repositories._cursor import decode_cursor, encode_cursor
from messaging_service.services import (
    conversation_service,
    message_service,
    unread_service,
)
from messaging_service.workers.outbox_worker import process_batch

logger = logging.getLogger(__name__)

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def alice() -> Principal:
    return Principal(user_id="a1")


@pytest.fixture
def bob() -> Principal:
    return Principal(user_id="b2")


class FixedClock:
    def __init__(self, now: datetime = T0) -> None:
        self._now = now

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs: float) -> datetime:
        self._now += timedelta(**kwargs)
        return self._now


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


def make_conversation(
    *participants: str,
    conversation_id: UUID | None = None,
    is_group: bool = False,
    group_name: str | None = None,
    updated_at: datetime = T0,
) -> Conversation:
    return Conversation(
        id=conversation_id or uuid.uuid4(),
        participants=participants or ("a1", "b2"),
        is_group=is_group,
        group_name=group_name,
        group_avatar=None,
        created_at=updated_at,
        updated_at=updated_at,
    )


def make_message(
    *,
    conversation_id: UUID | None = None,
    sender_id: str = "a1",
    content: str = "hello",
    sent_at: datetime = T0,
    read: bool = False,
    message_id: UUID | None = None,
) -> Message:
    return Message(
        id=message_id or uuid.uuid4(),
        conversation_id=conversation_id or uuid.uuid4(),
        sender_id=sender_id,
        content=content,
        message_type=MessageType.TEXT,
        sent_at=sent_at,
        read=read,
        read_at=sent_at if read else None,
    )


def make_profile(
    user_id: str,
    *,
    display_name: str | None = None,
    allow_direct_messages: bool = True,
    updated_at: datetime = T0 - timedelta(days=1),
) -> UserProfile:
    return UserProfile(
        id=user_id,
        display_name=display_name or user_id.upper(),
        handle=user_id,
        avatar_url=None,
        verified=False,
        show_profile=True,
        appear_in_search=True,
        allow_direct_messages=allow_direct_messages,
        updated_at=updated_at,
    )


# --- repositories ----------------------------------------------------------


@dataclass
class FakeConversationReader:
    _store: dict[UUID, Conversation] = field(default_factory=dict)
    # Extra rows returned by list_for_user, like a join that repeats a row.
    _duplicate_rows: list[Conversation] = field(default_factory=list)

    def add(self, conversation: Conversation) -> Conversation:
        self._store[conversation.id] = conversation
        return conversation

    async def get_by_id(self, conversation_id: UUID) -> Conversation | None:
        return self._store.get(conversation_id)

    async def list_for_user(self, user_id: str) -> list[Conversation]:
        rows = [c for c in self._store.values() if user_id in c.participants]
        rows.extend(c for c in self._duplicate_rows if user_id in c.participants)
        return rows

    async def find_direct(self, a: str, b: str) -> Conversation | None:
        for c in self._store.values():
            if c.is_direct_between(a, b):
                return c
        return None


@dataclass
class FakeConversationWriter:
    _reader: FakeConversationReader
    _log: list[str]

    async def create(self, conversation: Conversation) -> Conversation:
        self._reader._store[conversation.id] = conversation
        self._log.append(f"create_conversation:{conversation.id}")
        return conversation

    async def touch_updated_at(self, conversation_id: UUID, ts: datetime) -> None:
        conv = self._reader._store[conversation_id]
        self._reader._store[conversation_id] = replace(conv, updated_at=ts)

    async def delete(self, conversation_id: UUID) -> None:
        self._reader._store.pop(conversation_id, None)
        self._log.append(f"delete_conversation:{conversation_id}")


@dataclass
class FakeParticipantReader:
    _conversations: FakeConversationReader

    async def is_participant(self, conversation_id: UUID, user_id: str) -> bool:
        conv = self._conversations._store.get(conversation_id)
        return conv is not None and user_id in conv.participants

    async def conversation_ids_for_user(self, user_id: str) -> list[UUID]:
        return [c.id for c in self._conversations._store.values() if user_id in c.participants]


@dataclass
class FakeMessageReader:
    _messages: list[Message] = field(default_factory=list)
    fail_batch: bool = False
    batch_calls: int = 0
    single_calls: int = 0

    def add(self, *messages: Message) -> None:
        self._messages.extend(messages)

    def by_id(self, message_id: UUID) -> Message | None:
        return next((m for m in self._messages if m.id == message_id), None)

    async def list_messages(
        self,
        conversation_id: UUID,
        *,
        cursor: str | None = None,
        limit: int = 50,
    ) -> list[Message]:
        rows = sorted(
            (m for m in self._messages if m.conversation_id == conversation_id),
            key=lambda m: m.sort_key,
        )
        if cursor:
            ts, mid = decode_cursor(cursor)
            rows = [m for m in rows if m.sort_key > (ts, str(mid))]
        return rows[:limit]

    async def latest_for_conversations(self, conversation_ids: list[UUID]) -> dict[UUID, Message]:
        latest: dict[UUID, Message] = {}
        for m in self._messages:
            if m.conversation_id in conversation_ids:
                current = latest.get(m.conversation_id)
                if current is None or m.sort_key > current.sort_key:
                    latest[m.conversation_id] = m
        return latest

    async def count_unread(self, conversation_id: UUID, user_id: str) -> int:
        self.single_calls += 1
        return sum(
            1 for m in self._messages
            if m.conversation_id == conversation_id and m.is_unread_for(user_id)
        )

    async def count_unread_batch(self, conversation_ids: list[UUID], user_id: str) -> dict[UUID, int]:
        self.batch_calls += 1
        if self.fail_batch:
            raise TransientIOError("batch query failed")
        counts: dict[UUID, int] = {}
        for m in self._messages:
            if m.conversation_id in conversation_ids and m.is_unread_for(user_id):
                counts[m.conversation_id] = counts.get(m.conversation_id, 0) + 1
        return counts


@dataclass
class FakeMessageWriter:
    _reader: FakeMessageReader
    _log: list[str]

    async def create_if_not_exists(self, message: Message) -> tuple[Message, bool]:
        existing = self._reader.by_id(message.id)
        if existing is not None:
            return existing, False
        self._reader._messages.append(message)
        return message, True

    async def mark_read(self, conversation_id: UUID, message_ids: list[UUID], read_at: datetime) -> int:
        changed = 0
        for i, m in enumerate(self._reader._messages):
            if m.conversation_id == conversation_id and m.id in message_ids and not m.read:
                self._reader._messages[i] = replace(m, read=True, read_at=read_at)
                changed += 1
        return changed

    async def delete_many(self, conversation_id: UUID, message_ids: list[UUID], sender_id: str) -> list[UUID]:
        removed = [
            m.id for m in self._reader._messages
            if m.conversation_id == conversation_id and m.id in message_ids and m.sender_id == sender_id
        ]
        self._reader._messages = [m for m in self._reader._messages if m.id not in removed]
        return removed

    async def delete_for_conversation(self, conversation_id: UUID) -> int:
        before = len(self._reader._messages)
        self._reader._messages = [
            m for m in self._reader._messages if m.conversation_id != conversation_id
        ]
        self._log.append(f"delete_messages:{conversation_id}")
        return before - len(self._reader._messages)


@dataclass
class FakeUserReader:
    _profiles: dict[str, UserProfile] = field(default_factory=dict)

    def add(self, *profiles: UserProfile) -> None:
        for p in profiles:
            self._profiles[p.id] = p

    async def get_profile(self, user_id: str) -> UserProfile | None:
        return self._profiles.get(user_id)

    async def get_profiles(self, user_ids: list[str]) -> dict[str, UserProfile]:
        return {uid: self._profiles[uid] for uid in user_ids if uid in self._profiles}


@dataclass
class FakeRelationshipReader:
    _blocks: list[BlockRelation] = field(default_factory=list)
    _buddies: list[BuddyMatch] = field(default_factory=list)

    def block(self, blocker: str, blocked: str) -> None:
        self._blocks.append(BlockRelation(blocker_id=blocker, blocked_id=blocked, created_at=T0))

    def match(self, a: str, b: str) -> None:
        self._buddies.append(BuddyMatch.between(a, b, T0))

    async def block_exists_between(self, a: str, b: str) -> bool:
        return any(rel.involves(a, b) for rel in self._blocks)

    async def buddy_match_exists(self, a: str, b: str) -> bool:
        return any(m.involves(a, b) for m in self._buddies)


@dataclass
class FakePresenceStore:
    _records: dict[str, PresenceRecord] = field(default_factory=dict)
    upserts: int = 0

    async def get(self, user_id: str) -> PresenceRecord | None:
        return self._records.get(user_id)

    async def get_many(self, user_ids: list[str]) -> dict[str, PresenceRecord]:
        return {uid: self._records[uid] for uid in user_ids if uid in self._records}

    async def upsert(self, record: PresenceRecord) -> None:
        self.upserts += 1
        self._records[record.user_id] = record


@dataclass
class FakeOutboxWriter:
    _records: list[dict[str, Any]] = field(default_factory=list)

    async def add(self, event_type: str, payload: dict[str, Any], topics: list[str]) -> None:
        self._records.append({"event_type": event_type, "payload": payload, "topics": list(topics)})

    async def fetch_pending(self, batch_size: int) -> list[OutboxRecord]:
        pending = [
            OutboxRecord(
                id=i,
                event_type=r["event_type"],
                payload=r["payload"],
                topics=r["topics"],
                attempts=r.get("attempts", 0),
            )
            for i, r in enumerate(self._records)
            if r.get("status", "pending") == "pending"
        ]
        return pending[:batch_size]

    async def mark_sent(self, ids: list[int]) -> None:
        for i in ids:
            self._records[i]["status"] = "sent"

    async def mark_failed(self, record_id: int, next_retry_at: datetime) -> None:
        record = self._records[record_id]
        record["attempts"] = record.get("attempts", 0) + 1
        record["next_retry_at"] = next_retry_at

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [r for r in self._records if r["event_type"] == event_type]


@dataclass
class FakeUoW:
    """In-memory UoW for unit tests."""
    conversations: FakeConversationReader = field(default_factory=FakeConversationReader)
    messages: FakeMessageReader = field(default_factory=FakeMessageReader)
    users: FakeUserReader = field(default_factory=FakeUserReader)
    relationships: FakeRelationshipReader = field(default_factory=FakeRelationshipReader)
    presence: FakePresenceStore = field(default_factory=FakePresenceStore)
    outbox: FakeOutboxWriter = field(default_factory=FakeOutboxWriter)
    log: list[str] = field(default_factory=list)
    commits: int = 0

    def __post_init__(self) -> None:
        self.conversations_w = FakeConversationWriter(self.conversations, self.log)
        self.participants = FakeParticipantReader(self.conversations)
        self.messages_w = FakeMessageWriter(self.messages, self.log)
        self.presence_w = self.presence

    @property
    def _committed(self) -> bool:
        return self.commits > 0

    async def flush(self) -> None:
        pass

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        pass


# --- pub/sub ---------------------------------------------------------------


class InMemoryChannel:
    """Queue plus listener task per channel, like one Redis pubsub connection."""

    def __init__(self, bus: InMemoryBus, topic: str) -> None:
        self.topic = topic
        self._bus = bus
        self._handlers: list[tuple[Collection[str] | None, EventHandler]] = []
        self._queue: asyncio.Queue[tuple[str, dict[str, Any]]] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self.closed = False

    @property
    def active(self) -> bool:
        return self._task is not None and not self.closed

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        await self._bus.deliver(self.topic, str(event_type), payload)

    async def subscribe(
        self,
        event_filter: Collection[str] | None,
        handler: EventHandler,
    ) -> Unsubscribe:
        if self.closed:
            raise RuntimeError(f"channel {self.topic} is closed")
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run())
        entry = (event_filter, handler)
        self._handlers.append(entry)

        def unsubscribe() -> None:
            if entry in self._handlers:
                self._handlers.remove(entry)

        return unsubscribe

    def enqueue(self, event_type: str, payload: dict[str, Any]) -> None:
        self._queue.put_nowait((event_type, copy.deepcopy(payload)))

    @property
    def busy(self) -> bool:
        return self._queue._unfinished_tasks > 0  # type: ignore[attr-defined]

    async def join(self) -> None:
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            event_type, payload = await self._queue.get()
            try:
                for entry in list(self._handlers):
                    if entry not in self._handlers:
                        continue
                    event_filter, handler = entry
                    if matches(event_filter, event_type):
                        try:
                            await handler(event_type, payload)
                        except Exception:
                            logger.exception("handler failed on %s", self.topic)
            finally:
                self._queue.task_done()

    async def close(self) -> None:
        self.closed = True
        self._handlers.clear()
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()


class InMemoryBus:
    """ChannelFactory whose channels echo publishes back to every subscriber, the publisher included."""

    def __init__(self) -> None:
        self.channels: list[InMemoryChannel] = []
        self.published: list[tuple[str, str, dict[str, Any]]] = []

    def channel(self, topic: str) -> InMemoryChannel:
        ch = InMemoryChannel(self, topic)
        self.channels.append(ch)
        return ch

    async def deliver(self, topic: str, event_type: str, payload: dict[str, Any]) -> None:
        self.published.append((topic, event_type, copy.deepcopy(payload)))
        for ch in list(self.channels):
            if ch.topic == topic and ch.active:
                ch.enqueue(event_type, payload)

    async def publish(self, channel: str, event_type: str, payload: dict[str, Any]) -> None:
        """EventPublisher side, as used by the outbox worker."""
        await self.deliver(channel, event_type, payload)

    def subscribers(self, topic: str) -> int:
        return sum(ch.handler_count for ch in self.channels if ch.topic == topic and ch.active)

    def signals(self, topic: str, event_type: str, sender: str | None = None) -> list[dict[str, Any]]:
        return [
            payload for t, e, payload in self.published
            if t == topic and e == event_type and (sender is None or payload.get("from") == sender)
        ]

    async def drain(self) -> None:
        """Run until no channel has undelivered events and spawned tasks have settled."""
        for _ in range(200):
            busy = [ch for ch in self.channels if ch.active and ch.busy]
            if busy:
                for ch in busy:
                    await ch.join()
                continue
            for _ in range(5):
                await asyncio.sleep(0)
            if not any(ch.active and ch.busy for ch in self.channels):
                return
        raise AssertionError("bus did not settle")


class GatedChannel:
    """InMemoryChannel whose subscribe waits for ``confirmed``, like a Redis round trip."""

    def __init__(self, inner: InMemoryChannel, confirmed: asyncio.Event) -> None:
        self.topic = inner.topic
        self.inner = inner
        self._confirmed = confirmed

    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        await self.inner.publish(event_type, payload)

    async def subscribe(
        self,
        event_filter: Collection[str] | None,
        handler: EventHandler,
    ) -> Unsubscribe:
        await self._confirmed.wait()
        await asyncio.sleep(0)
        return await self.inner.subscribe(event_filter, handler)

    async def close(self) -> None:
        await self.inner.close()


class GatedBus:
    """ChannelFactory over an InMemoryBus; clear ``confirmed`` to hold subscriptions."""

    def __init__(self, bus: InMemoryBus) -> None:
        self.bus = bus
        self.confirmed = asyncio.Event()
        self.confirmed.set()

    def channel(self, topic: str) -> GatedChannel:
        return GatedChannel(self.bus.channel(topic), self.confirmed)


@pytest.fixture
def bus() -> InMemoryBus:
    return InMemoryBus()


# --- media -----------------------------------------------------------------


class FakeStream:
    def __init__(self) -> None:
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class FakeMediaDevices:
    def __init__(self, *, fail: bool = False, delay: float = 0.0) -> None:
        self.fail = fail
        self.delay = delay
        self.requests: list[tuple[bool, bool]] = []
        self.streams: list[FakeStream] = []

    async def acquire(self, *, audio: bool, video: bool) -> FakeStream:
        self.requests.append((audio, video))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise MediaUnavailableError("permission denied")
        stream = FakeStream()
        self.streams.append(stream)
        return stream


class FakePeerConnection:
    def __init__(self, name: str) -> None:
        self.name = name
        self.local: SessionDescription | None = None
        self.remote: SessionDescription | None = None
        self.candidates: list[IceCandidate] = []
        self.streams: list[FakeStream] = []
        self.closed = False
        self._ice_cb = None
        self._track_cb = None

    def add_stream(self, stream: FakeStream) -> None:
        self.streams.append(stream)

    def on_ice_candidate(self, callback) -> None:
        self._ice_cb = callback

    def on_track(self, callback) -> None:
        self._track_cb = callback

    async def create_offer(self) -> SessionDescription:
        return SessionDescription(type="offer", sdp=f"v=0 offer {self.name}")

    async def create_answer(self) -> SessionDescription:
        if self.remote is None:
            raise RuntimeError("no remote offer")
        return SessionDescription(type="answer", sdp=f"v=0 answer {self.name}")

    async def set_local_description(self, description: SessionDescription) -> None:
        self.local = description

    async def set_remote_description(self, description: SessionDescription) -> None:
        self.remote = description

    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        # Real peer connections reject candidates before the remote description.
        if self.remote is None:
            raise RuntimeError("remote description not set")
        self.candidates.append(candidate)

    async def close(self) -> None:
        self.closed = True

    async def emit_ice(self, candidate: IceCandidate) -> None:
        assert self._ice_cb is not None
        await self._ice_cb(candidate)

    async def emit_track(self) -> None:
        assert self._track_cb is not None
        await self._track_cb()


class FakePeerFactory:
    def __init__(self, name: str) -> None:
        self.name = name
        self.created: list[FakePeerConnection] = []

    def create(self) -> FakePeerConnection:
        pc = FakePeerConnection(self.name)
        self.created.append(pc)
        return pc

    @property
    def last(self) -> FakePeerConnection:
        return self.created[-1]


# --- client backend --------------------------------------------------------


class InProcessBackend:
    """MessagingBackend for one user, served by the real services over a FakeUoW.

    After each write the outbox is published into ``bus`` unless
    ``auto_publish`` is off, in which case ``publish_outbox`` does it.
    """

    def __init__(
        self,
        user_id: str,
        uow: FakeUoW,
        bus: InMemoryBus,
        clock: FixedClock,
        *,
        auto_publish: bool = True,
    ) -> None:
        self.principal = Principal(user_id=user_id)
        self.uow = uow
        self.bus = bus
        self.clock = clock
        self.auto_publish = auto_publish
        self.calls: list[str] = []
        self.fail_send: Exception | None = None
        self.page_size = 200

    async def publish_outbox(self) -> int:
        return await process_batch(self.uow, self.bus)

    async def _written(self) -> None:
        if self.auto_publish:
            await self.publish_outbox()

    async def list_conversations(self) -> list[ConversationSummary]:
        self.calls.append("list_conversations")
        return await conversation_service.list_conversations(self.principal, self.uow, self.clock)

    async def get_or_create_direct_conversation(self, peer_id: str) -> Conversation:
        self.calls.append("get_or_create_direct_conversation")
        conversation, _ = await conversation_service.get_or_create_direct_conversation(
            self.principal, peer_id, self.uow, self.clock,
        )
        await self._written()
        return conversation

    async def can_direct_message(self, peer_id: str) -> PermissionDecision:
        return await conversation_service.can_direct_message(self.principal, peer_id, self.uow)

    async def delete_conversation(self, conversation_id: UUID) -> None:
        self.calls.append("delete_conversation")
        await conversation_service.delete_conversation(conversation_id, self.principal, self.uow)
        await self._written()

    async def fetch_messages(self, conversation_id: UUID) -> list[Message]:
        self.calls.append("fetch_messages")
        messages: list[Message] = []
        cursor: str | None = None
        while True:
            page = await message_service.list_messages(
                conversation_id, self.principal, cursor, self.page_size, self.uow,
            )
            messages.extend(page)
            if len(page) < self.page_size:
                return messages
            cursor = encode_cursor(page[-1].sent_at, page[-1].id)

    async def send_message(self, conversation_id: UUID, dto: SendMessageDTO) -> Message:
        self.calls.append("send_message")
        if self.fail_send is not None:
            raise self.fail_send
        message, _ = await message_service.send_message(
            conversation_id, self.principal, dto, self.uow, self.clock,
        )
        await self._written()
        return message

    async def mark_as_read(self, conversation_id: UUID, message_ids: list[UUID]) -> int:
        self.calls.append("mark_as_read")
        count = await message_service.mark_as_read(
            conversation_id, self.principal, message_ids, self.uow, self.clock,
        )
        await self._written()
        return count

    async def delete_messages(self, conversation_id: UUID, message_ids: list[UUID]) -> int:
        self.calls.append("delete_messages")
        removed = await message_service.delete_messages(
            conversation_id, self.principal, message_ids, self.uow,
        )
        await self._written()
        return len(removed)

    async def unread_count(self, conversation_id: UUID) -> int:
        self.calls.append("unread_count")
        return await unread_service.conversation_unread(conversation_id, self.principal, self.uow)

    async def unread_counts(self, conversation_ids: list[UUID]) -> dict[UUID, int]:
        return await unread_service.member_unread_counts(conversation_ids, self.principal, self.uow)
