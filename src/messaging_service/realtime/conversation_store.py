from __future__ import annotations

import asyncio
import dataclasses
import logging
import uuid
from collections import deque
from typing import Any, Callable

from pydantic import ValidationError as PayloadError

from messaging_service.application.dto.conversation import ConversationSummary
from messaging_service.application.ports.backend import MessagingBackend
from messaging_service.application.ports.bus import ChannelFactory, PubSubChannel, Unsubscribe
from messaging_service.domain.entities.conversation import Conversation
from messaging_service.domain.value_objects.enums import ChatEvent
from messaging_service.domain.value_objects.topics import conversation_topic, user_status_topic
from messaging_service.realtime.events import (
    ConversationDeletedPayload,
    MessageInsertedPayload,
    MessagesDeletedPayload,
    PresenceUpdatedPayload,
)

logger = logging.getLogger(__name__)

_CONVERSATION_EVENTS = (
    ChatEvent.MESSAGE_INSERTED,
    ChatEvent.MESSAGES_READ,
    ChatEvent.MESSAGES_DELETED,
    ChatEvent.PRESENCE_UPDATED,
    ChatEvent.CONVERSATION_DELETED,
)
_SEEN_LIMIT = 500


@dataclasses.dataclass
class _Subscription:
    channel: PubSubChannel
    unsubscribe: Unsubscribe
    seen: deque[uuid.UUID] = dataclasses.field(default_factory=lambda: deque(maxlen=_SEEN_LIMIT))


class LiveConversationStore:
    """Conversation list of one signed-in user, kept current from push events.

    Each conversation has its own subscription, and each summary is only
    written from that subscription's handler or from an explicit reload.
    """

    def __init__(
        self,
        self_id: str,
        backend: MessagingBackend,
        channels: ChannelFactory,
        *,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self.self_id = self_id
        self._backend = backend
        self._channels = channels
        self._on_change = on_change
        self._summaries: dict[uuid.UUID, ConversationSummary] = {}
        self._subs: dict[uuid.UUID, _Subscription] = {}
        self._status: _Subscription | None = None
        self._pending: set[asyncio.Task[None]] = set()
        self._load_lock = asyncio.Lock()

    @property
    def conversations(self) -> list[ConversationSummary]:
        return sorted(
            self._summaries.values(),
            key=lambda s: (s.updated_at, str(s.id)),
            reverse=True,
        )

    def get(self, conversation_id: uuid.UUID) -> ConversationSummary | None:
        return self._summaries.get(conversation_id)

    @property
    def total_unread(self) -> int:
        return sum(s.unread_count for s in self._summaries.values())

    async def load(self) -> list[ConversationSummary]:
        # One load at a time, so a topic is never subscribed twice.
        async with self._load_lock:
            summaries = await self._backend.list_conversations()
            fresh = {s.id: s for s in summaries}
            for cid in list(self._subs):
                if cid not in fresh:
                    self._drop(cid)
            self._summaries = fresh
            for cid in fresh:
                if cid not in self._subs:
                    await self._watch(cid)
            if self._status is None:
                channel = self._channels.channel(user_status_topic(self.self_id))
                unsubscribe = await channel.subscribe(
                    (ChatEvent.CONVERSATION_CREATED,), self._on_conversation_created,
                )
                self._status = _Subscription(channel, unsubscribe)
            self._changed()
            return self.conversations

    async def get_or_create_direct_conversation(self, peer_id: str) -> Conversation:
        conversation = await self._backend.get_or_create_direct_conversation(peer_id)
        if conversation.id not in self._summaries:
            await self.load()
        return conversation

    async def delete_conversation(self, conversation_id: uuid.UUID) -> None:
        await self._backend.delete_conversation(conversation_id)
        self._summaries.pop(conversation_id, None)
        sub = self._subs.pop(conversation_id, None)
        if sub is not None:
            sub.unsubscribe()
            await sub.channel.close()
        self._changed()

    async def refresh_unread(self, conversation_id: uuid.UUID) -> int:
        count = await self._backend.unread_count(conversation_id)
        summary = self._summaries.get(conversation_id)
        if summary is not None and summary.unread_count != count:
            self._summaries[conversation_id] = dataclasses.replace(summary, unread_count=count)
            self._changed()
        return count

    async def _watch(self, conversation_id: uuid.UUID) -> None:
        channel = self._channels.channel(conversation_topic(conversation_id))

        async def handler(event_type: str, data: dict[str, Any]) -> None:
            await self._on_event(conversation_id, event_type, data)

        unsubscribe = await channel.subscribe(_CONVERSATION_EVENTS, handler)
        self._subs[conversation_id] = _Subscription(channel, unsubscribe)

    async def _on_event(
        self,
        conversation_id: uuid.UUID,
        event_type: str,
        data: dict[str, Any],
    ) -> None:
        if conversation_id not in self._summaries:
            return
        try:
            if event_type == ChatEvent.MESSAGE_INSERTED:
                self._apply_insert(conversation_id, MessageInsertedPayload.model_validate(data))
            elif event_type in (ChatEvent.MESSAGES_READ, ChatEvent.MESSAGES_DELETED):
                if event_type == ChatEvent.MESSAGES_DELETED:
                    self._apply_delete(conversation_id, MessagesDeletedPayload.model_validate(data))
                await self.refresh_unread(conversation_id)
            elif event_type == ChatEvent.PRESENCE_UPDATED:
                self._apply_presence(conversation_id, PresenceUpdatedPayload.model_validate(data))
            elif event_type == ChatEvent.CONVERSATION_DELETED:
                ConversationDeletedPayload.model_validate(data)
                self._forget(conversation_id)
        except PayloadError:
            logger.warning("Malformed %s payload on %s", event_type, conversation_id)

    def _apply_insert(self, conversation_id: uuid.UUID, payload: MessageInsertedPayload) -> None:
        message = payload.message.to_entity()
        sub = self._subs.get(conversation_id)
        if sub is not None:
            if message.id in sub.seen:
                return
            sub.seen.append(message.id)

        summary = self._summaries[conversation_id]
        last = summary.last_message
        if last is not None and last.id == message.id:
            return
        if last is None or message.sort_key >= last.sort_key:
            last = message
        conversation = summary.conversation
        if message.sent_at > conversation.updated_at:
            conversation = dataclasses.replace(conversation, updated_at=message.sent_at)
        unread = summary.unread_count
        if message.is_unread_for(self.self_id):
            unread += 1
        self._summaries[conversation_id] = dataclasses.replace(
            summary, conversation=conversation, last_message=last, unread_count=unread,
        )
        self._changed()

    def _apply_delete(self, conversation_id: uuid.UUID, payload: MessagesDeletedPayload) -> None:
        summary = self._summaries[conversation_id]
        last = summary.last_message
        if last is not None and last.id in payload.message_ids:
            self._summaries[conversation_id] = dataclasses.replace(summary, last_message=None)
            self._changed()

    def _apply_presence(self, conversation_id: uuid.UUID, payload: PresenceUpdatedPayload) -> None:
        summary = self._summaries[conversation_id]
        record = payload.to_record()
        roster = list(summary.participant_profiles)
        for i, entry in enumerate(roster):
            if entry.id == record.user_id:
                # Only presence fields change; name and avatar stay as loaded.
                roster[i] = dataclasses.replace(
                    entry, is_online=record.is_online, last_seen=record.last_seen,
                )
                break
        else:
            return
        self._summaries[conversation_id] = dataclasses.replace(
            summary, participant_profiles=roster,
        )
        self._changed()

    async def _on_conversation_created(self, event_type: str, data: dict[str, Any]) -> None:
        try:
            conversation_id = uuid.UUID(str(data["conversation_id"]))
        except (KeyError, ValueError):
            logger.warning("Malformed %s payload", event_type)
            return
        if conversation_id not in self._summaries:
            await self.load()

    def _forget(self, conversation_id: uuid.UUID) -> None:
        self._summaries.pop(conversation_id, None)
        self._drop(conversation_id)
        self._changed()

    def _drop(self, conversation_id: uuid.UUID) -> None:
        sub = self._subs.pop(conversation_id, None)
        if sub is None:
            return
        sub.unsubscribe()
        # Closing from inside the channel's own handler would cancel it.
        task = asyncio.get_running_loop().create_task(sub.channel.close())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    async def close(self) -> None:
        subs = list(self._subs.values())
        if self._status is not None:
            subs.append(self._status)
        self._subs.clear()
        self._status = None
        for sub in subs:
            sub.unsubscribe()
        for sub in subs:
            await sub.channel.close()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
