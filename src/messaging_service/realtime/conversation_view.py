from __future__ import annotations

import dataclasses
import logging
import uuid
from typing import Any, Callable

from pydantic import ValidationError as PayloadError

from messaging_service.application.dto.message import SendMessageDTO
from messaging_service.application.ports.backend import MessagingBackend
from messaging_service.application.ports.bus import ChannelFactory, PubSubChannel, Unsubscribe
from messaging_service.application.ports.clock import Clock, SystemClock
from messaging_service.domain.entities.message import Message
from messaging_service.domain.value_objects.enums import ChatEvent, MessageType
from messaging_service.domain.value_objects.topics import conversation_topic
from messaging_service.realtime.events import (
    MessageInsertedPayload,
    MessagesDeletedPayload,
    MessagesReadPayload,
)
from messaging_service.realtime.message_merger import MessageMerger

logger = logging.getLogger(__name__)

_EVENTS = (ChatEvent.MESSAGE_INSERTED, ChatEvent.MESSAGES_READ, ChatEvent.MESSAGES_DELETED)


class ConversationView:
    """One open conversation: subscription, REST baseline and optimistic sends."""

    def __init__(
        self,
        conversation_id: uuid.UUID,
        self_id: str,
        backend: MessagingBackend,
        channels: ChannelFactory,
        *,
        on_scroll_to_end: Callable[[], None] | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.conversation_id = conversation_id
        self.self_id = self_id
        self._backend = backend
        self._channels = channels
        self._clock = clock or SystemClock()
        self.merger = MessageMerger(on_append=on_scroll_to_end)
        self._channel: PubSubChannel | None = None
        self._unsubscribe: Unsubscribe | None = None

    @property
    def messages(self) -> list[Message]:
        return self.merger.messages

    @property
    def is_open(self) -> bool:
        return self._unsubscribe is not None

    async def open(self) -> None:
        """Subscribe first, then fetch, so inserts racing the fetch are not lost."""
        if self.is_open:
            return
        self._channel = self._channels.channel(conversation_topic(self.conversation_id))
        self._unsubscribe = await self._channel.subscribe(_EVENTS, self._on_event)
        await self.refresh()

    async def refresh(self) -> None:
        fetched = await self._backend.fetch_messages(self.conversation_id)
        self.merger.replace_baseline(fetched)

    async def send(
        self,
        content: str,
        message_type: MessageType = MessageType.TEXT,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        """Optimistic send: show locally, persist, reconcile by id.

        The local copy is replaced by the persisted row (content may come back
        redacted). On failure the local copy is withdrawn and the error re-raised.
        """
        message_id = uuid.uuid4()
        local = Message(
            id=message_id,
            conversation_id=self.conversation_id,
            sender_id=self.self_id,
            content=content,
            message_type=message_type,
            sent_at=self._clock.now(),
            metadata=metadata,
        )
        self.merger.apply_insert(local)
        dto = SendMessageDTO(
            content=content,
            message_type=message_type,
            metadata=metadata,
            message_id=message_id,
        )
        try:
            persisted = await self._backend.send_message(self.conversation_id, dto)
        except Exception:
            self.merger.remove([message_id])
            raise
        if not self.merger.apply_update(persisted):
            # A delete event may have raced the response.
            logger.debug("Persisted message %s no longer in view", persisted.id)
        return persisted

    async def mark_visible_read(self) -> int:
        """Mark every loaded message from others as read; returns the new unread count."""
        ids = [m.id for m in self.merger.messages if m.is_unread_for(self.self_id)]
        count = await self._backend.mark_as_read(self.conversation_id, ids)
        if ids:
            now = self._clock.now()
            for mid in ids:
                current = self.merger.get(mid)
                if current is not None and not current.read:
                    self.merger.apply_update(dataclasses.replace(current, read=True, read_at=now))
        return count

    async def delete_messages(self, message_ids: list[uuid.UUID]) -> int:
        deleted = await self._backend.delete_messages(self.conversation_id, message_ids)
        own = [
            mid for mid in message_ids
            if (m := self.merger.get(mid)) is not None and m.sender_id == self.self_id
        ]
        self.merger.remove(own)
        return deleted

    async def _on_event(self, event_type: str, data: dict[str, Any]) -> None:
        try:
            if event_type == ChatEvent.MESSAGE_INSERTED:
                inserted = MessageInsertedPayload.model_validate(data)
                if inserted.conversation_id == self.conversation_id:
                    self.merger.apply_insert(inserted.message.to_entity())
            elif event_type == ChatEvent.MESSAGES_READ:
                read = MessagesReadPayload.model_validate(data)
                for mid in read.message_ids:
                    current = self.merger.get(mid)
                    if current is not None and not current.read:
                        self.merger.apply_update(
                            dataclasses.replace(current, read=True, read_at=read.read_at)
                        )
            elif event_type == ChatEvent.MESSAGES_DELETED:
                deleted = MessagesDeletedPayload.model_validate(data)
                self.merger.remove(deleted.message_ids)
        except PayloadError:
            logger.warning("Malformed %s payload on %s", event_type, self.conversation_id)

    def detach(self) -> None:
        """Stop delivering events into this view; does not await anything."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def close(self) -> None:
        self.detach()
        channel, self._channel = self._channel, None
        if channel is not None:
            await channel.close()
