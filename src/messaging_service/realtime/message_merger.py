from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Callable
from uuid import UUID

from messaging_service.domain.entities.message import Message

logger = logging.getLogger(__name__)


class MessageMerger:
    """Ordered, duplicate-free message list for one open conversation.

    Two sources feed it: the REST page (``replace_baseline``) and push
    inserts (``apply_insert``). Neither arrives in a guaranteed order
    relative to the other, so identity is the message id and order is
    always recomputed from ``(sent_at, id)``.
    """

    def __init__(self, on_append: Callable[[], None] | None = None) -> None:
        self._by_id: dict[UUID, Message] = {}
        self._ordered: list[Message] = []
        # Accepted by push since the last baseline; kept if a later page misses them.
        self._pushed: set[UUID] = set()
        self._on_append = on_append

    @property
    def messages(self) -> list[Message]:
        return list(self._ordered)

    def __len__(self) -> int:
        return len(self._ordered)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._by_id

    def get(self, message_id: UUID) -> Message | None:
        return self._by_id.get(message_id)

    def replace_baseline(self, fetched: Iterable[Message]) -> None:
        by_id = {m.id: m for m in fetched}
        missing = {mid for mid in self._pushed if mid not in by_id and mid in self._by_id}
        for mid in missing:
            by_id[mid] = self._by_id[mid]
        self._pushed = missing
        kept = len(missing)
        self._by_id = by_id
        self._resort()
        if kept:
            logger.debug("Kept %d pushed message(s) missing from fetched page", kept)

    def apply_insert(self, message: Message) -> bool:
        """Add ``message`` unless its id is already present. Returns whether it was added."""
        if message.id in self._by_id:
            return False
        self._by_id[message.id] = message
        self._pushed.add(message.id)
        self._resort()
        if self._on_append is not None:
            self._on_append()
        return True

    def apply_update(self, message: Message) -> bool:
        if message.id not in self._by_id:
            return False
        self._by_id[message.id] = message
        self._resort()
        return True

    def remove(self, message_ids: Iterable[UUID]) -> int:
        removed = 0
        for mid in message_ids:
            if self._by_id.pop(mid, None) is not None:
                removed += 1
            self._pushed.discard(mid)
        if removed:
            self._resort()
        return removed

    def _resort(self) -> None:
        self._ordered = sorted(self._by_id.values(), key=lambda m: m.sort_key)
