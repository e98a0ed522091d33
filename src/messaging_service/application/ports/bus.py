from __future__ import annotations

from typing import Any, Callable, Collection, Coroutine, Protocol

EventHandler = Callable[[str, dict[str, Any]], Coroutine[Any, Any, None]]
Unsubscribe = Callable[[], None]


class EventPublisher(Protocol):
    async def publish(self, channel: str, event_type: str, payload: dict[str, Any]) -> None: ...


class PubSubChannel(Protocol):
    """One named topic: a conversation, a live event or a call room.

    ``subscribe`` returns once the backend has confirmed the subscription.
    Handlers of one channel run one after another; the returned callable
    detaches the handler immediately, without awaiting anything.
    """

    topic: str

    async def publish(self, event_type: str, payload: dict[str, Any]) -> None: ...

    async def subscribe(
        self,
        event_filter: Collection[str] | None,
        handler: EventHandler,
    ) -> Unsubscribe: ...

    async def close(self) -> None: ...


class ChannelFactory(Protocol):
    def channel(self, topic: str) -> PubSubChannel: ...


def matches(event_filter: Collection[str] | None, event_type: str) -> bool:
    return event_filter is None or event_type in event_filter
