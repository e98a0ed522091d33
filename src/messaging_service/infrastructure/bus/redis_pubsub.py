"""Redis Pub/Sub: publisher, pattern subscriber and per-topic channels."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Collection
from typing import Any, Callable, Coroutine

import redis.asyncio as aioredis

from messaging_service.application.ports.bus import EventHandler, Unsubscribe, matches
from messaging_service.infrastructure.bus.serializer import deserialize_event, serialize_event

logger = logging.getLogger(__name__)

_CONFIRM_TIMEOUT = 5.0


class RedisPubSubPublisher:
    """Implements application.ports.bus.EventPublisher."""

    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    async def publish(self, channel: str, event_type: str, payload: dict[str, Any]) -> None:
        raw = serialize_event(event_type, payload)
        await self._redis.publish(channel, raw)


OnTopicEvent = Callable[[str, str, dict[str, Any]], Coroutine[Any, Any, None]]


class RedisPatternSubscriber:
    """Background task that listens on channel patterns and dispatches (topic, event, data)."""

    def __init__(
        self,
        redis: aioredis.Redis,
        patterns: list[str],
        callback: OnTopicEvent,
    ) -> None:
        self._redis = redis
        self._patterns = patterns
        self._callback = callback
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        self._task = asyncio.create_task(self._listen(), name="redis-pattern-subscriber")
        logger.info("Redis Pub/Sub subscriber started on patterns=%s", self._patterns)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            logger.info("Redis Pub/Sub subscriber stopped")

    async def _listen(self) -> None:
        pubsub = self._redis.pubsub()
        await pubsub.psubscribe(*self._patterns)
        try:
            async for message in pubsub.listen():
                if message["type"] != "pmessage":
                    continue
                topic = _decode(message["channel"])
                try:
                    event_type, data = deserialize_event(message["data"])
                    await self._callback(topic, event_type, data)
                except Exception:
                    logger.exception("Error processing pubsub message on %s", topic)
        finally:
            await pubsub.punsubscribe(*self._patterns)
            await pubsub.aclose()


class RedisChannel:
    """PubSubChannel over one Redis topic.

    One pubsub connection and one listener task per channel; the listener
    awaits each matching handler in turn, so handlers never overlap.
    Publishing on a topic we are subscribed to delivers the event back to us.
    """

    def __init__(self, redis: aioredis.Redis, topic: str) -> None:
        self.topic = topic
        self._redis = redis
        self._pubsub: Any = None
        self._task: asyncio.Task[None] | None = None
        self._handlers: list[tuple[Collection[str] | None, EventHandler]] = []
        self._lock = asyncio.Lock()
        self._closed = False

    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        await self._redis.publish(self.topic, serialize_event(event_type, payload))

    async def subscribe(
        self,
        event_filter: Collection[str] | None,
        handler: EventHandler,
    ) -> Unsubscribe:
        if self._closed:
            raise RuntimeError(f"channel {self.topic} is closed")
        entry = (event_filter, handler)
        async with self._lock:
            if self._pubsub is None:
                await self._open()
            self._handlers.append(entry)

        def unsubscribe() -> None:
            if entry in self._handlers:
                self._handlers.remove(entry)

        return unsubscribe

    async def _open(self) -> None:
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(self.topic)
        # Wait for the server's subscribe acknowledgement.
        loop = asyncio.get_running_loop()
        deadline = loop.time() + _CONFIRM_TIMEOUT
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                await pubsub.aclose()
                raise TimeoutError(f"subscription to {self.topic} was not confirmed")
            message = await pubsub.get_message(timeout=remaining)
            if message is not None and message["type"] == "subscribe":
                break
        if self._closed:
            # close() ran while we waited for the acknowledgement.
            await self._release(pubsub)
            raise RuntimeError(f"channel {self.topic} closed while subscribing")
        self._pubsub = pubsub
        self._task = asyncio.create_task(self._listen(pubsub), name=f"redis-channel:{self.topic}")
        logger.debug("Subscribed to %s", self.topic)

    async def _listen(self, pubsub: Any) -> None:
        async for message in pubsub.listen():
            if message["type"] != "message":
                continue
            try:
                event_type, data = deserialize_event(message["data"])
            except Exception:
                logger.exception("Undecodable message on %s", self.topic)
                continue
            for entry in list(self._handlers):
                # Detached while an earlier handler ran.
                if entry not in self._handlers:
                    continue
                event_filter, handler = entry
                if not matches(event_filter, event_type):
                    continue
                try:
                    await handler(event_type, data)
                except Exception:
                    logger.exception("Handler for %s on %s failed", event_type, self.topic)
            if self._closed:
                # A handler closed the channel; close() left the connection to us.
                await self._release(pubsub)
                return

    async def close(self) -> None:
        self._closed = True
        self._handlers.clear()
        task, pubsub = self._task, self._pubsub
        self._task = self._pubsub = None
        if task is not None and task is asyncio.current_task():
            return
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if pubsub is not None:
            await self._release(pubsub)

    async def _release(self, pubsub: Any) -> None:
        await pubsub.unsubscribe(self.topic)
        await pubsub.aclose()
        logger.debug("Unsubscribed from %s", self.topic)


class RedisChannelFactory:
    """Implements application.ports.bus.ChannelFactory."""

    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    def channel(self, topic: str) -> RedisChannel:
        return RedisChannel(self._redis, topic)


def _decode(value: str | bytes) -> str:
    return value.decode() if isinstance(value, bytes) else value
