from __future__ import annotations

import logging
import uuid

import redis.asyncio as aioredis

from messaging_service.application.ports.auth import SessionProvider, StaticSession
from messaging_service.application.ports.backend import MessagingBackend
from messaging_service.application.ports.bus import ChannelFactory, PubSubChannel
from messaging_service.application.ports.media import MediaDevices, PeerConnectionFactory
from messaging_service.config import settings
from messaging_service.domain.value_objects.topics import live_event_topic
from messaging_service.infrastructure.bus.redis_pubsub import RedisChannelFactory
from messaging_service.infrastructure.http.api_client import HttpMessagingBackend
from messaging_service.realtime.call_engine import CallSignalingEngine
from messaging_service.realtime.conversation_store import LiveConversationStore
from messaging_service.realtime.conversation_view import ConversationView

logger = logging.getLogger(__name__)


class RealtimeSession:
    """Everything one signed-in user needs, built once and passed around.

    Owns the conversation list, the open conversation views and the call
    engine; ``close`` tears all of them down.
    """

    def __init__(
        self,
        user_id: str,
        backend: MessagingBackend,
        channels: ChannelFactory,
    ) -> None:
        self.user_id = user_id
        self.backend = backend
        self.channels = channels
        self.store = LiveConversationStore(user_id, backend, channels)
        self._views: dict[uuid.UUID, ConversationView] = {}
        self._calls: list[CallSignalingEngine] = []
        self._redis: aioredis.Redis | None = None

    @classmethod
    def connect(
        cls,
        user_id: str,
        session: SessionProvider | str,
        *,
        base_url: str | None = None,
        redis_url: str | None = None,
    ) -> RealtimeSession:
        provider = StaticSession(session) if isinstance(session, str) else session
        backend = HttpMessagingBackend.create(
            base_url or settings.API_BASE_URL, provider, timeout=settings.API_TIMEOUT_SECONDS,
        )
        redis = aioredis.from_url(redis_url or settings.REDIS_URL, decode_responses=True)
        instance = cls(user_id, backend, RedisChannelFactory(redis))
        instance._redis = redis
        return instance

    async def open_conversation(self, conversation_id: uuid.UUID) -> ConversationView:
        view = self._views.get(conversation_id)
        if view is None:
            view = ConversationView(conversation_id, self.user_id, self.backend, self.channels)
            self._views[conversation_id] = view
            try:
                await view.open()
            except Exception:
                self._views.pop(conversation_id, None)
                await view.close()
                raise
        return view

    async def close_conversation(self, conversation_id: uuid.UUID) -> None:
        view = self._views.pop(conversation_id, None)
        if view is not None:
            await view.close()

    def live_event_channel(self, live_event_id: str) -> PubSubChannel:
        """Chat channel of a live event; same primitive as conversations, not persisted."""
        return self.channels.channel(live_event_topic(live_event_id))

    def call_engine(self, media: MediaDevices, peers: PeerConnectionFactory) -> CallSignalingEngine:
        engine = CallSignalingEngine(self.user_id, self.channels, media, peers)
        self._calls.append(engine)
        return engine

    async def close(self) -> None:
        views, self._views = list(self._views.values()), {}
        for view in views:
            view.detach()
        for engine in self._calls:
            await engine.hang_up()
        for view in views:
            await view.close()
        await self.store.close()
        if isinstance(self.backend, HttpMessagingBackend):
            await self.backend.aclose()
        if self._redis is not None:
            await self._redis.aclose()
        logger.debug("Realtime session for %s closed", self.user_id)
