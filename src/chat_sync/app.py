from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis
import redis.asyncio as aioredis

from chat_sync.application.exceptions import NetworkFailure
from chat_sync.application.ports.cache import KeyValueStorage
from chat_sync.application.ports.push import PushTransport
from chat_sync.application.ports.remote_store import RemoteStore
from chat_sync.application.ports.timing import Clock, Scheduler, SystemClock
from chat_sync.config import Settings, settings as default_settings
from chat_sync.infrastructure.bus.channel_manager import PushChannelManager
from chat_sync.infrastructure.bus.redis_pubsub import RedisPushTransport
from chat_sync.infrastructure.cache.repositories import CachedConversationRepo, CachedMessageRepo
from chat_sync.infrastructure.cache.storage import InMemoryStorage, RedisStorage
from chat_sync.infrastructure.cache.ttl_cache import TTLCache
from chat_sync.infrastructure.http.remote_store import HttpRemoteStore
from chat_sync.infrastructure.timing import AsyncioScheduler
from chat_sync.services.conversation_list import ConversationListCache
from chat_sync.services.conversation_session import ConversationSession
from chat_sync.services.inbox import Inbox
from chat_sync.services.message_store import MessageStore
from chat_sync.services.read_state_service import ReadStateSynchronizer

logger = logging.getLogger(__name__)


class ChatEngine:
    """Composition root: one cache, one push manager, the inbox and open sessions."""

    def __init__(
        self,
        *,
        remote: RemoteStore,
        transport: PushTransport,
        storage: KeyValueStorage,
        scheduler: Scheduler,
        clock: Clock | None = None,
        config: Settings | None = None,
    ) -> None:
        self.config = config or default_settings
        self.clock = clock or SystemClock()
        self.remote = remote
        self.scheduler = scheduler
        self.viewer = self.config.VIEWER_ROLE

        self.cache = TTLCache(
            storage,
            self.clock,
            self.config.CACHE_SCHEMA_VERSION,
            prefix=self.config.CACHE_PREFIX,
        )
        self.messages_cache = CachedMessageRepo(self.cache)
        self.push = PushChannelManager(
            transport,
            scheduler,
            reconnect_delay=self.config.RECONNECT_DELAY_SECONDS,
            max_attempts=self.config.RECONNECT_MAX_ATTEMPTS,
        )
        self.conversations = ConversationListCache(
            remote,
            CachedConversationRepo(self.cache, self.viewer),
            self.viewer,
            ttl=self.config.CONVERSATIONS_CACHE_TTL,
        )
        self.read_state = ReadStateSynchronizer(remote, self.conversations, self.viewer)
        self.inbox = Inbox(
            self.conversations,
            self.push,
            scheduler,
            freshness=self.config.RECONNECT_FRESHNESS_SECONDS,
        )
        self._sessions: dict[int, ConversationSession] = {}

    @property
    def sessions(self) -> dict[int, ConversationSession]:
        return {cid: s for cid, s in self._sessions.items() if not s.closed}

    def open_conversation(self, conversation_id: int) -> ConversationSession:
        """Return the live session for a conversation, creating it if needed.

        The caller awaits ``session.open()`` to subscribe and load.
        """
        existing = self._sessions.get(conversation_id)
        if existing is not None and not existing.closed:
            return existing

        store = MessageStore(
            conversation_id,
            self.remote,
            self.messages_cache,
            self.clock,
            ttl=self.config.MESSAGES_CACHE_TTL,
            match_window=self.config.MATCH_WINDOW_SECONDS,
        )
        session = ConversationSession(
            store,
            self.push,
            self.remote,
            self.read_state,
            self.scheduler,
            self.viewer,
            freshness=self.config.RECONNECT_FRESHNESS_SECONDS,
            auto_read_delay=self.config.AUTO_READ_DELAY_SECONDS,
        )
        self._sessions[conversation_id] = session
        return session

    def close_conversation(self, conversation_id: int) -> None:
        session = self._sessions.pop(conversation_id, None)
        if session is not None:
            session.close()

    async def start(self) -> None:
        """Open the inbox. An unreachable server leaves it stale but subscribed."""
        try:
            await self.inbox.open()
        except NetworkFailure as exc:
            logger.warning("Initial inbox load failed (%s), waiting for pushes", exc.detail)

    async def stop(self) -> None:
        for conversation_id in list(self._sessions):
            self.close_conversation(conversation_id)
        self.inbox.close()
        self.push.close_all()
        logger.info("Chat engine stopped")


def build_storage(config: Settings) -> KeyValueStorage:
    if config.CACHE_BACKEND == "redis":
        return RedisStorage(redis.Redis.from_url(config.REDIS_URL, decode_responses=True))
    return InMemoryStorage(max_bytes=config.CACHE_MAX_BYTES)


@asynccontextmanager
async def create_engine(config: Settings | None = None) -> AsyncIterator[ChatEngine]:
    """Startup / shutdown lifecycle for a production engine."""
    config = config or default_settings
    push_redis = aioredis.from_url(config.REDIS_URL, decode_responses=True)
    http_client = HttpRemoteStore.build_client(
        config.API_BASE_URL,
        config.API_TOKEN,
        timeout=config.HTTP_TIMEOUT_SECONDS,
    )
    transport = RedisPushTransport(push_redis, config.PUSH_CHANNEL_PREFIX)
    scheduler = AsyncioScheduler()
    storage = build_storage(config)
    engine = ChatEngine(
        remote=HttpRemoteStore(http_client, config.VIEWER_ROLE),
        transport=transport,
        storage=storage,
        scheduler=scheduler,
        config=config,
    )
    logger.info("Chat engine started (viewer=%s, cache=%s)", config.VIEWER_ROLE, config.CACHE_BACKEND)
    try:
        yield engine
    finally:
        await engine.stop()
        await transport.stop()
        await scheduler.shutdown()
        await http_client.aclose()
        await push_redis.aclose()
        if isinstance(storage, RedisStorage):
            storage.close()
