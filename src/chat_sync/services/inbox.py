from __future__ import annotations

import logging

from chat_sync.application.dto.scope import SubscriptionScope
from chat_sync.application.exceptions import NetworkFailure
from chat_sync.application.ports.push import PushChannel, SubscriptionHandle
from chat_sync.application.ports.timing import Scheduler
from chat_sync.domain.entities.conversation import Conversation
from chat_sync.domain.events.push_event import MessageInserted
from chat_sync.services.conversation_list import ConversationListCache

logger = logging.getLogger(__name__)


class Inbox:
    """Aggregate view: conversation list kept live by the global subscription."""

    def __init__(
        self,
        conversations: ConversationListCache,
        push: PushChannel,
        scheduler: Scheduler,
        *,
        freshness: float,
    ) -> None:
        self.list = conversations
        self._push = push
        self._scheduler = scheduler
        self._freshness = freshness
        self._handle: SubscriptionHandle | None = None

    @property
    def conversations(self) -> tuple[Conversation, ...]:
        return self.list.conversations

    @property
    def total_unread(self) -> int:
        return self.list.total_unread

    @property
    def is_stale(self) -> bool:
        return self.list.is_stale

    @property
    def cache_age_seconds(self) -> float | None:
        return self.list.cache_age_seconds

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    def search(self, query: str) -> tuple[Conversation, ...]:
        return self.list.search(query)

    async def open(self) -> tuple[Conversation, ...]:
        # Reopening returns the same handle and resubscribes a scope that gave up.
        self._handle = self._push.open(
            SubscriptionScope.everything(),
            on_insert=self._on_insert,
            on_reconnect=self._on_reconnect,
        )
        return await self.list.load()

    def close(self) -> None:
        if self._handle is not None:
            self._push.close(self._handle)
            self._handle = None

    def _on_insert(self, event: MessageInserted) -> None:
        self.list.on_push_insert(event)

    def _on_reconnect(self) -> None:
        age = self.list.cache_age_seconds
        if age is not None and age <= self._freshness:
            return
        self._scheduler.call_later(0, self._refetch)

    async def _refetch(self) -> None:
        if self._handle is None:
            return
        try:
            await self.list.load(force=True)
        except NetworkFailure:
            logger.warning("Refetch of conversation list after reconnect failed")
