from __future__ import annotations

import dataclasses
import logging
from typing import Callable

from chat_sync.application.exceptions import NetworkFailure, NotFoundError
from chat_sync.application.ports.cache import ConversationCache
from chat_sync.application.ports.remote_store import RemoteStore
from chat_sync.domain.entities.conversation import Conversation
from chat_sync.domain.entities.message import Message
from chat_sync.domain.events.push_event import MessageInserted
from chat_sync.domain.value_objects.enums import SenderRole

logger = logging.getLogger(__name__)

ConversationsListener = Callable[[tuple[Conversation, ...]], None]


class ConversationListCache:
    """Inbox rows, most recently active first."""

    def __init__(
        self,
        remote: RemoteStore,
        cache: ConversationCache,
        viewer: SenderRole,
        *,
        ttl: float,
    ) -> None:
        self._remote = remote
        self._cache = cache
        self._viewer = viewer
        self._ttl = ttl
        self._items: tuple[Conversation, ...] = ()
        # Message ids already applied per conversation; push delivery is at-least-once.
        self._applied: dict[int, set[int]] = {}
        self._listeners: list[ConversationsListener] = []
        self.is_stale = False

    @property
    def conversations(self) -> tuple[Conversation, ...]:
        return self._items

    @property
    def total_unread(self) -> int:
        return sum(c.unread_count_for_viewer for c in self._items)

    @property
    def cache_age_seconds(self) -> float | None:
        return self._cache.age()

    def get(self, counterparty_id: int) -> Conversation | None:
        for c in self._items:
            if c.counterparty_id == counterparty_id:
                return c
        return None

    def search(self, query: str) -> tuple[Conversation, ...]:
        needle = query.strip().lower()
        if not needle:
            return self._items
        return tuple(
            c for c in self._items
            if needle in c.display_name.lower() or needle in (c.counterparty_phone or "")
        )

    def add_listener(self, callback: ConversationsListener) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: ConversationsListener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _commit(self, items: list[Conversation], *, persist: bool = True) -> None:
        self._items = tuple(items)
        if persist:
            self._cache.save(items)
        for callback in list(self._listeners):
            try:
                callback(self._items)
            except Exception:
                logger.exception("Conversation list listener failed")

    async def load(self, *, force: bool = False) -> tuple[Conversation, ...]:
        # Taken before the TTL read, which drops expired entries.
        snapshot = None if self._items else self._cache.load_any_age()
        if not force:
            cached = self._cache.load(self._ttl)
            if cached is not None:
                self.is_stale = False
                self._commit(cached, persist=False)
                return self._items

        try:
            fetched = await self._remote.fetch_conversation_list()
        except NetworkFailure:
            self.is_stale = True
            if not self._items and snapshot:
                self._commit(snapshot, persist=False)
            logger.warning("Fetching conversation list failed, showing %d stale rows", len(self._items))
            raise

        self.is_stale = False
        self._commit(fetched)
        logger.info("Conversation list loaded (%d)", len(fetched))
        return self._items

    def on_push_insert(self, event: MessageInserted) -> None:
        self.on_message_inserted(event.message)

    def on_message_inserted(self, message: Message) -> Conversation | None:
        items = list(self._items)
        idx = next(
            (i for i, c in enumerate(items) if c.counterparty_id == message.conversation_id),
            None,
        )
        if idx is None:
            logger.debug("Insert for unknown conversation %s ignored", message.conversation_id)
            return None

        applied = self._applied.setdefault(message.conversation_id, set())
        if message.id is not None:
            if message.id in applied:
                logger.debug("Duplicate insert %s for conversation %s ignored", message.id, message.conversation_id)
                return None
            applied.add(message.id)

        current = items.pop(idx)
        unread = current.unread_count_for_viewer
        if message.sender_role != self._viewer:
            unread += 1
        updated = dataclasses.replace(current, unread_count_for_viewer=unread)
        # A late, older insert still counts but must not replace the preview.
        if current.last_message_at is None or message.created_at >= current.last_message_at:
            updated = dataclasses.replace(
                updated,
                last_message_snippet=message.snippet,
                last_message_kind=message.kind,
                last_message_sender=message.sender_role,
                last_message_at=message.created_at,
            )
        items.insert(0, updated)
        self._commit(items)
        return updated

    def set_unread(self, counterparty_id: int, count: int) -> Conversation:
        items = list(self._items)
        for i, c in enumerate(items):
            if c.counterparty_id == counterparty_id:
                items[i] = dataclasses.replace(c, unread_count_for_viewer=max(count, 0))
                self._commit(items)
                return items[i]
        raise NotFoundError(f"Conversation {counterparty_id} not found")
