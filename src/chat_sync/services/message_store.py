from __future__ import annotations

import itertools
import logging
import uuid
from typing import Callable, Sequence

from chat_sync.application.dto.message import MessageDraft
from chat_sync.application.exceptions import NetworkFailure
from chat_sync.application.ports.cache import MessageCache
from chat_sync.application.ports.remote_store import RemoteStore
from chat_sync.application.ports.timing import Clock
from chat_sync.domain.entities.message import Message
from chat_sync.domain.events.push_event import MessageUpdated, PushEvent
from chat_sync.domain.value_objects.enums import ConfirmState
from chat_sync.domain.value_objects.ids import LOCAL_ID_PREFIX
from chat_sync.services import reconciler
from chat_sync.services.reconciler import ReconcileOutcome

logger = logging.getLogger(__name__)

MessagesListener = Callable[[tuple[Message, ...]], None]


def new_local_id() -> str:
    return f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex}"


class MessageStore:
    """Ordered, render-ready message list of one conversation.

    Merges the initial fetch, optimistic local entries and pushed changes.
    ``messages`` is always sorted by (created_at, insertion order).
    """

    def __init__(
        self,
        conversation_id: int,
        remote: RemoteStore,
        cache: MessageCache,
        clock: Clock,
        *,
        ttl: float,
        match_window: float = reconciler.DEFAULT_MATCH_WINDOW_SECONDS,
    ) -> None:
        self.conversation_id = conversation_id
        self._remote = remote
        self._cache = cache
        self._clock = clock
        self._ttl = ttl
        self._match_window = match_window

        self._entries: list[Message] = []
        self._seq: dict[str, int] = {}
        self._counter = itertools.count()
        self._view: tuple[Message, ...] = ()
        self._listeners: list[MessagesListener] = []
        self.is_stale = False

    # -- read side ---------------------------------------------------------

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._view

    @property
    def cache_age_seconds(self) -> float | None:
        return self._cache.age(self.conversation_id)

    @property
    def pending(self) -> tuple[Message, ...]:
        return tuple(m for m in self._view if m.is_optimistic)

    def get(self, local_id: str) -> Message | None:
        idx = reconciler.find_by_local_id(self._entries, local_id)
        return None if idx is None else self._entries[idx]

    def add_listener(self, callback: MessagesListener) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: MessagesListener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    # -- internals ---------------------------------------------------------

    def _sort_key(self, message: Message) -> tuple:
        return (message.created_at, self._seq.get(message.local_id, 0))

    def _track(self, message: Message) -> None:
        if message.local_id not in self._seq:
            self._seq[message.local_id] = next(self._counter)

    def _commit(self, entries: list[Message], *, persist: bool = True) -> None:
        for m in entries:
            self._track(m)
        live = {m.local_id for m in entries}
        for stale_key in [k for k in self._seq if k not in live]:
            del self._seq[stale_key]
        self._entries = entries
        self._view = tuple(sorted(entries, key=self._sort_key))
        if persist:
            self._cache.save(self.conversation_id, [m for m in self._view if not m.is_optimistic])
        for callback in list(self._listeners):
            try:
                callback(self._view)
            except Exception:
                logger.exception("Messages listener failed for conversation %s", self.conversation_id)

    def _merge_rows(self, rows: Sequence[Message]) -> list[Message]:
        entries = list(self._entries)
        for row in rows:
            entries, _outcome, _idx = reconciler.reconcile_insert(entries, row, self._match_window)
        return entries

    # -- load --------------------------------------------------------------

    async def load(self, *, force: bool = False) -> tuple[Message, ...]:
        """Seed from a fresh cache entry or fetch, keeping pending optimistic entries.

        On fetch failure the previously visible (or last cached) sequence stays
        in place, ``is_stale`` is set and NetworkFailure propagates.
        """
        # Taken before the TTL read, which drops expired entries.
        snapshot = None if self._entries else self._cache.load_any_age(self.conversation_id)
        if not force:
            cached = self._cache.load(self.conversation_id, self._ttl)
            if cached is not None:
                logger.debug("Conversation %s seeded from cache (%d)", self.conversation_id, len(cached))
                self.is_stale = False
                self._commit(self._merge_rows(cached), persist=False)
                return self._view

        try:
            fetched = await self._remote.fetch_messages(self.conversation_id)
        except NetworkFailure:
            self.is_stale = True
            if not self._entries and snapshot:
                self._commit(self._merge_rows(snapshot), persist=False)
            logger.warning(
                "Fetching conversation %s failed, showing %d stale messages",
                self.conversation_id,
                len(self._view),
            )
            raise

        self.is_stale = False
        rows = [m for m in fetched if m.conversation_id == self.conversation_id]
        self._commit(self._merge_rows(rows))
        logger.info("Conversation %s loaded (%d messages)", self.conversation_id, len(rows))
        return self._view

    # -- optimistic writes -------------------------------------------------

    def append_optimistic(self, draft: MessageDraft) -> Message:
        message = Message(
            id=None,
            local_id=new_local_id(),
            conversation_id=self.conversation_id,
            sender_role=draft.sender_role,
            kind=draft.kind,
            body=draft.body,
            attachment=draft.attachment,
            created_at=self._clock.now(),
            is_read=False,
            reply_to=draft.reply_to,
            confirm_state=ConfirmState.OPTIMISTIC,
        )
        self._commit([*self._entries, message], persist=False)
        return message

    def on_remote_write_succeeded(self, local_id: str, server_message: Message) -> Message | None:
        """Confirm an optimistic entry with the send response. Returns the confirmed entry."""
        entries = list(self._entries)
        idx = reconciler.find_by_local_id(entries, local_id)
        existing_idx = reconciler.find_by_id(entries, server_message.id)

        if idx is None:
            logger.debug("Write for %s resolved after its entry was gone", local_id)
            return None

        local = entries[idx]
        if not local.is_optimistic:
            if local.id == server_message.id or existing_idx is not None:
                return local
            # The push echo confirmed this slot with a sibling's id; place ours.
            entries, outcome, at = reconciler.reconcile_insert(entries, server_message, self._match_window)
            logger.debug("Write for %s re-homed as %s", local_id, outcome)
            self._commit(entries)
            return entries[at]

        if existing_idx is not None:
            entries[existing_idx] = reconciler.merge_update(entries[existing_idx], server_message)
            confirmed = entries[existing_idx]
            del entries[idx]
        else:
            confirmed = reconciler.confirm(local, server_message)
            entries[idx] = confirmed
        self._commit(entries)
        return confirmed

    def on_remote_write_failed(self, local_id: str) -> Message | None:
        idx = reconciler.find_by_local_id(self._entries, local_id)
        if idx is None or not self._entries[idx].is_optimistic:
            return None
        entries = list(self._entries)
        discarded = entries.pop(idx)
        self._commit(entries, persist=False)
        return discarded

    # -- push --------------------------------------------------------------

    def on_push_event(self, event: PushEvent) -> ReconcileOutcome | None:
        if isinstance(event, MessageUpdated):
            self.on_push_update(event)
            return None
        if event.message.conversation_id != self.conversation_id:
            return None
        entries, outcome, _idx = reconciler.reconcile_insert(
            self._entries, event.message, self._match_window,
        )
        logger.debug(
            "Push insert %s in conversation %s: %s",
            event.message.id,
            self.conversation_id,
            outcome,
        )
        self._commit(entries)
        return outcome

    def on_push_update(self, event: MessageUpdated) -> Message | None:
        incoming = event.message
        if incoming.conversation_id != self.conversation_id:
            return None
        idx = reconciler.find_by_id(self._entries, incoming.id)
        if idx is None:
            return None
        entries = list(self._entries)
        entries[idx] = reconciler.merge_update(entries[idx], incoming)
        self._commit(entries)
        return entries[idx]
