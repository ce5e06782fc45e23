from __future__ import annotations

import logging

from chat_sync.application.dto.message import MessageDraft
from chat_sync.application.dto.scope import SubscriptionScope
from chat_sync.application.exceptions import AppError, NetworkFailure, ValidationError
from chat_sync.application.ports.push import PushChannel, SubscriptionHandle
from chat_sync.application.ports.remote_store import RemoteStore
from chat_sync.application.ports.timing import ScheduledTask, Scheduler
from chat_sync.domain.entities.message import Message, ReplySummary
from chat_sync.domain.events.push_event import MessageInserted, MessageUpdated
from chat_sync.domain.value_objects.enums import MessageKind, SenderRole
from chat_sync.services.message_store import MessageStore
from chat_sync.services.read_state_service import ReadStateSynchronizer

logger = logging.getLogger(__name__)


class ConversationSession:
    """One open thread: message store, scoped push subscription, sending, read marks."""

    def __init__(
        self,
        store: MessageStore,
        push: PushChannel,
        remote: RemoteStore,
        read_state: ReadStateSynchronizer,
        scheduler: Scheduler,
        viewer: SenderRole,
        *,
        freshness: float,
        auto_read_delay: float,
    ) -> None:
        self.store = store
        self._push = push
        self._remote = remote
        self._read_state = read_state
        self._scheduler = scheduler
        self._viewer = viewer
        self._freshness = freshness
        self._auto_read_delay = auto_read_delay
        self._handle: SubscriptionHandle | None = None
        self._auto_read: ScheduledTask | None = None
        self.closed = False

    @property
    def conversation_id(self) -> int:
        return self.store.conversation_id

    @property
    def messages(self) -> tuple[Message, ...]:
        return self.store.messages

    @property
    def is_stale(self) -> bool:
        return self.store.is_stale

    @property
    def cache_age_seconds(self) -> float | None:
        return self.store.cache_age_seconds

    async def open(self) -> tuple[Message, ...]:
        """Subscribe, load and mark read. NetworkFailure from the load propagates."""
        self._handle = self._push.open(
            SubscriptionScope.conversation(self.conversation_id),
            on_insert=self._on_insert,
            on_update=self._on_update,
            on_reconnect=self._on_reconnect,
        )
        await self.store.load()
        await self._read_state.mark_read(self.conversation_id)
        return self.messages

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._auto_read is not None:
            self._auto_read.cancel()
            self._auto_read = None
        if self._handle is not None:
            self._push.close(self._handle)
        logger.debug("Conversation %s session closed", self.conversation_id)

    # -- sending -----------------------------------------------------------

    async def send_text(self, body: str, reply_to: Message | None = None) -> Message:
        text = body.strip()
        if not text:
            raise ValidationError("Message text is empty")
        draft = MessageDraft(
            sender_role=self._viewer,
            kind=MessageKind.TEXT,
            body=text,
            reply_to=_summarize(reply_to),
        )
        return await self._send(draft)

    async def send_media(
        self,
        kind: MessageKind,
        filename: str,
        content: bytes,
        mime_type: str,
        *,
        duration: float | None = None,
    ) -> Message:
        if not kind.is_media:
            raise ValidationError(f"{kind} is not a media kind")
        uploaded = await self._remote.upload_attachment(self.conversation_id, filename, content, mime_type)
        draft = MessageDraft(
            sender_role=self._viewer,
            kind=kind,
            attachment=uploaded.to_attachment(duration),
        )
        return await self._send(draft)

    async def _send(self, draft: MessageDraft) -> Message:
        optimistic = self.store.append_optimistic(draft)
        try:
            server_message = await self._remote.send_message(
                self.conversation_id,
                draft.sender_role,
                draft.kind,
                body=draft.body,
                attachment=draft.attachment,
                reply_to_id=draft.reply_to.id if draft.reply_to else None,
            )
        except AppError:
            self.store.on_remote_write_failed(optimistic.local_id)
            logger.warning("Send failed in conversation %s, discarded %s", self.conversation_id, optimistic.local_id)
            raise
        confirmed = self.store.on_remote_write_succeeded(optimistic.local_id, server_message)
        return confirmed or self.store.get(optimistic.local_id) or server_message

    # -- read state --------------------------------------------------------

    async def mark_conversation_read(self) -> None:
        await self._read_state.mark_read(self.conversation_id)

    def _schedule_auto_read(self) -> None:
        if self._auto_read is not None:
            self._auto_read.cancel()
        self._auto_read = self._scheduler.call_later(self._auto_read_delay, self._run_auto_read)

    async def _run_auto_read(self) -> None:
        self._auto_read = None
        if not self.closed:
            await self._read_state.mark_read(self.conversation_id)

    # -- push --------------------------------------------------------------

    def _on_insert(self, event: MessageInserted) -> None:
        self.store.on_push_event(event)
        if event.message.sender_role != self._viewer:
            self._schedule_auto_read()

    def _on_update(self, event: MessageUpdated) -> None:
        self._read_state.on_message_updated(self.store, event)

    def _on_reconnect(self) -> None:
        age = self.store.cache_age_seconds
        if age is not None and age <= self._freshness:
            logger.debug("Conversation %s still fresh after reconnect (%.0fs)", self.conversation_id, age)
            return
        self._scheduler.call_later(0, self._refetch)

    async def _refetch(self) -> None:
        if self.closed:
            return
        try:
            await self.store.load(force=True)
        except NetworkFailure:
            logger.warning("Refetch of conversation %s after reconnect failed", self.conversation_id)


def _summarize(message: Message | None) -> ReplySummary | None:
    if message is None or message.id is None:
        return None
    return ReplySummary(
        id=message.id,
        body=message.body,
        kind=message.kind,
        sender_role=message.sender_role,
    )
