"""Push-channel subscription registry with de-duplication and reconnect."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Hashable

from chat_sync.application.dto.scope import SubscriptionScope
from chat_sync.application.exceptions import ValidationError
from chat_sync.application.ports.push import OnInsert, OnReconnect, OnUpdate, PushTransport
from chat_sync.application.ports.timing import ScheduledTask, Scheduler
from chat_sync.domain.events.push_event import MessageInserted, PushEvent
from chat_sync.domain.value_objects.enums import ChangeKind, ChannelStatus
from chat_sync.infrastructure.mappers.message import push_event_from_row

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Subscription:
    """Handle returned by PushChannelManager.open(); close it exactly once (extra closes are no-ops)."""

    scope: SubscriptionScope
    on_insert: OnInsert
    on_update: OnUpdate | None = None
    on_reconnect: OnReconnect | None = None
    closed: bool = False


@dataclass(eq=False)
class _Channel:
    scope: SubscriptionScope
    handles: list[Subscription] = field(default_factory=list)
    token: Hashable | None = None
    generation: int = 0
    attempts: int = 0
    dropped: bool = False
    given_up: bool = False
    reconnect_task: ScheduledTask | None = None


class PushChannelManager:
    """Implements application.ports.push.PushChannel.

    One transport subscription per scope key, fanned out to every open handle.
    """

    def __init__(
        self,
        transport: PushTransport,
        scheduler: Scheduler,
        *,
        reconnect_delay: float = 3.0,
        max_attempts: int = 5,
    ) -> None:
        self._transport = transport
        self._scheduler = scheduler
        self._reconnect_delay = reconnect_delay
        self._max_attempts = max_attempts
        self._channels: dict[str, _Channel] = {}

    def listener_count(self, scope: SubscriptionScope) -> int:
        channel = self._channels.get(scope.key)
        return len(channel.handles) if channel else 0

    @property
    def open_scopes(self) -> list[str]:
        return list(self._channels)

    def open(
        self,
        scope: SubscriptionScope,
        on_insert: OnInsert,
        on_update: OnUpdate | None = None,
        on_reconnect: OnReconnect | None = None,
    ) -> Subscription:
        channel = self._channels.get(scope.key)
        if channel is not None:
            if channel.given_up or channel.token is None:
                self._revive(channel)
            for existing in channel.handles:
                if existing.on_insert == on_insert and existing.on_update == on_update:
                    logger.debug("Already subscribed to %s", scope.key)
                    return existing
        else:
            channel = _Channel(scope=scope)
            self._channels[scope.key] = channel
            self._connect(channel)
            logger.info("Subscribing to %s", scope.key)

        handle = Subscription(
            scope=scope,
            on_insert=on_insert,
            on_update=on_update,
            on_reconnect=on_reconnect,
        )
        channel.handles.append(handle)
        return handle

    def close(self, handle: Subscription) -> None:
        if handle.closed:
            return
        handle.closed = True
        channel = self._channels.get(handle.scope.key)
        if channel is None or handle not in channel.handles:
            return
        channel.handles.remove(handle)
        if not channel.handles:
            self._teardown(channel)

    def close_all(self) -> None:
        for channel in list(self._channels.values()):
            for handle in channel.handles:
                handle.closed = True
            channel.handles.clear()
            self._teardown(channel)

    # -- transport side ----------------------------------------------------

    def _connect(self, channel: _Channel) -> None:
        channel.generation += 1
        gen = channel.generation
        channel.token = self._transport.subscribe(
            channel.scope,
            partial(self._on_row, channel, gen, ChangeKind.INSERT),
            partial(self._on_row, channel, gen, ChangeKind.UPDATE),
            partial(self._on_status, channel, gen),
        )

    def _release(self, channel: _Channel) -> None:
        if channel.token is None:
            return
        token, channel.token = channel.token, None
        try:
            self._transport.unsubscribe(token)
        except Exception:
            logger.warning("Unsubscribe from %s failed", channel.scope.key, exc_info=True)

    def _teardown(self, channel: _Channel) -> None:
        if channel.reconnect_task is not None:
            channel.reconnect_task.cancel()
            channel.reconnect_task = None
        self._release(channel)
        if self._channels.get(channel.scope.key) is channel:
            del self._channels[channel.scope.key]
        logger.info("Unsubscribed from %s", channel.scope.key)

    def _is_live(self, channel: _Channel, generation: int | None = None) -> bool:
        if self._channels.get(channel.scope.key) is not channel:
            return False
        return generation is None or generation == channel.generation

    def _on_row(self, channel: _Channel, generation: int, change: ChangeKind, raw: dict[str, Any]) -> None:
        if not self._is_live(channel, generation):
            return
        # The global feed only drives the inbox, which needs inserts.
        if channel.scope.is_global and change == ChangeKind.UPDATE:
            return
        try:
            event = push_event_from_row(change, raw)
        except ValidationError as exc:
            logger.warning("Dropping push payload on %s: %s", channel.scope.key, exc.detail)
            return

        scope = channel.scope
        if not scope.is_global and event.message.conversation_id != scope.conversation_id:
            logger.debug("Dropping event for conversation %s on %s", event.message.conversation_id, scope.key)
            return
        self._dispatch(channel, event)

    def _dispatch(self, channel: _Channel, event: PushEvent) -> None:
        for handle in list(channel.handles):
            if handle.closed:
                continue
            callback = handle.on_insert if isinstance(event, MessageInserted) else handle.on_update
            if callback is None:
                continue
            try:
                callback(event)
            except Exception:
                logger.exception("Push listener failed on %s", channel.scope.key)

    def _on_status(
        self,
        channel: _Channel,
        generation: int,
        status: ChannelStatus,
        error: Exception | None = None,
    ) -> None:
        if not self._is_live(channel, generation):
            return
        logger.debug("Channel %s status: %s", channel.scope.key, status)

        if not status.is_drop:
            if channel.reconnect_task is not None:
                channel.reconnect_task.cancel()
                channel.reconnect_task = None
            channel.attempts = 0
            if channel.dropped:
                channel.dropped = False
                logger.info("Channel %s reconnected", channel.scope.key)
                self._notify_reconnect(channel)
            return

        if error is not None:
            logger.warning("Channel %s %s: %s", channel.scope.key, status, error)
        channel.dropped = True
        self._schedule_reconnect(channel)

    def _schedule_reconnect(self, channel: _Channel) -> None:
        if channel.reconnect_task is not None or channel.given_up:
            return
        channel.attempts += 1
        if channel.attempts > self._max_attempts:
            channel.given_up = True
            logger.error(
                "Giving up on %s after %d reconnect attempts",
                channel.scope.key,
                self._max_attempts,
            )
            return
        delay = self._reconnect_delay * channel.attempts
        logger.warning(
            "Reconnecting to %s in %.1fs (attempt %d/%d)",
            channel.scope.key,
            delay,
            channel.attempts,
            self._max_attempts,
        )
        channel.reconnect_task = self._scheduler.call_later(delay, partial(self._reconnect, channel))

    def _reconnect(self, channel: _Channel) -> None:
        channel.reconnect_task = None
        if not self._is_live(channel):
            return
        self._release(channel)
        self._connect(channel)

    def _revive(self, channel: _Channel) -> None:
        """Resubscribe a scope that gave up; its handles get on_reconnect once it is back."""
        logger.info("Reopening %s after giving up", channel.scope.key)
        channel.given_up = False
        channel.attempts = 0
        channel.dropped = True
        self._release(channel)
        self._connect(channel)

    def _notify_reconnect(self, channel: _Channel) -> None:
        for handle in list(channel.handles):
            if handle.closed or handle.on_reconnect is None:
                continue
            try:
                handle.on_reconnect()
            except Exception:
                logger.exception("Reconnect listener failed on %s", channel.scope.key)
