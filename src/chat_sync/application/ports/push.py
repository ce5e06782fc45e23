from __future__ import annotations

from typing import Any, Callable, Hashable, Protocol

from chat_sync.application.dto.scope import SubscriptionScope
from chat_sync.domain.events.push_event import MessageInserted, MessageUpdated
from chat_sync.domain.value_objects.enums import ChannelStatus

RawRowCallback = Callable[[dict[str, Any]], None]
StatusCallback = Callable[[ChannelStatus, Exception | None], None]

OnInsert = Callable[[MessageInserted], None]
OnUpdate = Callable[[MessageUpdated], None]
OnReconnect = Callable[[], None]


class PushTransport(Protocol):
    """Delivers raw JSON rows, at-least-once and ordered per scope."""

    def subscribe(
        self,
        scope: SubscriptionScope,
        on_insert: RawRowCallback,
        on_update: RawRowCallback,
        on_status: StatusCallback,
    ) -> Hashable: ...

    def unsubscribe(self, token: Hashable) -> None: ...


class SubscriptionHandle(Protocol):
    @property
    def scope(self) -> SubscriptionScope: ...

    @property
    def closed(self) -> bool: ...


class PushChannel(Protocol):
    def open(
        self,
        scope: SubscriptionScope,
        on_insert: OnInsert,
        on_update: OnUpdate | None = None,
        on_reconnect: OnReconnect | None = None,
    ) -> SubscriptionHandle: ...

    def close(self, handle: SubscriptionHandle) -> None: ...
