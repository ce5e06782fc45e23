from __future__ import annotations

import pytest

from chat_sync.application.dto.scope import SubscriptionScope
from chat_sync.domain.events.push_event import MessageInserted, MessageUpdated
from chat_sync.domain.value_objects.enums import ChannelStatus
from chat_sync.infrastructure.bus.channel_manager import PushChannelManager
from tests.conftest import FakePushTransport, FakeScheduler, make_row

SCOPE = SubscriptionScope.conversation(7)


class Recorder:
    def __init__(self) -> None:
        self.inserts: list[MessageInserted] = []
        self.updates: list[MessageUpdated] = []
        self.reconnects = 0

    def on_insert(self, event: MessageInserted) -> None:
        self.inserts.append(event)

    def on_update(self, event: MessageUpdated) -> None:
        self.updates.append(event)

    def on_reconnect(self) -> None:
        self.reconnects += 1


@pytest.fixture
def manager(transport: FakePushTransport, scheduler: FakeScheduler) -> PushChannelManager:
    return PushChannelManager(transport, scheduler, reconnect_delay=3.0, max_attempts=3)


def test_scope_keys():
    assert SubscriptionScope.everything().key == "all_chat_messages"
    assert SCOPE.key == "chat_7"


def test_same_callbacks_on_same_scope_are_deduplicated(manager, transport):
    rec = Recorder()
    first = manager.open(SCOPE, rec.on_insert, rec.on_update)
    second = manager.open(SCOPE, rec.on_insert, rec.on_update)

    assert first is second
    assert manager.listener_count(SCOPE) == 1
    assert len(transport.subscriptions) == 1


def test_listeners_share_one_transport_subscription(manager, transport):
    a, b = Recorder(), Recorder()
    manager.open(SCOPE, a.on_insert)
    manager.open(SCOPE, b.on_insert)

    transport.publish_insert(make_row(message_id=1, company_id=7))

    assert len(transport.subscriptions) == 1
    assert manager.listener_count(SCOPE) == 2
    assert len(a.inserts) == len(b.inserts) == 1
    assert a.inserts[0].message.id == 1


def test_close_is_idempotent_and_last_close_unsubscribes(manager, transport):
    a, b = Recorder(), Recorder()
    handle_a = manager.open(SCOPE, a.on_insert)
    handle_b = manager.open(SCOPE, b.on_insert)

    manager.close(handle_a)
    manager.close(handle_a)
    assert transport.active("chat_7")
    assert manager.listener_count(SCOPE) == 1

    manager.close(handle_b)
    assert transport.active("chat_7") == []
    assert manager.open_scopes == []

    transport.publish_insert(make_row(company_id=7))
    assert a.inserts == [] and b.inserts == []


def test_updates_route_to_update_callback(manager, transport):
    rec = Recorder()
    manager.open(SCOPE, rec.on_insert, rec.on_update)

    transport.publish_update(make_row(message_id=3, company_id=7, is_read=True))

    assert rec.inserts == []
    assert rec.updates[0].message.is_read is True


def test_invalid_payload_is_dropped(manager, transport):
    rec = Recorder()
    manager.open(SCOPE, rec.on_insert)
    sub = transport.active("chat_7")[0]

    sub.on_insert({"company_id": 7, "message_text": "no id"})
    sub.on_insert({"id": "x", "company_id": 7, "sender_type": "robot"})

    assert rec.inserts == []


def test_scoped_channel_drops_other_conversations(manager, transport):
    rec = Recorder()
    manager.open(SCOPE, rec.on_insert)

    transport.active("chat_7")[0].on_insert(make_row(company_id=8))

    assert rec.inserts == []


def test_global_scope_receives_everything(manager, transport):
    rec = Recorder()
    manager.open(SubscriptionScope.everything(), rec.on_insert)

    transport.publish_insert(make_row(message_id=1, company_id=7))
    transport.publish_insert(make_row(message_id=2, company_id=8))

    assert [e.message.conversation_id for e in rec.inserts] == [7, 8]


def test_failing_listener_does_not_stop_others(manager, transport):
    rec = Recorder()

    def boom(event):
        raise RuntimeError("listener bug")

    manager.open(SCOPE, boom)
    manager.open(SCOPE, rec.on_insert)

    transport.publish_insert(make_row(company_id=7))

    assert len(rec.inserts) == 1


@pytest.mark.asyncio
async def test_drop_reconnects_after_delay_and_notifies(manager, transport, scheduler):
    rec = Recorder()
    manager.open(SCOPE, rec.on_insert, on_reconnect=rec.on_reconnect)
    transport.report("chat_7", ChannelStatus.SUBSCRIBED)
    first_token = transport.latest_token("chat_7")

    transport.report("chat_7", ChannelStatus.CHANNEL_ERROR, RuntimeError("socket closed"))
    await scheduler.advance(2)
    assert transport.latest_token("chat_7") == first_token

    await scheduler.advance(1)
    second_token = transport.latest_token("chat_7")
    assert second_token != first_token
    assert transport.subscriptions[first_token].active is False
    assert rec.reconnects == 0

    transport.report("chat_7", ChannelStatus.SUBSCRIBED)
    assert rec.reconnects == 1


@pytest.mark.asyncio
async def test_backoff_grows_linearly_and_resets_on_success(manager, transport, scheduler):
    manager.open(SCOPE, Recorder().on_insert)

    transport.report("chat_7", ChannelStatus.TIMED_OUT)
    await scheduler.advance(3)
    transport.report("chat_7", ChannelStatus.CHANNEL_ERROR)

    await scheduler.advance(5)
    tokens_before = len(transport.subscriptions)
    await scheduler.advance(1)
    assert len(transport.subscriptions) == tokens_before + 1

    transport.report("chat_7", ChannelStatus.SUBSCRIBED)
    transport.report("chat_7", ChannelStatus.CLOSED)
    await scheduler.advance(3)
    assert len(transport.subscriptions) == tokens_before + 2


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts(manager, transport, scheduler):
    manager.open(SCOPE, Recorder().on_insert)

    for attempt in range(1, 4):
        transport.report("chat_7", ChannelStatus.CHANNEL_ERROR)
        await scheduler.advance(3.0 * attempt)
    assert len(transport.subscriptions) == 4

    transport.report("chat_7", ChannelStatus.CHANNEL_ERROR)
    assert scheduler.pending == []


@pytest.mark.asyncio
async def test_reopen_after_giving_up_resubscribes(transport, scheduler):
    manager = PushChannelManager(transport, scheduler, reconnect_delay=3.0, max_attempts=1)
    rec = Recorder()
    handle = manager.open(SCOPE, rec.on_insert, on_reconnect=rec.on_reconnect)

    transport.report("chat_7", ChannelStatus.CHANNEL_ERROR)
    await scheduler.advance(3)
    transport.report("chat_7", ChannelStatus.CHANNEL_ERROR)
    assert scheduler.pending == []
    transport.report("chat_7", ChannelStatus.CHANNEL_ERROR)
    assert scheduler.pending == []
    subscribed = len(transport.subscriptions)

    reopened = manager.open(SCOPE, rec.on_insert, on_reconnect=rec.on_reconnect)

    assert reopened is handle
    assert len(transport.subscriptions) == subscribed + 1
    assert len(transport.active("chat_7")) == 1

    transport.report("chat_7", ChannelStatus.SUBSCRIBED)
    assert rec.reconnects == 1
    transport.publish_insert(make_row(message_id=5, company_id=7))
    assert [e.message.id for e in rec.inserts] == [5]

    # The retry budget starts over after reopening.
    transport.report("chat_7", ChannelStatus.CHANNEL_ERROR)
    assert len(scheduler.pending) == 1


def test_reopen_of_healthy_scope_keeps_subscription(manager, transport):
    rec = Recorder()
    manager.open(SCOPE, rec.on_insert)
    transport.report("chat_7", ChannelStatus.SUBSCRIBED)

    manager.open(SCOPE, rec.on_insert)

    assert len(transport.subscriptions) == 1


@pytest.mark.asyncio
async def test_stale_subscription_callbacks_are_ignored(manager, transport, scheduler):
    rec = Recorder()
    manager.open(SCOPE, rec.on_insert)
    old = transport.active("chat_7")[0]

    transport.report("chat_7", ChannelStatus.CHANNEL_ERROR)
    await scheduler.advance(3)

    old.on_insert(make_row(company_id=7))
    old.on_status(ChannelStatus.CHANNEL_ERROR, None)

    assert rec.inserts == []
    assert scheduler.pending == []


@pytest.mark.asyncio
async def test_close_cancels_pending_reconnect(manager, transport, scheduler):
    handle = manager.open(SCOPE, Recorder().on_insert)
    transport.report("chat_7", ChannelStatus.CHANNEL_ERROR)

    manager.close(handle)
    await scheduler.advance(10)

    assert len(transport.subscriptions) == 1
    assert transport.active() == []


def test_close_all(manager, transport):
    handles = [
        manager.open(SCOPE, Recorder().on_insert),
        manager.open(SubscriptionScope.everything(), Recorder().on_insert),
    ]

    manager.close_all()

    assert transport.active() == []
    assert all(h.closed for h in handles)
    assert manager.open_scopes == []
