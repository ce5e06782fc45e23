"""Shared test fixtures."""
from __future__ import annotations

import asyncio
import inspect
import itertools
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Hashable

import pytest

from chat_sync.app import ChatEngine
from chat_sync.application.dto.message import UploadedAttachment
from chat_sync.application.dto.scope import SubscriptionScope
from chat_sync.application.exceptions import NetworkFailure
from chat_sync.config import Settings
from chat_sync.domain.entities.conversation import Conversation
from chat_sync.domain.entities.message import Attachment, Message, ReplySummary
from chat_sync.domain.value_objects.enums import ChannelStatus, ConfirmState, MessageKind, SenderRole
from chat_sync.domain.value_objects.ids import server_local_id
from chat_sync.infrastructure.cache.storage import InMemoryStorage

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


@dataclass
class FakeClock:
    current: datetime = T0

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


@dataclass(eq=False)
class FakeTask:
    due: float
    seq: int
    callback: Callable[[], Any]
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class FakeScheduler:
    """Virtual-time scheduler. ``advance`` runs due callbacks and awaits coroutine results."""

    clock: FakeClock | None = None
    now: float = 0.0
    tasks: list[FakeTask] = field(default_factory=list)
    _seq: Any = field(default_factory=itertools.count)

    def call_later(self, delay: float, callback: Callable[[], Any]) -> FakeTask:
        task = FakeTask(due=self.now + max(delay, 0.0), seq=next(self._seq), callback=callback)
        self.tasks.append(task)
        return task

    @property
    def pending(self) -> list[FakeTask]:
        return [t for t in self.tasks if not t.cancelled]

    def _move_to(self, when: float) -> None:
        if self.clock is not None and when > self.now:
            self.clock.advance(when - self.now)
        self.now = max(self.now, when)

    async def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = sorted(
                (t for t in self.pending if t.due <= target),
                key=lambda t: (t.due, t.seq),
            )
            if not due:
                break
            task = due[0]
            self.tasks.remove(task)
            self._move_to(task.due)
            result = task.callback()
            if inspect.isawaitable(result):
                await result
        self._move_to(target)


@dataclass
class FakeRemoteStore:
    clock: FakeClock = field(default_factory=FakeClock)
    messages: dict[int, list[Message]] = field(default_factory=dict)
    conversations: list[Conversation] = field(default_factory=list)
    fail_fetch: bool = False
    fail_send: bool = False
    fail_mark_read: bool = False
    fetch_gate: asyncio.Event | None = None
    send_gate: asyncio.Event | None = None
    mark_read_gate: asyncio.Event | None = None
    fetch_calls: list[int] = field(default_factory=list)
    list_calls: int = 0
    sent: list[dict[str, Any]] = field(default_factory=list)
    mark_read_calls: list[tuple[int, SenderRole]] = field(default_factory=list)
    uploads: list[tuple[int, str, bytes, str]] = field(default_factory=list)
    _ids: Any = field(default_factory=lambda: itertools.count(1000))

    async def fetch_messages(self, conversation_id: int) -> list[Message]:
        self.fetch_calls.append(conversation_id)
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        if self.fail_fetch:
            raise NetworkFailure("fetch failed")
        return list(self.messages.get(conversation_id, []))

    async def send_message(
        self,
        conversation_id: int,
        sender_role: SenderRole,
        kind: MessageKind,
        body: str | None = None,
        attachment: Attachment | None = None,
        reply_to_id: int | None = None,
    ) -> Message:
        self.sent.append({
            "conversation_id": conversation_id,
            "sender_role": sender_role,
            "kind": kind,
            "body": body,
            "attachment": attachment,
            "reply_to_id": reply_to_id,
        })
        if self.send_gate is not None:
            await self.send_gate.wait()
        if self.fail_send:
            raise NetworkFailure("send failed", status_code=500)
        reply_to = next(
            (
                ReplySummary(id=m.id, body=m.body, kind=m.kind, sender_role=m.sender_role)
                for m in self.messages.get(conversation_id, [])
                if reply_to_id is not None and m.id == reply_to_id
            ),
            None,
        )
        message_id = next(self._ids)
        message = Message(
            id=message_id,
            local_id=server_local_id(message_id),
            conversation_id=conversation_id,
            sender_role=sender_role,
            kind=kind,
            body=body,
            attachment=attachment,
            created_at=self.clock.now(),
            reply_to=reply_to,
        )
        self.messages.setdefault(conversation_id, []).append(message)
        return message

    async def mark_read(self, conversation_id: int, reader_role: SenderRole) -> None:
        self.mark_read_calls.append((conversation_id, reader_role))
        if self.mark_read_gate is not None:
            await self.mark_read_gate.wait()
        if self.fail_mark_read:
            raise NetworkFailure("mark read failed")

    async def fetch_conversation_list(self) -> list[Conversation]:
        self.list_calls += 1
        if self.fail_fetch:
            raise NetworkFailure("list failed")
        return list(self.conversations)

    async def upload_attachment(
        self,
        conversation_id: int,
        filename: str,
        content: bytes,
        mime_type: str,
    ) -> UploadedAttachment:
        self.uploads.append((conversation_id, filename, content, mime_type))
        return UploadedAttachment(
            url=f"https://files.example/{conversation_id}/{filename}",
            filename=filename,
            size=len(content),
            mime_type=mime_type,
        )


@dataclass(eq=False)
class FakeSubscription:
    scope: SubscriptionScope
    on_insert: Callable[[dict[str, Any]], None]
    on_update: Callable[[dict[str, Any]], None]
    on_status: Callable[[ChannelStatus, Exception | None], None]
    active: bool = True


@dataclass
class FakePushTransport:
    subscriptions: dict[int, FakeSubscription] = field(default_factory=dict)
    _ids: Any = field(default_factory=lambda: itertools.count(1))

    def subscribe(self, scope, on_insert, on_update, on_status) -> Hashable:
        token = next(self._ids)
        self.subscriptions[token] = FakeSubscription(scope, on_insert, on_update, on_status)
        return token

    def unsubscribe(self, token: Hashable) -> None:
        self.subscriptions[token].active = False

    def active(self, scope_key: str | None = None) -> list[FakeSubscription]:
        return [
            s for s in self.subscriptions.values()
            if s.active and (scope_key is None or s.scope.key == scope_key)
        ]

    def latest_token(self, scope_key: str) -> int:
        return max(t for t, s in self.subscriptions.items() if s.scope.key == scope_key)

    def _targets(self, row: dict[str, Any]) -> list[FakeSubscription]:
        return [
            s for s in self.active()
            if s.scope.is_global or s.scope.conversation_id == row.get("company_id")
        ]

    def publish_insert(self, row: dict[str, Any]) -> None:
        for sub in self._targets(row):
            sub.on_insert(row)

    def publish_update(self, row: dict[str, Any]) -> None:
        for sub in self._targets(row):
            sub.on_update(row)

    def report(self, scope_key: str, status: ChannelStatus, error: Exception | None = None) -> None:
        for sub in self.active(scope_key):
            sub.on_status(status, error)


def make_message(
    *,
    message_id: int | None = 1,
    conversation_id: int = 7,
    sender_role: SenderRole = SenderRole.COMPANY,
    body: str | None = "hello",
    kind: MessageKind = MessageKind.TEXT,
    attachment: Attachment | None = None,
    created_at: datetime = T0,
    is_read: bool = False,
    local_id: str | None = None,
    optimistic: bool = False,
) -> Message:
    if local_id is None:
        local_id = f"local-{created_at.timestamp()}-{body}" if message_id is None else server_local_id(message_id)
    return Message(
        id=message_id,
        local_id=local_id,
        conversation_id=conversation_id,
        sender_role=sender_role,
        kind=kind,
        body=body,
        attachment=attachment,
        created_at=created_at,
        is_read=is_read,
        confirm_state=ConfirmState.OPTIMISTIC if optimistic else ConfirmState.CONFIRMED,
    )


def make_row(
    *,
    message_id: int = 1,
    company_id: int = 7,
    sender: str = "company",
    text: str | None = "hello",
    message_type: str = "text",
    created_at: datetime = T0,
    is_read: bool = False,
    **extra: Any,
) -> dict[str, Any]:
    row = {
        "id": message_id,
        "company_id": company_id,
        "sender_type": sender,
        "message_type": message_type,
        "message_text": text,
        "created_at": created_at.isoformat(),
        "is_read": is_read,
    }
    row.update(extra)
    return row


def make_conversation(
    counterparty_id: int = 7,
    *,
    name: str = "Acme",
    phone: str | None = None,
    unread: int = 0,
    last_message_at: datetime | None = None,
) -> Conversation:
    return Conversation(
        counterparty_id=counterparty_id,
        display_name=name,
        counterparty_phone=phone,
        last_message_at=last_message_at,
        unread_count_for_viewer=unread,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler(clock: FakeClock) -> FakeScheduler:
    return FakeScheduler(clock=clock)


@pytest.fixture
def remote(clock: FakeClock) -> FakeRemoteStore:
    return FakeRemoteStore(clock=clock)


@pytest.fixture
def transport() -> FakePushTransport:
    return FakePushTransport()


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def engine(remote, transport, scheduler, clock, settings) -> ChatEngine:
    return ChatEngine(
        remote=remote,
        transport=transport,
        storage=InMemoryStorage(),
        scheduler=scheduler,
        clock=clock,
        config=settings,
    )
