from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from chat_sync.domain.value_objects.enums import ConfirmState, MessageKind, SenderRole


@dataclass(frozen=True, slots=True)
class Attachment:
    url: str
    filename: str | None = None
    duration: float | None = None
    size: int | None = None
    mime_type: str | None = None


@dataclass(frozen=True, slots=True)
class ReplySummary:
    """Shallow copy of the message being replied to."""

    id: int
    body: str | None
    kind: MessageKind
    sender_role: SenderRole


@dataclass(frozen=True, slots=True)
class Message:
    id: int | None
    local_id: str
    conversation_id: int
    sender_role: SenderRole
    kind: MessageKind
    body: str | None
    attachment: Attachment | None
    created_at: datetime
    is_read: bool = False
    reply_to: ReplySummary | None = None
    confirm_state: ConfirmState = ConfirmState.CONFIRMED

    @property
    def is_optimistic(self) -> bool:
        return self.confirm_state == ConfirmState.OPTIMISTIC

    @property
    def snippet(self) -> str:
        return self.body or f"[{self.kind}]"
