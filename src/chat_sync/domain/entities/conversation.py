from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from chat_sync.domain.value_objects.enums import MessageKind, SenderRole


@dataclass(frozen=True, slots=True)
class Conversation:
    counterparty_id: int
    display_name: str
    counterparty_phone: str | None = None
    last_message_snippet: str = ""
    last_message_kind: MessageKind | None = None
    last_message_sender: SenderRole | None = None
    last_message_at: datetime | None = None
    unread_count_for_viewer: int = 0
