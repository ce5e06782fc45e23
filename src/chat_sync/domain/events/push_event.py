from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from chat_sync.domain.entities.message import Message


@dataclass(frozen=True, slots=True)
class MessageInserted:
    message: Message
    kind: Literal["insert"] = "insert"


@dataclass(frozen=True, slots=True)
class MessageUpdated:
    message: Message
    kind: Literal["update"] = "update"


PushEvent = MessageInserted | MessageUpdated
