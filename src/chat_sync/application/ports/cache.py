from __future__ import annotations

from typing import Protocol

from chat_sync.domain.entities.conversation import Conversation
from chat_sync.domain.entities.message import Message


class KeyValueStorage(Protocol):
    """String storage behind the TTL cache. ``set_item`` raises StorageFullError on quota."""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


class MessageCache(Protocol):
    def load(self, conversation_id: int, ttl: float) -> list[Message] | None: ...

    def load_any_age(self, conversation_id: int) -> list[Message] | None: ...

    def save(self, conversation_id: int, messages: list[Message]) -> None: ...

    def age(self, conversation_id: int) -> float | None: ...


class ConversationCache(Protocol):
    def load(self, ttl: float) -> list[Conversation] | None: ...

    def load_any_age(self) -> list[Conversation] | None: ...

    def save(self, conversations: list[Conversation]) -> None: ...

    def age(self) -> float | None: ...
