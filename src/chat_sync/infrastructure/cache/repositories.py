"""Typed views over the TTL cache for messages and the conversation list."""
from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from chat_sync.domain.entities.conversation import Conversation
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import SenderRole
from chat_sync.infrastructure.cache.ttl_cache import TTLCache
from chat_sync.infrastructure.mappers import conversation as conversation_mapper
from chat_sync.infrastructure.mappers import message as message_mapper
from chat_sync.infrastructure.schemas import ConversationRow, MessageRow

logger = logging.getLogger(__name__)

CONVERSATIONS_KEY = "chats_list"


def messages_key(conversation_id: int) -> str:
    return f"messages_{conversation_id}"


class CachedMessageRepo:
    """Implements application.ports.cache.MessageCache."""

    def __init__(self, cache: TTLCache) -> None:
        self._cache = cache

    def _decode(self, conversation_id: int, data: Any) -> list[Message] | None:
        try:
            return [message_mapper.row_to_entity(MessageRow.model_validate(r)) for r in data]
        except (PydanticValidationError, TypeError):
            logger.warning("Dropping undecodable cached messages for %s", conversation_id)
            self._cache.remove(messages_key(conversation_id))
            return None

    def load(self, conversation_id: int, ttl: float) -> list[Message] | None:
        data = self._cache.get(messages_key(conversation_id), ttl)
        return None if data is None else self._decode(conversation_id, data)

    def load_any_age(self, conversation_id: int) -> list[Message] | None:
        data = self._cache.peek(messages_key(conversation_id))
        return None if data is None else self._decode(conversation_id, data)

    def save(self, conversation_id: int, messages: list[Message]) -> None:
        rows = [message_mapper.entity_to_row(m) for m in messages if m.id is not None]
        self._cache.set(messages_key(conversation_id), rows)

    def age(self, conversation_id: int) -> float | None:
        return self._cache.age(messages_key(conversation_id))


class CachedConversationRepo:
    """Implements application.ports.cache.ConversationCache."""

    def __init__(self, cache: TTLCache, viewer: SenderRole = SenderRole.ADMIN) -> None:
        self._cache = cache
        self._viewer = viewer

    def _decode(self, data: Any) -> list[Conversation] | None:
        try:
            return [
                conversation_mapper.row_to_entity(ConversationRow.model_validate(r), self._viewer)
                for r in data
            ]
        except (PydanticValidationError, TypeError):
            logger.warning("Dropping undecodable cached conversation list")
            self._cache.remove(CONVERSATIONS_KEY)
            return None

    def load(self, ttl: float) -> list[Conversation] | None:
        data = self._cache.get(CONVERSATIONS_KEY, ttl)
        return None if data is None else self._decode(data)

    def load_any_age(self) -> list[Conversation] | None:
        data = self._cache.peek(CONVERSATIONS_KEY)
        return None if data is None else self._decode(data)

    def save(self, conversations: list[Conversation]) -> None:
        rows = [conversation_mapper.entity_to_row(c, self._viewer) for c in conversations]
        self._cache.set(CONVERSATIONS_KEY, rows)

    def age(self) -> float | None:
        return self._cache.age(CONVERSATIONS_KEY)
