"""String storages backing the TTL cache."""
from __future__ import annotations

import logging

import redis

from chat_sync.application.exceptions import StorageFullError

logger = logging.getLogger(__name__)


class InMemoryStorage:
    """Process-local storage with an optional byte quota, like a browser's localStorage."""

    def __init__(self, max_bytes: int | None = None) -> None:
        self._items: dict[str, str] = {}
        self._max_bytes = max_bytes

    @property
    def used_bytes(self) -> int:
        return sum(len(k) + len(v) for k, v in self._items.items())

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        if self._max_bytes is not None:
            current = self.used_bytes
            previous = self._items.get(key)
            if previous is not None:
                current -= len(key) + len(previous)
            if current + len(key) + len(value) > self._max_bytes:
                raise StorageFullError(f"Quota of {self._max_bytes} bytes exceeded writing {key}")
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._items)


class RedisStorage:
    """Persistent storage on a synchronous Redis client (``decode_responses=True``)."""

    def __init__(self, client: redis.Redis, namespace: str = "chat_sync") -> None:
        self._redis = client
        self._namespace = namespace

    def _full(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    def get_item(self, key: str) -> str | None:
        return self._redis.get(self._full(key))

    def set_item(self, key: str, value: str) -> None:
        try:
            self._redis.set(self._full(key), value)
        except redis.ResponseError as e:
            if "OOM" in str(e):
                raise StorageFullError(str(e)) from e
            raise

    def remove_item(self, key: str) -> None:
        self._redis.delete(self._full(key))

    def keys(self) -> list[str]:
        prefix = self._full("")
        return [k[len(prefix):] for k in self._redis.scan_iter(match=f"{prefix}*")]

    def close(self) -> None:
        self._redis.close()
