"""Versioned TTL cache over a string storage.

Every read is self-healing: expired, incompatible or unreadable entries are
removed as soon as they are seen. The cache is best-effort and never raises.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any

from chat_sync.application.exceptions import StorageFullError
from chat_sync.application.ports.cache import KeyValueStorage
from chat_sync.application.ports.timing import Clock
from chat_sync.domain.entities.cache_entry import CacheEntry
from chat_sync.infrastructure.bus.serializer import dumps, loads

logger = logging.getLogger(__name__)

EVICTION_RATIO = 0.2


class TTLCache:
    def __init__(
        self,
        storage: KeyValueStorage,
        clock: Clock,
        version: str,
        *,
        prefix: str = "cache_",
    ) -> None:
        self._storage = storage
        self._clock = clock
        self._version = version
        self._prefix = prefix

    @property
    def version(self) -> str:
        return self._version

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def _own_keys(self) -> list[str]:
        try:
            return [k for k in self._storage.keys() if k.startswith(self._prefix)]
        except Exception:
            logger.exception("Cache storage unavailable while listing keys")
            return []

    def _read_entry(self, full_key: str) -> CacheEntry | None:
        raw = self._storage.get_item(full_key)
        if raw is None:
            return None
        doc = loads(raw)
        return CacheEntry(
            data=doc["data"],
            stored_at=datetime.fromisoformat(doc["stored_at"]),
            version=doc["version"],
        )

    def set(self, key: str, value: Any) -> None:
        full_key = self._key(key)
        try:
            raw = dumps({
                "data": value,
                "stored_at": self._clock.now(),
                "version": self._version,
            })
        except (TypeError, ValueError):
            logger.exception("Cache value for %s is not serializable, dropped", key)
            return

        try:
            self._storage.set_item(full_key, raw)
        except StorageFullError:
            evicted = self.evict_oldest()
            logger.info("Cache full writing %s, evicted %d oldest entries", key, evicted)
            try:
                self._storage.set_item(full_key, raw)
            except Exception:
                logger.warning("Cache write for %s dropped after eviction", key)
                return
        except Exception:
            logger.warning("Cache write for %s dropped", key, exc_info=True)
            return
        logger.debug("Cache saved: %s", key)

    def get(self, key: str, ttl: float) -> Any | None:
        full_key = self._key(key)
        try:
            entry = self._read_entry(full_key)
        except Exception:
            logger.warning("Unreadable cache entry %s, removing", key, exc_info=True)
            self.remove(key)
            return None

        if entry is None:
            logger.debug("Cache miss: %s", key)
            return None

        if entry.version != self._version:
            logger.debug("Cache version mismatch: %s (%s != %s)", key, entry.version, self._version)
            self.remove(key)
            return None

        age = entry.age_seconds(self._clock.now())
        if age > ttl:
            logger.debug("Cache expired: %s (age: %.0fs)", key, age)
            self.remove(key)
            return None

        logger.debug("Cache hit: %s (age: %.0fs)", key, age)
        return entry.data

    def peek(self, key: str) -> Any | None:
        """Return data of a version-compatible entry regardless of its age."""
        try:
            entry = self._read_entry(self._key(key))
        except Exception:
            return None
        if entry is None or entry.version != self._version:
            return None
        return entry.data

    def should_refresh(self, key: str, ttl: float) -> bool:
        return self.get(key, ttl) is None

    def age(self, key: str) -> float | None:
        try:
            entry = self._read_entry(self._key(key))
        except Exception:
            return None
        if entry is None:
            return None
        return entry.age_seconds(self._clock.now())

    def remove(self, key: str) -> None:
        try:
            self._storage.remove_item(self._key(key))
        except Exception:
            logger.warning("Cache remove for %s failed", key, exc_info=True)

    def clear(self) -> None:
        keys = self._own_keys()
        for full_key in keys:
            try:
                self._storage.remove_item(full_key)
            except Exception:
                logger.warning("Cache remove for %s failed", full_key, exc_info=True)
        logger.debug("Cache cleared (%d entries)", len(keys))

    def evict_oldest(self, ratio: float = EVICTION_RATIO) -> int:
        """Remove the oldest ``ratio`` share of entries by stored_at. Returns how many."""
        stamped: list[tuple[datetime | None, str]] = []
        for full_key in self._own_keys():
            try:
                entry = self._read_entry(full_key)
                stamped.append((entry.stored_at if entry else None, full_key))
            except Exception:
                stamped.append((None, full_key))

        if not stamped:
            return 0

        # Unreadable entries sort first and go before anything else.
        stamped.sort(key=lambda item: (item[0] is not None, item[0] or datetime.min))
        to_remove = math.ceil(len(stamped) * ratio)
        for _stored_at, full_key in stamped[:to_remove]:
            try:
                self._storage.remove_item(full_key)
            except Exception:
                logger.warning("Cache eviction of %s failed", full_key, exc_info=True)
        return to_remove

    def stats(self) -> dict[str, int]:
        keys = self._own_keys()
        size = 0
        for full_key in keys:
            try:
                size += len(self._storage.get_item(full_key) or "")
            except Exception:
                continue
        return {"count": len(keys), "size": size}
