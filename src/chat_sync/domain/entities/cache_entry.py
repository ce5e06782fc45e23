from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True, slots=True)
class CacheEntry:
    data: Any
    stored_at: datetime
    version: str

    def age_seconds(self, now: datetime) -> float:
        return (now - self.stored_at).total_seconds()
