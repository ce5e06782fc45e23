from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Default wall-clock implementation."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ScheduledTask(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Runs a callback once after a delay. Coroutine results are awaited on the loop."""

    def call_later(self, delay: float, callback: Callable[[], Any]) -> ScheduledTask: ...
