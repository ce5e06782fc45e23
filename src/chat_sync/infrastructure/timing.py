from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)


class _AsyncioScheduledTask:
    def __init__(self) -> None:
        self.timer: asyncio.TimerHandle | None = None
        self.task: asyncio.Task[Any] | None = None

    def cancel(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
        if self.task is not None and not self.task.done():
            self.task.cancel()


class AsyncioScheduler:
    """Implements application.ports.timing.Scheduler on the running event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._tasks: set[asyncio.Task[Any]] = set()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def call_later(self, delay: float, callback: Callable[[], Any]) -> _AsyncioScheduledTask:
        handle = _AsyncioScheduledTask()
        loop = self._get_loop()

        def _run() -> None:
            try:
                result = callback()
            except Exception:
                logger.exception("Scheduled callback %r failed", callback)
                return
            if inspect.isawaitable(result):
                task = loop.create_task(self._guard(result))
                handle.task = task
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

        handle.timer = loop.call_later(max(delay, 0.0), _run)
        return handle

    @staticmethod
    async def _guard(awaitable: Any) -> None:
        try:
            await awaitable
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Scheduled coroutine failed")

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
