"""Clock and cancellable scheduled tasks.

Debounce timers and background revalidation run through these so that
tests can swap the time source and await outstanding work.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional, Set

from canvas_sync.app.core.logging import get_logger

logger = get_logger(__name__)

AsyncCallback = Callable[[], Awaitable[Any]]


class Clock:
    """Wall-clock time source in seconds."""

    def now(self) -> float:
        return time.time()


class ScheduledTask:
    """Handle for a callback armed with ``Scheduler.schedule_after``.

    Cancelling only has an effect before the callback fires. Once the
    callback is running it is left to complete.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._timer: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False

    @property
    def fired(self) -> bool:
        return self._task is not None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> bool:
        """Disarm the timer.

        Returns:
            True if the callback will no longer run
        """
        if self.fired or self._cancelled:
            return False
        self._cancelled = True
        if self._timer is not None:
            self._timer.cancel()
        return True

    async def wait(self) -> None:
        """Wait for a fired callback to finish (no-op otherwise)."""
        if self._task is not None:
            await asyncio.shield(self._task)


class Scheduler:
    """Arms coroutine callbacks on the running event loop.

    Fired callbacks run as tasks tracked by the scheduler so that
    ``drain`` can await them and exceptions are logged, never lost.
    """

    def __init__(self) -> None:
        self._running: Set[asyncio.Task] = set()

    def schedule_after(
        self, delay: float, callback: AsyncCallback, name: str = "scheduled"
    ) -> ScheduledTask:
        """Run ``callback`` after ``delay`` seconds.

        Args:
            delay: Seconds to wait; 0 fires on the next loop iteration
            callback: Zero-argument coroutine function
            name: Label used in logs

        Returns:
            Cancellable handle
        """
        handle = ScheduledTask(name)
        loop = asyncio.get_running_loop()

        def _fire() -> None:
            if handle.cancelled:
                return
            handle._task = self.spawn(callback(), name=name)

        handle._timer = loop.call_later(max(0.0, delay), _fire)
        return handle

    def spawn(self, coro: Awaitable[Any], name: str = "task") -> asyncio.Task:
        """Start ``coro`` now as a tracked background task."""
        task = asyncio.ensure_future(coro)
        self._running.add(task)
        task.add_done_callback(lambda t: self._on_done(t, name))
        return task

    def _on_done(self, task: asyncio.Task, name: str) -> None:
        self._running.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"Background task '{name}' failed: {type(exc).__name__}: {exc}",
                exc_info=exc,
            )

    @property
    def pending(self) -> int:
        return len(self._running)

    async def drain(self) -> None:
        """Wait until every fired callback has finished."""
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)

    async def cancel_all(self) -> None:
        """Cancel running callbacks (used on shutdown)."""
        tasks = list(self._running)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
