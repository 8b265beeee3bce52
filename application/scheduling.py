"""
Deferred callbacks with explicit cancellation.

The giveaway scheduler never touches wall-clock timers directly; it asks a
`Scheduler` for a `ScheduledTask`. Production code uses the asyncio or
threading implementations below, tests substitute a manually advanced
clock.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class ScheduledTask:
    """Handle for one pending callback."""

    def __init__(self, cancel: Callable[[], None]) -> None:
        self._cancel = cancel
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._cancel()


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledTask:
        ...


class AsyncioScheduler:
    """Runs callbacks on an asyncio event loop (used by the Discord bot)."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledTask:
        loop = self._loop or asyncio.get_running_loop()
        handle = loop.call_later(delay, callback)
        return ScheduledTask(handle.cancel)


class ThreadingScheduler:
    """
    Runs callbacks on timer threads, serialised by `lock`.

    Handlers that mutate the ledger must hold the same lock so callbacks
    never interleave with them.
    """

    def __init__(self, lock: threading.RLock) -> None:
        self._lock = lock

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledTask:
        task: Optional[ScheduledTask] = None

        def run() -> None:
            with self._lock:
                if task is not None and task.cancelled:
                    return
                try:
                    callback()
                except Exception:
                    logger.exception("Scheduled callback %r failed", callback)

        timer = threading.Timer(delay, run)
        timer.daemon = True
        task = ScheduledTask(timer.cancel)
        timer.start()
        return task
