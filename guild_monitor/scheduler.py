"""Single-flight periodic tasks on top of asyncio.

Each ``PeriodicTask`` owns one ``asyncio.Task`` that awaits its tick, then
sleeps ``max(0, interval - elapsed)``. A tick therefore never overlaps the
previous one; a tick that overruns its interval simply delays the next.
Independent ``PeriodicTask`` instances never delay each other.

A failing tick is logged and the loop carries on. Only cancellation (from
``stop()``) ends the loop.

Typical usage::

    task = PeriodicTask("presence", 60, reconciler.run)
    task.start()      # needs a running event loop
    ...
    await task.stop()
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from guild_monitor.utils.logging import log_context

log = logging.getLogger(__name__)


class PeriodicTask:
    """Runs ``tick`` every ``interval_seconds`` until stopped.

    Parameters
    ----------
    name:
        Task name used in logs and status reports.
    interval_seconds:
        Target period between tick starts.
    tick:
        Coroutine function invoked once per period.
    clock:
        Monotonic clock used to measure tick duration.
    sleep:
        Coroutine used to wait between ticks; injectable for tests.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        tick: Callable[[], Awaitable[Any]],
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.name = name
        self.interval_seconds = interval_seconds
        self._tick = tick
        self._clock = clock
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self.ticks_completed = 0

    @property
    def is_running(self) -> bool:
        """``True`` from ``start()`` until the loop is stopped or dies."""
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the loop; a no-op while it is already alive.

        Raises:
            RuntimeError: If called with no running event loop.
        """
        if self.is_running:
            return
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(), name=f"periodic:{self.name}")
        log.info("Task [%s] started (interval=%.0fs).", self.name, self.interval_seconds)

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish. Safe to call repeatedly."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log.info("Task [%s] stopped.", self.name)

    async def _run(self) -> None:
        with log_context(task=self.name):
            while True:
                started = self._clock()
                try:
                    await self._tick()
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    log.error("Task [%s] tick failed: %s", self.name, exc, exc_info=True)
                self.ticks_completed += 1
                elapsed = self._clock() - started
                await self._sleep(max(0.0, self.interval_seconds - elapsed))
