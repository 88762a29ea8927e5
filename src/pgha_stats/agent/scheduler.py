"""Fixed-interval scheduler for the collect-and-publish cycle."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import suppress

import structlog

logger = structlog.get_logger()

Action = Callable[[], Awaitable[None]]


class PeriodicScheduler:
    """Runs *action* every *interval_seconds* until stopped.

    Ticks sit on a fixed grid starting at ``start()``.  The action is awaited
    inline, so at most one run is in flight; grid points that pass while a
    run is still going are skipped, not queued.  ``stop()`` prevents further
    runs and waits for the current one to finish without cancelling it.
    """

    def __init__(
        self,
        action: Action,
        interval_seconds: float,
        name: str = "cycle",
    ) -> None:
        if interval_seconds <= 0:
            msg = f"interval_seconds must be positive, got {interval_seconds}"
            raise ValueError(msg)
        self._action = action
        self._interval = interval_seconds
        self._name = name
        self._stopping = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._runs = 0
        self._skipped = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def runs(self) -> int:
        return self._runs

    @property
    def skipped(self) -> int:
        return self._skipped

    async def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._loop())
        logger.info("scheduler.started", name=self._name, interval=self._interval)

    async def stop(self) -> None:
        self._stopping.set()
        if self._task is not None:
            await self._task
            self._task = None
            logger.info("scheduler.stopped", name=self._name, runs=self._runs)

    async def _loop(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while not self._stopping.is_set():
            try:
                await self._action()
            except Exception as exc:
                logger.error("scheduler.action_failed", name=self._name, error=str(exc))
            self._runs += 1

            next_tick += self._interval
            now = loop.time()
            if now >= next_tick:
                missed = int((now - next_tick) // self._interval) + 1
                next_tick += missed * self._interval
                self._skipped += missed
                logger.debug("scheduler.ticks_skipped", name=self._name, skipped=missed)

            with suppress(TimeoutError):
                await asyncio.wait_for(self._stopping.wait(), timeout=next_tick - now)
