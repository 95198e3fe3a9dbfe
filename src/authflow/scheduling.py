"""Cancellable periodic task for the asyncio event loop."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class ScheduledTask:
    """Run *action* every *interval* seconds until cancelled.

    Each tick sleeps first, then awaits ``action(task)``; ticks never
    overlap. The action reads :attr:`elapsed` to decide when to give up and
    may call :meth:`cancel` on the task it was handed.

    Example::

        async def tick(task):
            if task.elapsed > 60:
                task.cancel()

        ScheduledTask(5.0, tick).start()
    """

    def __init__(
        self,
        interval: float,
        action: Callable[["ScheduledTask"], Awaitable[None]],
        name: Optional[str] = None,
    ) -> None:
        self.interval = interval
        self._action = action
        self._name = name or "scheduled-task"
        self._task: Optional[asyncio.Task[None]] = None
        self._started_at: Optional[float] = None
        self._cancelled = False
        self.ticks = 0

    @property
    def elapsed(self) -> float:
        """Seconds since :meth:`start`, on the event loop clock."""
        if self._started_at is None:
            return 0.0
        return asyncio.get_running_loop().time() - self._started_at

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> "ScheduledTask":
        """Schedule the task on the running loop. Starting twice is an error."""
        if self._task is not None:
            raise RuntimeError(f"{self._name} already started")
        loop = asyncio.get_running_loop()
        self._started_at = loop.time()
        self._task = loop.create_task(self._run(), name=self._name)
        return self

    def cancel(self) -> None:
        """Stop scheduling further ticks. Safe to call from inside the action."""
        self._cancelled = True
        task = self._task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        # From inside the action the loop stops at the next check instead.
        if task is not current:
            task.cancel()

    async def wait(self) -> None:
        """Wait until the task has stopped."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise

    async def _run(self) -> None:
        while not self._cancelled:
            await asyncio.sleep(self.interval)
            if self._cancelled:
                break
            self.ticks += 1
            try:
                await self._action(self)
            except Exception:
                logger.exception("%s tick failed", self._name)
