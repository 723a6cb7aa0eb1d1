"""
Cooperative single-runner task scheduler.

Every piece of work that touches server state (client requests, relay
polls, relay pushes) is submitted to the Timeline and executed one task
at a time, to completion. Coroutine tasks are awaited by the runner
before the next task starts, so tasks can do I/O without any other task
observing their intermediate state. No locks are needed around the
Model, the relay cursor or the id generator.

Invariants:
    - At most one task runs at any instant
    - Tasks due at the same time run in submission order
    - A task never runs before its due time
    - A failing task aborts only itself
    - Scheduled tasks cannot be cancelled individually; stop() cancels
      every submitted task that has not started

How to change safely:
    - Never run a task outside _run(); that is what makes it exclusive
    - Recurring work re-submits itself with schedule_in() from inside
      the task body
"""

from __future__ import annotations

import asyncio
import heapq
import inspect
import itertools
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

Task = Callable[[], Any]


@dataclass(order=True)
class _Entry:
    due: float
    seq: int
    task: Task = field(compare=False)
    future: asyncio.Future | None = field(compare=False, default=None)


class Timeline:
    """Time-ordered queue of tasks with a single runner.

    Example:
        >>> timeline = Timeline()
        >>> timeline.schedule_now(lambda: print("now"))
        >>> timeline.schedule_in(5000, poll)
        >>> result = await timeline.submit(handle_request)
        >>> await timeline.start()  # runs until stop()
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        """Initialize an empty timeline.

        Args:
            clock: Monotonic clock in seconds (injectable for tests)
        """
        self._clock = clock
        self._queue: list[_Entry] = []
        self._seq = itertools.count()
        self._wakeup = asyncio.Event()
        self._running = False
        self._executed_count = 0
        self._failed_count = 0
        self._cancelled_count = 0

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def is_running(self) -> bool:
        return self._running

    def schedule_now(self, task: Task) -> None:
        """Run task as soon as the tasks already due have run."""
        self._push(self._clock(), task)

    def schedule_in(self, delay_ms: int, task: Task) -> None:
        """Run task no earlier than delay_ms from now.

        Raises:
            ValueError: If delay_ms is negative
        """
        if delay_ms < 0:
            raise ValueError(f"delay_ms must be >= 0, got {delay_ms}")
        self._push(self._clock() + delay_ms / 1000.0, task)

    def submit(self, task: Task) -> asyncio.Future:
        """Schedule task now and return a future for its outcome.

        The future receives the task's return value, or the exception it
        raised. Must be called from a running event loop.
        """
        future = asyncio.get_running_loop().create_future()
        self._push(self._clock(), task, future)
        return future

    def _push(self, due: float, task: Task, future: asyncio.Future | None = None) -> None:
        heapq.heappush(self._queue, _Entry(due, next(self._seq), task, future))
        self._wakeup.set()

    async def run_pending(self) -> int:
        """Run every task that is due now, including tasks they schedule now.

        Returns:
            Number of tasks executed
        """
        count = 0
        while self._queue and self._queue[0].due <= self._clock():
            entry = heapq.heappop(self._queue)
            await self._run(entry)
            count += 1
        return count

    async def _run(self, entry: _Entry) -> None:
        try:
            result = entry.task()
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            self._failed_count += 1
            if entry.future is not None:
                if not entry.future.done():
                    entry.future.set_exception(e)
            else:
                logger.error(f"Scheduled task failed: {e}", exc_info=True)
        else:
            self._executed_count += 1
            if entry.future is not None and not entry.future.done():
                entry.future.set_result(result)

    async def start(self) -> None:
        """Run tasks as they become due until stop() is called."""
        if self._running:
            logger.warning("Timeline already running")
            return

        self._running = True
        logger.info("Starting timeline")

        try:
            while self._running:
                await self.run_pending()
                if not self._running:
                    break

                timeout = None
                if self._queue:
                    timeout = max(0.0, self._queue[0].due - self._clock())

                self._wakeup.clear()
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
                except asyncio.TimeoutError:
                    pass

        except asyncio.CancelledError:
            logger.info("Timeline cancelled")

        finally:
            self._running = False

    async def stop(self) -> None:
        """Stop the runner after the current task completes.

        Submitted tasks that have not started are dropped and their futures
        cancelled, so callers awaiting them do not hang. Tasks queued with
        schedule_now/schedule_in stay queued.
        """
        self._running = False
        self._wakeup.set()

        kept: list[_Entry] = []
        for entry in self._queue:
            if entry.future is None:
                kept.append(entry)
            elif not entry.future.done():
                entry.future.cancel()
                self._cancelled_count += 1
        heapq.heapify(kept)
        self._queue = kept

        logger.info("Stopping timeline", extra={"cancelled_count": self._cancelled_count})

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "pending": len(self._queue),
            "executed_count": self._executed_count,
            "failed_count": self._failed_count,
            "cancelled_count": self._cancelled_count,
        }
