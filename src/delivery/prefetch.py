"""
Prefetch Scheduler.

Priority queue of background work (1 = load LIVE ... 5 = warm recipe
buffer / persist mastery). Tasks run one at a time, lowest priority number
first and FIFO among equals; a running task is never preempted.

Retry policy (the only retry logic in the engine):
- A failed task is re-queued for the next drain cycle with retry_count + 1
  at its original priority.
- When max_retries attempts have failed, the task is dropped, logged as a
  hard failure and reported to drop listeners.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace

from loguru import logger

from src.core.models import PrefetchTask

DropListener = Callable[[PrefetchTask, Exception], None]
TaskProducer = Callable[[], Iterable[PrefetchTask]]


@dataclass(frozen=True)
class SchedulerStats:
    """Counters since the scheduler was created."""

    queued: int
    deferred: int
    executed: int
    failed: int
    retried: int
    dropped: int
    running: bool


@dataclass
class _Periodic:
    name: str
    interval: float
    producer: TaskProducer
    due: float = 0.0


class PrefetchScheduler:
    """Serialized, prioritized executor for prefetch tasks."""

    def __init__(self, max_retries: int = 3, retry_delay_seconds: float = 0.5):
        """
        Initialize the scheduler.

        Args:
            max_retries: Failed attempts after which a task is dropped
            retry_delay_seconds: Pause before the background loop runs a
                cycle that only holds re-queued tasks
        """
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds

        self._heap: list[tuple[int, int, PrefetchTask]] = []
        self._deferred: list[PrefetchTask] = []
        self._sequence = itertools.count()
        self._drain_lock = asyncio.Lock()
        self._wakeup = asyncio.Event()
        self._worker: asyncio.Task | None = None
        self._running = False
        self._periodic: list[_Periodic] = []
        self._drop_listeners: list[DropListener] = []

        self._executed = 0
        self._failed = 0
        self._retried = 0
        self._dropped = 0

    # =========================================================================
    # Queue
    # =========================================================================

    def enqueue(self, task: PrefetchTask) -> None:
        """Queue a task and wake the background loop."""
        heapq.heappush(self._heap, (task.priority, next(self._sequence), task))
        self._wakeup.set()
        logger.debug(
            "Enqueued {} for {} (p{}, retry {})",
            task.kind.value,
            task.target_unit_id,
            task.priority,
            task.retry_count,
        )

    def pending(self) -> list[PrefetchTask]:
        """Queued tasks in execution order, followed by deferred retries."""
        return [task for _, _, task in sorted(self._heap)] + list(self._deferred)

    def is_pending(self, target_unit_id: str) -> bool:
        return any(task.target_unit_id == target_unit_id for task in self.pending())

    def __len__(self) -> int:
        return len(self._heap) + len(self._deferred)

    def on_drop(self, listener: DropListener) -> None:
        self._drop_listeners.append(listener)

    # =========================================================================
    # Execution
    # =========================================================================

    async def drain(self) -> int:
        """
        Run one drain cycle: every queued task, in priority order.

        Tasks enqueued while draining join the same cycle. Failed tasks are
        held back and re-queued when the cycle ends.

        Returns:
            Number of tasks that completed successfully
        """
        async with self._drain_lock:
            completed = 0
            while self._heap:
                _, _, task = heapq.heappop(self._heap)
                try:
                    await task.action()
                except Exception as e:  # Intentionally broad - any task failure consumes a retry
                    self._handle_failure(task, e)
                else:
                    completed += 1
                    self._executed += 1

            for task in self._deferred:
                heapq.heappush(self._heap, (task.priority, next(self._sequence), task))
            self._deferred.clear()
            return completed

    def _handle_failure(self, task: PrefetchTask, error: Exception) -> None:
        self._failed += 1
        attempts = task.retry_count + 1

        if attempts < self.max_retries:
            self._deferred.append(replace(task, retry_count=attempts))
            self._retried += 1
            logger.warning(
                "Prefetch task {} failed (attempt {}/{}), re-queued: {}",
                task.target_unit_id,
                attempts,
                self.max_retries,
                error,
            )
            return

        self._dropped += 1
        logger.error(
            "Prefetch task {} failed permanently after {} attempts: {}",
            task.target_unit_id,
            attempts,
            error,
        )
        for listener in self._drop_listeners:
            listener(task, error)

    # =========================================================================
    # Background loop
    # =========================================================================

    def add_periodic(self, name: str, interval: float, producer: TaskProducer) -> None:
        """
        Enqueue the producer's tasks every `interval` seconds while running.

        The first batch is due one interval after registration or start().
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._periodic.append(_Periodic(name=name, interval=interval, producer=producer))

    def _enqueue_due_periodic(self, now: float) -> None:
        for job in self._periodic:
            if now >= job.due:
                tasks = list(job.producer())
                for task in tasks:
                    self.enqueue(task)
                job.due = now + job.interval
                logger.debug("Periodic job {} queued {} tasks", job.name, len(tasks))

    def _seconds_until_periodic(self, now: float) -> float | None:
        if not self._periodic:
            return None
        return max(0.0, min(job.due for job in self._periodic) - now)

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the background drain loop on the running event loop."""
        if self._running:
            return
        loop = asyncio.get_running_loop()
        now = loop.time()
        for job in self._periodic:
            job.due = now + job.interval
        self._running = True
        self._worker = loop.create_task(self._run(), name="prefetch-scheduler")
        logger.info("Prefetch scheduler started")

    async def stop(self) -> None:
        """Stop the background loop after the task in flight (if any) finishes."""
        if not self._running:
            return
        self._running = False
        self._wakeup.set()
        if self._worker is not None:
            await self._worker
            self._worker = None
        logger.info("Prefetch scheduler stopped ({} tasks left queued)", len(self))

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while self._running:
            timeout = self._seconds_until_periodic(loop.time())
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass
            self._wakeup.clear()
            if not self._running:
                break

            self._enqueue_due_periodic(loop.time())
            self._wakeup.clear()
            if not self._heap:
                continue

            await self.drain()
            if self._heap:
                # Only re-queued retries (or late arrivals) remain
                await asyncio.sleep(self.retry_delay_seconds)
                self._wakeup.set()

    def stats(self) -> SchedulerStats:
        return SchedulerStats(
            queued=len(self._heap),
            deferred=len(self._deferred),
            executed=self._executed,
            failed=self._failed,
            retried=self._retried,
            dropped=self._dropped,
            running=self._running,
        )
