"""Concurrency-limited executor for upstream API calls.

A fixed pool of worker coroutines pulls tasks from a FIFO queue. A task that
fails with :class:`RateLimitError` is retried by the worker that holds it after
waiting the upstream's retry-after hint; any other failure goes straight back
to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from ..constants import (
    DEFAULT_PACING_DELAY_SECONDS,
    DEFAULT_QUEUE_CONCURRENCY,
    DEFAULT_QUEUE_MAX_RETRIES,
    DEFAULT_RETRY_AFTER_SECONDS,
    MAX_RETRY_AFTER_SECONDS,
)
from ..errors import RateLimitError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class QueuedTask:
    """A pending upstream call and the future its caller awaits."""

    execute: Callable[[], Awaitable[Any]]
    future: asyncio.Future
    attempt: int = 0
    enqueued_at: float = field(default_factory=time.monotonic)


@dataclass(frozen=True)
class QueueStats:
    pending: int
    in_flight: int
    peak_in_flight: int
    completed: int
    failed: int
    retried: int

    def as_dict(self) -> dict:
        return {
            "pending": self.pending,
            "in_flight": self.in_flight,
            "peak_in_flight": self.peak_in_flight,
            "completed": self.completed,
            "failed": self.failed,
            "retried": self.retried,
        }


class RequestQueue:
    """Bounded-concurrency request queue with retry on rate limiting.

    Admission to a worker slot is FIFO. Completion order is not: tasks run in
    parallel and retries delay some of them.

    Args:
        concurrency: Number of tasks allowed in flight at once.
        max_retries: Retries after the first attempt for rate-limited tasks.
        default_retry_after: Backoff used when the error carries no hint.
        max_retry_after: Upper bound for any single backoff.
        pacing_delay: Pause a worker takes after finishing a task.
    """

    def __init__(
        self,
        concurrency: int = DEFAULT_QUEUE_CONCURRENCY,
        max_retries: int = DEFAULT_QUEUE_MAX_RETRIES,
        default_retry_after: float = DEFAULT_RETRY_AFTER_SECONDS,
        max_retry_after: float = MAX_RETRY_AFTER_SECONDS,
        pacing_delay: float = DEFAULT_PACING_DELAY_SECONDS,
    ):
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        if max_retries < 0:
            raise ValueError(f"max_retries must be non-negative, got {max_retries}")

        self.concurrency = concurrency
        self.max_retries = max_retries
        self.default_retry_after = default_retry_after
        self.max_retry_after = max_retry_after
        self.pacing_delay = pacing_delay

        self._tasks: asyncio.Queue[QueuedTask] | None = None
        self._workers: list[asyncio.Task] = []
        self._in_flight = 0
        self._peak_in_flight = 0
        self._completed = 0
        self._failed = 0
        self._retried = 0
        self._spawned = 0
        self._closing = False

    @property
    def running(self) -> bool:
        return any(not worker.done() for worker in self._workers)

    def start(self) -> None:
        """Spawn the worker pool on the running event loop.

        Safe to call again; only missing or finished workers are replaced.
        """
        self._ensure_workers()

    def _ensure_workers(self) -> asyncio.Queue[QueuedTask]:
        if self._tasks is None:
            self._tasks = asyncio.Queue()
        self._closing = False
        alive = [worker for worker in self._workers if not worker.done()]
        missing = self.concurrency - len(alive)
        for _ in range(missing):
            self._spawned += 1
            alive.append(
                asyncio.create_task(
                    self._worker(self._tasks), name=f"request-queue-worker-{self._spawned}"
                )
            )
        if missing:
            logger.debug("Started %d request queue workers", missing)
        self._workers = alive
        return self._tasks

    async def close(self) -> None:
        """Stop the workers and cancel tasks that never started."""
        self._closing = True
        workers, self._workers = self._workers, []
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

        if self._tasks is not None:
            while not self._tasks.empty():
                task = self._tasks.get_nowait()
                if not task.future.done():
                    task.future.cancel()
            self._tasks = None

    async def enqueue(self, execute: Callable[[], Awaitable[T]]) -> T:
        """Run ``execute`` under the concurrency cap and return its result.

        Cancelling the caller (for example through ``asyncio.wait_for``) does not
        cancel the task; it still runs to completion in the background.

        Raises:
            RateLimitError: The task was still rate limited after ``max_retries``.
            Exception: Any other error raised by ``execute``, unchanged.
        """
        tasks = self._ensure_workers()

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        future.add_done_callback(_consume)
        await tasks.put(QueuedTask(execute, future))
        return await asyncio.shield(future)

    def stats(self) -> QueueStats:
        return QueueStats(
            pending=self._tasks.qsize() if self._tasks is not None else 0,
            in_flight=self._in_flight,
            peak_in_flight=self._peak_in_flight,
            completed=self._completed,
            failed=self._failed,
            retried=self._retried,
        )

    def _stopping(self) -> bool:
        worker = asyncio.current_task()
        return self._closing or (worker is not None and worker.cancelling() > 0)

    async def _worker(self, tasks: asyncio.Queue[QueuedTask]) -> None:
        while True:
            task = await tasks.get()
            self._in_flight += 1
            self._peak_in_flight = max(self._peak_in_flight, self._in_flight)
            try:
                result = await self._run_with_retry(task)
            except asyncio.CancelledError:
                if not task.future.done():
                    task.future.cancel()
                if self._stopping():
                    raise
                # The task cancelled itself; the worker keeps serving.
                self._failed += 1
                logger.warning("Queued request was cancelled by its own code")
            except Exception as exc:
                self._failed += 1
                if not task.future.done():
                    task.future.set_exception(exc)
            else:
                self._completed += 1
                if not task.future.done():
                    task.future.set_result(result)
            finally:
                self._in_flight -= 1
                tasks.task_done()

            if self.pacing_delay > 0:
                await asyncio.sleep(self.pacing_delay)

    async def _run_with_retry(self, task: QueuedTask) -> Any:
        while True:
            task.attempt += 1
            try:
                return await task.execute()
            except RateLimitError as exc:
                retries = task.attempt - 1
                if retries >= self.max_retries:
                    exc.attempts = task.attempt
                    logger.warning(
                        "Giving up on rate-limited request after %d attempts", task.attempt
                    )
                    raise

                delay = self._backoff(exc)
                self._retried += 1
                logger.warning(
                    "Rate limited (attempt %d/%d); retrying in %.2fs",
                    task.attempt,
                    self.max_retries + 1,
                    delay,
                )
                await asyncio.sleep(delay)

    def _backoff(self, exc: RateLimitError) -> float:
        delay = exc.retry_after if exc.retry_after is not None else self.default_retry_after
        return min(max(delay, 0.0), self.max_retry_after)


def _consume(future: asyncio.Future) -> None:
    # A caller that stopped waiting never retrieves the exception.
    if not future.cancelled():
        future.exception()
