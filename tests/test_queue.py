"""Unit tests for musicdash.core.queue module."""

import asyncio
import math
import time

import pytest
import pytest_asyncio

from musicdash.core.queue import RequestQueue
from musicdash.errors import FetchError, RateLimitError

# asyncio timers may fire slightly early.
TIMING_SLACK = 0.01


@pytest_asyncio.fixture
async def queue():
    q = RequestQueue(concurrency=3, max_retries=3, default_retry_after=0.02, pacing_delay=0.0)
    yield q
    await q.close()


class TestRequestQueue:
    """Tests for RequestQueue."""

    @pytest.mark.unit
    def test_rejects_invalid_settings(self):
        with pytest.raises(ValueError, match="concurrency"):
            RequestQueue(concurrency=0)
        with pytest.raises(ValueError, match="max_retries"):
            RequestQueue(max_retries=-1)

    @pytest.mark.unit
    def test_defaults(self):
        q = RequestQueue()
        assert q.concurrency == 3
        assert q.max_retries == 3
        assert q.default_retry_after == 3.0
        assert q.pacing_delay == 0.1
        assert not q.running

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_returns_result(self):
        q = RequestQueue(pacing_delay=0.0)
        try:

            async def task():
                return 42

            assert await q.enqueue(task) == 42
            assert q.running
            assert q.stats().completed == 1
        finally:
            await q.close()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_retries_rate_limited_task_then_succeeds(self):
        q = RequestQueue(max_retries=3, pacing_delay=0.0)
        attempts = 0

        async def flaky():
            nonlocal attempts
            attempts += 1
            if attempts <= 2:
                raise RateLimitError(retry_after=0.05)
            return "ok"

        try:
            start = time.monotonic()
            result = await q.enqueue(flaky)
            elapsed = time.monotonic() - start
        finally:
            await q.close()

        assert result == "ok"
        assert attempts == 3
        assert elapsed >= 0.1 - TIMING_SLACK
        assert q.stats().retried == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        q = RequestQueue(max_retries=3, pacing_delay=0.0)
        attempts = 0

        async def always_limited():
            nonlocal attempts
            attempts += 1
            raise RateLimitError("slow down", retry_after=0.01)

        try:
            with pytest.raises(RateLimitError) as exc_info:
                await q.enqueue(always_limited)
        finally:
            await q.close()

        assert attempts == 4
        assert exc_info.value.attempts == 4
        assert exc_info.value.retry_after == 0.01
        assert q.stats().failed == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_zero_retries_fails_on_first_rate_limit(self):
        q = RequestQueue(max_retries=0, pacing_delay=0.0)
        attempts = 0

        async def limited():
            nonlocal attempts
            attempts += 1
            raise RateLimitError(retry_after=0.01)

        try:
            with pytest.raises(RateLimitError):
                await q.enqueue(limited)
        finally:
            await q.close()

        assert attempts == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_default_backoff_when_no_hint(self, queue):
        attempts = 0

        async def flaky():
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise RateLimitError()
            return "ok"

        start = time.monotonic()
        assert await queue.enqueue(flaky) == "ok"
        assert time.monotonic() - start >= 0.02 - TIMING_SLACK

    @pytest.mark.unit
    def test_backoff_is_capped(self):
        q = RequestQueue(default_retry_after=3.0, max_retry_after=60.0)
        assert q._backoff(RateLimitError(retry_after=120)) == 60.0
        assert q._backoff(RateLimitError(retry_after=None)) == 3.0
        assert q._backoff(RateLimitError(retry_after=5)) == 5

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self, queue):
        attempts = 0
        error = FetchError("server exploded", status_code=500)

        async def broken():
            nonlocal attempts
            attempts += 1
            raise error

        with pytest.raises(FetchError) as exc_info:
            await queue.enqueue(broken)

        assert exc_info.value is error
        assert attempts == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_concurrency_cap(self, queue):
        delay = 0.05
        in_flight = 0
        peak = 0

        async def hold_slot():
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(delay)
            in_flight -= 1

        start = time.monotonic()
        await asyncio.gather(*(queue.enqueue(hold_slot) for _ in range(10)))
        elapsed = time.monotonic() - start

        assert peak == 3
        assert queue.stats().peak_in_flight == 3
        assert elapsed >= math.ceil(10 / 3) * delay - TIMING_SLACK

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_admission_is_fifo(self):
        q = RequestQueue(concurrency=1, pacing_delay=0.0)
        started: list[int] = []

        def make(i):
            async def task():
                started.append(i)
                await asyncio.sleep(0)
                return i

            return task

        try:
            results = await asyncio.gather(*(q.enqueue(make(i)) for i in range(5)))
        finally:
            await q.close()

        assert started == [0, 1, 2, 3, 4]
        assert results == [0, 1, 2, 3, 4]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_pacing_delay_between_tasks(self):
        q = RequestQueue(concurrency=1, pacing_delay=0.05)

        async def quick():
            return time.monotonic()

        try:
            first, second = await asyncio.gather(q.enqueue(quick), q.enqueue(quick))
        finally:
            await q.close()

        assert second - first >= 0.05 - TIMING_SLACK

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_caller_timeout_does_not_cancel_task(self, queue):
        finished = asyncio.Event()

        async def slow():
            await asyncio.sleep(0.05)
            finished.set()
            return "done"

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(queue.enqueue(slow), timeout=0.01)

        await asyncio.wait_for(finished.wait(), timeout=1.0)
        assert finished.is_set()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_close_cancels_pending_tasks(self):
        q = RequestQueue(concurrency=1, pacing_delay=0.0)
        release = asyncio.Event()

        async def blocker():
            await release.wait()

        async def never_runs():
            return "unreachable"

        first = asyncio.create_task(q.enqueue(blocker))
        second = asyncio.create_task(q.enqueue(never_runs))
        await asyncio.sleep(0.01)

        await q.close()

        for task in (first, second):
            with pytest.raises(asyncio.CancelledError):
                await task
        assert not q.running

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_self_cancelling_tasks_do_not_kill_workers(self, queue):
        async def cancels_itself():
            done = asyncio.get_running_loop().create_future()
            done.cancel()
            await done

        for _ in range(queue.concurrency):
            with pytest.raises(asyncio.CancelledError):
                await queue.enqueue(cancels_itself)

        async def ok():
            return "ok"

        assert await asyncio.wait_for(queue.enqueue(ok), 1) == "ok"
        assert queue.running
        assert queue.stats().failed == queue.concurrency

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_enqueue_replaces_dead_workers(self, queue):
        queue.start()
        for worker in queue._workers:
            worker.cancel()
        await asyncio.gather(*queue._workers, return_exceptions=True)
        assert not queue.running

        async def ok():
            return 7

        assert await asyncio.wait_for(queue.enqueue(ok), 1) == 7
        assert queue.running
