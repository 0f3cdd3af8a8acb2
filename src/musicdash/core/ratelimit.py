"""Per-user request counters used to refuse calls before they reach upstream."""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class RateLimitCounter:
    """Fixed-window request count for one user."""

    user_id: str
    window_start: float
    count: int = 0


@dataclass
class UpstreamErrorRecord:
    """Diagnostics about the upstream failures seen for one user."""

    user_id: str
    count: int = 0
    last_error: str | None = None
    last_at: float | None = None


class RateLimitTracker:
    """Fixed-window limiter keyed by user id.

    Advisory only: it keeps one process from burning quota on calls the
    upstream is expected to reject. Counters are not shared between processes.

    Args:
        clock: Monotonic time source in seconds.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._counters: dict[str, RateLimitCounter] = {}
        self._errors: dict[str, UpstreamErrorRecord] = {}
        self._lock = threading.Lock()

    def check_and_increment(self, user_id: str, limit: int, window_seconds: float) -> bool:
        """Count a request for ``user_id`` if the current window has room.

        Returns:
            True if the request is allowed (and was counted), False otherwise.
        """
        with self._lock:
            now = self._clock()
            counter = self._counters.get(user_id)
            if counter is None:
                counter = self._counters[user_id] = RateLimitCounter(user_id, now)
            elif now - counter.window_start >= window_seconds:
                counter.window_start = now
                counter.count = 0

            if counter.count >= limit:
                logger.info("Rate limit reached for user %s (%d/%d)", user_id, counter.count, limit)
                return False

            counter.count += 1
            return True

    def retry_after(self, user_id: str, window_seconds: float) -> int:
        """Seconds until ``user_id``'s current window rolls over (at least 1)."""
        with self._lock:
            counter = self._counters.get(user_id)
            if counter is None:
                return 1
            remaining = counter.window_start + window_seconds - self._clock()
        return max(math.ceil(remaining), 1)

    def record_upstream_error(self, user_id: str, error: BaseException) -> None:
        """Record an upstream failure for diagnostics. Does not throttle."""
        with self._lock:
            record = self._errors.get(user_id)
            if record is None:
                record = self._errors[user_id] = UpstreamErrorRecord(user_id)
            record.count += 1
            record.last_error = str(error) or type(error).__name__
            record.last_at = self._clock()
            count = record.count
        logger.warning(
            "Upstream error for user %s (%d so far): %s", user_id, count, record.last_error
        )

    def error_stats(self, user_id: str) -> UpstreamErrorRecord:
        with self._lock:
            record = self._errors.get(user_id)
            if record is None:
                return UpstreamErrorRecord(user_id)
            return UpstreamErrorRecord(record.user_id, record.count, record.last_error, record.last_at)

    def reset(self, user_id: str | None = None) -> None:
        """Forget counters and error records for one user, or for everyone."""
        with self._lock:
            if user_id is None:
                self._counters.clear()
                self._errors.clear()
            else:
                self._counters.pop(user_id, None)
                self._errors.pop(user_id, None)
