"""Bounded in-memory cache with per-entry TTL.

One instance is shared by every route handler. Entries are keyed by the
strings built in :mod:`musicdash.core.keys`, which lets callers drop all data
for a user with a single prefix invalidation.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from ..constants import DEFAULT_CACHE_MAX_ENTRIES
from ..errors import StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    """A stored value and the moment it stops being valid."""

    key: str
    value: T
    created_at: float
    ttl_seconds: float

    def expired(self, now: float) -> bool:
        return now > self.created_at + self.ttl_seconds


@dataclass(frozen=True)
class CacheStats:
    """Hit/miss counters since creation or the last reset."""

    hits: int
    misses: int
    hit_ratio: float
    entry_count: int

    def as_dict(self) -> dict:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_ratio": self.hit_ratio,
            "entry_count": self.entry_count,
        }


class TTLCache(Generic[T]):
    """Thread-safe bounded cache with per-entry TTL and LRU eviction.

    Expired entries are dropped lazily on read, so a value is never returned
    past its TTL even if :meth:`sweep` has not run yet.

    Args:
        max_entries: Capacity; the least recently used entry is evicted beyond it.
        clock: Monotonic time source in seconds.
        copy_values: Deep-copy values on write and read instead of sharing
            references with callers.
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
        copy_values: bool = False,
    ):
        if max_entries < 1:
            raise ValueError(f"max_entries must be at least 1, got {max_entries}")
        self._entries: OrderedDict[str, CacheEntry[T]] = OrderedDict()
        self._max_entries = max_entries
        self._clock = clock
        self._copy_values = copy_values
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.expired(self._clock())

    def get(self, key: str) -> T | None:
        """Return the cached value, or None on a miss.

        An expired entry counts as a miss and is removed.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if entry.expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                return None

            self._entries.move_to_end(key)
            self._hits += 1
            value = entry.value

        return copy.deepcopy(value) if self._copy_values else value

    def peek(self, key: str) -> T | None:
        """Like :meth:`get`, but leaves hit/miss counters and LRU order alone."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.expired(self._clock()):
                return None
            value = entry.value

        return copy.deepcopy(value) if self._copy_values else value

    def set(self, key: str, value: T | None, ttl_seconds: float) -> None:
        """Store or overwrite ``key``.

        A non-positive TTL or a None value removes the entry instead.

        Raises:
            StorageError: If the value could not be stored.
        """
        if value is None or ttl_seconds <= 0:
            self.invalidate(key)
            return

        if self._copy_values:
            try:
                value = copy.deepcopy(value)
            except Exception as exc:
                raise StorageError(f"Cannot store value for {key!r}: {exc}") from exc

        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted least recently used cache entry %s", evicted)

            self._entries[key] = CacheEntry(key, value, self._clock(), ttl_seconds)

    async def get_or_set(
        self,
        key: str,
        ttl_seconds: float,
        fetch: Callable[[], Awaitable[T | None]],
    ) -> T | None:
        """Return the cached value for ``key``, fetching and storing it on a miss.

        Concurrent misses for the same key are not coalesced; each one calls
        ``fetch`` and the last write wins.

        Args:
            key: Cache key.
            ttl_seconds: Lifetime of the stored result.
            fetch: Zero-argument coroutine function producing the value.

        Returns:
            The cached or freshly fetched value.

        Raises:
            Whatever ``fetch`` raises; nothing is cached in that case.
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        value = await fetch()
        if value is not None:
            try:
                self.set(key, value, ttl_seconds)
            except StorageError:
                logger.warning("Cache write failed for %s; returning uncached value", key, exc_info=True)
        return value

    def invalidate(self, key: str) -> None:
        """Remove ``key`` if present."""
        with self._lock:
            self._entries.pop(key, None)

    def invalidate_by_prefix(self, prefix: str) -> int:
        """Remove every key that starts with ``prefix``.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.debug("Invalidated %d cache entries with prefix %s", len(doomed), prefix)
        return len(doomed)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def sweep(self) -> int:
        """Remove all expired entries.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("Swept %d expired cache entries", len(expired))
        return len(expired)

    async def run_sweeper(self, interval: float) -> None:
        """Sweep expired entries every ``interval`` seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            self.sweep()

    def stats(self) -> CacheStats:
        with self._lock:
            total = self._hits + self._misses
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                hit_ratio=self._hits / total if total else 0.0,
                entry_count=len(self._entries),
            )

    def reset_stats(self) -> None:
        with self._lock:
            self._hits = 0
            self._misses = 0
