"""
Process-wide cache store.

One instance per process, created at startup and handed to the components
that need it. Entries are keyed by (namespace, owner, variant), expire after
their ttl, and can be evicted explicitly per owner.

Design decisions:
1. Failures are never cached - a failing compute leaves no entry behind
2. Invalidation detaches in-flight populations so their results are not
   stored; a read that starts after invalidate() returns cannot see the old value
3. Populations run in their own task, so a cancelled caller does not cancel
   a computation other callers may be waiting on
4. Concurrent misses on one key share one computation
"""

import asyncio
import inspect
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from spendwise.core.cache.keys import CacheKey, DEFAULT_VARIANT

logger = logging.getLogger(__name__)

Compute = Callable[[], Union[Any, Awaitable[Any]]]


@dataclass
class CacheEntry:
    key: CacheKey
    value: Any
    stored_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.stored_at >= self.ttl


class _Population:
    """An in-flight computation for one key"""

    __slots__ = ("key", "task")

    def __init__(self, key: CacheKey):
        self.key = key
        self.task: Optional[asyncio.Future] = None


async def _run_compute(compute: Compute) -> Any:
    result = compute()
    if inspect.isawaitable(result):
        result = await result
    return result


def _consume_exception(task: asyncio.Future) -> None:
    # Failures reach every awaiting caller; this only silences the
    # "exception was never retrieved" warning when all callers went away.
    if not task.cancelled():
        task.exception()


class ProcessCacheStore:
    """
    Key-partitioned in-memory cache with per-entry expiry.

    The lock is only held for dictionary operations, never across an
    await, so cache hits never wait on a running computation.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        cleanup_interval: float = 60.0
    ):
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._inflight: Dict[CacheKey, _Population] = {}

        self._cleanup_interval = cleanup_interval
        self._last_cleanup = clock()

        # Metrics for monitoring
        self._hits = 0
        self._misses = 0
        self._computes = 0
        self._compute_failures = 0
        self._invalidations = 0

    async def get(
        self,
        namespace: str,
        owner: str,
        variant: str = DEFAULT_VARIANT,
        *,
        ttl: float,
        compute: Compute
    ) -> Any:
        """
        Return the cached value, computing and storing it on a miss.

        Args:
            namespace: Logical partition, e.g. "subscription-limits"
            owner: Identity the value belongs to
            variant: Sub-key within (namespace, owner)
            ttl: Seconds after which a stored value counts as absent
            compute: Zero-argument producer, sync or async

        Raises:
            Whatever ``compute`` raises. Nothing is stored in that case.
        """
        if ttl <= 0:
            raise ValueError("ttl must be positive")

        key = CacheKey(namespace, owner, variant)

        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)
            if entry is not None:
                if not entry.is_expired(now):
                    self._hits += 1
                    return entry.value
                del self._entries[key]

            self._misses += 1
            self._cleanup_expired(now)

            population = self._inflight.get(key)
            if population is None:
                population = _Population(key)
                population.task = asyncio.ensure_future(self._populate(population, ttl, compute))
                population.task.add_done_callback(_consume_exception)
                self._inflight[key] = population

        return await asyncio.shield(population.task)

    async def _populate(self, population: _Population, ttl: float, compute: Compute) -> Any:
        key = population.key
        try:
            value = await _run_compute(compute)
        except BaseException:
            with self._lock:
                self._compute_failures += 1
                if self._inflight.get(key) is population:
                    del self._inflight[key]
            logger.debug(f"Cache compute failed for {key.namespace}:{key.owner}:{key.variant}")
            raise

        with self._lock:
            self._computes += 1
            # Only store if no invalidation detached us while computing
            if self._inflight.get(key) is population:
                del self._inflight[key]
                self._entries[key] = CacheEntry(key, value, self._clock(), ttl)
        return value

    def peek(self, namespace: str, owner: str, variant: str = DEFAULT_VARIANT) -> Optional[Any]:
        """Return the live value without computing or touching metrics"""
        key = CacheKey(namespace, owner, variant)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(self._clock()):
                return None
            return entry.value

    def invalidate(self, namespace: str, owner: str, variant: Optional[str] = None) -> int:
        """
        Remove one variant, or every variant of (namespace, owner).

        Always succeeds; returns the number of stored entries removed.
        """
        def matches(key: CacheKey) -> bool:
            return (
                key.namespace == namespace
                and key.owner == owner
                and (variant is None or key.variant == variant)
            )

        return self._remove_matching(matches, f"{namespace}:{owner}:{variant or '*'}")

    def invalidate_all(self, owner: str) -> int:
        """Remove every entry of ``owner`` across all namespaces"""
        return self._remove_matching(lambda key: key.owner == owner, f"*:{owner}:*")

    def _remove_matching(self, matches: Callable[[CacheKey], bool], label: str) -> int:
        with self._lock:
            stale = [key for key in self._entries if matches(key)]
            for key in stale:
                del self._entries[key]

            # Detached populations still answer their current waiters
            for key in [key for key in self._inflight if matches(key)]:
                del self._inflight[key]

            self._invalidations += 1

        logger.debug(f"🗑️ Invalidated {label} ({len(stale)} entries)")
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._inflight.clear()

    def _cleanup_expired(self, now: float) -> None:
        """Drop expired entries periodically; caller holds the lock"""
        if now - self._last_cleanup < self._cleanup_interval:
            return

        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        self._last_cleanup = now

        if expired:
            logger.info(f"🧹 Cleaned up {len(expired)} expired cache entries")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_metrics(self) -> Dict[str, int]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "inflight": len(self._inflight),
                "hits": self._hits,
                "misses": self._misses,
                "computes": self._computes,
                "compute_failures": self._compute_failures,
                "invalidations": self._invalidations,
            }
