# tests/core/test_cache_store.py
"""
Unit tests for the process-wide cache store.

Covers hits, expiry, failure handling, invalidation ordering, single-flight
and cancellation behaviour.
"""
import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from spendwise.core.cache.store import CacheEntry, ProcessCacheStore
from spendwise.core.cache.keys import CacheKey
from spendwise.core.exceptions import UpstreamUnavailableError

TTL = 300


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return ProcessCacheStore(clock=clock)


class TestCacheEntry:
    def test_expiry_boundary(self):
        entry = CacheEntry(CacheKey("ns", "u1", "default"), 1, stored_at=100.0, ttl=10)

        assert not entry.is_expired(109.9)
        assert entry.is_expired(110.0)


class TestGet:
    @pytest.mark.asyncio
    async def test_miss_computes_and_stores(self, store):
        compute = AsyncMock(return_value={"transactions": 100})

        value = await store.get("limits", "u1", "default", ttl=TTL, compute=compute)

        assert value == {"transactions": 100}
        assert store.peek("limits", "u1") == {"transactions": 100}
        compute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_hit_does_not_recompute(self, store):
        compute = AsyncMock(return_value=42)

        await store.get("limits", "u1", ttl=TTL, compute=compute)
        second = await store.get("limits", "u1", ttl=TTL, compute=compute)

        assert second == 42
        assert compute.await_count == 1

    @pytest.mark.asyncio
    async def test_sync_compute_is_supported(self, store):
        compute = Mock(return_value=[1, 2, 3])

        assert await store.get("categories", "u1", ttl=TTL, compute=compute) == [1, 2, 3]
        compute.assert_called_once()

    @pytest.mark.asyncio
    async def test_limits_scenario(self, store):
        """get, get again, invalidate, get: compute runs exactly twice"""
        compute = AsyncMock(return_value={"transactions": 100})

        await store.get("limits", "u1", "default", ttl=TTL, compute=compute)
        await store.get("limits", "u1", "default", ttl=TTL, compute=compute)
        assert compute.await_count == 1

        store.invalidate("limits", "u1")
        await store.get("limits", "u1", "default", ttl=TTL, compute=compute)
        assert compute.await_count == 2

    @pytest.mark.asyncio
    async def test_entry_expires_after_ttl(self, store, clock):
        compute = AsyncMock(side_effect=["old", "new"])

        assert await store.get("counts", "u1", ttl=60, compute=compute) == "old"

        clock.advance(59)
        assert await store.get("counts", "u1", ttl=60, compute=compute) == "old"

        clock.advance(1)
        assert store.peek("counts", "u1") is None
        assert await store.get("counts", "u1", ttl=60, compute=compute) == "new"
        assert compute.await_count == 2

    @pytest.mark.asyncio
    async def test_rejects_non_positive_ttl(self, store):
        with pytest.raises(ValueError):
            await store.get("ns", "u1", ttl=0, compute=AsyncMock())

    @pytest.mark.asyncio
    async def test_owners_and_variants_are_separate(self, store):
        await store.get("limits", "u1", ttl=TTL, compute=AsyncMock(return_value="u1"))
        await store.get("limits", "u2", ttl=TTL, compute=AsyncMock(return_value="u2"))
        await store.get("limits", "u1", "monthly", ttl=TTL, compute=AsyncMock(return_value="u1-monthly"))

        assert store.peek("limits", "u1") == "u1"
        assert store.peek("limits", "u2") == "u2"
        assert store.peek("limits", "u1", "monthly") == "u1-monthly"
        assert len(store) == 3


class TestComputeFailure:
    @pytest.mark.asyncio
    async def test_failure_propagates_and_is_not_cached(self, store):
        failing = AsyncMock(side_effect=UpstreamUnavailableError("backend down"))

        with pytest.raises(UpstreamUnavailableError):
            await store.get("limits", "u1", ttl=TTL, compute=failing)

        assert store.peek("limits", "u1") is None
        assert len(store) == 0

        working = AsyncMock(return_value={"transactions": 50})
        assert await store.get("limits", "u1", ttl=TTL, compute=working) == {"transactions": 50}
        working.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failure_is_counted(self, store):
        with pytest.raises(RuntimeError):
            await store.get("ns", "u1", ttl=TTL, compute=Mock(side_effect=RuntimeError("boom")))

        metrics = store.get_metrics()
        assert metrics["compute_failures"] == 1
        assert metrics["entries"] == 0
        assert metrics["inflight"] == 0


class TestInvalidation:
    @pytest.mark.asyncio
    async def test_invalidate_is_idempotent(self, store):
        await store.get("limits", "u1", ttl=TTL, compute=AsyncMock(return_value=1))

        assert store.invalidate("limits", "u1") == 1
        assert store.invalidate("limits", "u1") == 0
        assert store.peek("limits", "u1") is None

    @pytest.mark.asyncio
    async def test_invalidate_missing_key_is_noop(self, store):
        assert store.invalidate("nothing", "nobody") == 0
        assert store.invalidate_all("nobody") == 0

    @pytest.mark.asyncio
    async def test_invalidate_single_variant(self, store):
        await store.get("categories", "u1", "a", ttl=TTL, compute=AsyncMock(return_value="a"))
        await store.get("categories", "u1", "b", ttl=TTL, compute=AsyncMock(return_value="b"))

        assert store.invalidate("categories", "u1", "a") == 1
        assert store.peek("categories", "u1", "a") is None
        assert store.peek("categories", "u1", "b") == "b"

    @pytest.mark.asyncio
    async def test_invalidate_without_variant_removes_all_variants(self, store):
        await store.get("categories", "u1", "a", ttl=TTL, compute=AsyncMock(return_value="a"))
        await store.get("categories", "u1", "b", ttl=TTL, compute=AsyncMock(return_value="b"))
        await store.get("categories", "u2", "a", ttl=TTL, compute=AsyncMock(return_value="other"))

        assert store.invalidate("categories", "u1") == 2
        assert store.peek("categories", "u2", "a") == "other"

    @pytest.mark.asyncio
    async def test_invalidate_all_is_scoped_to_owner(self, store):
        for namespace in ("limits", "categories", "transaction-count"):
            await store.get(namespace, "u1", ttl=TTL, compute=AsyncMock(return_value=namespace))
        await store.get("limits", "u2", ttl=TTL, compute=AsyncMock(return_value="keep"))

        assert store.invalidate_all("u1") == 3
        assert len(store) == 1
        assert store.peek("limits", "u2") == "keep"

    @pytest.mark.asyncio
    async def test_read_after_invalidation_never_sees_inflight_value(self, store):
        """A population that started before invalidate() must not be stored"""
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_old_value():
            started.set()
            await release.wait()
            return "old"

        in_flight = asyncio.create_task(
            store.get("limits", "u1", ttl=TTL, compute=slow_old_value)
        )
        await started.wait()

        store.invalidate("limits", "u1")
        release.set()

        # The concurrent reader may see either value
        assert await in_flight == "old"
        assert store.peek("limits", "u1") is None

        fresh = AsyncMock(return_value="new")
        assert await store.get("limits", "u1", ttl=TTL, compute=fresh) == "new"
        fresh.assert_awaited_once()


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_misses_share_one_computation(self, store):
        release = asyncio.Event()
        calls = 0

        async def compute():
            nonlocal calls
            calls += 1
            await release.wait()
            return "value"

        readers = [
            asyncio.create_task(store.get("limits", "u1", ttl=TTL, compute=compute))
            for _ in range(5)
        ]
        await asyncio.sleep(0)
        release.set()

        assert await asyncio.gather(*readers) == ["value"] * 5
        assert calls == 1

    @pytest.mark.asyncio
    async def test_hits_do_not_wait_for_other_computations(self, store):
        await store.get("limits", "u1", ttl=TTL, compute=AsyncMock(return_value="cached"))

        gate = asyncio.Event()

        async def blocked():
            await gate.wait()

        pending = asyncio.create_task(store.get("limits", "u2", ttl=TTL, compute=blocked))
        await asyncio.sleep(0)

        assert await asyncio.wait_for(
            store.get("limits", "u1", ttl=TTL, compute=AsyncMock()), timeout=1
        ) == "cached"

        gate.set()
        await pending

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_population(self, store):
        started = asyncio.Event()
        release = asyncio.Event()
        finished = asyncio.Event()

        async def compute():
            started.set()
            await release.wait()
            finished.set()
            return "populated"

        caller = asyncio.create_task(store.get("limits", "u1", ttl=TTL, compute=compute))
        await started.wait()

        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        release.set()
        await finished.wait()
        await asyncio.sleep(0)

        assert store.peek("limits", "u1") == "populated"


class TestMetrics:
    @pytest.mark.asyncio
    async def test_hits_and_misses(self, store):
        compute = AsyncMock(return_value=1)

        await store.get("ns", "u1", ttl=TTL, compute=compute)
        await store.get("ns", "u1", ttl=TTL, compute=compute)
        await store.get("ns", "u1", ttl=TTL, compute=compute)
        store.invalidate("ns", "u1")

        metrics = store.get_metrics()
        assert metrics["misses"] == 1
        assert metrics["hits"] == 2
        assert metrics["computes"] == 1
        assert metrics["invalidations"] == 1
        assert metrics["entries"] == 0

    @pytest.mark.asyncio
    async def test_periodic_cleanup_drops_expired_entries(self, clock):
        store = ProcessCacheStore(clock=clock, cleanup_interval=10)
        await store.get("a", "u1", ttl=5, compute=AsyncMock(return_value=1))

        clock.advance(20)
        await store.get("b", "u1", ttl=5, compute=AsyncMock(return_value=2))

        assert len(store) == 1
        assert store.peek("b", "u1") == 2
