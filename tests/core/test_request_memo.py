# tests/core/test_request_memo.py
"""
Unit tests for request-scoped memoization.
"""
import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from spendwise.core.cache.memo import RequestScopedMemo, get_request_memo
from spendwise.core.exceptions import UpstreamUnavailableError


class TestRequestScopedMemo:
    """Same key, same request: one computation"""

    @pytest.mark.asyncio
    async def test_computes_once_per_key(self):
        memo = RequestScopedMemo()
        compute = AsyncMock(return_value={"plan": "pro"})

        first = await memo.memoize(("subscription", "u1"), compute)
        second = await memo.memoize(("subscription", "u1"), compute)

        assert first == second == {"plan": "pro"}
        compute.assert_awaited_once()
        assert ("subscription", "u1") in memo

    @pytest.mark.asyncio
    async def test_different_keys_compute_separately(self):
        memo = RequestScopedMemo()
        compute = Mock(side_effect=[1, 2])

        assert await memo.memoize("a", compute) == 1
        assert await memo.memoize("b", compute) == 2
        assert len(memo) == 2

    @pytest.mark.asyncio
    async def test_failure_is_replayed_without_recomputing(self):
        memo = RequestScopedMemo()
        compute = AsyncMock(side_effect=UpstreamUnavailableError("down"))

        with pytest.raises(UpstreamUnavailableError):
            await memo.memoize("limits", compute)
        with pytest.raises(UpstreamUnavailableError):
            await memo.memoize("limits", compute)

        compute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_the_computation(self):
        memo = RequestScopedMemo()
        release = asyncio.Event()
        calls = 0

        async def compute():
            nonlocal calls
            calls += 1
            await release.wait()
            return "shared"

        first = asyncio.create_task(memo.memoize("key", compute))
        second = asyncio.create_task(memo.memoize("key", compute))
        await asyncio.sleep(0)
        release.set()

        assert await asyncio.gather(first, second) == ["shared", "shared"]
        assert calls == 1

    @pytest.mark.asyncio
    async def test_clear_forgets_outcomes(self):
        memo = RequestScopedMemo()
        compute = AsyncMock(side_effect=["before", "after"])

        await memo.memoize("key", compute)
        memo.clear()

        assert len(memo) == 0
        assert await memo.memoize("key", compute) == "after"

    @pytest.mark.asyncio
    async def test_cancelled_first_caller_leaves_result_for_others(self):
        memo = RequestScopedMemo()
        started = asyncio.Event()
        release = asyncio.Event()
        compute = AsyncMock(return_value="other")

        async def slow():
            started.set()
            await release.wait()
            return "value"

        first = asyncio.create_task(memo.memoize("key", slow))
        await started.wait()
        second = asyncio.create_task(memo.memoize("key", compute))
        await asyncio.sleep(0)

        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first

        release.set()
        assert await second == "value"
        assert await memo.memoize("key", compute) == "value"
        compute.assert_not_called()

    @pytest.mark.asyncio
    async def test_clear_cancels_running_computation_without_error(self):
        memo = RequestScopedMemo()
        started = asyncio.Event()

        async def never_finishes():
            started.set()
            await asyncio.Event().wait()

        waiter = asyncio.create_task(memo.memoize("key", never_finishes))
        await started.wait()

        memo.clear()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert len(memo) == 0


class TestRequestMemoDependency:
    @pytest.mark.asyncio
    async def test_each_request_gets_a_fresh_memo(self):
        first_gen = get_request_memo()
        first = await first_gen.__anext__()
        await first.memoize("key", Mock(return_value=1))

        second_gen = get_request_memo()
        second = await second_gen.__anext__()

        assert first is not second
        assert "key" not in second

        await first_gen.aclose()
        await second_gen.aclose()
        assert len(first) == 0
