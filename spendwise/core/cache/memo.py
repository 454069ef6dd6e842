"""
Request-scoped memoization.

A RequestScopedMemo lives for exactly one inbound request. It is created by
the ``get_request_memo`` dependency and thrown away when the request ends,
which is what separates it from the process-wide cache store.
"""

import asyncio
import inspect
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Hashable, Union

Compute = Callable[[], Union[Any, Awaitable[Any]]]


async def _run(compute: Compute) -> Any:
    result = compute()
    if inspect.isawaitable(result):
        result = await result
    return result


def _mark_retrieved(task: asyncio.Future) -> None:
    if not task.cancelled():
        task.exception()


class RequestScopedMemo:
    """
    Remembers the outcome of each keyed computation for one request.

    Unlike the process cache, failures are remembered and replayed. Each
    computation runs in its own task, so one cancelled caller leaves the
    result available to the other callers of the same key.
    """

    def __init__(self):
        self._outcomes: Dict[Hashable, asyncio.Future] = {}

    async def memoize(self, key: Hashable, compute: Compute) -> Any:
        """Run ``compute`` once per key; replay its value or exception afterwards"""
        outcome = self._outcomes.get(key)
        if outcome is None or outcome.cancelled():
            outcome = asyncio.ensure_future(_run(compute))
            outcome.add_done_callback(_mark_retrieved)
            self._outcomes[key] = outcome

        return await asyncio.shield(outcome)

    def clear(self) -> None:
        """Drop every outcome; computations still running are cancelled"""
        for outcome in self._outcomes.values():
            if not outcome.done():
                outcome.cancel()
        self._outcomes.clear()

    def __contains__(self, key: Hashable) -> bool:
        return key in self._outcomes

    def __len__(self) -> int:
        return len(self._outcomes)


async def get_request_memo() -> AsyncIterator[RequestScopedMemo]:
    """FastAPI dependency: a fresh memo per request, discarded afterwards"""
    memo = RequestScopedMemo()
    try:
        yield memo
    finally:
        memo.clear()
