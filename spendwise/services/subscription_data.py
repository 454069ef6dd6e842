# spendwise/services/subscription_data.py
"""
Cached readers for per-user subscription data.

Every read goes request memo -> process cache -> backend. Backend failures
surface as UpstreamUnavailableError and are never cached.
"""
import logging
from typing import Any, Awaitable, Callable, List, Optional

from spendwise.core.cache import keys
from spendwise.core.cache.memo import RequestScopedMemo
from spendwise.core.cache.store import ProcessCacheStore
from spendwise.core.exceptions import SpendwiseError, UpstreamUnavailableError
from spendwise.models.finance import Category
from spendwise.models.subscription import (
    PlanType,
    ResourceKind,
    SubscriptionLimits,
    UserSubscription,
    limits_for_plan,
)
from spendwise.services.data_backend import DataBackend

logger = logging.getLogger(__name__)

# Resource kinds whose counts are cached, with their namespace
COUNT_NAMESPACES = {
    ResourceKind.TRANSACTIONS: keys.TRANSACTION_COUNT,
    ResourceKind.CATEGORIES: keys.CATEGORY_COUNT,
    ResourceKind.BANK_CONNECTIONS: keys.BANK_CONNECTION_COUNT,
}


async def call_backend(operation: str, call: Callable[[], Awaitable[Any]]) -> Any:
    """Run a backend call, turning unexpected failures into UpstreamUnavailableError"""
    try:
        return await call()
    except SpendwiseError:
        raise
    except Exception as e:
        logger.error(f"Backend call {operation} failed: {type(e).__name__}: {e}")
        raise UpstreamUnavailableError(
            "Backing data source unavailable",
            operation=operation,
            details={'error_type': type(e).__name__}
        ) from e


class SubscriptionDataService:
    """Read side of subscription, limits and usage data for one owner at a time"""

    def __init__(self, store: ProcessCacheStore, backend: DataBackend):
        self.store = store
        self.backend = backend

    async def _cached(
        self,
        namespace: str,
        owner: str,
        ttl: float,
        compute: Callable[[], Awaitable[Any]],
        memo: Optional[RequestScopedMemo] = None
    ) -> Any:
        def from_store():
            return self.store.get(namespace, owner, keys.DEFAULT_VARIANT, ttl=ttl, compute=compute)

        if memo is None:
            return await from_store()
        return await memo.memoize((namespace, owner), from_store)

    async def get_user_subscription(
        self, owner: str, memo: Optional[RequestScopedMemo] = None
    ) -> UserSubscription:
        """The owner's subscription; users without a record are on the free plan"""
        async def compute():
            record = await call_backend(
                "fetch_subscription", lambda: self.backend.fetch_subscription(owner)
            )
            return record or UserSubscription(user_id=owner, plan_type=PlanType.FREE)

        return await self._cached(keys.USER_SUBSCRIPTION, owner, keys.SUBSCRIPTION_TTL, compute, memo)

    async def get_subscription_limits(
        self, owner: str, memo: Optional[RequestScopedMemo] = None
    ) -> SubscriptionLimits:
        """Limits derived from the current subscription and the tier table"""
        async def compute():
            # Runs as a shared population; never hand it a request memo
            subscription = await self.get_user_subscription(owner)
            return limits_for_plan(subscription.effective_plan)

        return await self._cached(keys.SUBSCRIPTION_LIMITS, owner, keys.LIMITS_TTL, compute, memo)

    async def get_resource_count(
        self, owner: str, kind: ResourceKind, memo: Optional[RequestScopedMemo] = None
    ) -> int:
        async def compute():
            return await call_backend(
                f"count_{kind.value}", lambda: self.backend.count_resources(owner, kind)
            )

        namespace = COUNT_NAMESPACES.get(kind)
        if namespace is None:
            # Monthly or household counts are not cached across requests
            if memo is None:
                return await compute()
            return await memo.memoize(("count", owner, kind.value), compute)

        return await self._cached(namespace, owner, keys.COUNT_TTL, compute, memo)

    async def get_transaction_count(self, owner: str, memo: Optional[RequestScopedMemo] = None) -> int:
        return await self.get_resource_count(owner, ResourceKind.TRANSACTIONS, memo)

    async def get_category_count(self, owner: str, memo: Optional[RequestScopedMemo] = None) -> int:
        return await self.get_resource_count(owner, ResourceKind.CATEGORIES, memo)

    async def get_bank_connection_count(self, owner: str, memo: Optional[RequestScopedMemo] = None) -> int:
        return await self.get_resource_count(owner, ResourceKind.BANK_CONNECTIONS, memo)

    async def get_categories(self, owner: str, memo: Optional[RequestScopedMemo] = None) -> List[Category]:
        async def compute():
            return await call_backend(
                "list_categories", lambda: self.backend.list_categories(owner)
            )

        return await self._cached(keys.CATEGORIES, owner, keys.CATEGORIES_TTL, compute, memo)
