"""
Invalidation operations called by mutation flows after a write.

Each function evicts the entries a given kind of change can make stale, for
one owner only. Run them synchronously right after the write succeeds.
"""

import logging

from spendwise.core.cache import keys
from spendwise.core.cache.store import ProcessCacheStore

logger = logging.getLogger(__name__)


def invalidate_subscription_cache(store: ProcessCacheStore, owner: str) -> None:
    """Plan or limits changed: limits, subscription and every count"""
    store.invalidate(keys.SUBSCRIPTION_LIMITS, owner)
    store.invalidate(keys.USER_SUBSCRIPTION, owner)
    store.invalidate(keys.TRANSACTION_COUNT, owner)
    store.invalidate(keys.CATEGORY_COUNT, owner)
    store.invalidate(keys.BANK_CONNECTION_COUNT, owner)
    logger.debug(f"Subscription cache invalidated for {owner}")


def invalidate_transaction_count_cache(store: ProcessCacheStore, owner: str) -> None:
    store.invalidate(keys.TRANSACTION_COUNT, owner)


def invalidate_category_cache(store: ProcessCacheStore, owner: str) -> None:
    store.invalidate(keys.CATEGORIES, owner)
    store.invalidate(keys.CATEGORY_COUNT, owner)


def invalidate_bank_connection_cache(store: ProcessCacheStore, owner: str) -> None:
    store.invalidate(keys.BANK_CONNECTION_COUNT, owner)


def invalidate_all_user_cache(store: ProcessCacheStore, owner: str) -> int:
    """Drop everything cached for ``owner``. Use sparingly."""
    removed = store.invalidate_all(owner)
    logger.debug(f"All cache entries invalidated for {owner} ({removed} removed)")
    return removed
