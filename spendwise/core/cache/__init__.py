"""
Caching layer: the process-wide store, request-scoped memoization and the
per-owner invalidation operations.
"""

from .keys import CacheKey, DEFAULT_VARIANT
from .memo import RequestScopedMemo, get_request_memo
from .store import CacheEntry, ProcessCacheStore

__all__ = [
    'CacheEntry',
    'CacheKey',
    'DEFAULT_VARIANT',
    'ProcessCacheStore',
    'RequestScopedMemo',
    'get_request_memo',
]
