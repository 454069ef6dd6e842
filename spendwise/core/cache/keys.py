"""Cache namespaces, key type and time-to-live constants"""

from typing import NamedTuple


class CacheKey(NamedTuple):
    namespace: str
    owner: str
    variant: str


DEFAULT_VARIANT = "default"

# Namespaces
SUBSCRIPTION_LIMITS = "subscription-limits"
USER_SUBSCRIPTION = "user-subscription"
TRANSACTION_COUNT = "transaction-count"
CATEGORY_COUNT = "category-count"
BANK_CONNECTION_COUNT = "bank-connection-count"
CATEGORIES = "categories"

# Time-to-live, in seconds
LIMITS_TTL = 5 * 60
SUBSCRIPTION_TTL = 5 * 60
COUNT_TTL = 60
CATEGORIES_TTL = 5 * 60
