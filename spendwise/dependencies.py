# spendwise/dependencies.py
"""
FastAPI dependencies.

Components are created once in the application lifespan and kept on
``app.state``; handlers receive them through these accessors instead of
importing module-level instances.
"""
import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from spendwise.core.cache.store import ProcessCacheStore
from spendwise.core.config import Settings
from spendwise.core.exceptions import UnauthorizedError
from spendwise.services.billing_events import BillingEventProcessor
from spendwise.services.data_backend import DataBackend
from spendwise.services.limit_enforcer import LimitEnforcer
from spendwise.services.subscription_data import SubscriptionDataService, call_backend

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_cache_store(request: Request) -> ProcessCacheStore:
    return request.app.state.cache_store


def get_backend(request: Request) -> DataBackend:
    return request.app.state.backend


def get_subscription_data(request: Request) -> SubscriptionDataService:
    return request.app.state.subscription_data


def get_limit_enforcer(request: Request) -> LimitEnforcer:
    return request.app.state.limit_enforcer


def get_billing_processor(request: Request) -> BillingEventProcessor:
    return request.app.state.billing_processor


async def get_current_owner(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    backend: DataBackend = Depends(get_backend),
) -> str:
    """
    Resolve the caller's identity from the bearer token.

    Raises:
        UnauthorizedError: If the token is missing or unknown
    """
    if credentials is None or not credentials.credentials:
        logger.warning("❌ Request without access token")
        raise UnauthorizedError("Missing access token")

    owner = await call_backend("authenticate", lambda: backend.authenticate(credentials.credentials))
    if not owner:
        logger.warning("❌ Invalid access token attempt detected")
        raise UnauthorizedError("Invalid access token")
    return owner
