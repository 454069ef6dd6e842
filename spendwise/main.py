# spendwise/main.py
"""
Spendwise FastAPI application.

Serves subscription limits, usage and cache invalidation for the finance
dashboard, and guards its mutation endpoints with CSRF and plan limits.
"""

from fastapi import APIRouter, FastAPI, Depends, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from typing import Any, Dict, Optional
from contextlib import asynccontextmanager
from datetime import datetime
import asyncio
import json

from spendwise.core.cache.invalidation import (
    invalidate_category_cache,
    invalidate_transaction_count_cache,
)
from spendwise.core.cache.memo import RequestScopedMemo, get_request_memo
from spendwise.core.cache.store import ProcessCacheStore
from spendwise.core.config import (
    Settings,
    get_settings,
    resolve_csrf_secret,
    validate_required_settings,
)
from spendwise.core.exceptions import (
    SpendwiseError,
    UnauthorizedError,
    UpstreamUnavailableError,
    ValidationError,
)
from spendwise.core.logging_config import setup_logging
from spendwise.core.rate_limit_config import (
    RATE_LIMITS,
    RATE_LIMIT_MESSAGE,
    RETRY_AFTER_SECONDS,
    get_real_ip,
)
from spendwise.core.security import (
    SIGNATURE_HEADER,
    CSRFGuard,
    get_csrf_guard,
    require_csrf,
    verify_webhook_signature,
)
from spendwise.dependencies import (
    get_backend,
    get_billing_processor,
    get_cache_store,
    get_current_owner,
    get_limit_enforcer,
    get_settings_dep,
    get_subscription_data,
)
from spendwise.middleware.security_middleware import SecurityMiddleware
from spendwise.models.finance import CategoryCreate, TransactionCreate
from spendwise.models.subscription import PlanType, ResourceKind
from spendwise.services.billing_events import BillingEventProcessor
from spendwise.services.data_backend import DataBackend, InMemoryDataBackend
from spendwise.services.limit_enforcer import LimitEnforcer
from spendwise.services.subscription_data import SubscriptionDataService, call_backend

logger = setup_logging()

# Create limiter instance with custom IP extraction
limiter = Limiter(key_func=get_real_ip)

router = APIRouter()


# Generic error message for production
def get_safe_error_message(error: Exception, context: str = "") -> str:
    """Return a safe error message that doesn't expose internal details"""
    logger.error(f"Error in {context}: {type(error).__name__}: {str(error)}")

    if isinstance(error, SpendwiseError):
        return error.message

    error_messages = {
        "ConnectionError": "Connection error. Please try again later.",
        "TimeoutError": "The request took too long. Please try again.",
    }

    error_type = type(error).__name__
    return error_messages.get(error_type, "An error occurred. Please try again later.")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the per-process components on startup, release them on shutdown"""
    settings: Settings = app.state.settings

    logger.info("=" * 60)
    logger.info(f"🚀 {settings.APP_NAME} API starting ({settings.ENVIRONMENT})...")
    logger.info("=" * 60)

    validate_required_settings(settings)

    try:
        app.state.csrf_guard = CSRFGuard(
            resolve_csrf_secret(settings),
            secure_cookies=not settings.is_development,
        )

        # The one cache shared by every request this process serves
        store = ProcessCacheStore()
        app.state.cache_store = store

        backend: DataBackend = app.state.backend
        await backend.initialize()

        if (
            isinstance(backend, InMemoryDataBackend)
            and settings.DEMO_USER_TOKEN
            and not settings.is_production
        ):
            await backend.register_user(
                settings.DEMO_USER_ID,
                settings.DEMO_USER_TOKEN,
                PlanType(settings.DEMO_USER_PLAN),
            )

        data = SubscriptionDataService(store, backend)
        app.state.subscription_data = data
        app.state.limit_enforcer = LimitEnforcer(data)
        app.state.billing_processor = BillingEventProcessor(backend, store)

        logger.info("✅ API ready")

    except Exception as e:
        logger.error(f"❌ Failed to initialize API: {e}")
        raise

    yield

    logger.info("🛑 API shutting down...")
    await app.state.backend.shutdown()


# =============================================================================
# ERROR HANDLERS
# =============================================================================

async def spendwise_error_handler(request: Request, exc: SpendwiseError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"[{exc.kind}] {request.method} {request.url.path}: {exc}")
    else:
        logger.info(f"[{exc.kind}] {request.method} {request.url.path}: {exc.message}")

    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, UnauthorizedError) else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload(), headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = ValidationError(
        "Request validation failed",
        details={"errors": [
            {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
            for err in exc.errors()
        ]},
    )
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    message = get_safe_error_message(exc, f"{request.method} {request.url.path}")
    logger.error("Unhandled exception", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"error": {"kind": "internal_error", "message": message, "details": {}}},
    )


def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Rate limit response with a stable error kind"""
    response = JSONResponse(
        status_code=429,
        content={"error": {"kind": "rate_limited", "message": RATE_LIMIT_MESSAGE, "details": {}}},
    )
    response.headers["Retry-After"] = str(RETRY_AFTER_SECONDS)
    return response


# =============================================================================
# HEALTH
# =============================================================================

@router.get("/", status_code=200)
def read_root(settings: Settings = Depends(get_settings_dep)):
    return {"status": "ok", "service": settings.APP_NAME.lower()}


@router.get("/health", status_code=200)
async def health(
    store: ProcessCacheStore = Depends(get_cache_store),
    backend: DataBackend = Depends(get_backend),
    guard: CSRFGuard = Depends(get_csrf_guard),
):
    """Health check with cache and CSRF metrics"""
    backend_health = await backend.health_check()
    return {
        "status": "healthy" if backend_health.get("healthy") else "degraded",
        "timestamp": datetime.now().isoformat(),
        "backend": {**backend.get_metrics(), **backend_health},
        "cache": store.get_metrics(),
        "csrf": guard.get_metrics(),
    }


# =============================================================================
# CSRF
# =============================================================================

@router.get("/csrf-token")
@limiter.limit(RATE_LIMITS["csrf_issue"])
async def issue_csrf_token(
    request: Request,
    response: Response,
    guard: CSRFGuard = Depends(get_csrf_guard),
):
    """Issue a token for the next state-changing request"""
    token = guard.issue_to_response(response)
    return {"csrf_token": token}


# =============================================================================
# CACHE INVALIDATION
# =============================================================================

@router.post("/cache/categories/invalidate")
@limiter.limit(RATE_LIMITS["invalidation"])
async def invalidate_categories(
    request: Request,
    owner: str = Depends(get_current_owner),
    store: ProcessCacheStore = Depends(get_cache_store),
):
    """Evict the caller's cached categories and category count"""
    invalidate_category_cache(store, owner)
    return {"success": True}


@router.post("/cache/transaction-count/invalidate")
@limiter.limit(RATE_LIMITS["invalidation"])
async def invalidate_transaction_count(
    request: Request,
    owner: str = Depends(get_current_owner),
    store: ProcessCacheStore = Depends(get_cache_store),
):
    """Evict the caller's cached transaction count"""
    invalidate_transaction_count_cache(store, owner)
    return {"success": True}


# =============================================================================
# SUBSCRIPTION AND LIMITS
# =============================================================================

@router.get("/subscription")
@limiter.limit(RATE_LIMITS["read"])
async def get_subscription(
    request: Request,
    owner: str = Depends(get_current_owner),
    memo: RequestScopedMemo = Depends(get_request_memo),
    data: SubscriptionDataService = Depends(get_subscription_data),
):
    """
    Current subscription plus its limits.

    ``limits`` is null when they could not be resolved; consumers treat that
    as "deny all gated actions".
    """
    subscription = await data.get_user_subscription(owner, memo)

    try:
        limits = await data.get_subscription_limits(owner, memo)
    except UpstreamUnavailableError as e:
        logger.warning(f"Limits unavailable for {owner}: {e}")
        limits = None

    return {
        "subscription": subscription.model_dump(mode="json"),
        "limits": limits.model_dump(mode="json") if limits else None,
    }


@router.get("/check-limits")
@limiter.limit(RATE_LIMITS["read"])
async def check_limits(
    request: Request,
    feature: ResourceKind = Query(...),
    owner: str = Depends(get_current_owner),
    memo: RequestScopedMemo = Depends(get_request_memo),
    enforcer: LimitEnforcer = Depends(get_limit_enforcer),
):
    """Whether the caller may create one more item of ``feature``"""
    decision = await enforcer.check_resource(owner, feature, memo)
    return {
        "feature": feature.value,
        "can_use": decision.allowed,
        "current": decision.current,
        "limit": "unlimited" if decision.is_unlimited else decision.limit,
        "is_unlimited": decision.is_unlimited,
        "reason": decision.reason.value,
    }


@router.get("/usage")
@limiter.limit(RATE_LIMITS["read"])
async def get_usage(
    request: Request,
    owner: str = Depends(get_current_owner),
    memo: RequestScopedMemo = Depends(get_request_memo),
    data: SubscriptionDataService = Depends(get_subscription_data),
):
    """Current counts for every gated resource kind"""
    kinds = list(ResourceKind)
    counts = await asyncio.gather(
        *(data.get_resource_count(owner, kind, memo) for kind in kinds)
    )
    return {kind.value: count for kind, count in zip(kinds, counts)}


# =============================================================================
# MUTATIONS
# =============================================================================

@router.post("/transactions", status_code=201)
@limiter.limit(RATE_LIMITS["mutation"])
async def create_transaction(
    request: Request,
    body: TransactionCreate,
    owner: str = Depends(get_current_owner),
    _csrf: None = Depends(require_csrf),
    memo: RequestScopedMemo = Depends(get_request_memo),
    enforcer: LimitEnforcer = Depends(get_limit_enforcer),
    backend: DataBackend = Depends(get_backend),
    store: ProcessCacheStore = Depends(get_cache_store),
):
    """Create a transaction if the plan allows it, then refresh the cached count"""
    await enforcer.enforce(owner, ResourceKind.TRANSACTIONS, memo)
    if body.receipt_url:
        await enforcer.enforce(owner, ResourceKind.RECEIPT_SCANS, memo)

    transaction = await call_backend(
        "create_transaction", lambda: backend.create_transaction(owner, body)
    )
    invalidate_transaction_count_cache(store, owner)

    logger.info(f"💸 Transaction {transaction.id[:8]}... created for {owner}")
    return transaction.model_dump(mode="json")


@router.post("/categories", status_code=201)
@limiter.limit(RATE_LIMITS["mutation"])
async def create_category(
    request: Request,
    body: CategoryCreate,
    owner: str = Depends(get_current_owner),
    _csrf: None = Depends(require_csrf),
    memo: RequestScopedMemo = Depends(get_request_memo),
    enforcer: LimitEnforcer = Depends(get_limit_enforcer),
    backend: DataBackend = Depends(get_backend),
    store: ProcessCacheStore = Depends(get_cache_store),
):
    """Create a category if the plan allows it, then refresh cached categories"""
    await enforcer.enforce(owner, ResourceKind.CATEGORIES, memo)

    category = await call_backend(
        "create_category", lambda: backend.create_category(owner, body)
    )
    invalidate_category_cache(store, owner)

    logger.info(f"🏷️ Category '{category.name}' created for {owner}")
    return category.model_dump(mode="json")


@router.get("/categories")
@limiter.limit(RATE_LIMITS["read"])
async def list_categories(
    request: Request,
    owner: str = Depends(get_current_owner),
    memo: RequestScopedMemo = Depends(get_request_memo),
    data: SubscriptionDataService = Depends(get_subscription_data),
):
    categories = await data.get_categories(owner, memo)
    return {"categories": [c.model_dump(mode="json") for c in categories]}


# =============================================================================
# BILLING WEBHOOK
# =============================================================================

@router.post("/webhooks/billing")
@limiter.limit(RATE_LIMITS["webhook"])
async def billing_webhook(
    request: Request,
    settings: Settings = Depends(get_settings_dep),
    processor: BillingEventProcessor = Depends(get_billing_processor),
):
    """Signed subscription events from the billing provider"""
    body = await request.body()
    verify_webhook_signature(
        settings.BILLING_WEBHOOK_SECRET, body, request.headers.get(SIGNATURE_HEADER)
    )

    try:
        event: Dict[str, Any] = json.loads(body)
    except ValueError:
        raise ValidationError("Webhook body is not valid JSON", field="body")

    handled = await processor.process(event)
    return {"received": True, "handled": handled}


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

def create_app(
    settings: Optional[Settings] = None,
    backend: Optional[DataBackend] = None
) -> FastAPI:
    """
    Build the API.

    Args:
        settings: Settings to use; read from the environment if omitted
        backend: Data backend; an in-memory backend if omitted
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=f"{settings.APP_NAME} API",
        description="Subscription limits, usage and cache invalidation",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None,
    )

    app.state.settings = settings
    app.state.backend = backend or InMemoryDataBackend()

    # Required by slowapi
    limiter.enabled = settings.RATE_LIMIT_ENABLED
    app.state.limiter = limiter

    app.add_exception_handler(SpendwiseError, spendwise_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.middleware("http")(SecurityMiddleware(production=settings.is_production))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-CSRF-Token"],
        expose_headers=["X-CSRF-Token"],
    )

    app.include_router(router)
    return app


app = create_app()


# Main entry point
if __name__ == "__main__":
    import os
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    logger.info(f"🚀 Starting server on port {port}...")
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")
