# spendwise/models/subscription.py

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional
from pydantic import BaseModel, Field

UNLIMITED = -1


class PlanType(str, Enum):
    FREE = "free"
    PRO = "pro"
    FAMILY = "family"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    ON_TRIAL = "on_trial"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    EXPIRED = "expired"


class ResourceKind(str, Enum):
    TRANSACTIONS = "transactions"
    CATEGORIES = "categories"
    BANK_CONNECTIONS = "bank_connections"
    RECEIPT_SCANS = "receipt_scans"
    FAMILY_MEMBERS = "family_members"


class Feature(str, Enum):
    RECEIPT_SCANNING = "receipt_scanning"
    INVESTMENT_TRACKING = "investment_tracking"
    FAMILY_SHARING = "family_sharing"


class UserSubscription(BaseModel):
    user_id: str
    plan_type: PlanType = PlanType.FREE
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def effective_plan(self) -> PlanType:
        """Plan whose limits apply; lapsed subscriptions fall back to free"""
        if self.status in (SubscriptionStatus.CANCELED, SubscriptionStatus.EXPIRED):
            return PlanType.FREE
        return self.plan_type


class SubscriptionLimits(BaseModel):
    """
    Per-tier allowances. Each field is a non-negative count or UNLIMITED.

    Derived from the plan, never edited per user.
    """
    plan_type: PlanType
    transactions_limit: int = Field(ge=UNLIMITED)
    categories_limit: int = Field(ge=UNLIMITED)
    bank_connections_limit: int = Field(ge=UNLIMITED)
    receipt_scans_limit: int = Field(ge=UNLIMITED)
    family_members_limit: int = Field(ge=UNLIMITED)

    def limit_for(self, kind: ResourceKind) -> int:
        return getattr(self, f"{kind.value}_limit")


TIER_LIMITS: Dict[PlanType, Dict[str, int]] = {
    PlanType.FREE: {
        "transactions_limit": 50,
        "categories_limit": 10,
        "bank_connections_limit": 1,
        "receipt_scans_limit": 0,
        "family_members_limit": 0,
    },
    PlanType.PRO: {
        "transactions_limit": UNLIMITED,
        "categories_limit": UNLIMITED,
        "bank_connections_limit": 5,
        "receipt_scans_limit": 10,
        "family_members_limit": 0,
    },
    PlanType.FAMILY: {
        "transactions_limit": UNLIMITED,
        "categories_limit": UNLIMITED,
        "bank_connections_limit": 10,
        "receipt_scans_limit": 20,
        "family_members_limit": 5,
    },
}


def limits_for_plan(plan: PlanType) -> SubscriptionLimits:
    return SubscriptionLimits(plan_type=plan, **TIER_LIMITS[plan])


class DecisionReason(str, Enum):
    WITHIN_LIMIT = "within_limit"
    UNLIMITED = "unlimited"
    LIMIT_REACHED = "limit_reached"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"


class LimitDecision(BaseModel):
    allowed: bool
    kind: ResourceKind
    current: Optional[int] = None
    limit: Optional[int] = None
    reason: DecisionReason

    @property
    def is_unlimited(self) -> bool:
        return self.limit == UNLIMITED
