# spendwise/services/limit_enforcer.py
"""
Subscription limit enforcement.

Fail-closed: when the subscription or usage lookup fails, the action is
denied with reason ``upstream_unavailable`` and the failure is logged.
"""
import logging
from typing import Optional

from spendwise.core.cache.memo import RequestScopedMemo
from spendwise.core.exceptions import LimitExceededError, UpstreamUnavailableError
from spendwise.models.subscription import (
    UNLIMITED,
    DecisionReason,
    Feature,
    LimitDecision,
    PlanType,
    ResourceKind,
)
from spendwise.services.subscription_data import SubscriptionDataService

logger = logging.getLogger(__name__)


class LimitEnforcer:
    """Decides whether an owner may create one more item of a resource kind"""

    def __init__(self, data: SubscriptionDataService):
        self.data = data

    async def check_limit(
        self,
        owner: str,
        kind: ResourceKind,
        current_count: int,
        memo: Optional[RequestScopedMemo] = None
    ) -> LimitDecision:
        """
        Allow iff ``current_count < limit`` or the limit is unlimited.

        Creating the Nth item is allowed while ``current_count == N - 1``.
        """
        try:
            limits = await self.data.get_subscription_limits(owner, memo)
        except UpstreamUnavailableError as e:
            logger.warning(
                f"⛔ Denying {kind.value} for {owner}: subscription lookup failed ({e.operation})"
            )
            return LimitDecision(
                allowed=False,
                kind=kind,
                current=current_count,
                reason=DecisionReason.UPSTREAM_UNAVAILABLE,
            )

        limit = limits.limit_for(kind)
        if limit == UNLIMITED:
            return LimitDecision(
                allowed=True, kind=kind, current=current_count, limit=limit,
                reason=DecisionReason.UNLIMITED,
            )

        allowed = current_count < limit
        return LimitDecision(
            allowed=allowed,
            kind=kind,
            current=current_count,
            limit=limit,
            reason=DecisionReason.WITHIN_LIMIT if allowed else DecisionReason.LIMIT_REACHED,
        )

    async def check_resource(
        self,
        owner: str,
        kind: ResourceKind,
        memo: Optional[RequestScopedMemo] = None
    ) -> LimitDecision:
        """Look up the owner's current count for ``kind`` and check it"""
        try:
            current = await self.data.get_resource_count(owner, kind, memo)
        except UpstreamUnavailableError as e:
            logger.warning(
                f"⛔ Denying {kind.value} for {owner}: usage lookup failed ({e.operation})"
            )
            return LimitDecision(
                allowed=False, kind=kind, reason=DecisionReason.UPSTREAM_UNAVAILABLE,
            )

        return await self.check_limit(owner, kind, current, memo)

    async def enforce(
        self,
        owner: str,
        kind: ResourceKind,
        memo: Optional[RequestScopedMemo] = None
    ) -> LimitDecision:
        """
        Like check_resource, but raise on deny.

        Raises:
            LimitExceededError: If the decision is a deny, for any reason
        """
        decision = await self.check_resource(owner, kind, memo)
        if not decision.allowed:
            if decision.reason == DecisionReason.UPSTREAM_UNAVAILABLE:
                message = "Usage limits could not be verified. Please try again later."
            else:
                message = f"Your plan allows {decision.limit} {kind.value}. Upgrade to add more."
            raise LimitExceededError(
                message,
                resource=kind.value,
                reason=decision.reason.value,
                details={"current": decision.current, "limit": decision.limit},
            )
        return decision

    async def has_feature(
        self,
        owner: str,
        feature: Feature,
        memo: Optional[RequestScopedMemo] = None
    ) -> bool:
        try:
            subscription = await self.data.get_user_subscription(owner, memo)
        except UpstreamUnavailableError:
            logger.warning(f"⛔ Denying feature {feature.value} for {owner}: subscription lookup failed")
            return False

        plan = subscription.effective_plan
        if feature in (Feature.RECEIPT_SCANNING, Feature.INVESTMENT_TRACKING):
            return plan != PlanType.FREE
        if feature == Feature.FAMILY_SHARING:
            return plan == PlanType.FAMILY
        return False
