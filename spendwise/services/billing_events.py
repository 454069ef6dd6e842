# spendwise/services/billing_events.py
"""
Applies billing provider subscription events.

Plan changes alter every derived limit, so each handled event ends with a
full cache invalidation for the affected user.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from spendwise.core.cache.invalidation import invalidate_all_user_cache
from spendwise.core.cache.store import ProcessCacheStore
from spendwise.core.exceptions import ValidationError
from spendwise.models.subscription import PlanType, SubscriptionStatus
from spendwise.services.data_backend import DataBackend
from spendwise.services.subscription_data import call_backend

logger = logging.getLogger(__name__)

HANDLED_EVENTS = {
    "subscription_created",
    "subscription_updated",
    "subscription_cancelled",
    "subscription_expired",
}


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError("Invalid timestamp", field="renews_at", value=value)


class BillingEventProcessor:
    def __init__(self, backend: DataBackend, store: ProcessCacheStore):
        self.backend = backend
        self.store = store

    async def process(self, event: Dict[str, Any]) -> bool:
        """
        Apply one webhook event.

        Returns:
            True if the event changed a subscription, False if it was ignored

        Raises:
            ValidationError: If the event is malformed
        """
        if not isinstance(event, dict):
            raise ValidationError("Invalid event format", field="event")

        meta = event.get("meta") or {}
        event_name = meta.get("event_name")
        if not event_name:
            raise ValidationError("Invalid event format", field="meta.event_name")

        if event_name not in HANDLED_EVENTS:
            logger.info(f"Unhandled billing event type: {event_name}")
            return False

        user_id = (meta.get("custom_data") or {}).get("user_id")
        if not user_id:
            logger.error(f"Billing event {event_name} has no user_id - ignoring")
            return False

        attributes = ((event.get("data") or {}).get("attributes")) or {}
        logger.info(f"Processing billing event {event_name} for {user_id}")

        if event_name == "subscription_expired":
            plan = PlanType.FREE
            status = SubscriptionStatus.EXPIRED
        elif event_name == "subscription_cancelled":
            plan = await self._current_plan(user_id)
            status = SubscriptionStatus.CANCELED
        else:
            plan = self._parse_plan(attributes.get("plan_type"))
            status = self._parse_status(attributes.get("status"))

        await call_backend("apply_plan", lambda: self.backend.apply_plan(
            user_id,
            plan,
            status=status,
            current_period_end=_parse_datetime(attributes.get("renews_at")),
            cancel_at_period_end=bool(attributes.get("cancelled")) or event_name == "subscription_cancelled",
        ))

        invalidate_all_user_cache(self.store, user_id)
        return True

    async def _current_plan(self, user_id: str) -> PlanType:
        record = await call_backend("fetch_subscription", lambda: self.backend.fetch_subscription(user_id))
        return record.plan_type if record else PlanType.FREE

    @staticmethod
    def _parse_plan(value: Optional[str]) -> PlanType:
        if value is None:
            return PlanType.PRO  # paid checkout without a tier marker
        try:
            return PlanType(value)
        except ValueError:
            raise ValidationError("Unknown plan type", field="plan_type", value=value)

    @staticmethod
    def _parse_status(value: Optional[str]) -> SubscriptionStatus:
        if value is None:
            return SubscriptionStatus.ACTIVE
        # Provider spells it "cancelled"
        if value == "cancelled":
            return SubscriptionStatus.CANCELED
        try:
            return SubscriptionStatus(value)
        except ValueError:
            raise ValidationError("Unknown subscription status", field="status", value=value)
