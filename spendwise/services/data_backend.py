# spendwise/services/data_backend.py
"""
Data backend contract for Spendwise.

The managed database and auth provider are external collaborators; the API
only needs the handful of operations declared on ``DataBackend``.
``InMemoryDataBackend`` implements them in process for development and tests.
"""
from abc import abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Any
import logging

from spendwise.core.exceptions import ValidationError
from spendwise.models.finance import Category, CategoryCreate, Transaction, TransactionCreate
from spendwise.models.subscription import (
    PlanType,
    ResourceKind,
    SubscriptionStatus,
    UserSubscription,
)
from spendwise.services.service_base import BaseService, ServiceConfig

logger = logging.getLogger(__name__)


class DataBackend(BaseService[ServiceConfig]):
    """Operations the API needs from the backing store"""

    @abstractmethod
    async def authenticate(self, access_token: str) -> Optional[str]:
        """Resolve an access token to an owner id, or None"""

    @abstractmethod
    async def fetch_subscription(self, owner: str) -> Optional[UserSubscription]:
        """The owner's subscription record, None if there is none"""

    @abstractmethod
    async def count_resources(self, owner: str, kind: ResourceKind) -> int:
        """Current number of ``kind`` items the owner holds"""

    @abstractmethod
    async def list_categories(self, owner: str) -> List[Category]:
        pass

    @abstractmethod
    async def create_transaction(self, owner: str, data: TransactionCreate) -> Transaction:
        pass

    @abstractmethod
    async def create_category(self, owner: str, data: CategoryCreate) -> Category:
        pass

    @abstractmethod
    async def apply_plan(
        self,
        owner: str,
        plan: PlanType,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        current_period_end: Optional[datetime] = None,
        cancel_at_period_end: bool = False
    ) -> UserSubscription:
        """Write the owner's plan and status (billing webhook path)"""


@dataclass
class _Tables:
    tokens: Dict[str, str] = field(default_factory=dict)
    subscriptions: Dict[str, UserSubscription] = field(default_factory=dict)
    transactions: Dict[str, List[Transaction]] = field(default_factory=dict)
    categories: Dict[str, List[Category]] = field(default_factory=dict)
    bank_connections: Dict[str, int] = field(default_factory=dict)
    family_members: Dict[str, Set[str]] = field(default_factory=dict)


class InMemoryDataBackend(DataBackend):
    """
    Process-local backend.

    Not durable; used for development and as the test double for the
    managed database.
    """

    def __init__(self):
        super().__init__(None, logger)

    async def _initialize_client(self) -> _Tables:
        return _Tables()

    async def health_check(self) -> Dict[str, Any]:
        if not self._initialized:
            return {"healthy": False, "status": "not_initialized"}
        return {
            "healthy": True,
            "status": "in_memory",
            "details": {
                "users": len(self.client.subscriptions),
                "tokens": len(self.client.tokens),
            }
        }

    async def register_user(
        self,
        owner: str,
        access_token: str,
        plan: PlanType = PlanType.FREE
    ) -> UserSubscription:
        """Create a user with an access token and a subscription record"""
        await self.ensure_initialized()
        self.client.tokens[access_token] = owner
        subscription = UserSubscription(user_id=owner, plan_type=plan)
        self.client.subscriptions[owner] = subscription
        logger.info(f"👤 Registered user {owner} on plan {plan.value}")
        return subscription

    async def add_bank_connection(self, owner: str) -> int:
        await self.ensure_initialized()
        count = self.client.bank_connections.get(owner, 0) + 1
        self.client.bank_connections[owner] = count
        return count

    async def add_family_member(self, owner: str, member_id: str) -> None:
        await self.ensure_initialized()
        self.client.family_members.setdefault(owner, set()).add(member_id)

    async def authenticate(self, access_token: str) -> Optional[str]:
        await self.ensure_initialized()
        return self.client.tokens.get(access_token)

    async def fetch_subscription(self, owner: str) -> Optional[UserSubscription]:
        await self.ensure_initialized()
        subscription = self.client.subscriptions.get(owner)
        return subscription.model_copy() if subscription else None

    async def count_resources(self, owner: str, kind: ResourceKind) -> int:
        await self.ensure_initialized()
        tables = self.client

        if kind == ResourceKind.TRANSACTIONS:
            return len(tables.transactions.get(owner, []))
        if kind == ResourceKind.CATEGORIES:
            return len(tables.categories.get(owner, []))
        if kind == ResourceKind.BANK_CONNECTIONS:
            return tables.bank_connections.get(owner, 0)
        if kind == ResourceKind.RECEIPT_SCANS:
            # Receipts attached to transactions this calendar month
            month_start = datetime.now(timezone.utc).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
            return sum(
                1 for t in tables.transactions.get(owner, [])
                if t.receipt_url and t.created_at >= month_start
            )
        if kind == ResourceKind.FAMILY_MEMBERS:
            return len(tables.family_members.get(owner, set()))

        raise ValidationError(f"Unknown resource kind: {kind}", field="kind", value=kind)

    async def list_categories(self, owner: str) -> List[Category]:
        await self.ensure_initialized()
        categories = self.client.categories.get(owner, [])
        return sorted((c.model_copy() for c in categories), key=lambda c: c.name)

    async def create_transaction(self, owner: str, data: TransactionCreate) -> Transaction:
        await self.ensure_initialized()
        if data.category_id and not any(
            c.id == data.category_id for c in self.client.categories.get(owner, [])
        ):
            raise ValidationError("Unknown category", field="category_id", value=data.category_id)

        transaction = Transaction(user_id=owner, **data.model_dump())
        self.client.transactions.setdefault(owner, []).append(transaction)
        return transaction

    async def create_category(self, owner: str, data: CategoryCreate) -> Category:
        await self.ensure_initialized()
        existing = self.client.categories.setdefault(owner, [])
        if data.parent_id and not any(c.id == data.parent_id for c in existing):
            raise ValidationError("Unknown parent category", field="parent_id", value=data.parent_id)

        category = Category(user_id=owner, **data.model_dump())
        existing.append(category)
        return category

    async def apply_plan(
        self,
        owner: str,
        plan: PlanType,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        current_period_end: Optional[datetime] = None,
        cancel_at_period_end: bool = False
    ) -> UserSubscription:
        await self.ensure_initialized()
        subscription = UserSubscription(
            user_id=owner,
            plan_type=plan,
            status=status,
            current_period_end=current_period_end,
            cancel_at_period_end=cancel_at_period_end,
        )
        self.client.subscriptions[owner] = subscription
        logger.info(f"💳 Plan for {owner} set to {plan.value} ({status.value})")
        return subscription
