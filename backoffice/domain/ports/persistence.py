from __future__ import annotations

from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any, List, Optional, Protocol

from ..models import (
    Membership,
    MembershipStatus,
    Subscription,
    SubscriptionKind,
    SubscriptionStatus,
    User,
)


class SubscriptionRepository(Protocol):
    """Abstract storage for product and extension subscriptions."""

    def create_subscription(
        self,
        kind: SubscriptionKind,
        catalog_item_id: str,
        customer_email: str,
        customer_name: Optional[str],
        *,
        membership_id: Optional[str] = None,
        remaining_payments: int = 0,
        next_payment_date: Optional[datetime] = None,
        stripe_customer_id: Optional[str] = None,
        stripe_payment_method_id: Optional[str] = None,
        stripe_subscription_id: Optional[str] = None,
        installment_amount_cents: Optional[int] = None,
        currency: Optional[str] = None,
    ) -> Subscription:
        ...

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        ...

    def get_subscription_by_stripe_id(self, stripe_subscription_id: str) -> Optional[Subscription]:
        ...

    def update_subscription(self, subscription_id: str, **patch: Any) -> Subscription:
        ...

    def list_subscriptions(
        self,
        kind: Optional[SubscriptionKind] = None,
        status: Optional[SubscriptionStatus] = None,
    ) -> List[Subscription]:
        ...

    def list_subscriptions_for_membership(self, membership_id: str) -> List[Subscription]:
        ...

    def list_unlinked_subscriptions(self) -> List[Subscription]:
        ...

    def list_subscriptions_due_for_cancellation(self, now: datetime) -> List[Subscription]:
        ...

    def reassign_customer_email(self, membership_id: str, customer_email: str) -> int:
        ...


class MembershipRepository(Protocol):
    """Abstract storage for memberships. Memberships are never deleted."""

    def create_membership(
        self,
        customer_email: str,
        customer_name: Optional[str],
        product_name: str,
        start_date: datetime,
        end_date: datetime,
        status: MembershipStatus,
        *,
        delayed_start_date: Optional[datetime] = None,
        parent_order_id: Optional[str] = None,
    ) -> Membership:
        ...

    def get_membership(self, membership_id: str) -> Optional[Membership]:
        ...

    def update_membership(self, membership_id: str, **patch: Any) -> Membership:
        ...

    def list_memberships(self) -> List[Membership]:
        ...


class PaymentEventRepository(Protocol):
    """Idempotency ledger for inbound payment events."""

    def has_processed_event(self, event_id: str, newer_than: datetime) -> bool:
        ...

    def record_processed_event(
        self,
        event_id: str,
        subscription_id: str,
        event_type: str,
        processed_at: datetime,
    ) -> None:
        ...

    def purge_processed_events_older_than(self, cutoff: datetime) -> int:
        ...


class UserRepository(Protocol):
    """Persistence functions related to admin user accounts."""

    def get_user_by_email(self, email: str) -> Optional[User]:
        ...

    def get_user_by_id(self, user_id: int) -> Optional[User]:
        ...

    def create_user(self, email: str, password_hash: str) -> User:
        ...


class PersistenceGateway(
    SubscriptionRepository,
    MembershipRepository,
    PaymentEventRepository,
    UserRepository,
    Protocol,
):
    """Composite gateway combining every persistence concern used by the app."""

    def transaction(self) -> AbstractContextManager[None]:
        """Run the enclosed reads and writes as one atomic unit."""
        ...

    def close(self) -> None:
        ...
