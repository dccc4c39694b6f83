from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from backoffice.application.services.sync_service import SubscriptionMembershipSyncService
from backoffice.domain.errors import SyncError
from backoffice.domain.models import MembershipStatus, SubscriptionKind
from backoffice.domain.policy import StatusTransitionPolicy
from backoffice.domain.ports.payment_gateway import ChargeResult
from backoffice.infrastructure.persistence.sqlite import SQLitePersistence

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class RecordingGateway:
    """In-memory gateway that records every call and can be told to fail."""

    def __init__(self) -> None:
        self.charges: List[str] = []
        self.cancellations: List[str] = []
        self.charge_result = ChargeResult(succeeded=True, reference="in_test")
        self.error: Optional[SyncError] = None

    def charge_saved_method(self, subscription):
        self.charges.append(subscription.id)
        if self.error is not None:
            raise self.error
        return self.charge_result

    def cancel_subscription(self, subscription) -> None:
        self.cancellations.append(subscription.id)
        if self.error is not None:
            raise self.error


@pytest.fixture
def persistence(tmp_path):
    store = SQLitePersistence(tmp_path / "backoffice.db")
    yield store
    store.close()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def service(persistence, clock, gateway):
    return SubscriptionMembershipSyncService(
        persistence,
        clock,
        policy=StatusTransitionPolicy(failure_threshold=3),
        gateway=gateway,
        event_retention_hours=72,
    )


@pytest.fixture
def make_membership(service, persistence):
    def _make(status: MembershipStatus = MembershipStatus.ACTIVE, email: str = "ana@example.com"):
        membership = service.create_membership(
            email,
            "Coaching Program",
            NOW - timedelta(days=30),
            NOW + timedelta(days=335),
        )
        if status != MembershipStatus.ACTIVE:
            membership = persistence.update_membership(membership.id, status=status)
        return membership

    return _make


@pytest.fixture
def make_subscription(service, persistence):
    def _make(
        membership_id: Optional[str] = None,
        kind: SubscriptionKind = SubscriptionKind.PRODUCT,
        email: str = "ana@example.com",
        next_payment_date: Optional[datetime] = NOW + timedelta(days=10),
        remaining_payments: int = 5,
        stripe_subscription_id: Optional[str] = None,
        **state,
    ):
        subscription = service.register_subscription(
            kind,
            "prod_coaching",
            email,
            membership_id=membership_id,
            remaining_payments=remaining_payments,
            next_payment_date=next_payment_date,
            stripe_subscription_id=stripe_subscription_id,
        )
        if state:
            subscription = persistence.update_subscription(subscription.id, **state)
        return subscription

    return _make
