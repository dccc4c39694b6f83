"""Subscription domain model for product and extension payment plans."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    ON_HOLD = "on_hold"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self in (SubscriptionStatus.CANCELLED, SubscriptionStatus.COMPLETED)


class SubscriptionKind(str, Enum):
    PRODUCT = "product"
    EXTENSION = "extension"


@dataclass(slots=True)
class Subscription:
    """
    Recurring payment plan billed by the payment gateway.

    Attributes:
        id: Unique identifier
        kind: Whether the plan pays for a product or a product extension
        catalog_item_id: Product or extension the plan pays for
        customer_email: Customer the plan belongs to
        customer_name: Optional display name
        status: Current subscription status
        membership_id: Membership this plan is linked to, if any
        remaining_payments: Installments still to be charged
        next_payment_date: When the gateway will attempt the next charge
        scheduled_cancellation_date: Pending graceful cancellation, if any
        last_payment_attempt_date: Last failed attempt
        last_payment_failure_reason: Reason reported for the last failure
        payment_failure_count: Consecutive failures since the last recovery
        stripe_customer_id: Stripe customer holding the saved payment method
        stripe_payment_method_id: Saved payment method used for off-session charges
        stripe_subscription_id: Provider-side subscription, if any
        installment_amount_cents: Amount charged per installment when there is no provider subscription
        currency: ISO 4217 code the installment amount is expressed in
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """

    id: str
    kind: SubscriptionKind
    catalog_item_id: str
    customer_email: str
    customer_name: Optional[str]
    status: SubscriptionStatus
    membership_id: Optional[str]
    remaining_payments: int
    next_payment_date: Optional[datetime]
    scheduled_cancellation_date: Optional[datetime]
    last_payment_attempt_date: Optional[datetime]
    last_payment_failure_reason: Optional[str]
    payment_failure_count: int
    stripe_customer_id: Optional[str]
    stripe_payment_method_id: Optional[str]
    stripe_subscription_id: Optional[str]
    installment_amount_cents: Optional[int]
    currency: Optional[str]
    created_at: datetime
    updated_at: datetime

    def __repr__(self) -> str:
        return f"<Subscription id={self.id} kind={self.kind.value} status={self.status.value}>"
