from datetime import datetime
from typing import Any, Dict, Optional

from ...domain.models import Membership, Subscription


def serialize_subscription(subscription: Subscription) -> Dict[str, Any]:
    return {
        "id": subscription.id,
        "type": subscription.kind.value,
        "catalog_item_id": subscription.catalog_item_id,
        "customer_email": subscription.customer_email,
        "customer_name": subscription.customer_name,
        "status": subscription.status.value,
        "membership_id": subscription.membership_id,
        "remaining_payments": subscription.remaining_payments,
        "next_payment_date": _iso(subscription.next_payment_date),
        "scheduled_cancellation_date": _iso(subscription.scheduled_cancellation_date),
        "last_payment_attempt_date": _iso(subscription.last_payment_attempt_date),
        "last_payment_failure_reason": subscription.last_payment_failure_reason,
        "payment_failure_count": subscription.payment_failure_count,
        "stripe_subscription_id": subscription.stripe_subscription_id,
        "installment_amount_cents": subscription.installment_amount_cents,
        "currency": subscription.currency,
        "created_at": _iso(subscription.created_at),
        "updated_at": _iso(subscription.updated_at),
    }


def serialize_membership(membership: Membership) -> Dict[str, Any]:
    return {
        "id": membership.id,
        "customer_email": membership.customer_email,
        "customer_name": membership.customer_name,
        "product_name": membership.product_name,
        "status": membership.status.value,
        "start_date": _iso(membership.start_date),
        "end_date": _iso(membership.end_date),
        "delayed_start_date": _iso(membership.delayed_start_date),
        "parent_order_id": membership.parent_order_id,
        "created_at": _iso(membership.created_at),
        "updated_at": _iso(membership.updated_at),
    }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
