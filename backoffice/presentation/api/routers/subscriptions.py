"""Subscription administration endpoints."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status

from ....application.services.sync_service import SubscriptionMembershipSyncService
from ....core.dependencies import get_sync_service
from ....domain.models import User
from ...api.dependencies import require_admin_user
from ...api.schemas.subscription_schemas import (
    BulkReschedulePaymentsRequest,
    CancelSubscriptionRequest,
    RegisterSubscriptionRequest,
    ReschedulePaymentRequest,
)
from ...api.serializers import serialize_subscription

router = APIRouter(prefix="/api/subscriptions", tags=["Subscriptions"])


@router.get("")
def list_subscriptions(
    subscription_type: Optional[str] = Query(default=None, alias="type"),
    status_filter: Optional[str] = Query(default=None, alias="status"),
    _: User = Depends(require_admin_user),
    sync_service: SubscriptionMembershipSyncService = Depends(get_sync_service),
) -> Dict[str, Any]:
    subscriptions = sync_service.list_subscriptions(subscription_type, status_filter)
    return {"items": [serialize_subscription(item) for item in subscriptions]}


@router.post("", status_code=status.HTTP_201_CREATED)
def register_subscription(
    payload: RegisterSubscriptionRequest,
    _: User = Depends(require_admin_user),
    sync_service: SubscriptionMembershipSyncService = Depends(get_sync_service),
) -> Dict[str, Any]:
    subscription = sync_service.register_subscription(
        payload.type,
        payload.catalog_item_id,
        payload.customer_email,
        customer_name=payload.customer_name,
        membership_id=payload.membership_id,
        remaining_payments=payload.remaining_payments,
        next_payment_date=payload.next_payment_date,
        stripe_customer_id=payload.stripe_customer_id,
        stripe_payment_method_id=payload.stripe_payment_method_id,
        stripe_subscription_id=payload.stripe_subscription_id,
        installment_amount_cents=payload.installment_amount_cents,
        currency=payload.currency,
    )
    return serialize_subscription(subscription)


@router.post("/reschedule")
def bulk_reschedule_payments(
    payload: BulkReschedulePaymentsRequest,
    _: User = Depends(require_admin_user),
    sync_service: SubscriptionMembershipSyncService = Depends(get_sync_service),
) -> Dict[str, Any]:
    items = [item.model_dump() for item in payload.items]
    return sync_service.bulk_reschedule_payments(items, payload.type)


@router.get("/{subscription_id}")
def get_subscription(
    subscription_id: str,
    _: User = Depends(require_admin_user),
    sync_service: SubscriptionMembershipSyncService = Depends(get_sync_service),
) -> Dict[str, Any]:
    return serialize_subscription(sync_service.get_subscription(subscription_id))


@router.post("/{subscription_id}/reschedule")
def reschedule_payment(
    subscription_id: str,
    payload: ReschedulePaymentRequest,
    _: User = Depends(require_admin_user),
    sync_service: SubscriptionMembershipSyncService = Depends(get_sync_service),
) -> Dict[str, Any]:
    return sync_service.reschedule_payment(subscription_id, payload.type, payload.new_payment_date)


@router.post("/{subscription_id}/retry")
def force_retry_payment(
    subscription_id: str,
    _: User = Depends(require_admin_user),
    sync_service: SubscriptionMembershipSyncService = Depends(get_sync_service),
) -> Dict[str, Any]:
    return sync_service.force_retry_payment(subscription_id)


@router.post("/{subscription_id}/hold")
def set_on_hold(
    subscription_id: str,
    _: User = Depends(require_admin_user),
    sync_service: SubscriptionMembershipSyncService = Depends(get_sync_service),
) -> Dict[str, Any]:
    return sync_service.set_on_hold(subscription_id)


@router.post("/{subscription_id}/cancel")
def cancel_subscription(
    subscription_id: str,
    payload: CancelSubscriptionRequest,
    _: User = Depends(require_admin_user),
    sync_service: SubscriptionMembershipSyncService = Depends(get_sync_service),
) -> Dict[str, Any]:
    return sync_service.cancel(subscription_id, payload.mode)
