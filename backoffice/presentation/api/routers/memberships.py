"""Membership administration endpoints."""

from typing import Any, Dict

from fastapi import APIRouter, Depends, status

from ....application.services.sync_service import SubscriptionMembershipSyncService
from ....core.dependencies import get_sync_service
from ....domain.models import User
from ...api.dependencies import require_admin_user
from ...api.schemas.membership_schemas import (
    BulkUpdateMembershipDatesRequest,
    CreateMembershipRequest,
    LinkSubscriptionRequest,
    TransferMembershipRequest,
    UpdateMembershipDatesRequest,
    UpdateMembershipStatusRequest,
)
from ...api.serializers import serialize_membership, serialize_subscription

router = APIRouter(prefix="/api/memberships", tags=["Memberships"])


@router.get("")
def list_memberships(
    _: User = Depends(require_admin_user),
    sync_service: SubscriptionMembershipSyncService = Depends(get_sync_service),
) -> Dict[str, Any]:
    return {"items": [serialize_membership(item) for item in sync_service.list_memberships()]}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_membership(
    payload: CreateMembershipRequest,
    _: User = Depends(require_admin_user),
    sync_service: SubscriptionMembershipSyncService = Depends(get_sync_service),
) -> Dict[str, Any]:
    membership = sync_service.create_membership(
        payload.customer_email,
        payload.product_name,
        payload.start_date,
        payload.end_date,
        status=payload.status,
        customer_name=payload.customer_name,
        delayed_start_date=payload.delayed_start_date,
        parent_order_id=payload.parent_order_id,
    )
    return serialize_membership(membership)


@router.get("/available-subscriptions")
def list_available_subscriptions(
    _: User = Depends(require_admin_user),
    sync_service: SubscriptionMembershipSyncService = Depends(get_sync_service),
) -> Dict[str, Any]:
    """Subscriptions not linked to any membership."""
    return {"items": [serialize_subscription(item) for item in sync_service.list_available_subscriptions()]}


@router.patch("/dates")
def bulk_update_membership_dates(
    payload: BulkUpdateMembershipDatesRequest,
    _: User = Depends(require_admin_user),
    sync_service: SubscriptionMembershipSyncService = Depends(get_sync_service),
) -> Dict[str, Any]:
    return sync_service.bulk_update_membership_dates([item.to_changes() for item in payload.items])


@router.delete("/subscriptions/{subscription_id}/membership")
def unlink_subscription(
    subscription_id: str,
    _: User = Depends(require_admin_user),
    sync_service: SubscriptionMembershipSyncService = Depends(get_sync_service),
) -> Dict[str, Any]:
    return sync_service.unlink_subscription(subscription_id)


@router.get("/{membership_id}")
def get_membership(
    membership_id: str,
    _: User = Depends(require_admin_user),
    sync_service: SubscriptionMembershipSyncService = Depends(get_sync_service),
) -> Dict[str, Any]:
    return serialize_membership(sync_service.get_membership(membership_id))


@router.patch("/{membership_id}/status")
def update_membership_status(
    membership_id: str,
    payload: UpdateMembershipStatusRequest,
    _: User = Depends(require_admin_user),
    sync_service: SubscriptionMembershipSyncService = Depends(get_sync_service),
) -> Dict[str, Any]:
    return sync_service.update_membership_status(membership_id, payload.status)


@router.patch("/{membership_id}/dates")
def update_membership_dates(
    membership_id: str,
    payload: UpdateMembershipDatesRequest,
    _: User = Depends(require_admin_user),
    sync_service: SubscriptionMembershipSyncService = Depends(get_sync_service),
) -> Dict[str, Any]:
    return sync_service.update_membership_dates(membership_id, **payload.to_changes())


@router.post("/{membership_id}/transfer")
def transfer_membership(
    membership_id: str,
    payload: TransferMembershipRequest,
    _: User = Depends(require_admin_user),
    sync_service: SubscriptionMembershipSyncService = Depends(get_sync_service),
) -> Dict[str, Any]:
    return sync_service.transfer_membership(membership_id, payload.new_email)


@router.get("/{membership_id}/subscriptions")
def list_linked_subscriptions(
    membership_id: str,
    _: User = Depends(require_admin_user),
    sync_service: SubscriptionMembershipSyncService = Depends(get_sync_service),
) -> Dict[str, Any]:
    subscriptions = sync_service.list_linked_subscriptions(membership_id)
    return {"items": [serialize_subscription(item) for item in subscriptions]}


@router.post("/{membership_id}/subscriptions")
def link_subscription(
    membership_id: str,
    payload: LinkSubscriptionRequest,
    _: User = Depends(require_admin_user),
    sync_service: SubscriptionMembershipSyncService = Depends(get_sync_service),
) -> Dict[str, Any]:
    return sync_service.link_subscription(payload.subscription_id, membership_id)
