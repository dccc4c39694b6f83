"""Inbound Stripe payment events."""

import logging
from typing import Any, Dict, Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool

from ....application.services.sync_service import SubscriptionMembershipSyncService
from ....core.config import Settings
from ....core.dependencies import get_persistence_gateway, get_settings, get_sync_service
from ....domain.errors import NotFoundError, PreconditionError, ValidationError
from ....domain.ports.persistence import PersistenceGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])

FAILURE_EVENTS = {"invoice.payment_failed", "payment_intent.payment_failed"}
# One event per outcome: invoice.payment_succeeded duplicates invoice.paid.
SUCCESS_EVENTS = {"invoice.paid", "payment_intent.succeeded"}


@router.post("/stripe", include_in_schema=False)
async def stripe_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    persistence: PersistenceGateway = Depends(get_persistence_gateway),
    sync_service: SubscriptionMembershipSyncService = Depends(get_sync_service),
) -> Dict[str, Any]:
    if not settings.stripe_webhook_secret:
        logger.error("STRIPE_WEBHOOK_SECRET is not configured; rejecting webhook")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Webhook secret not configured.")

    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No signature provided")
    try:
        event = stripe.Webhook.construct_event(payload, signature, settings.stripe_webhook_secret)
    except (ValueError, stripe.SignatureVerificationError) as exc:
        logger.warning("Stripe webhook signature verification failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature") from exc

    event_type = event["type"]
    if event_type not in FAILURE_EVENTS and event_type not in SUCCESS_EVENTS:
        logger.debug("Ignoring Stripe event %s (%s)", event["id"], event_type)
        return {"received": True, "handled": False}

    data = event["data"]["object"]
    if event_type.startswith("payment_intent.") and _settled_elsewhere(data):
        logger.debug("Ignoring Stripe event %s (%s): outcome recorded elsewhere", event["id"], event_type)
        return {"received": True, "handled": False}

    subscription_id = await run_in_threadpool(_resolve_subscription_id, persistence, data)
    if subscription_id is None:
        logger.info("Stripe event %s (%s) does not match a known subscription", event["id"], event_type)
        return {"received": True, "handled": False}

    try:
        if event_type in FAILURE_EVENTS:
            result = await run_in_threadpool(
                sync_service.on_payment_failed,
                subscription_id,
                _failure_reason(data),
                event["id"],
            )
        else:
            metadata = data.get("metadata") or {}
            result = await run_in_threadpool(
                sync_service.on_payment_succeeded,
                subscription_id,
                event["id"],
                _optional_int(metadata.get("remaining_payments")),
                metadata.get("next_payment_date") or None,
            )
    except (NotFoundError, PreconditionError, ValidationError) as exc:
        # Acknowledged: redelivery could never apply it.
        logger.warning("Stripe event %s for subscription %s not applied: %s", event["id"], subscription_id, exc.message)
        return {"received": True, "handled": False, "reason": exc.code}

    return {"received": True, "handled": True, "result": result}


def _resolve_subscription_id(persistence: PersistenceGateway, data: Dict[str, Any]) -> Optional[str]:
    metadata = data.get("metadata") or {}
    if metadata.get("subscription_id"):
        return metadata["subscription_id"]
    stripe_subscription_id = data.get("subscription")
    if not stripe_subscription_id:
        parent = data.get("parent") or {}
        stripe_subscription_id = (parent.get("subscription_details") or {}).get("subscription")
    if isinstance(stripe_subscription_id, dict):
        stripe_subscription_id = stripe_subscription_id.get("id")
    if not stripe_subscription_id:
        return None
    subscription = persistence.get_subscription_by_stripe_id(stripe_subscription_id)
    return subscription.id if subscription else None


def _settled_elsewhere(payment_intent: Dict[str, Any]) -> bool:
    """True for payment intents whose outcome reaches us through another path.

    Invoice payments are reported by the invoice events, and renewal charges
    made by a manual retry are applied when the retry returns.
    """
    if payment_intent.get("invoice"):
        return True
    metadata = payment_intent.get("metadata") or {}
    return metadata.get("is_renewal_payment") == "true"


def _failure_reason(data: Dict[str, Any]) -> str:
    error = data.get("last_payment_error") or data.get("last_finalization_error") or {}
    return error.get("message") or error.get("code") or "Payment failed"


def _optional_int(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric remaining_payments metadata: %r", value)
        return None
