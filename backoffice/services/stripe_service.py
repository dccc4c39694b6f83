"""Stripe payment gateway adapter."""

from __future__ import annotations

import logging
from typing import Optional

import stripe

from ..domain.errors import GatewayError, OperationNotImplementedError, PreconditionError
from ..domain.models import Subscription
from ..domain.ports.payment_gateway import ChargeResult, PaymentGateway

logger = logging.getLogger(__name__)


class StripePaymentGateway(PaymentGateway):
    """Charges saved payment methods and cancels provider-side subscriptions."""

    def __init__(self, secret_key: Optional[str], timeout_seconds: float = 20.0) -> None:
        self._configured = bool(secret_key)
        if secret_key:
            stripe.api_key = secret_key
            stripe.default_http_client = stripe.new_default_http_client(timeout=timeout_seconds)
        else:
            logger.warning("STRIPE_SECRET_KEY not set; payment retries and cancellations are unavailable")

    @property
    def is_configured(self) -> bool:
        return self._configured

    def charge_saved_method(self, subscription: Subscription) -> ChargeResult:
        """Charge the next payment off-session.

        Plans backed by a Stripe subscription retry their outstanding invoice.
        Installment plans without one are charged through a confirmed
        PaymentIntent against the saved customer and payment method.
        """
        self._require_configured()
        if subscription.stripe_subscription_id:
            return self._pay_open_invoice(subscription)
        if not (
            subscription.stripe_customer_id
            and subscription.stripe_payment_method_id
            and subscription.installment_amount_cents
            and subscription.currency
        ):
            raise PreconditionError(
                "Subscription has no Stripe subscription and no saved payment method "
                "and installment amount to charge"
            )
        return self._charge_installment(subscription)

    def _charge_installment(self, subscription: Subscription) -> ChargeResult:
        try:
            intent = stripe.PaymentIntent.create(
                amount=subscription.installment_amount_cents,
                currency=subscription.currency,
                customer=subscription.stripe_customer_id,
                payment_method=subscription.stripe_payment_method_id,
                confirm=True,
                off_session=True,
                metadata={
                    "subscription_id": subscription.id,
                    "is_renewal_payment": "true",
                },
            )
        except stripe.CardError as exc:
            reason = exc.user_message or str(exc)
            logger.info("Stripe declined installment charge for subscription %s: %s", subscription.id, reason)
            return ChargeResult(succeeded=False, failure_reason=reason)
        except stripe.StripeError as exc:
            logger.warning("Stripe installment charge failed for subscription %s: %s", subscription.id, exc)
            raise GatewayError(f"Stripe payment retry failed: {exc}") from exc

        if intent.status == "succeeded":
            return ChargeResult(succeeded=True, reference=intent.id)
        return ChargeResult(
            succeeded=False,
            failure_reason=f"Payment left in status {intent.status}",
            reference=intent.id,
        )

    def _pay_open_invoice(self, subscription: Subscription) -> ChargeResult:
        try:
            stripe_sub = stripe.Subscription.retrieve(
                subscription.stripe_subscription_id,
                expand=["latest_invoice"],
            )
        except stripe.StripeError as exc:
            logger.warning("Failed to retrieve Stripe subscription %s: %s", subscription.id, exc)
            raise GatewayError(f"Could not reach Stripe: {exc}") from exc

        invoice = stripe_sub.latest_invoice
        if invoice is None or invoice.status != "open":
            raise PreconditionError("There is no outstanding invoice to retry for this subscription")

        params = {"off_session": True}
        if subscription.stripe_payment_method_id:
            params["payment_method"] = subscription.stripe_payment_method_id

        try:
            paid = stripe.Invoice.pay(invoice.id, **params)
        except stripe.CardError as exc:
            reason = exc.user_message or str(exc)
            logger.info("Stripe declined retry for subscription %s: %s", subscription.id, reason)
            return ChargeResult(succeeded=False, failure_reason=reason, reference=invoice.id)
        except stripe.StripeError as exc:
            logger.warning("Stripe retry failed for subscription %s: %s", subscription.id, exc)
            raise GatewayError(f"Stripe payment retry failed: {exc}") from exc

        if paid.status == "paid":
            return ChargeResult(succeeded=True, reference=invoice.id)
        return ChargeResult(
            succeeded=False,
            failure_reason=f"Invoice left in status {paid.status}",
            reference=invoice.id,
        )

    def cancel_subscription(self, subscription: Subscription) -> None:
        if not subscription.stripe_subscription_id:
            logger.info("Subscription %s has no Stripe subscription; nothing to cancel upstream", subscription.id)
            return
        self._require_configured()
        try:
            stripe.Subscription.cancel(subscription.stripe_subscription_id)
        except stripe.StripeError as exc:
            logger.warning("Stripe cancellation failed for subscription %s: %s", subscription.id, exc)
            raise GatewayError(f"Stripe cancellation failed: {exc}") from exc
        logger.info(
            "Stripe subscription %s cancelled for subscription %s",
            subscription.stripe_subscription_id,
            subscription.id,
        )

    def _require_configured(self) -> None:
        if not self._configured:
            raise OperationNotImplementedError("Stripe is not configured. Set STRIPE_SECRET_KEY first.")
