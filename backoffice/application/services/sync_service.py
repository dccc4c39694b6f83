from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from ...domain.errors import (
    ConflictError,
    GatewayError,
    NotFoundError,
    OperationNotImplementedError,
    PreconditionError,
    SyncError,
    ValidationError,
)
from ...domain.models import (
    Membership,
    MembershipStatus,
    Subscription,
    SubscriptionKind,
    SubscriptionStatus,
)
from ...domain.policy import PaymentEvent, PaymentEventType, StatusTransitionPolicy, SubscriptionSnapshot, Transition
from ...domain.ports.clock import Clock
from ...domain.ports.payment_gateway import PaymentGateway
from ...domain.ports.persistence import PersistenceGateway

logger = logging.getLogger(__name__)

CANCEL_MODES = ("graceful", "immediate")

DateInput = Union[datetime, str]

_UNSET: Any = object()


class _KeyedLock:
    """One lock per key, dropped once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: Dict[str, List[Any]] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._entries[key]


class SubscriptionMembershipSyncService:
    """Single writer of subscription and membership status.

    Every operation runs under a per-subscription lock and inside one store
    transaction. Gateway calls are made after preconditions are checked and
    before anything is written, so a failed or timed-out call leaves the stored
    state exactly as it was.
    """

    def __init__(
        self,
        persistence: PersistenceGateway,
        clock: Clock,
        policy: Optional[StatusTransitionPolicy] = None,
        gateway: Optional[PaymentGateway] = None,
        event_retention_hours: int = 72,
    ) -> None:
        self._persistence = persistence
        self._clock = clock
        self._policy = policy or StatusTransitionPolicy()
        self._gateway = gateway
        self._event_retention = timedelta(hours=event_retention_hours)
        self._locks = _KeyedLock()

    # Payment schedule ------------------------------------------------------
    def reschedule_payment(
        self,
        subscription_id: str,
        subscription_type: Union[SubscriptionKind, str],
        new_date: DateInput,
    ) -> Dict[str, Any]:
        kind = _parse_kind(subscription_type)
        target = _coerce_datetime(new_date, "new_date")
        if target <= self._clock.now():
            raise ValidationError("Payment date must be in the future")

        with self._locks.hold(subscription_id), self._persistence.transaction():
            subscription = self._require_subscription(subscription_id, kind)
            self._require_not_terminal(subscription)
            self._persistence.update_subscription(subscription.id, next_payment_date=target)

        logger.info("Subscription %s payment rescheduled to %s", subscription_id, target.isoformat())
        return _ack("Payment rescheduled successfully", next_payment_date=target.isoformat())

    def bulk_reschedule_payments(
        self,
        items: Iterable[Mapping[str, Any]],
        subscription_type: Union[SubscriptionKind, str] = SubscriptionKind.PRODUCT,
    ) -> Dict[str, Any]:
        entries = list(items)
        errors: List[Dict[str, Any]] = []
        for entry in entries:
            subscription_id = str(entry.get("id", ""))
            try:
                self.reschedule_payment(subscription_id, subscription_type, entry.get("new_payment_date"))
            except SyncError as exc:
                errors.append({"id": subscription_id, "code": exc.code, "error": exc.message, "success": False})
        success_count = len(entries) - len(errors)
        return _ack(
            f"Successfully rescheduled {success_count} out of {len(entries)} subscriptions",
            success_count=success_count,
            errors=errors,
        )

    # Administrative overrides ----------------------------------------------
    def force_retry_payment(self, subscription_id: str) -> Dict[str, Any]:
        with self._locks.hold(subscription_id):
            subscription = self._require_subscription(subscription_id)
            if subscription.status != SubscriptionStatus.ON_HOLD:
                raise PreconditionError("Can only retry payments for subscriptions on hold")
            if self._gateway is None:
                raise OperationNotImplementedError(
                    "Manual payment retry is not available: no payment gateway is configured."
                )

            try:
                result = self._gateway.charge_saved_method(subscription)
            except GatewayError:
                logger.warning("Payment retry for subscription %s did not complete; state unchanged", subscription_id)
                raise

            now = self._clock.now()
            with self._persistence.transaction():
                subscription = self._require_subscription(subscription_id)
                if result.succeeded:
                    updated, _ = self._apply(subscription, PaymentEvent(PaymentEventType.PAYMENT_SUCCEEDED))
                else:
                    reason = result.failure_reason or "Payment declined"
                    updated, _ = self._apply(
                        subscription,
                        PaymentEvent(PaymentEventType.PAYMENT_FAILED),
                        last_payment_attempt_date=now,
                        last_payment_failure_reason=reason,
                    )

        if result.succeeded:
            return _ack("Payment retried successfully", charged=True, status=updated.status.value)
        return _ack(
            f"Payment retry was declined: {updated.last_payment_failure_reason}",
            charged=False,
            status=updated.status.value,
            payment_failure_count=updated.payment_failure_count,
        )

    def set_on_hold(self, subscription_id: str) -> Dict[str, Any]:
        """Put a subscription on hold without touching its membership."""
        with self._locks.hold(subscription_id), self._persistence.transaction():
            subscription = self._require_subscription(subscription_id)
            self._apply(subscription, PaymentEvent(PaymentEventType.HOLD), cascade=False)
        return _ack("Subscription set to on hold")

    def cancel(self, subscription_id: str, mode: str) -> Dict[str, Any]:
        if mode not in CANCEL_MODES:
            raise ValidationError(f"Cancellation mode must be one of: {', '.join(CANCEL_MODES)}")

        with self._locks.hold(subscription_id):
            subscription = self._require_subscription(subscription_id)
            if subscription.status.is_terminal:
                raise PreconditionError(f"Subscription is already {subscription.status.value}")

            if mode == "graceful":
                with self._persistence.transaction():
                    subscription = self._require_subscription(subscription_id)
                    if subscription.scheduled_cancellation_date is not None:
                        raise PreconditionError("Subscription already has a scheduled cancellation")
                    if subscription.next_payment_date is None:
                        raise PreconditionError(
                            "Cannot schedule cancellation: subscription has no next payment date"
                        )
                    self._persistence.update_subscription(
                        subscription.id,
                        scheduled_cancellation_date=subscription.next_payment_date,
                    )
                logger.info(
                    "Subscription %s scheduled for cancellation on %s",
                    subscription_id,
                    subscription.next_payment_date.isoformat(),
                )
                return _ack(
                    "Subscription will be cancelled at the end of the current billing period",
                    scheduled_cancellation_date=subscription.next_payment_date.isoformat(),
                )

            self._cancel_locked(subscription)
        return _ack("Subscription cancelled immediately")

    def process_scheduled_cancellations(self) -> Dict[str, Any]:
        """Cancel every subscription whose graceful cancellation date has passed."""
        now = self._clock.now()
        cancelled: List[str] = []
        failed: List[Dict[str, str]] = []
        for candidate in self._persistence.list_subscriptions_due_for_cancellation(now):
            with self._locks.hold(candidate.id):
                subscription = self._persistence.get_subscription(candidate.id)
                if (
                    subscription is None
                    or subscription.status.is_terminal
                    or subscription.scheduled_cancellation_date is None
                    or subscription.scheduled_cancellation_date > now
                ):
                    continue
                try:
                    self._cancel_locked(subscription)
                except SyncError as exc:
                    logger.warning(
                        "Scheduled cancellation of subscription %s deferred: %s", subscription.id, exc.message
                    )
                    failed.append({"id": subscription.id, "code": exc.code, "error": exc.message})
                    continue
            cancelled.append(candidate.id)

        self._purge_expired_events(now)
        return _ack(
            f"Processed {len(cancelled)} scheduled cancellations",
            processed_count=len(cancelled),
            cancelled_subscriptions=cancelled,
            failed_subscriptions=failed,
        )

    # Inbound payment events ------------------------------------------------
    def on_payment_failed(
        self,
        subscription_id: str,
        reason: str,
        event_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        now = self._clock.now()
        with self._locks.hold(subscription_id), self._persistence.transaction():
            subscription = self._require_subscription(subscription_id)
            if self._is_duplicate(event_id, now):
                logger.warning("Duplicate payment failure event %s for subscription %s ignored", event_id, subscription_id)
                return _ack(
                    "Event already processed",
                    duplicate=True,
                    failure_count=subscription.payment_failure_count,
                    should_retry=subscription.status == SubscriptionStatus.ACTIVE,
                )
            updated, transition = self._apply(
                subscription,
                PaymentEvent(PaymentEventType.PAYMENT_FAILED),
                last_payment_attempt_date=now,
                last_payment_failure_reason=reason or "Unknown payment failure",
            )
            self._record_event(event_id, subscription_id, PaymentEventType.PAYMENT_FAILED, now)

        logger.info(
            "Payment failure for subscription %s. Attempt %d/%d",
            subscription_id,
            updated.payment_failure_count,
            self._policy.failure_threshold,
        )
        should_retry = not transition.threshold_reached and updated.status == SubscriptionStatus.ACTIVE
        return _ack(
            "Payment failure recorded",
            failure_count=updated.payment_failure_count,
            should_retry=should_retry,
            status=updated.status.value,
        )

    def on_payment_succeeded(
        self,
        subscription_id: str,
        event_id: Optional[str] = None,
        remaining_payments: Optional[int] = None,
        next_payment_date: Optional[DateInput] = None,
    ) -> Dict[str, Any]:
        now = self._clock.now()
        next_date = _coerce_datetime(next_payment_date, "next_payment_date") if next_payment_date else None
        with self._locks.hold(subscription_id), self._persistence.transaction():
            subscription = self._require_subscription(subscription_id)
            if self._is_duplicate(event_id, now):
                logger.warning("Duplicate payment success event %s for subscription %s ignored", event_id, subscription_id)
                return _ack("Event already processed", duplicate=True, status=subscription.status.value)

            extra: Dict[str, Any] = {}
            if remaining_payments is not None:
                extra["remaining_payments"] = remaining_payments
            if remaining_payments == 0:
                extra["next_payment_date"] = None
            elif next_date is not None:
                extra["next_payment_date"] = next_date
            updated, _ = self._apply(
                subscription,
                PaymentEvent(PaymentEventType.PAYMENT_SUCCEEDED, remaining_payments=remaining_payments),
                **extra,
            )
            self._record_event(event_id, subscription_id, PaymentEventType.PAYMENT_SUCCEEDED, now)

        return _ack("Payment success recorded", status=updated.status.value)

    # Membership links ------------------------------------------------------
    def link_subscription(self, subscription_id: str, membership_id: str) -> Dict[str, Any]:
        with self._locks.hold(subscription_id), self._persistence.transaction():
            self._require_membership(membership_id)
            subscription = self._require_subscription(subscription_id)
            if subscription.membership_id == membership_id:
                return _ack("Subscription is already linked to this membership")
            if subscription.membership_id is not None:
                raise ConflictError(
                    "Subscription is already linked to a different membership. "
                    "Unlink it first before linking to a new membership."
                )
            self._persistence.update_subscription(subscription_id, membership_id=membership_id)
        logger.info("Subscription %s linked to membership %s", subscription_id, membership_id)
        return _ack("Subscription linked to membership successfully")

    def unlink_subscription(self, subscription_id: str) -> Dict[str, Any]:
        with self._locks.hold(subscription_id), self._persistence.transaction():
            subscription = self._require_subscription(subscription_id)
            if subscription.membership_id is None:
                return _ack("Subscription is not linked to a membership")
            self._persistence.update_subscription(subscription_id, membership_id=None)
        logger.info("Subscription %s unlinked from membership %s", subscription_id, subscription.membership_id)
        return _ack("Subscription unlinked from membership successfully")

    # Registration ----------------------------------------------------------
    def register_subscription(
        self,
        subscription_type: Union[SubscriptionKind, str],
        catalog_item_id: str,
        customer_email: str,
        *,
        customer_name: Optional[str] = None,
        membership_id: Optional[str] = None,
        remaining_payments: int = 0,
        next_payment_date: Optional[DateInput] = None,
        stripe_customer_id: Optional[str] = None,
        stripe_payment_method_id: Optional[str] = None,
        stripe_subscription_id: Optional[str] = None,
        installment_amount_cents: Optional[int] = None,
        currency: Optional[str] = None,
    ) -> Subscription:
        kind = _parse_kind(subscription_type)
        email = _clean_email(customer_email)
        if not catalog_item_id or not catalog_item_id.strip():
            raise ValidationError("A product or extension id is required")
        if remaining_payments < 0:
            raise ValidationError("remaining_payments cannot be negative")
        if installment_amount_cents is not None and installment_amount_cents <= 0:
            raise ValidationError("installment_amount_cents must be positive")
        if currency is not None and (len(currency) != 3 or not currency.isalpha()):
            raise ValidationError("currency must be a three-letter ISO 4217 code")
        next_date = _coerce_datetime(next_payment_date, "next_payment_date") if next_payment_date else None

        with self._persistence.transaction():
            if membership_id is not None:
                self._require_membership(membership_id)
            if stripe_subscription_id and self._persistence.get_subscription_by_stripe_id(stripe_subscription_id):
                raise ConflictError("A subscription with this Stripe subscription id already exists")
            subscription = self._persistence.create_subscription(
                kind,
                catalog_item_id.strip(),
                email,
                customer_name,
                membership_id=membership_id,
                remaining_payments=remaining_payments,
                next_payment_date=next_date,
                stripe_customer_id=stripe_customer_id,
                stripe_payment_method_id=stripe_payment_method_id,
                stripe_subscription_id=stripe_subscription_id,
                installment_amount_cents=installment_amount_cents,
                currency=currency,
            )
        logger.info("Registered %s subscription %s for %s", kind.value, subscription.id, email)
        return subscription

    # Memberships -----------------------------------------------------------
    def create_membership(
        self,
        customer_email: str,
        product_name: str,
        start_date: DateInput,
        end_date: DateInput,
        *,
        status: Union[MembershipStatus, str] = MembershipStatus.ACTIVE,
        customer_name: Optional[str] = None,
        delayed_start_date: Optional[DateInput] = None,
        parent_order_id: Optional[str] = None,
    ) -> Membership:
        membership_status = _parse_membership_status(status)
        if membership_status == MembershipStatus.PAUSED:
            raise PreconditionError(_PAUSED_IS_SYSTEM_MANAGED)
        email = _clean_email(customer_email)
        if not product_name or not product_name.strip():
            raise ValidationError("Product name is required")
        start = _coerce_datetime(start_date, "start_date")
        end = _coerce_datetime(end_date, "end_date")
        delayed = _coerce_datetime(delayed_start_date, "delayed_start_date") if delayed_start_date else None
        _validate_membership_dates(start, end, delayed)

        membership = self._persistence.create_membership(
            email,
            customer_name,
            product_name.strip(),
            start,
            end,
            membership_status,
            delayed_start_date=delayed,
            parent_order_id=parent_order_id,
        )
        logger.info("Membership %s created for %s", membership.id, email)
        return membership

    def update_membership_status(
        self,
        membership_id: str,
        status: Union[MembershipStatus, str],
    ) -> Dict[str, Any]:
        membership_status = _parse_membership_status(status)
        if membership_status == MembershipStatus.PAUSED:
            raise PreconditionError(_PAUSED_IS_SYSTEM_MANAGED)
        with self._persistence.transaction():
            membership = self._require_membership(membership_id)
            self._persistence.update_membership(membership_id, status=membership_status)
        logger.info(
            "Membership %s status %s -> %s (admin)",
            membership_id,
            membership.status.value,
            membership_status.value,
        )
        return _ack(f"Membership status updated to {membership_status.value}")

    def update_membership_dates(
        self,
        membership_id: str,
        start_date: Optional[DateInput] = None,
        end_date: Optional[DateInput] = None,
        delayed_start_date: Any = _UNSET,
    ) -> Dict[str, Any]:
        """Change membership dates; pass ``delayed_start_date=None`` to clear it."""
        patch: Dict[str, Any] = {}
        if start_date is not None:
            patch["start_date"] = _coerce_datetime(start_date, "start_date")
        if end_date is not None:
            patch["end_date"] = _coerce_datetime(end_date, "end_date")
        if delayed_start_date is not _UNSET:
            patch["delayed_start_date"] = (
                _coerce_datetime(delayed_start_date, "delayed_start_date") if delayed_start_date else None
            )

        with self._persistence.transaction():
            membership = self._require_membership(membership_id)
            if not patch:
                return _ack("Nothing to update")
            _validate_membership_dates(
                patch.get("start_date", membership.start_date),
                patch.get("end_date", membership.end_date),
                patch.get("delayed_start_date", membership.delayed_start_date),
            )
            self._persistence.update_membership(membership_id, **patch)
        return _ack("Membership dates updated successfully")

    def bulk_update_membership_dates(self, items: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
        entries = list(items)
        errors: List[Dict[str, Any]] = []
        for entry in entries:
            membership_id = str(entry.get("id", ""))
            kwargs: Dict[str, Any] = {
                "start_date": entry.get("start_date"),
                "end_date": entry.get("end_date"),
            }
            if "delayed_start_date" in entry:
                kwargs["delayed_start_date"] = entry["delayed_start_date"]
            try:
                self.update_membership_dates(membership_id, **kwargs)
            except SyncError as exc:
                errors.append({"id": membership_id, "code": exc.code, "error": exc.message, "success": False})
        success_count = len(entries) - len(errors)
        return _ack(
            f"Successfully updated {success_count} out of {len(entries)} memberships",
            success_count=success_count,
            errors=errors,
        )

    def transfer_membership(self, membership_id: str, new_email: str) -> Dict[str, Any]:
        email = _clean_email(new_email)
        with self._persistence.transaction():
            self._require_membership(membership_id)
            self._persistence.update_membership(membership_id, customer_email=email)
            moved = self._persistence.reassign_customer_email(membership_id, email)
        logger.info("Membership %s transferred to %s with %d subscriptions", membership_id, email, moved)
        return _ack(f"Membership transferred to {email}", transferred_subscriptions=moved)

    # Queries ---------------------------------------------------------------
    def get_subscription(self, subscription_id: str) -> Subscription:
        return self._require_subscription(subscription_id)

    def list_subscriptions(
        self,
        subscription_type: Optional[Union[SubscriptionKind, str]] = None,
        status: Optional[Union[SubscriptionStatus, str]] = None,
    ) -> List[Subscription]:
        kind = _parse_kind(subscription_type) if subscription_type else None
        parsed_status = _parse_subscription_status(status) if status else None
        return self._persistence.list_subscriptions(kind=kind, status=parsed_status)

    def get_membership(self, membership_id: str) -> Membership:
        return self._require_membership(membership_id)

    def list_memberships(self) -> List[Membership]:
        return self._persistence.list_memberships()

    def list_linked_subscriptions(self, membership_id: str) -> List[Subscription]:
        self._require_membership(membership_id)
        return self._persistence.list_subscriptions_for_membership(membership_id)

    def list_available_subscriptions(self) -> List[Subscription]:
        return self._persistence.list_unlinked_subscriptions()

    # Internals -------------------------------------------------------------
    def _apply(
        self,
        subscription: Subscription,
        event: PaymentEvent,
        *,
        cascade: bool = True,
        **extra: Any,
    ) -> Tuple[Subscription, Transition]:
        """Run one policy transition and write its result. Caller holds the transaction."""
        membership: Optional[Membership] = None
        siblings: Tuple[SubscriptionStatus, ...] = ()
        if cascade and subscription.membership_id:
            membership = self._persistence.get_membership(subscription.membership_id)
            if membership is not None:
                siblings = tuple(
                    item.status
                    for item in self._persistence.list_subscriptions_for_membership(membership.id)
                    if item.id != subscription.id
                )

        snapshot = SubscriptionSnapshot(
            status=subscription.status,
            payment_failure_count=subscription.payment_failure_count,
            membership_status=membership.status if membership else None,
            sibling_statuses=siblings,
        )
        transition = self._policy.next_state(snapshot, event)

        patch: Dict[str, Any] = {
            "status": transition.subscription_status,
            "payment_failure_count": transition.payment_failure_count,
        }
        if transition.clear_failure_details:
            patch["last_payment_attempt_date"] = None
            patch["last_payment_failure_reason"] = None
        patch.update(extra)
        updated = self._persistence.update_subscription(subscription.id, **patch)

        if subscription.status != updated.status:
            logger.info(
                "Subscription %s %s -> %s on %s",
                subscription.id,
                subscription.status.value,
                updated.status.value,
                event.type.value,
            )
        if membership is not None and transition.membership_cascade is not None:
            self._persistence.update_membership(membership.id, status=transition.membership_cascade)
            logger.info(
                "Membership %s %s -> %s (cascade from subscription %s)",
                membership.id,
                membership.status.value,
                transition.membership_cascade.value,
                subscription.id,
            )
        return updated, transition

    def _cancel_locked(self, subscription: Subscription) -> Subscription:
        if self._gateway is None:
            raise OperationNotImplementedError("Cancellation is not available: no payment gateway is configured.")
        try:
            self._gateway.cancel_subscription(subscription)
        except GatewayError:
            logger.warning("Gateway cancellation of subscription %s failed; state unchanged", subscription.id)
            raise
        with self._persistence.transaction():
            current = self._require_subscription(subscription.id)
            updated, _ = self._apply(
                current,
                PaymentEvent(PaymentEventType.CANCEL),
                cascade=False,
                scheduled_cancellation_date=None,
            )
        return updated

    def _require_subscription(
        self,
        subscription_id: str,
        kind: Optional[SubscriptionKind] = None,
    ) -> Subscription:
        subscription = self._persistence.get_subscription(subscription_id)
        if subscription is None or (kind is not None and subscription.kind != kind):
            raise NotFoundError("Subscription not found")
        return subscription

    def _require_membership(self, membership_id: str) -> Membership:
        membership = self._persistence.get_membership(membership_id)
        if membership is None:
            raise NotFoundError("Membership not found")
        return membership

    @staticmethod
    def _require_not_terminal(subscription: Subscription) -> None:
        if subscription.status.is_terminal:
            raise PreconditionError(f"Subscription is {subscription.status.value}; no further changes are allowed")

    def _is_duplicate(self, event_id: Optional[str], now: datetime) -> bool:
        if not event_id:
            return False
        return self._persistence.has_processed_event(event_id, now - self._event_retention)

    def _record_event(
        self,
        event_id: Optional[str],
        subscription_id: str,
        event_type: PaymentEventType,
        now: datetime,
    ) -> None:
        if event_id:
            self._persistence.record_processed_event(event_id, subscription_id, event_type.value, now)

    def _purge_expired_events(self, now: datetime) -> None:
        purged = self._persistence.purge_processed_events_older_than(now - self._event_retention)
        if purged:
            logger.info("Purged %d processed payment events", purged)


_PAUSED_IS_SYSTEM_MANAGED = (
    "Cannot manually set membership to paused. This status is set automatically "
    "when subscription payments fail."
)


def _ack(message: str, **data: Any) -> Dict[str, Any]:
    return {"success": True, "message": message, **data}


def _parse_kind(value: Union[SubscriptionKind, str]) -> SubscriptionKind:
    try:
        return SubscriptionKind(value)
    except ValueError as exc:
        raise ValidationError("Subscription type must be 'product' or 'extension'") from exc


def _parse_subscription_status(value: Union[SubscriptionStatus, str]) -> SubscriptionStatus:
    try:
        return SubscriptionStatus(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown subscription status: {value}") from exc


def _parse_membership_status(value: Union[MembershipStatus, str]) -> MembershipStatus:
    try:
        return MembershipStatus(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown membership status: {value}") from exc


def _coerce_datetime(value: Any, field: str) -> datetime:
    if isinstance(value, datetime):
        result = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            result = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValidationError(f"{field} must be a valid ISO 8601 date") from exc
    else:
        raise ValidationError(f"{field} is required")
    if result.tzinfo is None:
        return result.replace(tzinfo=timezone.utc)
    try:
        return result.astimezone(timezone.utc)
    except OverflowError as exc:
        raise ValidationError(f"{field} is out of range") from exc


def _clean_email(value: str) -> str:
    email = (value or "").strip().lower()
    if "@" not in email or email.startswith("@") or email.endswith("@"):
        raise ValidationError("Must be a valid email address")
    return email


def _validate_membership_dates(
    start: datetime,
    end: datetime,
    delayed: Optional[datetime],
) -> None:
    if end <= start:
        raise ValidationError("End date must be after start date")
    if delayed is not None and delayed > start:
        raise ValidationError("Delayed start date must be before or equal to start date")
