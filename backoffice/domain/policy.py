"""Subscription status transition rules and membership cascades.

Pure decision table: no I/O, no clock, no persistence.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

from .errors import PreconditionError, ValidationError
from .models import MembershipStatus, SubscriptionStatus

DEFAULT_FAILURE_THRESHOLD = 3


class PaymentEventType(str, Enum):
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    HOLD = "hold"
    CANCEL = "cancel"


class _Cascade(str, Enum):
    PAUSE_AT_THRESHOLD = "pause_at_threshold"
    RESUME_WHEN_RECOVERED = "resume_when_recovered"


@dataclass(frozen=True, slots=True)
class PaymentEvent:
    type: PaymentEventType
    remaining_payments: Optional[int] = None


@dataclass(frozen=True, slots=True)
class SubscriptionSnapshot:
    """State the policy needs to decide one transition.

    ``sibling_statuses`` holds the statuses of the other subscriptions linked to
    the same membership; it is empty for unlinked subscriptions.
    """

    status: SubscriptionStatus
    payment_failure_count: int
    membership_status: Optional[MembershipStatus] = None
    sibling_statuses: Tuple[SubscriptionStatus, ...] = ()


@dataclass(frozen=True, slots=True)
class Transition:
    subscription_status: SubscriptionStatus
    payment_failure_count: int
    clear_failure_details: bool
    membership_cascade: Optional[MembershipStatus] = None
    threshold_reached: bool = False


@dataclass(frozen=True, slots=True)
class _Rule:
    counts_failure: bool
    # None keeps the current status
    status: Optional[SubscriptionStatus]
    threshold_status: Optional[SubscriptionStatus]
    final_payment_status: Optional[SubscriptionStatus]
    cascade: Optional[_Cascade]
    clears_failure_details: bool


_RULES: Dict[PaymentEventType, _Rule] = {
    PaymentEventType.PAYMENT_FAILED: _Rule(
        counts_failure=True,
        status=None,
        threshold_status=SubscriptionStatus.ON_HOLD,
        final_payment_status=None,
        cascade=_Cascade.PAUSE_AT_THRESHOLD,
        clears_failure_details=False,
    ),
    PaymentEventType.PAYMENT_SUCCEEDED: _Rule(
        counts_failure=False,
        status=SubscriptionStatus.ACTIVE,
        threshold_status=None,
        final_payment_status=SubscriptionStatus.COMPLETED,
        cascade=_Cascade.RESUME_WHEN_RECOVERED,
        clears_failure_details=True,
    ),
    PaymentEventType.HOLD: _Rule(
        counts_failure=False,
        status=SubscriptionStatus.ON_HOLD,
        threshold_status=None,
        final_payment_status=None,
        cascade=None,
        clears_failure_details=True,
    ),
    PaymentEventType.CANCEL: _Rule(
        counts_failure=False,
        status=SubscriptionStatus.CANCELLED,
        threshold_status=None,
        final_payment_status=None,
        cascade=None,
        clears_failure_details=True,
    ),
}

# A cancelled membership is never brought back to life by a pause.
_PAUSABLE_MEMBERSHIP_STATUSES: FrozenSet[MembershipStatus] = frozenset(
    {MembershipStatus.ACTIVE, MembershipStatus.DELAYED}
)


class StatusTransitionPolicy:
    """Maps ``(snapshot, event)`` to the next subscription state and cascade."""

    def __init__(
        self,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        recovered_statuses: Optional[Iterable[SubscriptionStatus]] = None,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.failure_threshold = failure_threshold
        self.recovered_statuses: FrozenSet[SubscriptionStatus] = frozenset(
            recovered_statuses
            if recovered_statuses is not None
            else (SubscriptionStatus.ACTIVE, SubscriptionStatus.COMPLETED)
        )

    def next_state(self, current: SubscriptionSnapshot, event: PaymentEvent) -> Transition:
        if current.status.is_terminal:
            raise PreconditionError(
                f"Subscription is {current.status.value}; no further changes are allowed"
            )
        rule = _RULES[event.type]
        if event.remaining_payments is not None and event.remaining_payments < 0:
            raise ValidationError("remaining_payments cannot be negative")

        if rule.counts_failure:
            failure_count = current.payment_failure_count + 1
        else:
            failure_count = 0
        threshold_reached = rule.counts_failure and failure_count >= self.failure_threshold

        status = rule.status or current.status
        if threshold_reached and rule.threshold_status is not None:
            status = rule.threshold_status
        if event.remaining_payments == 0 and rule.final_payment_status is not None:
            status = rule.final_payment_status

        return Transition(
            subscription_status=status,
            payment_failure_count=failure_count,
            clear_failure_details=rule.clears_failure_details,
            membership_cascade=self._cascade(rule.cascade, current, status, threshold_reached),
            threshold_reached=threshold_reached,
        )

    def _cascade(
        self,
        cascade: Optional[_Cascade],
        current: SubscriptionSnapshot,
        next_status: SubscriptionStatus,
        threshold_reached: bool,
    ) -> Optional[MembershipStatus]:
        membership_status = current.membership_status
        if cascade is None or membership_status is None:
            return None
        if cascade is _Cascade.PAUSE_AT_THRESHOLD:
            if threshold_reached and membership_status in _PAUSABLE_MEMBERSHIP_STATUSES:
                return MembershipStatus.PAUSED
            return None
        if membership_status != MembershipStatus.PAUSED:
            return None
        statuses = (next_status, *current.sibling_statuses)
        if all(item in self.recovered_statuses for item in statuses):
            return MembershipStatus.ACTIVE
        return None
