import threading
from datetime import datetime, timedelta, timezone

import pytest

from backoffice.application.services.sync_service import SubscriptionMembershipSyncService
from backoffice.domain.errors import (
    ConflictError,
    GatewayError,
    NotFoundError,
    OperationNotImplementedError,
    PreconditionError,
    ValidationError,
)
from backoffice.domain.models import MembershipStatus, SubscriptionKind, SubscriptionStatus
from backoffice.domain.ports.payment_gateway import ChargeResult

from .conftest import NOW


class TestReschedulePayment:
    def test_updates_only_next_payment_date(self, service, persistence, make_membership, make_subscription):
        membership = make_membership()
        sub = make_subscription(membership_id=membership.id)

        result = service.reschedule_payment(sub.id, "product", "2099-01-01T00:00:00Z")

        stored = persistence.get_subscription(sub.id)
        assert result["success"] is True
        assert stored.next_payment_date == datetime(2099, 1, 1, tzinfo=timezone.utc)
        assert stored.status == SubscriptionStatus.ACTIVE
        assert stored.membership_id == membership.id
        assert persistence.get_membership(membership.id).status == MembershipStatus.ACTIVE

    @pytest.mark.parametrize("offset", [timedelta(0), -timedelta(seconds=1), -timedelta(days=400)])
    def test_dates_not_in_the_future_are_rejected(self, service, make_subscription, clock, offset):
        sub = make_subscription()
        with pytest.raises(ValidationError):
            service.reschedule_payment(sub.id, "product", clock.now() + offset)

    def test_past_date_is_rejected_before_lookup(self, service):
        with pytest.raises(ValidationError):
            service.reschedule_payment("sub_missing", "product", NOW - timedelta(days=1))

    def test_naive_datetimes_are_treated_as_utc(self, service, persistence, make_subscription):
        sub = make_subscription()
        service.reschedule_payment(sub.id, "product", datetime(2030, 5, 1, 9, 30))
        assert persistence.get_subscription(sub.id).next_payment_date == datetime(2030, 5, 1, 9, 30, tzinfo=timezone.utc)

    def test_missing_subscription(self, service):
        with pytest.raises(NotFoundError):
            service.reschedule_payment("sub_missing", "product", NOW + timedelta(days=1))

    def test_kind_mismatch_is_not_found(self, service, make_subscription):
        sub = make_subscription(kind=SubscriptionKind.EXTENSION)
        with pytest.raises(NotFoundError):
            service.reschedule_payment(sub.id, "product", NOW + timedelta(days=1))

    def test_unknown_kind_is_invalid(self, service, make_subscription):
        sub = make_subscription()
        with pytest.raises(ValidationError):
            service.reschedule_payment(sub.id, "bundle", NOW + timedelta(days=1))

    def test_malformed_date_is_invalid(self, service, make_subscription):
        sub = make_subscription()
        with pytest.raises(ValidationError):
            service.reschedule_payment(sub.id, "product", "next tuesday")

    def test_date_overflowing_utc_is_invalid(self, service, persistence, make_subscription):
        sub = make_subscription()

        with pytest.raises(ValidationError, match="out of range"):
            service.reschedule_payment(sub.id, "product", "9999-12-31T23:00:00-05:00")
        assert persistence.get_subscription(sub.id).next_payment_date == sub.next_payment_date

    def test_terminal_subscription_is_rejected(self, service, make_subscription):
        sub = make_subscription(status=SubscriptionStatus.COMPLETED)
        with pytest.raises(PreconditionError):
            service.reschedule_payment(sub.id, "product", NOW + timedelta(days=1))

    def test_bulk_reports_per_item_results(self, service, persistence, make_subscription):
        sub = make_subscription()

        result = service.bulk_reschedule_payments(
            [
                {"id": sub.id, "new_payment_date": NOW + timedelta(days=3)},
                {"id": "sub_missing", "new_payment_date": NOW + timedelta(days=3)},
            ]
        )

        assert result["success_count"] == 1
        assert result["message"] == "Successfully rescheduled 1 out of 2 subscriptions"
        assert result["errors"] == [
            {"id": "sub_missing", "code": "not_found", "error": "Subscription not found", "success": False}
        ]
        assert persistence.get_subscription(sub.id).next_payment_date == NOW + timedelta(days=3)


class TestForceRetryPayment:
    def test_active_subscription_is_rejected_without_charging(self, service, gateway, make_subscription):
        sub = make_subscription()

        with pytest.raises(PreconditionError, match="Can only retry payments for subscriptions on hold"):
            service.force_retry_payment(sub.id)
        assert gateway.charges == []

    def test_missing_subscription(self, service):
        with pytest.raises(NotFoundError):
            service.force_retry_payment("sub_missing")

    def test_successful_charge_recovers_subscription_and_membership(
        self, service, persistence, gateway, make_membership, make_subscription
    ):
        membership = make_membership(MembershipStatus.PAUSED)
        sub = make_subscription(
            membership_id=membership.id,
            status=SubscriptionStatus.ON_HOLD,
            payment_failure_count=3,
            last_payment_failure_reason="insufficient_funds",
            last_payment_attempt_date=NOW - timedelta(days=1),
        )

        result = service.force_retry_payment(sub.id)

        stored = persistence.get_subscription(sub.id)
        assert result["charged"] is True
        assert gateway.charges == [sub.id]
        assert stored.status == SubscriptionStatus.ACTIVE
        assert stored.payment_failure_count == 0
        assert stored.last_payment_failure_reason is None
        assert stored.last_payment_attempt_date is None
        assert persistence.get_membership(membership.id).status == MembershipStatus.ACTIVE

    def test_declined_charge_counts_as_failure(self, service, persistence, gateway, make_subscription):
        gateway.charge_result = ChargeResult(succeeded=False, failure_reason="card_declined")
        sub = make_subscription(status=SubscriptionStatus.ON_HOLD, payment_failure_count=3)

        result = service.force_retry_payment(sub.id)

        stored = persistence.get_subscription(sub.id)
        assert result["charged"] is False
        assert stored.status == SubscriptionStatus.ON_HOLD
        assert stored.payment_failure_count == 4
        assert stored.last_payment_failure_reason == "card_declined"
        assert stored.last_payment_attempt_date == NOW

    def test_gateway_failure_leaves_state_unchanged(self, service, persistence, gateway, make_membership, make_subscription):
        gateway.error = GatewayError("timeout")
        membership = make_membership(MembershipStatus.PAUSED)
        sub = make_subscription(membership_id=membership.id, status=SubscriptionStatus.ON_HOLD, payment_failure_count=3)
        before = persistence.get_subscription(sub.id)

        with pytest.raises(GatewayError) as excinfo:
            service.force_retry_payment(sub.id)

        assert excinfo.value.retryable is True
        assert persistence.get_subscription(sub.id) == before
        assert persistence.get_membership(membership.id).status == MembershipStatus.PAUSED

    def test_without_gateway_is_not_implemented(self, persistence, clock, make_subscription):
        service = SubscriptionMembershipSyncService(persistence, clock)
        sub = make_subscription(status=SubscriptionStatus.ON_HOLD, payment_failure_count=3)

        with pytest.raises(OperationNotImplementedError):
            service.force_retry_payment(sub.id)
        assert persistence.get_subscription(sub.id).status == SubscriptionStatus.ON_HOLD


class TestSetOnHold:
    @pytest.mark.parametrize(
        "membership_status",
        [MembershipStatus.ACTIVE, MembershipStatus.PAUSED, MembershipStatus.DELAYED, MembershipStatus.CANCELLED],
    )
    def test_never_touches_membership(self, service, persistence, make_membership, make_subscription, membership_status):
        membership = make_membership(membership_status)
        sub = make_subscription(membership_id=membership.id, payment_failure_count=2)

        service.set_on_hold(sub.id)

        assert persistence.get_membership(membership.id).status == membership_status

    def test_clears_failure_bookkeeping(self, service, persistence, make_subscription):
        sub = make_subscription(
            payment_failure_count=2,
            last_payment_failure_reason="expired_card",
            last_payment_attempt_date=NOW,
        )

        service.set_on_hold(sub.id)

        stored = persistence.get_subscription(sub.id)
        assert stored.status == SubscriptionStatus.ON_HOLD
        assert stored.payment_failure_count == 0
        assert stored.last_payment_failure_reason is None
        assert stored.last_payment_attempt_date is None

    def test_terminal_subscription_is_rejected(self, service, make_subscription):
        sub = make_subscription(status=SubscriptionStatus.CANCELLED)
        with pytest.raises(PreconditionError):
            service.set_on_hold(sub.id)


class TestPaymentFailed:
    def test_first_failure_is_retried(self, service, persistence, make_subscription):
        sub = make_subscription()

        result = service.on_payment_failed(sub.id, "insufficient_funds")

        stored = persistence.get_subscription(sub.id)
        assert result["failure_count"] == 1
        assert result["should_retry"] is True
        assert stored.status == SubscriptionStatus.ACTIVE
        assert stored.last_payment_attempt_date == NOW
        assert stored.last_payment_failure_reason == "insufficient_funds"

    def test_third_failure_holds_and_pauses_membership(self, service, persistence, make_membership, make_subscription):
        membership = make_membership()
        sub = make_subscription(membership_id=membership.id)

        for attempt in range(3):
            result = service.on_payment_failed(sub.id, "card_declined", event_id=f"evt_{attempt}")

        assert result["failure_count"] == 3
        assert result["should_retry"] is False
        assert persistence.get_subscription(sub.id).status == SubscriptionStatus.ON_HOLD
        assert persistence.get_membership(membership.id).status == MembershipStatus.PAUSED

    def test_on_hold_subscription_at_threshold_pauses_membership(
        self, service, persistence, make_membership, make_subscription
    ):
        membership = make_membership()
        sub = make_subscription(membership_id=membership.id, status=SubscriptionStatus.ON_HOLD, payment_failure_count=2)

        service.on_payment_failed(sub.id, "card_declined")

        stored = persistence.get_subscription(sub.id)
        assert stored.status == SubscriptionStatus.ON_HOLD
        assert stored.payment_failure_count == 3
        assert persistence.get_membership(membership.id).status == MembershipStatus.PAUSED

    def test_replayed_event_is_applied_once(self, service, persistence, make_subscription):
        sub = make_subscription()

        service.on_payment_failed(sub.id, "card_declined", event_id="evt_1")
        replay = service.on_payment_failed(sub.id, "card_declined", event_id="evt_1")

        assert replay["duplicate"] is True
        assert replay["failure_count"] == 1
        assert persistence.get_subscription(sub.id).payment_failure_count == 1

    def test_event_ids_expire_after_retention_window(self, service, persistence, clock, make_subscription):
        sub = make_subscription()
        service.on_payment_failed(sub.id, "card_declined", event_id="evt_1")

        clock.advance(hours=73)
        service.on_payment_failed(sub.id, "card_declined", event_id="evt_1")

        assert persistence.get_subscription(sub.id).payment_failure_count == 2

    def test_missing_subscription(self, service):
        with pytest.raises(NotFoundError):
            service.on_payment_failed("sub_missing", "card_declined")

    def test_cancelled_subscription_is_rejected(self, service, persistence, make_subscription):
        sub = make_subscription(status=SubscriptionStatus.CANCELLED)

        with pytest.raises(PreconditionError):
            service.on_payment_failed(sub.id, "card_declined", event_id="evt_late")
        assert persistence.has_processed_event("evt_late", NOW - timedelta(days=1)) is False

    def test_concurrent_failures_are_serialized(self, service, persistence, make_subscription):
        sub = make_subscription()
        service.set_on_hold(sub.id)
        errors = []

        def fail(index):
            try:
                service.on_payment_failed(sub.id, "card_declined", event_id=f"evt_{index}")
            except Exception as exc:  # pragma: no cover - surfaced by the assertion below
                errors.append(exc)

        threads = [threading.Thread(target=fail, args=(index,)) for index in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert persistence.get_subscription(sub.id).payment_failure_count == 10


class TestPaymentSucceeded:
    def test_membership_resumes_only_when_last_subscription_recovers(
        self, service, persistence, make_membership, make_subscription
    ):
        membership = make_membership()
        first = make_subscription(membership_id=membership.id)
        second = make_subscription(membership_id=membership.id)
        for sub in (first, second):
            for attempt in range(3):
                service.on_payment_failed(sub.id, "card_declined", event_id=f"{sub.id}_{attempt}")
        assert persistence.get_membership(membership.id).status == MembershipStatus.PAUSED

        service.on_payment_succeeded(first.id)
        assert persistence.get_membership(membership.id).status == MembershipStatus.PAUSED

        service.on_payment_succeeded(second.id)
        assert persistence.get_membership(membership.id).status == MembershipStatus.ACTIVE

    def test_clears_failure_bookkeeping(self, service, persistence, make_subscription):
        sub = make_subscription()
        service.on_payment_failed(sub.id, "card_declined")

        result = service.on_payment_succeeded(sub.id, next_payment_date=NOW + timedelta(days=30))

        stored = persistence.get_subscription(sub.id)
        assert result["status"] == "active"
        assert stored.payment_failure_count == 0
        assert stored.last_payment_failure_reason is None
        assert stored.next_payment_date == NOW + timedelta(days=30)

    def test_final_installment_completes_subscription(self, service, persistence, make_subscription):
        sub = make_subscription(remaining_payments=1)

        service.on_payment_succeeded(sub.id, remaining_payments=0, next_payment_date=NOW + timedelta(days=30))

        stored = persistence.get_subscription(sub.id)
        assert stored.status == SubscriptionStatus.COMPLETED
        assert stored.remaining_payments == 0
        assert stored.next_payment_date is None

    def test_replayed_event_is_ignored(self, service, persistence, make_subscription):
        sub = make_subscription(remaining_payments=3)

        service.on_payment_succeeded(sub.id, event_id="evt_paid", remaining_payments=2)
        replay = service.on_payment_succeeded(sub.id, event_id="evt_paid", remaining_payments=1)

        assert replay["duplicate"] is True
        assert persistence.get_subscription(sub.id).remaining_payments == 2


class TestFailureCountLifecycle:
    def test_count_resets_only_when_leaving_on_hold_or_on_hold_clear(self, service, persistence, make_subscription):
        sub = make_subscription()

        service.on_payment_failed(sub.id, "card_declined")
        service.on_payment_failed(sub.id, "card_declined")
        assert persistence.get_subscription(sub.id).payment_failure_count == 2

        service.reschedule_payment(sub.id, "product", NOW + timedelta(days=2))
        service.link_subscription(sub.id, service.create_membership(
            "ana@example.com", "Coaching Program", NOW, NOW + timedelta(days=30)
        ).id)
        assert persistence.get_subscription(sub.id).payment_failure_count == 2

        service.on_payment_failed(sub.id, "card_declined")
        assert persistence.get_subscription(sub.id).status == SubscriptionStatus.ON_HOLD

        service.cancel(sub.id, "immediate")
        stored = persistence.get_subscription(sub.id)
        assert stored.status == SubscriptionStatus.CANCELLED
        assert stored.payment_failure_count == 0


class TestLinking:
    def test_link_and_unlink_are_idempotent(self, service, persistence, make_membership, make_subscription):
        membership = make_membership()
        sub = make_subscription()

        service.link_subscription(sub.id, membership.id)
        again = service.link_subscription(sub.id, membership.id)
        assert again["message"] == "Subscription is already linked to this membership"
        assert persistence.get_subscription(sub.id).membership_id == membership.id

        service.unlink_subscription(sub.id)
        service.unlink_subscription(sub.id)
        assert persistence.get_subscription(sub.id).membership_id is None

    def test_linking_to_another_membership_conflicts(self, service, make_membership, make_subscription):
        first = make_membership()
        second = make_membership()
        sub = make_subscription(membership_id=first.id)

        with pytest.raises(ConflictError):
            service.link_subscription(sub.id, second.id)

    def test_missing_entities(self, service, make_membership, make_subscription):
        membership = make_membership()
        sub = make_subscription()

        with pytest.raises(NotFoundError):
            service.link_subscription(sub.id, "mem_missing")
        with pytest.raises(NotFoundError):
            service.link_subscription("sub_missing", membership.id)
        with pytest.raises(NotFoundError):
            service.unlink_subscription("sub_missing")

    def test_linking_never_changes_status(self, service, persistence, make_membership, make_subscription):
        membership = make_membership()
        sub = make_subscription(status=SubscriptionStatus.ON_HOLD, payment_failure_count=3)

        service.link_subscription(sub.id, membership.id)

        assert persistence.get_subscription(sub.id).status == SubscriptionStatus.ON_HOLD
        assert persistence.get_membership(membership.id).status == MembershipStatus.ACTIVE


class TestCancel:
    def test_immediate_cancels_once_and_leaves_membership(
        self, service, persistence, gateway, make_membership, make_subscription
    ):
        membership = make_membership()
        sub = make_subscription(membership_id=membership.id, stripe_subscription_id="sub_stripe_3")

        service.cancel(sub.id, "immediate")

        assert persistence.get_subscription(sub.id).status == SubscriptionStatus.CANCELLED
        assert gateway.cancellations == [sub.id]
        assert persistence.get_membership(membership.id).status == MembershipStatus.ACTIVE

    def test_immediate_gateway_failure_leaves_state_unchanged(self, service, persistence, gateway, make_subscription):
        gateway.error = GatewayError("stripe unavailable")
        sub = make_subscription()
        before = persistence.get_subscription(sub.id)

        with pytest.raises(GatewayError):
            service.cancel(sub.id, "immediate")
        assert persistence.get_subscription(sub.id) == before

    def test_immediate_without_gateway_is_not_implemented(self, persistence, clock, make_subscription):
        service = SubscriptionMembershipSyncService(persistence, clock)
        sub = make_subscription()

        with pytest.raises(OperationNotImplementedError):
            service.cancel(sub.id, "immediate")

    def test_graceful_schedules_at_next_payment_date(self, service, persistence, gateway, make_subscription):
        sub = make_subscription(next_payment_date=NOW + timedelta(days=10))

        result = service.cancel(sub.id, "graceful")

        stored = persistence.get_subscription(sub.id)
        assert stored.status == SubscriptionStatus.ACTIVE
        assert stored.scheduled_cancellation_date == NOW + timedelta(days=10)
        assert result["scheduled_cancellation_date"] == (NOW + timedelta(days=10)).isoformat()
        assert gateway.cancellations == []

    def test_graceful_keeps_failure_bookkeeping_until_sweep(
        self, service, persistence, gateway, clock, make_subscription
    ):
        sub = make_subscription(next_payment_date=NOW + timedelta(days=10))
        service.on_payment_failed(sub.id, "card_declined")

        service.cancel(sub.id, "graceful")

        stored = persistence.get_subscription(sub.id)
        assert stored.payment_failure_count == 1
        assert stored.last_payment_failure_reason == "card_declined"
        assert stored.last_payment_attempt_date == NOW

        clock.advance(days=11)
        service.process_scheduled_cancellations()

        stored = persistence.get_subscription(sub.id)
        assert stored.status == SubscriptionStatus.CANCELLED
        assert stored.payment_failure_count == 0
        assert stored.last_payment_failure_reason is None

    def test_graceful_twice_is_rejected(self, service, make_subscription):
        sub = make_subscription()
        service.cancel(sub.id, "graceful")

        with pytest.raises(PreconditionError):
            service.cancel(sub.id, "graceful")

    def test_graceful_requires_next_payment_date(self, service, make_subscription):
        sub = make_subscription(next_payment_date=None)
        with pytest.raises(PreconditionError):
            service.cancel(sub.id, "graceful")

    @pytest.mark.parametrize("status", [SubscriptionStatus.CANCELLED, SubscriptionStatus.COMPLETED])
    @pytest.mark.parametrize("mode", ["graceful", "immediate"])
    def test_terminal_subscription_is_rejected(self, service, gateway, make_subscription, status, mode):
        sub = make_subscription(status=status)

        with pytest.raises(PreconditionError):
            service.cancel(sub.id, mode)
        assert gateway.cancellations == []

    def test_unknown_mode(self, service, make_subscription):
        sub = make_subscription()
        with pytest.raises(ValidationError):
            service.cancel(sub.id, "later")

    def test_missing_subscription(self, service):
        with pytest.raises(NotFoundError):
            service.cancel("sub_missing", "immediate")


class TestScheduledCancellations:
    def test_due_cancellations_are_processed(self, service, persistence, gateway, clock, make_subscription):
        due = make_subscription(next_payment_date=NOW + timedelta(days=1))
        later = make_subscription(next_payment_date=NOW + timedelta(days=20))
        service.cancel(due.id, "graceful")
        service.cancel(later.id, "graceful")

        clock.advance(days=2)
        result = service.process_scheduled_cancellations()

        assert result["processed_count"] == 1
        assert result["cancelled_subscriptions"] == [due.id]
        assert gateway.cancellations == [due.id]
        stored = persistence.get_subscription(due.id)
        assert stored.status == SubscriptionStatus.CANCELLED
        assert stored.scheduled_cancellation_date is None
        assert persistence.get_subscription(later.id).status == SubscriptionStatus.ACTIVE

    def test_gateway_failure_is_left_for_next_run(self, service, persistence, gateway, clock, make_subscription):
        sub = make_subscription(next_payment_date=NOW + timedelta(days=1))
        service.cancel(sub.id, "graceful")
        gateway.error = GatewayError("stripe unavailable")

        clock.advance(days=2)
        result = service.process_scheduled_cancellations()

        assert result["processed_count"] == 0
        assert result["failed_subscriptions"][0]["id"] == sub.id
        stored = persistence.get_subscription(sub.id)
        assert stored.status == SubscriptionStatus.ACTIVE
        assert stored.scheduled_cancellation_date == NOW + timedelta(days=1)

        gateway.error = None
        assert service.process_scheduled_cancellations()["processed_count"] == 1

    def test_purges_expired_payment_events(self, service, persistence, clock, make_subscription):
        sub = make_subscription()
        service.on_payment_failed(sub.id, "card_declined", event_id="evt_old")

        clock.advance(hours=100)
        service.process_scheduled_cancellations()

        assert persistence.has_processed_event("evt_old", datetime.min.replace(tzinfo=timezone.utc)) is False


class TestMemberships:
    def test_paused_cannot_be_set_manually(self, service, make_membership):
        membership = make_membership()

        with pytest.raises(PreconditionError):
            service.update_membership_status(membership.id, "paused")
        with pytest.raises(PreconditionError):
            service.update_membership_status("mem_missing", MembershipStatus.PAUSED)
        with pytest.raises(PreconditionError):
            service.create_membership("ana@example.com", "Coaching", NOW, NOW + timedelta(days=1), status="paused")

    def test_update_status(self, service, persistence, make_membership):
        membership = make_membership()

        service.update_membership_status(membership.id, "cancelled")

        assert persistence.get_membership(membership.id).status == MembershipStatus.CANCELLED

    def test_update_status_errors(self, service, make_membership):
        membership = make_membership()
        with pytest.raises(NotFoundError):
            service.update_membership_status("mem_missing", "active")
        with pytest.raises(ValidationError):
            service.update_membership_status(membership.id, "frozen")

    def test_create_validates_dates(self, service):
        with pytest.raises(ValidationError):
            service.create_membership("ana@example.com", "Coaching", NOW, NOW)
        with pytest.raises(ValidationError):
            service.create_membership(
                "ana@example.com",
                "Coaching",
                NOW,
                NOW + timedelta(days=30),
                delayed_start_date=NOW + timedelta(days=1),
            )

    def test_update_dates_validates_merged_values(self, service, persistence, make_membership):
        membership = make_membership()

        with pytest.raises(ValidationError):
            service.update_membership_dates(membership.id, end_date=membership.start_date - timedelta(days=1))

        service.update_membership_dates(membership.id, delayed_start_date=membership.start_date - timedelta(days=5))
        assert persistence.get_membership(membership.id).delayed_start_date == membership.start_date - timedelta(days=5)

        service.update_membership_dates(membership.id, delayed_start_date=None)
        assert persistence.get_membership(membership.id).delayed_start_date is None

    def test_bulk_update_dates(self, service, make_membership):
        membership = make_membership()

        result = service.bulk_update_membership_dates(
            [
                {"id": membership.id, "end_date": NOW + timedelta(days=400)},
                {"id": "mem_missing", "end_date": NOW + timedelta(days=400)},
            ]
        )

        assert result["message"] == "Successfully updated 1 out of 2 memberships"
        assert result["errors"][0]["code"] == "not_found"

    def test_transfer_moves_linked_subscriptions(self, service, persistence, make_membership, make_subscription):
        membership = make_membership()
        linked = make_subscription(membership_id=membership.id)
        other = make_subscription()

        result = service.transfer_membership(membership.id, "New.Owner@Example.com")

        assert result["transferred_subscriptions"] == 1
        assert persistence.get_membership(membership.id).customer_email == "new.owner@example.com"
        assert persistence.get_subscription(linked.id).customer_email == "new.owner@example.com"
        assert persistence.get_subscription(other.id).customer_email == "ana@example.com"

    def test_transfer_errors(self, service, make_membership):
        membership = make_membership()
        with pytest.raises(NotFoundError):
            service.transfer_membership("mem_missing", "bob@example.com")
        with pytest.raises(ValidationError):
            service.transfer_membership(membership.id, "not-an-email")


class TestRegistrationAndQueries:
    def test_register_rejects_duplicate_stripe_subscription(self, service, make_subscription):
        make_subscription(stripe_subscription_id="sub_stripe_1")
        with pytest.raises(ConflictError):
            make_subscription(stripe_subscription_id="sub_stripe_1")

    @pytest.mark.parametrize("terms", [{"installment_amount_cents": 0}, {"currency": "euro"}, {"currency": "12$"}])
    def test_register_validates_installment_terms(self, service, terms):
        with pytest.raises(ValidationError):
            service.register_subscription("product", "prod_x", "ana@example.com", **terms)

    def test_register_requires_existing_membership(self, service):
        with pytest.raises(NotFoundError):
            service.register_subscription("product", "prod_x", "ana@example.com", membership_id="mem_missing")

    def test_queries(self, service, make_membership, make_subscription):
        membership = make_membership()
        linked = make_subscription(membership_id=membership.id)
        extension = make_subscription(kind=SubscriptionKind.EXTENSION)

        assert [item.id for item in service.list_linked_subscriptions(membership.id)] == [linked.id]
        assert [item.id for item in service.list_available_subscriptions()] == [extension.id]
        assert [item.id for item in service.list_subscriptions("extension")] == [extension.id]
        assert [item.id for item in service.list_subscriptions(status="on_hold")] == []
        assert service.get_membership(membership.id).id == membership.id
        with pytest.raises(NotFoundError):
            service.get_subscription("sub_missing")
