"""Payment outcome reconciliation and Stripe event handling."""

import pytest

from coachdesk.core.exceptions import (
    NotFoundException,
    PaymentNotLinkedException,
    ValidationException,
)
from coachdesk.models.availability import AvailabilityException
from coachdesk.models.background_job import BackgroundJob
from coachdesk.models.booking import Booking
from coachdesk.models.payment import Payment
from coachdesk.models.submission import ReplaySubmission
from coachdesk.models.webhook_event import WebhookEvent
from coachdesk.services.availability_service import AvailabilityService
from coachdesk.services.payment_reconciliation_service import PaymentReconciliationService
from coachdesk.services.reservation_service import ReservationService
from tests._utils.booking_seed import MONDAY, NINE_AM_UTC, NOW, reserve, stripe_event

SESSION_ID = "cs_test_123"
INTENT_ID = "pi_test_123"


@pytest.fixture
def reconciler(db):
    return PaymentReconciliationService(db)


@pytest.fixture
def pending_booking(db, monday_rule):
    result = reserve(db, NINE_AM_UTC)
    ReservationService(db).record_checkout(result.booking_id, stripe_session_id=SESSION_ID)
    return result


def booking_status(db, booking_id):
    db.expire_all()
    return db.get(Booking, booking_id).status


def events_of(db, event_type):
    return db.query(BackgroundJob).filter(BackgroundJob.type == f"event:{event_type}").count()


class TestApplyPaymentOutcome:
    def test_success_confirms_booking(self, db, reconciler, pending_booking):
        result = reconciler.apply_payment_outcome(SESSION_ID, "succeeded")

        assert result.changed is True
        assert result.payment_status == "SUCCEEDED"
        assert result.booking_status == "CONFIRMED"
        assert booking_status(db, pending_booking.booking_id) == "CONFIRMED"
        assert db.get(ReplaySubmission, pending_booking.submission_id).status == "PAYMENT_RECEIVED"
        assert events_of(db, "BookingConfirmed") == 1

    def test_repeated_success_is_a_noop(self, db, reconciler, pending_booking):
        reconciler.apply_payment_outcome(SESSION_ID, "succeeded")
        again = reconciler.apply_payment_outcome(SESSION_ID, "succeeded")

        assert again.changed is False
        assert booking_status(db, pending_booking.booking_id) == "CONFIRMED"
        assert events_of(db, "BookingConfirmed") == 1

    def test_failure_releases_slot(self, db, reconciler, pending_booking):
        result = reconciler.apply_payment_outcome(SESSION_ID, "failed")

        listing = AvailabilityService(db).list_available_slots(MONDAY, "vod-review", now=NOW)

        assert result.booking_status == "CANCELLED"
        assert booking_status(db, pending_booking.booking_id) == "CANCELLED"
        assert db.query(AvailabilityException).count() == 0
        assert NINE_AM_UTC in [s.start for s in listing.slots]
        assert db.get(ReplaySubmission, pending_booking.submission_id).status == "PAYMENT_FAILED"
        assert events_of(db, "BookingReleased") == 1

    def test_late_processing_after_success_is_ignored(self, db, reconciler, pending_booking):
        reconciler.apply_payment_outcome(SESSION_ID, "succeeded")

        late = reconciler.apply_payment_outcome(SESSION_ID, "processing")
        failed = reconciler.apply_payment_outcome(SESSION_ID, "failed")

        assert late.changed is False
        assert failed.changed is False
        assert db.query(Payment).one().status == "SUCCEEDED"
        assert booking_status(db, pending_booking.booking_id) == "CONFIRMED"

    def test_refund_marks_payment_and_alerts_coach(self, db, reconciler, pending_booking):
        reconciler.apply_payment_outcome(SESSION_ID, "succeeded")

        result = reconciler.apply_payment_outcome(SESSION_ID, "refunded")

        assert result.payment_status == "REFUNDED"
        assert booking_status(db, pending_booking.booking_id) == "CONFIRMED"
        assert events_of(db, "PaymentRefunded") == 1

    def test_intent_id_is_recorded_and_usable_as_reference(self, db, reconciler, pending_booking):
        reconciler.apply_payment_outcome(SESSION_ID, "processing", stripe_payment_id=INTENT_ID)

        result = reconciler.apply_payment_outcome(INTENT_ID, "succeeded")

        assert result.changed is True
        assert db.query(Payment).one().stripe_payment_id == INTENT_ID

    def test_unknown_reference(self, reconciler, pending_booking):
        with pytest.raises(NotFoundException) as exc_info:
            reconciler.apply_payment_outcome("cs_unknown", "succeeded")

        assert exc_info.value.code == "PAYMENT_NOT_FOUND"

    def test_unknown_outcome(self, reconciler, pending_booking):
        with pytest.raises(ValidationException) as exc_info:
            reconciler.apply_payment_outcome(SESSION_ID, "chargeback")

        assert exc_info.value.code == "INVALID_OUTCOME"


class TestHandleStripeEvent:
    def test_checkout_then_intent_success(self, db, reconciler, pending_booking):
        completed = reconciler.handle_stripe_event(
            stripe_event(
                "evt_1",
                "checkout.session.completed",
                {"id": SESSION_ID, "payment_intent": INTENT_ID},
            )
        )
        succeeded = reconciler.handle_stripe_event(
            stripe_event("evt_2", "payment_intent.succeeded", {"id": INTENT_ID})
        )

        assert completed["status"] == "success"
        assert completed["payment_status"] == "PROCESSING"
        assert succeeded["booking_status"] == "CONFIRMED"
        ledger = db.query(WebhookEvent).filter_by(event_id="evt_2").one()
        assert ledger.status == "processed"
        assert ledger.related_entity_type == "payment"

    def test_redelivery_is_acknowledged_as_duplicate(self, db, reconciler, pending_booking):
        event = stripe_event("evt_1", "payment_intent.payment_failed", {"id": SESSION_ID})
        reconciler.handle_stripe_event(event)

        again = reconciler.handle_stripe_event(event)

        assert again == {"status": "duplicate", "event_type": "payment_intent.payment_failed"}
        assert db.query(WebhookEvent).count() == 1
        assert events_of(db, "BookingReleased") == 1

    def test_expired_checkout_releases_slot(self, db, reconciler, pending_booking):
        result = reconciler.handle_stripe_event(
            stripe_event("evt_1", "checkout.session.expired", {"id": SESSION_ID})
        )

        assert result["booking_status"] == "CANCELLED"

    def test_refund_is_matched_by_payment_intent(self, db, reconciler, pending_booking):
        reconciler.apply_payment_outcome(SESSION_ID, "succeeded", stripe_payment_id=INTENT_ID)

        result = reconciler.handle_stripe_event(
            stripe_event("evt_3", "charge.refunded", {"id": "ch_1", "payment_intent": INTENT_ID})
        )

        assert result["payment_status"] == "REFUNDED"

    def test_unhandled_type_is_ignored(self, db, reconciler):
        result = reconciler.handle_stripe_event(stripe_event("evt_9", "customer.created", {"id": "cus_1"}))

        assert result["status"] == "ignored"
        assert db.query(WebhookEvent).one().status == "ignored"

    def test_unknown_checkout_session_is_ignored(self, db, reconciler, pending_booking):
        result = reconciler.handle_stripe_event(
            stripe_event("evt_4", "checkout.session.completed", {"id": "cs_somebody_else"})
        )

        assert result["status"] == "ignored"
        assert db.query(WebhookEvent).one().status == "ignored"
        assert booking_status(db, pending_booking.booking_id) == "PENDING"

    def test_intent_event_overtaking_checkout_is_applied_on_redelivery(
        self, db, reconciler, pending_booking
    ):
        early = stripe_event("evt_2", "payment_intent.succeeded", {"id": INTENT_ID})

        with pytest.raises(PaymentNotLinkedException) as exc_info:
            reconciler.handle_stripe_event(early)

        assert exc_info.value.status_code == 503
        db.expire_all()
        assert db.query(WebhookEvent).filter_by(event_id="evt_2").one().status == "failed"
        assert booking_status(db, pending_booking.booking_id) == "PENDING"

        reconciler.handle_stripe_event(
            stripe_event(
                "evt_1",
                "checkout.session.completed",
                {"id": SESSION_ID, "payment_intent": INTENT_ID},
            )
        )
        redelivered = reconciler.handle_stripe_event(early)

        assert redelivered["status"] == "success"
        assert redelivered["booking_status"] == "CONFIRMED"
        assert booking_status(db, pending_booking.booking_id) == "CONFIRMED"
        db.expire_all()
        assert db.query(WebhookEvent).filter_by(event_id="evt_2").one().status == "processed"

    def test_unlinked_failure_keeps_slot_until_redelivered(self, db, reconciler, pending_booking):
        early = stripe_event("evt_5", "payment_intent.payment_failed", {"id": INTENT_ID})

        with pytest.raises(PaymentNotLinkedException):
            reconciler.handle_stripe_event(early)

        assert events_of(db, "BookingReleased") == 0
        reconciler.apply_payment_outcome(SESSION_ID, "processing", stripe_payment_id=INTENT_ID)
        assert reconciler.handle_stripe_event(early)["booking_status"] == "CANCELLED"
