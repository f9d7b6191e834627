# backend/coachdesk/services/payment_reconciliation_service.py
"""
Payment-Status Reconciler.

Applies payment-provider outcomes to the payment, booking and submission
rows. Every transition is guarded by the current state, so redelivered or
out-of-order events are no-ops rather than errors:

    PENDING -> PROCESSING -> SUCCEEDED -> REFUNDED
    PENDING | PROCESSING -> FAILED

A failed payment cancels the booking and deletes its booked exception so the
slot is listed again. A refund only marks the payment; the booking is left
for an administrator to decide on.
"""

from dataclasses import dataclass, field
from datetime import datetime
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.enums import PaymentOutcome
from ..core.exceptions import (
    DomainException,
    NotFoundException,
    PaymentNotLinkedException,
    ValidationException,
)
from ..core.timezone_utils import utc_now
from ..events import BookingConfirmed, BookingReleased, PaymentRefunded
from ..models.booking import Booking, BookingStatus
from ..models.payment import Payment, PaymentStatus
from ..models.submission import SubmissionStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .reservation_service import release_booking_slot
from .webhook_ledger_service import WebhookLedgerService

logger = logging.getLogger(__name__)

STRIPE_SOURCE = "stripe"

# outcome -> (payment statuses it may move from, payment status it moves to)
PAYMENT_TRANSITIONS: Dict[PaymentOutcome, Tuple[frozenset, PaymentStatus]] = {
    PaymentOutcome.PROCESSING: (
        frozenset({PaymentStatus.PENDING.value}),
        PaymentStatus.PROCESSING,
    ),
    PaymentOutcome.SUCCEEDED: (
        frozenset({PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value}),
        PaymentStatus.SUCCEEDED,
    ),
    PaymentOutcome.FAILED: (
        frozenset({PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value}),
        PaymentStatus.FAILED,
    ),
    PaymentOutcome.REFUNDED: (
        frozenset(
            {
                PaymentStatus.PENDING.value,
                PaymentStatus.PROCESSING.value,
                PaymentStatus.SUCCEEDED.value,
            }
        ),
        PaymentStatus.REFUNDED,
    ),
}

# stripe event type -> (outcome, how to find the external reference)
STRIPE_EVENT_OUTCOMES: Dict[str, Tuple[PaymentOutcome, str]] = {
    "checkout.session.completed": (PaymentOutcome.PROCESSING, "id"),
    "checkout.session.expired": (PaymentOutcome.FAILED, "id"),
    "checkout.session.async_payment_failed": (PaymentOutcome.FAILED, "id"),
    "payment_intent.succeeded": (PaymentOutcome.SUCCEEDED, "id"),
    "payment_intent.payment_failed": (PaymentOutcome.FAILED, "id"),
    "charge.refunded": (PaymentOutcome.REFUNDED, "payment_intent"),
}


@dataclass
class ReconciliationResult:
    payment_id: str
    outcome: str
    changed: bool
    payment_status: str
    booking_id: Optional[str] = None
    booking_status: Optional[str] = None
    events: List[Any] = field(default_factory=list, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payment_id": self.payment_id,
            "outcome": self.outcome,
            "changed": self.changed,
            "payment_status": self.payment_status,
            "booking_id": self.booking_id,
            "booking_status": self.booking_status,
        }


class PaymentReconciliationService(BaseService):
    def __init__(self, db: Session, ledger: Optional[WebhookLedgerService] = None):
        super().__init__(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.submission_repository = RepositoryFactory.create_submission_repository(db)
        self.ledger = ledger or WebhookLedgerService(db)

    def _booking_for(self, payment: Payment) -> Optional[Booking]:
        if not payment.submission_id:
            return None
        return self.booking_repository.find_by_submission_id(payment.submission_id)

    def _set_submission_status(self, payment: Payment, status: SubmissionStatus) -> None:
        if not payment.submission_id:
            return
        submission = self.submission_repository.get_by_id(payment.submission_id)
        if submission is not None and submission.status != status.value:
            submission.status = status.value

    def _apply(
        self,
        payment: Payment,
        outcome: PaymentOutcome,
        stripe_payment_id: Optional[str],
        now: datetime,
    ) -> ReconciliationResult:
        """State changes for one outcome. Caller owns the transaction."""
        allowed_from, target = PAYMENT_TRANSITIONS[outcome]
        booking = self._booking_for(payment)
        result = ReconciliationResult(
            payment_id=payment.id,
            outcome=outcome.value,
            changed=False,
            payment_status=payment.status,
            booking_id=booking.id if booking else None,
            booking_status=booking.status if booking else None,
        )

        if stripe_payment_id and not payment.stripe_payment_id:
            payment.stripe_payment_id = stripe_payment_id

        if payment.status not in allowed_from:
            self.logger.info(
                "Payment transition skipped",
                extra={
                    "payment_id": payment.id,
                    "current_status": payment.status,
                    "outcome": outcome.value,
                },
            )
            self.db.flush()
            return result

        payment.status = target.value
        result.changed = True
        result.payment_status = target.value

        if outcome is PaymentOutcome.SUCCEEDED:
            self._set_submission_status(payment, SubmissionStatus.PAYMENT_RECEIVED)
            if booking is not None and booking.status == BookingStatus.PENDING.value:
                booking.status = BookingStatus.CONFIRMED.value
                result.events.append(
                    BookingConfirmed(booking_id=booking.id, confirmed_at=now, source="payment")
                )
            elif booking is not None and booking.status == BookingStatus.CANCELLED.value:
                # Slot was already released; it may belong to someone else now.
                self.logger.warning(
                    "Payment succeeded for a cancelled booking",
                    extra={"payment_id": payment.id, "booking_id": booking.id},
                )
        elif outcome is PaymentOutcome.FAILED:
            self._set_submission_status(payment, SubmissionStatus.PAYMENT_FAILED)
            if booking is not None and booking.status == BookingStatus.PENDING.value:
                release_booking_slot(self.db, booking)
                result.events.append(
                    BookingReleased(booking_id=booking.id, reason="payment_failed", released_at=now)
                )
        elif outcome is PaymentOutcome.REFUNDED:
            result.events.append(
                PaymentRefunded(
                    payment_id=payment.id,
                    refunded_at=now,
                    booking_id=booking.id if booking else None,
                )
            )

        if booking is not None:
            result.booking_status = booking.status
        self.db.flush()
        return result

    @BaseService.measure_operation("apply_payment_outcome")
    def apply_payment_outcome(
        self,
        external_ref: str,
        outcome: str,
        *,
        stripe_payment_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ReconciliationResult:
        """
        Apply ``outcome`` to the payment identified by ``external_ref``.

        ``external_ref`` is either the Stripe payment intent id or checkout
        session id. Safe to call repeatedly with the same arguments.

        Raises:
            ValidationException: unknown outcome
            NotFoundException: no payment carries this reference
        """
        try:
            parsed = PaymentOutcome(outcome)
        except ValueError:
            raise ValidationException(f"Unknown payment outcome: {outcome}", code="INVALID_OUTCOME")

        now = now or utc_now()
        with self.transaction():
            result = self._apply_in_transaction(external_ref, parsed, stripe_payment_id, now)
        self._after_commit(result)
        return result

    def _apply_in_transaction(
        self,
        external_ref: str,
        outcome: PaymentOutcome,
        stripe_payment_id: Optional[str],
        now: datetime,
    ) -> ReconciliationResult:
        payment = self.payment_repository.find_by_external_ref(external_ref)
        if payment is None:
            raise NotFoundException(
                "No payment found for this reference",
                code="PAYMENT_NOT_FOUND",
                details={"external_ref": external_ref},
            )
        return self._apply(payment, outcome, stripe_payment_id, now)

    def _after_commit(self, result: ReconciliationResult) -> None:
        if result.changed:
            self.log_operation(
                "apply_payment_outcome",
                payment_id=result.payment_id,
                outcome=result.outcome,
                booking_id=result.booking_id,
                booking_status=result.booking_status,
            )
        self.publish_after_commit(result.events)

    @BaseService.measure_operation("handle_stripe_event")
    def handle_stripe_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """
        Process a verified Stripe event exactly once.

        Each delivery is logged in the webhook ledger keyed by the Stripe
        event id; redeliveries of an already-settled event are acknowledged
        without touching state. Unknown checkout sessions are recorded as
        ignored. Intent and charge events whose payment is not linked yet are
        recorded as failed and raise PaymentNotLinkedException so Stripe
        redelivers them once checkout.session.completed has stored the intent id.
        """
        event_id = event.get("id")
        event_type = event.get("type") or "unknown"
        started = time.monotonic()

        with self.transaction():
            ledger_row = self.ledger.log_received(
                source=STRIPE_SOURCE, event_type=event_type, payload=event, event_id=event_id
            )
            if WebhookLedgerService.is_settled(ledger_row):
                prometheus_metrics.record_payment_webhook(event_type, "duplicate")
                return {"status": "duplicate", "event_type": event_type}
            self.ledger.mark_processing(ledger_row)

        mapping = STRIPE_EVENT_OUTCOMES.get(event_type)
        obj = (event.get("data") or {}).get("object") or {}
        external_ref = obj.get(mapping[1]) if mapping else None

        if mapping is None or not external_ref:
            with self.transaction():
                self.ledger.mark_processed(
                    ledger_row, status="ignored", duration_ms=self._elapsed_ms(started)
                )
            prometheus_metrics.record_payment_webhook(event_type, "ignored")
            self.logger.info(f"Unhandled webhook event type: {event_type}")
            return {"status": "ignored", "event_type": event_type}

        outcome = mapping[0]
        stripe_payment_id = obj.get("payment_intent") if event_type.startswith("checkout.") else None

        try:
            with self.transaction():
                result = self._apply_in_transaction(
                    external_ref, outcome, stripe_payment_id, utc_now()
                )
                self.ledger.mark_processed(
                    ledger_row,
                    related_entity_type="payment",
                    related_entity_id=result.payment_id,
                    duration_ms=self._elapsed_ms(started),
                )
        except NotFoundException as exc:
            log_extra = {"event_id": event_id, "event_type": event_type, "external_ref": external_ref}
            if event_type.startswith("checkout."):
                # Checkout sessions are linked before the customer is redirected.
                with self.transaction():
                    self.ledger.mark_processed(
                        ledger_row, status="ignored", duration_ms=self._elapsed_ms(started)
                    )
                prometheus_metrics.record_payment_webhook(event_type, "unmatched")
                self.logger.warning("Webhook references unknown checkout session", extra=log_extra)
                return {"status": "ignored", "event_type": event_type}

            # Intent ids are only stored by checkout.session.completed; an intent or
            # charge event can overtake it, so leave the delivery open for a retry.
            with self.transaction():
                self.ledger.mark_failed(
                    ledger_row,
                    error=f"No payment linked to {external_ref}",
                    duration_ms=self._elapsed_ms(started),
                )
            prometheus_metrics.record_payment_webhook(event_type, "unlinked")
            self.logger.warning("Webhook arrived before its payment was linked", extra=log_extra)
            raise PaymentNotLinkedException(external_ref) from exc
        except DomainException as exc:
            with self.transaction():
                self.ledger.mark_failed(
                    ledger_row, error=exc.message, duration_ms=self._elapsed_ms(started)
                )
            prometheus_metrics.record_payment_webhook(event_type, "failed")
            raise

        self._after_commit(result)
        prometheus_metrics.record_payment_webhook(
            event_type, "applied" if result.changed else "noop"
        )
        return {"status": "success", "event_type": event_type, **result.to_dict()}

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)
