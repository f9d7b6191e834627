# backend/coachdesk/services/reservation_service.py
"""
Reservation Service.

Claims a slot by creating the Booking, its submission link and the owning
``booked`` AvailabilityException in one transaction. The slot is re-checked
inside that transaction (after the per-day claim lock) against the latest
exceptions; the booked-slot unique index and, on PostgreSQL, the overlap
exclusion constraint back the re-check up if two writers still race.

States:
    REQUESTED -> RESERVED -> CONFIRMED   (payment succeeded or friend code)
    REQUESTED -> RESERVED -> RELEASED    (payment failed or cancelled)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import SESSION_PRICES_CENTS
from ..core.exceptions import (
    BusinessRuleException,
    ConflictException,
    DomainException,
    NotFoundException,
    PersistenceException,
    RepositoryException,
    SlotConflictException,
    ValidationException,
)
from ..core.slot_lock import slot_lock
from ..core.timezone_utils import business_date_of, ensure_utc, utc_now
from ..domain.slots import find_available_slot
from ..events import BookingConfirmed, BookingReleased, SlotReserved
from ..models.availability import BOOKED_REASON
from ..models.booking import Booking, BookingStatus
from ..models.payment import Payment, PaymentStatus
from ..models.submission import ReplaySubmission, SubmissionStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .availability_service import compute_available_slots, validate_session_type
from .base import BaseService

logger = logging.getLogger(__name__)

SLOT_CONSTRAINTS = (
    "uq_availability_exceptions_booked_start",
    "ex_availability_exceptions_booked_overlap",
    "availability_exceptions.date",
    "availability_exceptions.booking_id",
    "availability_exceptions_booking_id_key",
)
SUBMISSION_CONSTRAINTS = ("bookings.submission_id", "bookings_submission_id_key")
FRIEND_CODE_SUFFIX = " (Friend Code)"

ADMIN_STATUS_TRANSITIONS = {
    BookingStatus.PENDING.value: {BookingStatus.CONFIRMED.value, BookingStatus.CANCELLED.value},
    BookingStatus.CONFIRMED.value: {
        BookingStatus.SCHEDULED.value,
        BookingStatus.COMPLETED.value,
        BookingStatus.NO_SHOW.value,
        BookingStatus.CANCELLED.value,
    },
    BookingStatus.SCHEDULED.value: {
        BookingStatus.COMPLETED.value,
        BookingStatus.NO_SHOW.value,
        BookingStatus.CANCELLED.value,
    },
}


@dataclass
class ClientInfo:
    """Contact and request details supplied with a reservation."""

    email: str
    discord_tag: Optional[str] = None
    rank: Optional[str] = None
    role: Optional[str] = None
    hero: Optional[str] = None
    replay_code: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class ReservationResult:
    booking_id: str
    submission_id: str
    exception_id: str
    status: str
    scheduled_at: datetime
    awaiting_payment: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "booking_id": self.booking_id,
            "submission_id": self.submission_id,
            "status": self.status,
            "scheduled_at": self.scheduled_at.isoformat(),
            "awaiting_payment": self.awaiting_payment,
        }


def resolve_integrity_conflict(error: BaseException) -> Optional[str]:
    """
    Classify an IntegrityError by the constraint it violated.

    Returns ``"slot"``, ``"submission"`` or None when the constraint is not
    one the reservation expects to race on.
    """
    constraint_name = ""
    orig = getattr(error, "orig", None)
    diag = getattr(orig, "diag", None)
    if diag is not None:
        constraint_name = getattr(diag, "constraint_name", "") or ""
    text = f"{constraint_name} {orig if orig is not None else error}"

    if any(name in text for name in SLOT_CONSTRAINTS):
        return "slot"
    if any(name in text for name in SUBMISSION_CONSTRAINTS):
        return "submission"
    return None


def release_booking_slot(db: Session, booking: Booking) -> bool:
    """
    Cancel a booking and delete its booked exception. Caller owns the transaction.

    Returns False when the booking was already cancelled.
    """
    if booking.status == BookingStatus.CANCELLED.value:
        return False
    booking.status = BookingStatus.CANCELLED.value
    RepositoryFactory.create_availability_exception_repository(db).delete_for_booking(booking.id)
    db.flush()
    db.expire(booking, ["exception"])
    return True


class ReservationService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.submission_repository = RepositoryFactory.create_submission_repository(db)
        self.exception_repository = RepositoryFactory.create_availability_exception_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)

    def _validate_request(
        self,
        slot_instant: datetime,
        session_type: str,
        client: ClientInfo,
        friend_code: Optional[str],
    ) -> None:
        validate_session_type(session_type)
        if not isinstance(slot_instant, datetime) or slot_instant.tzinfo is None:
            raise ValidationException(
                "Slot time must be an ISO-8601 instant with a timezone offset",
                code="INVALID_SLOT_TIME",
            )
        email = (client.email or "").strip()
        if not email or "@" not in email:
            raise ValidationException("A valid email address is required", code="INVALID_EMAIL")
        if friend_code is not None and not settings.is_friend_code(friend_code):
            raise ValidationException("Invalid friend code", code="INVALID_FRIEND_CODE")

    def _claim_submission(
        self,
        submission_id: Optional[str],
        session_type: str,
        client: ClientInfo,
        status: SubmissionStatus,
    ) -> ReplaySubmission:
        if submission_id:
            submission = self.submission_repository.get_by_id(submission_id)
            if submission is None:
                raise NotFoundException("Submission not found", code="SUBMISSION_NOT_FOUND")
            if self.booking_repository.find_by_submission_id(submission_id) is not None:
                raise ConflictException(
                    "This submission already has a booking", code="SUBMISSION_ALREADY_BOOKED"
                )
            if submission.coaching_type != session_type:
                raise ValidationException(
                    "Submission coaching type does not match the requested session",
                    code="SESSION_TYPE_MISMATCH",
                )
            submission.status = status.value
            return submission

        return self.submission_repository.create(
            email=client.email.strip(),
            discord_tag=client.discord_tag,
            coaching_type=session_type,
            rank=client.rank,
            role=client.role,
            hero=client.hero,
            replay_code=client.replay_code,
            notes=client.notes,
            status=status.value,
        )

    def _raise_for_write_failure(self, exc: Exception, slot_instant: datetime) -> None:
        cause = exc.__cause__
        if isinstance(cause, IntegrityError):
            scope = resolve_integrity_conflict(cause)
            if scope == "slot":
                raise SlotConflictException(
                    details={"slot": ensure_utc(slot_instant).isoformat()}
                ) from exc
            if scope == "submission":
                raise ConflictException(
                    "This submission already has a booking", code="SUBMISSION_ALREADY_BOOKED"
                ) from exc
        if isinstance(exc, PersistenceException):
            raise exc
        raise PersistenceException() from exc

    @BaseService.measure_operation("reserve")
    def reserve(
        self,
        slot_instant: datetime,
        session_type: str,
        client: ClientInfo,
        *,
        submission_id: Optional[str] = None,
        friend_code: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ReservationResult:
        """
        Claim ``slot_instant`` for a new booking.

        Raises:
            ValidationException: malformed instant, unsupported session type, bad email or code
            SlotConflictException: the slot was taken since it was listed
            PersistenceException: the write failed and was fully rolled back
        """
        path = "friend_code" if friend_code is not None else "paid"
        try:
            self._validate_request(slot_instant, session_type, client, friend_code)
        except ValidationException:
            prometheus_metrics.record_reservation(path, "invalid")
            raise

        now = ensure_utc(now) if now else utc_now()
        instant = ensure_utc(slot_instant)
        target_date = business_date_of(instant)
        is_friend = path == "friend_code"
        session_length = settings.session_length_for(session_type)
        suffix = FRIEND_CODE_SUFFIX if is_friend else ""

        try:
            with slot_lock(instant) as acquired:
                if not acquired:
                    raise SlotConflictException(details={"slot": instant.isoformat()})
                try:
                    with self.transaction():
                        self.exception_repository.lock_day_for_claims(target_date)
                        _candidates, available, _rules = compute_available_slots(
                            self.db, target_date, session_type, now
                        )
                        slot = find_available_slot(available, instant)
                        if slot is None:
                            raise SlotConflictException(details={"slot": instant.isoformat()})

                        submission = self._claim_submission(
                            submission_id,
                            session_type,
                            client,
                            SubmissionStatus.PAYMENT_RECEIVED
                            if is_friend
                            else SubmissionStatus.AWAITING_PAYMENT,
                        )
                        booking = self.booking_repository.create(
                            email=client.email.strip(),
                            session_type=session_type,
                            scheduled_at=slot.start,
                            status=(
                                BookingStatus.CONFIRMED.value
                                if is_friend
                                else BookingStatus.PENDING.value
                            ),
                            submission_id=submission.id,
                            notes=client.notes,
                        )
                        exception = self.exception_repository.create(
                            date=slot.start,
                            end_date=slot.start + timedelta(minutes=session_length),
                            reason=BOOKED_REASON,
                            notes=f"Booking ID: {booking.id}{suffix}",
                            slot_id=slot.rule_id,
                            booking_id=booking.id,
                        )
                        if is_friend:
                            self.payment_repository.create(
                                amount=SESSION_PRICES_CENTS[session_type],
                                currency="usd",
                                status=PaymentStatus.SUCCEEDED.value,
                                coaching_type=session_type,
                                customer_email=client.email.strip(),
                                submission_id=submission.id,
                            )
                except (RepositoryException, PersistenceException) as exc:
                    self._raise_for_write_failure(exc, instant)
        except SlotConflictException:
            prometheus_metrics.record_reservation(path, "conflict")
            self.logger.info(
                "Slot conflict",
                extra={"slot": instant.isoformat(), "session_type": session_type},
            )
            raise
        except DomainException as exc:
            prometheus_metrics.record_reservation(
                path, "error" if isinstance(exc, PersistenceException) else "invalid"
            )
            raise

        prometheus_metrics.record_reservation(path, "reserved")
        self.log_operation(
            "reserve",
            booking_id=booking.id,
            submission_id=submission.id,
            slot=instant.isoformat(),
            session_type=session_type,
            path=path,
        )

        events: List[Any] = []
        if is_friend:
            events.append(
                BookingConfirmed(booking_id=booking.id, confirmed_at=now, source="friend_code")
            )
        else:
            events.append(
                SlotReserved(
                    booking_id=booking.id,
                    email=booking.email,
                    session_type=session_type,
                    scheduled_at=slot.start,
                    awaiting_payment=True,
                )
            )
        self.publish_after_commit(events)

        return ReservationResult(
            booking_id=booking.id,
            submission_id=submission.id,
            exception_id=exception.id,
            status=booking.status,
            scheduled_at=slot.start,
            awaiting_payment=not is_friend,
        )

    @BaseService.measure_operation("get_reservation")
    def get_reservation(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_with_details(booking_id)
        if booking is None:
            raise NotFoundException("Booking not found", code="BOOKING_NOT_FOUND")
        return booking

    def list_bookings(self, status: Optional[str] = None, limit: int = 100) -> List[Booking]:
        if status is not None:
            return self.booking_repository.list_by_status(status, limit=limit)
        return self.booking_repository.get_all(limit=limit)

    @BaseService.measure_operation("record_checkout")
    def record_checkout(
        self,
        booking_id: str,
        *,
        stripe_session_id: str,
        stripe_payment_id: Optional[str] = None,
        amount: Optional[int] = None,
    ) -> Payment:
        """
        Link a Stripe checkout session to a pending booking.

        The reconciler later finds the booking again through this row.
        """
        booking = self.get_reservation(booking_id)
        if booking.status != BookingStatus.PENDING.value:
            raise BusinessRuleException(
                "Only bookings awaiting payment can start checkout",
                code="BOOKING_NOT_PENDING",
                details={"status": booking.status},
            )
        if not booking.submission_id:
            raise BusinessRuleException(
                "Booking has no submission to attach a payment to", code="NO_SUBMISSION"
            )
        try:
            with self.transaction():
                payment = self.payment_repository.create(
                    stripe_session_id=stripe_session_id,
                    stripe_payment_id=stripe_payment_id,
                    amount=(
                        amount if amount is not None else SESSION_PRICES_CENTS[booking.session_type]
                    ),
                    currency="usd",
                    status=PaymentStatus.PENDING.value,
                    coaching_type=booking.session_type,
                    customer_email=booking.email,
                    submission_id=booking.submission_id,
                )
        except RepositoryException as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise ConflictException(
                    "This checkout session is already recorded", code="DUPLICATE_CHECKOUT"
                ) from exc
            raise PersistenceException() from exc
        self.log_operation("record_checkout", booking_id=booking_id, payment_id=payment.id)
        return payment

    @BaseService.measure_operation("release")
    def release(self, booking_id: str, *, reason: str = "customer") -> Booking:
        """Cancel a booking and free its slot. Already-cancelled bookings are returned unchanged."""
        booking = self.get_reservation(booking_id)
        if booking.status in (BookingStatus.COMPLETED.value, BookingStatus.NO_SHOW.value):
            raise BusinessRuleException(
                f"Cannot cancel a {booking.status.lower()} booking",
                code="BOOKING_NOT_CANCELLABLE",
            )
        with self.transaction():
            released = release_booking_slot(self.db, booking)
        if released:
            self.log_operation("release", booking_id=booking_id, reason=reason)
            self.publish_after_commit(
                [BookingReleased(booking_id=booking_id, reason=reason, released_at=utc_now())]
            )
        return booking

    @BaseService.measure_operation("update_booking")
    def update_booking(
        self,
        booking_id: str,
        *,
        status: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Booking:
        """Administrator status/notes update. Moving to CANCELLED releases the slot."""
        booking = self.get_reservation(booking_id)
        if status == booking.status:
            status = None
        if status is not None:
            if status not in {s.value for s in BookingStatus}:
                raise ValidationException(f"Invalid status: {status}", code="INVALID_STATUS")
            allowed = ADMIN_STATUS_TRANSITIONS.get(booking.status, set())
            if status not in allowed:
                raise BusinessRuleException(
                    f"Cannot move booking from {booking.status} to {status}",
                    code="INVALID_TRANSITION",
                    details={"from": booking.status, "to": status, "allowed": sorted(allowed)},
                )
            if status == BookingStatus.CANCELLED.value:
                if notes is not None:
                    with self.transaction():
                        booking.notes = notes
                return self.release(booking_id, reason="admin")

        with self.transaction():
            if status is not None:
                booking.status = status
            if notes is not None:
                booking.notes = notes
        if status == BookingStatus.CONFIRMED.value:
            self.publish_after_commit(
                [BookingConfirmed(booking_id=booking.id, confirmed_at=utc_now(), source="admin")]
            )
        return booking

