# backend/coachdesk/schemas/booking.py
"""
Booking schemas.

Reservation requests carry the chosen slot as an ISO-8601 instant with an
explicit offset; naive datetimes are rejected here so services never have
to guess the caller's zone.
"""

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import EmailStr, Field, field_validator

from ..core.enums import SessionType
from ._strict_base import StrictModel, StrictRequestModel

ScheduledSessionType = Literal["vod-review", "live-coaching"]


def _require_offset(value: datetime) -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError("slot must include a timezone offset")
    return value


class ReservationCreate(StrictRequestModel):
    """Claim a listed slot for a paid session."""

    slot: datetime = Field(..., description="Slot start as returned by the listing (ISO-8601)")
    session_type: ScheduledSessionType = Field(..., description="Scheduled coaching package")
    email: EmailStr
    discord_tag: Optional[str] = Field(None, max_length=64)
    rank: Optional[str] = Field(None, max_length=32)
    role: Optional[Literal["Tank", "DPS", "Support"]] = None
    hero: Optional[str] = Field(None, max_length=64)
    replay_code: Optional[str] = Field(None, max_length=32)
    notes: Optional[str] = Field(None, max_length=2000)
    submission_id: Optional[str] = Field(
        None, description="Existing replay submission to attach the booking to"
    )

    @field_validator("slot")
    @classmethod
    def _slot_has_offset(cls, value: datetime) -> datetime:
        return _require_offset(value)


class FriendCodeReservationCreate(ReservationCreate):
    """Claim a slot with a friend code instead of payment."""

    friend_code: str = Field(..., min_length=1, max_length=64)


class CheckoutCreate(StrictRequestModel):
    """Payment reference for a pending booking. The checkout session itself is created elsewhere."""

    stripe_session_id: str = Field(..., min_length=1, max_length=255)
    stripe_payment_id: Optional[str] = Field(None, max_length=255)
    amount: Optional[int] = Field(None, gt=0, description="Amount in cents; defaults to the package price")


class SlotResponse(StrictModel):
    datetime: str = Field(..., description="UTC instant, ISO-8601")
    time: str = Field(..., description="Business-zone wall clock, e.g. 9:00 AM")
    date: str = Field(..., description="Business-zone date, YYYY-MM-DD")


class AvailableSlotsResponse(StrictModel):
    date: date
    session_type: SessionType
    slots: List[SlotResponse]
    reason: Optional[Literal["no_rules_configured", "past_date", "fully_booked", "unavailable"]] = None
    message: Optional[str] = None


class ReservationResponse(StrictModel):
    booking_id: str
    submission_id: str
    status: str
    scheduled_at: datetime
    awaiting_payment: bool


class BookingResponse(StrictModel):
    id: str
    email: str
    session_type: str
    scheduled_at: datetime
    status: str
    notes: Optional[str] = None
    submission_id: Optional[str] = None
    exception_id: Optional[str] = None

    @classmethod
    def from_booking(cls, booking) -> "BookingResponse":
        exception = getattr(booking, "exception", None)
        return cls(
            id=booking.id,
            email=booking.email,
            session_type=booking.session_type,
            scheduled_at=booking.scheduled_at,
            status=booking.status,
            notes=booking.notes,
            submission_id=booking.submission_id,
            exception_id=exception.id if exception is not None else None,
        )


class PaymentResponse(StrictModel):
    id: str
    status: str
    amount: int
    currency: str
    stripe_session_id: Optional[str] = None
    stripe_payment_id: Optional[str] = None
    submission_id: Optional[str] = None
