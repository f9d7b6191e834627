"""Booking domain events."""
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class SlotReserved:
    """Fired after a reservation commits (paid path awaits payment)."""

    booking_id: str
    email: str
    session_type: str
    scheduled_at: datetime
    awaiting_payment: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingConfirmed:
    """Fired when a booking becomes CONFIRMED (payment succeeded or friend code)."""

    booking_id: str
    confirmed_at: datetime
    source: str  # 'payment' or 'friend_code'

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingReleased:
    """Fired after a booking is cancelled and its slot freed."""

    booking_id: str
    reason: str  # 'payment_failed', 'admin', 'customer'
    released_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PaymentRefunded:
    """Fired after a refund is recorded; the booking is left for admin follow-up."""

    payment_id: str
    refunded_at: datetime
    booking_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
