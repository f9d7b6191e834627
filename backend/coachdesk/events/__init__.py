"""Domain events published to the background job queue."""

from .booking_events import BookingConfirmed, BookingReleased, PaymentRefunded, SlotReserved
from .publisher import EventPublisher

__all__ = [
    "BookingConfirmed",
    "BookingReleased",
    "EventPublisher",
    "PaymentRefunded",
    "SlotReserved",
]
