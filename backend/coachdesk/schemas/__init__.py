from .admin_bookings import AdminBookingUpdate
from .availability import (
    AvailabilityExceptionCreate,
    AvailabilityExceptionListResponse,
    AvailabilityExceptionResponse,
    AvailabilityRuleCreate,
    AvailabilityRuleResponse,
    AvailabilityRuleUpdate,
)
from .booking import (
    AvailableSlotsResponse,
    BookingResponse,
    CheckoutCreate,
    FriendCodeReservationCreate,
    PaymentResponse,
    ReservationCreate,
    ReservationResponse,
    SlotResponse,
)
from .payment import WebhookResponse

__all__ = [
    "AdminBookingUpdate",
    "AvailabilityExceptionCreate",
    "AvailabilityExceptionListResponse",
    "AvailabilityExceptionResponse",
    "AvailabilityRuleCreate",
    "AvailabilityRuleResponse",
    "AvailabilityRuleUpdate",
    "AvailableSlotsResponse",
    "BookingResponse",
    "CheckoutCreate",
    "FriendCodeReservationCreate",
    "PaymentResponse",
    "ReservationCreate",
    "ReservationResponse",
    "SlotResponse",
    "WebhookResponse",
]
