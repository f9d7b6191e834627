"""SQLAlchemy models. Importing this package registers every table on Base.metadata."""

from .availability import AvailabilityException, AvailabilityRule
from .background_job import BackgroundJob
from .booking import Booking, BookingStatus
from .payment import Payment, PaymentStatus
from .submission import ReplaySubmission, SubmissionStatus
from .webhook_event import WebhookEvent

__all__ = [
    "AvailabilityException",
    "AvailabilityRule",
    "BackgroundJob",
    "Booking",
    "BookingStatus",
    "Payment",
    "PaymentStatus",
    "ReplaySubmission",
    "SubmissionStatus",
    "WebhookEvent",
]
