"""Closed vocabularies shared by models, schemas and services."""

from enum import Enum


class SessionType(str, Enum):
    """Coaching packages offered on the site."""

    REVIEW_ASYNC = "review-async"
    VOD_REVIEW = "vod-review"
    LIVE_COACHING = "live-coaching"

    @property
    def is_scheduled(self) -> bool:
        """Async reviews are delivered without a calendar slot."""
        return self is not SessionType.REVIEW_ASYNC


class ExceptionReason(str, Enum):
    BOOKED = "booked"
    BLOCKED = "blocked"
    HOLIDAY = "holiday"


class PaymentOutcome(str, Enum):
    """Normalized result reported by the payment provider."""

    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"


SCHEDULED_SESSION_TYPES = frozenset(t.value for t in SessionType if t.is_scheduled)

# Package prices in cents
SESSION_PRICES_CENTS = {
    SessionType.REVIEW_ASYNC.value: 2500,
    SessionType.VOD_REVIEW.value: 4000,
    SessionType.LIVE_COACHING.value: 5000,
}

ADMIN_EXCEPTION_REASONS = frozenset({ExceptionReason.BLOCKED.value, ExceptionReason.HOLIDAY.value})
