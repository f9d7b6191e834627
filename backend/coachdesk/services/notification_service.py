"""
Customer and coach notifications for booking lifecycle events.

Delivery (email, Discord) is done by an injected provider; message bodies
are plain text. Provider failures raise so the event worker can retry the job.
"""

import logging
from typing import Optional, Protocol

from sqlalchemy.orm import Session

from ..core.timezone_utils import format_slot_labels, get_business_timezone
from ..models.booking import Booking
from ..monitoring.prometheus_metrics import prometheus_metrics
from .base import BaseService

logger = logging.getLogger(__name__)

COACH_RECIPIENT = "coach"


class NotificationProvider(Protocol):
    def send(self, *, recipient: str, subject: str, body: str) -> None:
        ...


class LoggingNotificationProvider:
    """Default provider: writes the message to the log instead of sending it."""

    def send(self, *, recipient: str, subject: str, body: str) -> None:
        logger.info(
            "notification", extra={"recipient": recipient, "subject": subject, "body": body}
        )


class NotificationService(BaseService):
    def __init__(self, db: Session, provider: Optional[NotificationProvider] = None):
        super().__init__(db)
        self.provider = provider or LoggingNotificationProvider()

    def _when(self, booking: Booking) -> str:
        labels = format_slot_labels(booking.scheduled_at, get_business_timezone())
        return f"{labels['date']} at {labels['time']}"

    def _dispatch(self, event_type: str, recipient: str, subject: str, body: str) -> None:
        try:
            self.provider.send(recipient=recipient, subject=subject, body=body)
        except Exception:
            prometheus_metrics.record_notification_outcome(event_type, "failed")
            raise
        prometheus_metrics.record_notification_outcome(event_type, "sent")

    @BaseService.measure_operation("send_reservation_received")
    def send_reservation_received(self, booking: Booking) -> None:
        self._dispatch(
            "reservation_received",
            booking.email,
            "We're holding your coaching slot",
            f"Your {booking.session_type} session on {self._when(booking)} is held "
            f"while we wait for payment. Booking ID: {booking.id}",
        )

    @BaseService.measure_operation("send_booking_confirmation")
    def send_booking_confirmation(self, booking: Booking) -> None:
        when = self._when(booking)
        self._dispatch(
            "booking_confirmed",
            booking.email,
            "Your coaching session is confirmed",
            f"Your {booking.session_type} session on {when} is confirmed. Booking ID: {booking.id}",
        )
        self._dispatch(
            "booking_confirmed",
            COACH_RECIPIENT,
            "New session booked",
            f"{booking.email} booked {booking.session_type} on {when}. Booking ID: {booking.id}",
        )

    @BaseService.measure_operation("send_release_notice")
    def send_release_notice(self, booking: Booking, *, reason: str) -> None:
        if reason == "payment_failed":
            body = (
                f"Payment for your {booking.session_type} session on {self._when(booking)} "
                "did not go through, so the slot has been released. You're welcome to book again."
            )
        else:
            body = f"Your {booking.session_type} session on {self._when(booking)} was cancelled."
        self._dispatch("booking_released", booking.email, "Your coaching session was released", body)

    @BaseService.measure_operation("send_refund_alert")
    def send_refund_alert(self, *, payment_id: str, booking: Optional[Booking]) -> None:
        suffix = f" for booking {booking.id} ({self._when(booking)})" if booking else ""
        self._dispatch(
            "payment_refunded",
            COACH_RECIPIENT,
            "Payment refunded",
            f"Payment {payment_id} was refunded{suffix}. Review the booking.",
        )
