"""Event handlers - process domain events from the job queue."""
import json
import logging
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from ..models.booking import Booking
from ..repositories.booking_repository import BookingRepository
from ..services.notification_service import NotificationService

logger = logging.getLogger(__name__)

Handler = Callable[[str, Session, NotificationService], None]


def _load_booking(db: Session, booking_id: str) -> Optional[Booking]:
    return BookingRepository(db).get_with_details(booking_id)


def handle_slot_reserved(payload_str: str, db: Session, notifier: NotificationService) -> None:
    payload = json.loads(payload_str)
    booking = _load_booking(db, payload["booking_id"])
    if not booking:
        logger.warning("Booking %s not found for reservation notice", payload["booking_id"])
        return
    notifier.send_reservation_received(booking)


def handle_booking_confirmed(payload_str: str, db: Session, notifier: NotificationService) -> None:
    payload = json.loads(payload_str)
    booking = _load_booking(db, payload["booking_id"])
    if not booking:
        logger.warning("Booking %s not found for confirmation", payload["booking_id"])
        return
    notifier.send_booking_confirmation(booking)


def handle_booking_released(payload_str: str, db: Session, notifier: NotificationService) -> None:
    payload = json.loads(payload_str)
    booking = _load_booking(db, payload["booking_id"])
    if not booking:
        logger.warning("Booking %s not found for release notice", payload["booking_id"])
        return
    notifier.send_release_notice(booking, reason=payload.get("reason") or "cancelled")


def handle_payment_refunded(payload_str: str, db: Session, notifier: NotificationService) -> None:
    payload = json.loads(payload_str)
    booking = _load_booking(db, payload["booking_id"]) if payload.get("booking_id") else None
    notifier.send_refund_alert(payment_id=payload["payment_id"], booking=booking)


# Registry of event type -> handler function
EVENT_HANDLERS: Dict[str, Handler] = {
    "event:SlotReserved": handle_slot_reserved,
    "event:BookingConfirmed": handle_booking_confirmed,
    "event:BookingReleased": handle_booking_released,
    "event:PaymentRefunded": handle_payment_refunded,
}


def process_event(
    job_type: str, payload: str, db: Session, notifier: Optional[NotificationService] = None
) -> bool:
    """
    Process an event job.

    Returns True if handled, False if not an event job.
    """
    if not job_type.startswith("event:"):
        return False

    handler = EVENT_HANDLERS.get(job_type)
    if not handler:
        logger.warning("No handler for event type: %s", job_type)
        return True  # Consumed but unhandled

    handler(payload, db, notifier or NotificationService(db))
    return True
