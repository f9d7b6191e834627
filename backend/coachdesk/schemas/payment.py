from typing import Optional

from ._strict_base import StrictModel


class WebhookResponse(StrictModel):
    """Acknowledgement returned to Stripe. ``status`` is success, duplicate or ignored."""

    status: str
    event_type: str
    payment_id: Optional[str] = None
    outcome: Optional[str] = None
    changed: Optional[bool] = None
    payment_status: Optional[str] = None
    booking_id: Optional[str] = None
    booking_status: Optional[str] = None
