from typing import Optional

from pydantic import Field, model_validator

from ..models.booking import BookingStatus
from ._strict_base import StrictRequestModel


class AdminBookingUpdate(StrictRequestModel):
    """Status and/or notes change. Moving to CANCELLED releases the slot."""

    status: Optional[BookingStatus] = None
    notes: Optional[str] = Field(None, max_length=2000)

    @model_validator(mode="after")
    def _has_change(self) -> "AdminBookingUpdate":
        if self.status is None and self.notes is None:
            raise ValueError("Provide status or notes")
        return self
