# backend/coachdesk/models/booking.py
"""
Booking model.

A booking is the customer-facing commitment for one scheduled session. While
it is active it owns exactly one ``booked`` AvailabilityException, which is
what removes the slot from the public listing.
"""

from enum import Enum
import logging

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base
from .types import UTCDateTime

logger = logging.getLogger(__name__)


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "PENDING"  # Slot held, awaiting payment
    CONFIRMED = "CONFIRMED"  # Paid or friend code
    SCHEDULED = "SCHEDULED"  # Coach has sent the session link
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"

    @classmethod
    def active(cls) -> frozenset:
        """Statuses that keep the slot occupied."""
        return frozenset({cls.PENDING, cls.CONFIRMED, cls.SCHEDULED})


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    email = Column(String(255), nullable=False)
    session_type = Column(String(32), nullable=False)
    scheduled_at = Column(UTCDateTime(), nullable=False)
    status = Column(String(16), nullable=False, default=BookingStatus.PENDING.value)
    notes = Column(Text, nullable=True)
    submission_id = Column(
        String(26),
        ForeignKey("replay_submissions.id", ondelete="SET NULL"),
        nullable=True,
        unique=True,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    submission = relationship("ReplaySubmission", back_populates="booking")
    exception = relationship(
        "AvailabilityException",
        uselist=False,
        viewonly=True,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'SCHEDULED', 'CANCELLED', 'COMPLETED', 'NO_SHOW')",
            name="ck_bookings_status",
        ),
        Index("idx_bookings_scheduled_at", "scheduled_at"),
        Index("idx_bookings_email", "email"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in {s.value for s in BookingStatus.active()}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "session_type": self.session_type,
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "status": self.status,
            "notes": self.notes,
            "submission_id": self.submission_id,
        }

    def __repr__(self) -> str:
        return f"<Booking {self.id} {self.session_type} {self.scheduled_at} {self.status}>"
