# backend/coachdesk/models/availability.py
"""
Availability models for the coaching calendar.

AvailabilityRule describes a recurring weekly window in which sessions of one
type can start. AvailabilityException carves time out of the calendar: admin
blocks and holidays, and the ``booked`` rows that represent live reservations.

Booked rows are protected at the database level:
    - a partial unique index on ``date`` for reason = 'booked' (every dialect)
    - on PostgreSQL, an exclusion constraint forbidding overlapping booked ranges
"""

import logging

from sqlalchemy import (
    DDL,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    event,
    text,
)
from sqlalchemy.sql import func
import ulid

from ..database import Base
from .types import UTCDateTime

logger = logging.getLogger(__name__)

BOOKED_REASON = "booked"


class AvailabilityRule(Base):
    """Recurring weekly availability window (wall-clock, business timezone)."""

    __tablename__ = "availability_slots"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    # 0 = Sunday ... 6 = Saturday
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)
    slot_duration = Column(Integer, nullable=False, default=60)
    session_type = Column(String(32), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_availability_slots_dow"),
        CheckConstraint("slot_duration > 0", name="ck_availability_slots_duration_positive"),
        CheckConstraint("end_time > start_time", name="ck_availability_slots_end_after_start"),
        Index(
            "idx_availability_slots_lookup",
            "day_of_week",
            "session_type",
            "is_active",
        ),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "day_of_week": self.day_of_week,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "slot_duration": self.slot_duration,
            "session_type": self.session_type,
            "is_active": self.is_active,
        }

    def __repr__(self) -> str:
        return (
            f"<AvailabilityRule dow={self.day_of_week} {self.start_time}-{self.end_time} "
            f"{self.session_type}>"
        )


class AvailabilityException(Base):
    """A UTC interval removed from the calendar."""

    __tablename__ = "availability_exceptions"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    date = Column(UTCDateTime(), nullable=False)
    end_date = Column(UTCDateTime(), nullable=False)
    reason = Column(String(16), nullable=False)
    notes = Column(Text, nullable=True)
    slot_id = Column(
        String(26), ForeignKey("availability_slots.id", ondelete="SET NULL"), nullable=True
    )
    booking_id = Column(
        String(26), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=True, unique=True
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("end_date > date", name="ck_availability_exceptions_end_after_start"),
        CheckConstraint(
            "reason IN ('booked', 'blocked', 'holiday')",
            name="ck_availability_exceptions_reason",
        ),
        CheckConstraint(
            "(reason = 'booked') = (booking_id IS NOT NULL)",
            name="ck_availability_exceptions_booked_has_booking",
        ),
        Index("idx_availability_exceptions_range", "date", "end_date"),
        Index(
            "uq_availability_exceptions_booked_start",
            "date",
            unique=True,
            sqlite_where=text("reason = 'booked'"),
            postgresql_where=text("reason = 'booked'"),
        ),
    )

    @property
    def is_booked(self) -> bool:
        return self.reason == BOOKED_REASON

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date": self.date.isoformat() if self.date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "reason": self.reason,
            "notes": self.notes,
            "slot_id": self.slot_id,
            "booking_id": self.booking_id,
        }

    def __repr__(self) -> str:
        return f"<AvailabilityException {self.reason} {self.date}-{self.end_date}>"


# Overlap backstop for booked ranges.
event.listen(
    AvailabilityException.__table__,
    "after_create",
    DDL(
        "ALTER TABLE availability_exceptions "
        "ADD CONSTRAINT ex_availability_exceptions_booked_overlap "
        "EXCLUDE USING gist (tstzrange(date, end_date, '[)') WITH &&) "
        "WHERE (reason = 'booked')"
    ).execute_if(dialect="postgresql"),
)

# SQLite has no exclusion constraints; a trigger aborts overlapping booked inserts
# with SQLITE_CONSTRAINT, which surfaces as IntegrityError.
event.listen(
    AvailabilityException.__table__,
    "after_create",
    DDL(
        "CREATE TRIGGER IF NOT EXISTS ex_availability_exceptions_booked_overlap "
        "BEFORE INSERT ON availability_exceptions "
        "WHEN NEW.reason = 'booked' "
        "BEGIN "
        "SELECT RAISE(ABORT, 'ex_availability_exceptions_booked_overlap') "
        "WHERE EXISTS ("
        "SELECT 1 FROM availability_exceptions "
        "WHERE reason = 'booked' AND date < NEW.end_date AND end_date > NEW.date"
        "); "
        "END"
    ).execute_if(dialect="sqlite"),
)
