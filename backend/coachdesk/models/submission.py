# backend/coachdesk/models/submission.py
"""Replay submission: the coaching request a booking belongs to."""

from enum import Enum

from sqlalchemy import Column, DateTime, Index, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base


class SubmissionStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    ARCHIVED = "ARCHIVED"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    PAYMENT_FAILED = "PAYMENT_FAILED"


class ReplaySubmission(Base):
    __tablename__ = "replay_submissions"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    email = Column(String(255), nullable=False)
    discord_tag = Column(String(64), nullable=True)
    coaching_type = Column(String(32), nullable=False)
    rank = Column(String(32), nullable=True)
    role = Column(String(32), nullable=True)
    hero = Column(String(64), nullable=True)
    replay_code = Column(String(32), nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=SubmissionStatus.PENDING.value)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    booking = relationship("Booking", back_populates="submission", uselist=False)

    __table_args__ = (Index("idx_replay_submissions_status", "status"),)

    def __repr__(self) -> str:
        return f"<ReplaySubmission {self.id} {self.coaching_type} {self.status}>"
