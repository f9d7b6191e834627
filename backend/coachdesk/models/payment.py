# backend/coachdesk/models/payment.py
"""
Payment linkage between a submission and the payment provider.

Stripe owns the money movement; this row only tracks the status we have
been told about so the reconciler can find the booking again.
"""

from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.sql import func
import ulid

from ..database import Base


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    stripe_payment_id = Column(String(255), nullable=True, unique=True)
    stripe_session_id = Column(String(255), nullable=True, unique=True)
    amount = Column(Integer, nullable=False)  # cents
    currency = Column(String(3), nullable=False, default="usd")
    status = Column(String(16), nullable=False, default=PaymentStatus.PENDING.value)
    coaching_type = Column(String(32), nullable=False)
    customer_email = Column(String(255), nullable=False)
    submission_id = Column(
        String(26), ForeignKey("replay_submissions.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<Payment {self.id} {self.amount}{self.currency} {self.status}>"
