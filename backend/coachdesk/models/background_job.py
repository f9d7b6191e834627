"""Persisted queue of post-commit work (notifications, follow-ups)."""

from sqlalchemy import Column, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from sqlalchemy.types import JSON

from ..database import Base
from .types import UTCDateTime


class BackgroundJob(Base):
    """Persisted background job entry for retryable workflows."""

    __tablename__ = "background_jobs"

    id = Column(String, primary_key=True, index=True)
    type = Column(String, nullable=False)
    payload = Column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"),
        nullable=False,
    )
    status = Column(String(20), nullable=False, default="queued")
    attempts = Column(Integer, nullable=False, default=0)
    available_at = Column(UTCDateTime(), nullable=False)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (Index("ix_background_jobs_status_available_at", "status", "available_at"),)
