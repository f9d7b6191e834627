"""Queries over calendar exceptions (blocks, holidays, booked slots)."""

from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.availability import BOOKED_REASON, AvailabilityException
from .base_repository import BaseRepository


class AvailabilityExceptionRepository(BaseRepository[AvailabilityException]):
    def __init__(self, db: Session):
        super().__init__(db, AvailabilityException)

    def list_overlapping(
        self,
        window_start: datetime,
        window_end: datetime,
        *,
        reason: Optional[str] = None,
    ) -> List[AvailabilityException]:
        """Exceptions whose [date, end_date) intersects [window_start, window_end)."""
        query = self._build_query().filter(
            AvailabilityException.date < window_end,
            AvailabilityException.end_date > window_start,
        )
        if reason:
            query = query.filter(AvailabilityException.reason == reason)
        return self._execute_query(query.order_by(AvailabilityException.date.asc()))

    def delete_for_booking(self, booking_id: str) -> bool:
        """Remove the booked exception owned by a booking. Missing rows are fine."""
        try:
            deleted = (
                self._build_query()
                .filter(AvailabilityException.booking_id == booking_id)
                .delete(synchronize_session="fetch")
            )
            self.db.flush()
            return bool(deleted)
        except SQLAlchemyError as exc:
            self.logger.error("Failed to delete exception for booking %s: %s", booking_id, exc)
            raise RepositoryException("Failed to release booked slot") from exc

    def count_future_booked_for_rule(self, rule_id: str, now: datetime) -> int:
        query = self.db.query(func.count(AvailabilityException.id)).filter(
            AvailabilityException.slot_id == rule_id,
            AvailabilityException.reason == BOOKED_REASON,
            AvailabilityException.date >= now,
        )
        return int(self._execute_scalar(query) or 0)

    def search(
        self,
        *,
        reason: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 500,
    ) -> List[AvailabilityException]:
        """Admin listing: starts at or after ``start``, ends at or before ``end``."""
        query = self._build_query()
        if reason:
            query = query.filter(AvailabilityException.reason == reason)
        if start is not None:
            query = query.filter(AvailabilityException.date >= start)
        if end is not None:
            query = query.filter(AvailabilityException.end_date <= end)
        return self._execute_query(query.order_by(AvailabilityException.date.asc()).limit(limit))

    def lock_day_for_claims(self, day: date) -> None:
        """
        Serialize booked-exception writers for one business day.

        PostgreSQL takes a transaction-scoped advisory lock keyed by the day.
        SQLite has no row or advisory locks, so a no-op UPDATE takes the
        database write lock before the re-check reads; concurrent claimers
        queue on the busy timeout until the holder commits.
        """
        if self.dialect_name == "postgresql":
            statement = text("SELECT pg_advisory_xact_lock(:namespace, :day_key)")
            params = {"namespace": 7307, "day_key": day.toordinal()}
        elif self.dialect_name == "sqlite":
            statement = text("UPDATE availability_exceptions SET id = id WHERE 0")
            params = {}
        else:
            return
        try:
            self.db.execute(statement, params)
        except SQLAlchemyError as exc:
            self.logger.error("Failed to take day claim lock for %s: %s", day, exc)
            raise RepositoryException("Failed to lock day for reservation") from exc
