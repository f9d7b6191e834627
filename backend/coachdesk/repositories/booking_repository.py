"""Booking persistence."""

from typing import List, Optional

from sqlalchemy.orm import Session, joinedload

from ..models.booking import Booking
from .base_repository import BaseRepository


class BookingRepository(BaseRepository[Booking]):
    def __init__(self, db: Session):
        super().__init__(db, Booking)

    def get_with_details(self, booking_id: str) -> Optional[Booking]:
        query = (
            self._build_query()
            .options(joinedload(Booking.submission), joinedload(Booking.exception))
            .filter(Booking.id == booking_id)
        )
        return query.first()

    def find_by_submission_id(self, submission_id: str) -> Optional[Booking]:
        return self.find_one_by(submission_id=submission_id)

    def list_by_status(self, status: str, limit: int = 100) -> List[Booking]:
        query = (
            self._build_query()
            .filter(Booking.status == status)
            .order_by(Booking.scheduled_at.asc())
            .limit(limit)
        )
        return self._execute_query(query)
