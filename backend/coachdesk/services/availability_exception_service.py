"""Administrator blocks and holidays on the calendar."""

from datetime import date, datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.enums import ADMIN_EXCEPTION_REASONS
from ..core.exceptions import (
    BusinessRuleException,
    ConflictException,
    NotFoundException,
    ValidationException,
)
from ..core.timezone_utils import business_date_of
from ..models.availability import BOOKED_REASON, AvailabilityException
from ..repositories.factory import RepositoryFactory
from .base import BaseService


class AvailabilityExceptionService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.exception_repository = RepositoryFactory.create_availability_exception_repository(db)
        self.rule_repository = RepositoryFactory.create_availability_rule_repository(db)

    def list_exceptions(
        self,
        *,
        reason: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[AvailabilityException]:
        return self.exception_repository.search(reason=reason, start=start, end=end)

    def _lock_business_days(self, start: datetime, end: datetime) -> None:
        day: date = business_date_of(start)
        last_day: date = business_date_of(end - timedelta(microseconds=1))
        while day <= last_day:
            self.exception_repository.lock_day_for_claims(day)
            day += timedelta(days=1)

    @BaseService.measure_operation("create_block")
    def create_block(
        self,
        start: datetime,
        end: datetime,
        *,
        reason: str = "blocked",
        notes: Optional[str] = None,
        slot_id: Optional[str] = None,
    ) -> AvailabilityException:
        """
        Remove [start, end) from the calendar.

        Rejected when the window overlaps a live booking; admins cancel the
        booking first.
        """
        if reason not in ADMIN_EXCEPTION_REASONS:
            raise ValidationException(
                f"Invalid reason: {reason}",
                code="INVALID_REASON",
                details={"allowed": sorted(ADMIN_EXCEPTION_REASONS)},
            )
        if start.tzinfo is None or end.tzinfo is None:
            raise ValidationException("Dates must include a timezone offset", code="NAIVE_DATETIME")
        if end <= start:
            raise ValidationException("End date must be after start date", code="INVALID_RANGE")
        if slot_id and self.rule_repository.get_by_id(slot_id) is None:
            raise NotFoundException("Availability rule not found", code="RULE_NOT_FOUND")

        with self.transaction():
            self._lock_business_days(start, end)
            conflicts = self.exception_repository.list_overlapping(start, end, reason=BOOKED_REASON)
            if conflicts:
                raise ConflictException(
                    "This block overlaps existing bookings. Cancel them first.",
                    code="BLOCK_CONFLICTS_WITH_BOOKING",
                    details={
                        "conflicting_bookings": [
                            {
                                "booking_id": exc.booking_id,
                                "date": exc.date.isoformat(),
                                "end_date": exc.end_date.isoformat(),
                            }
                            for exc in conflicts
                        ]
                    },
                )
            block = self.exception_repository.create(
                date=start,
                end_date=end,
                reason=reason,
                notes=notes,
                slot_id=slot_id,
            )
        self.log_operation("create_block", exception_id=block.id, reason=reason)
        return block

    @BaseService.measure_operation("delete_block")
    def delete_block(self, exception_id: str) -> None:
        exception = self.exception_repository.get_by_id(exception_id)
        if exception is None:
            raise NotFoundException("Exception not found", code="EXCEPTION_NOT_FOUND")
        if exception.reason == BOOKED_REASON:
            raise BusinessRuleException(
                "Cannot delete a booked slot. Cancel the booking instead.",
                code="BOOKED_EXCEPTION_PROTECTED",
                details={"booking_id": exception.booking_id},
            )
        with self.transaction():
            self.exception_repository.delete(exception_id)
        self.log_operation("delete_block", exception_id=exception_id)
