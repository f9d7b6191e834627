"""Queries over recurring availability rules."""

from typing import List, Optional

from sqlalchemy.orm import Session

from ..models.availability import AvailabilityRule
from .base_repository import BaseRepository


class AvailabilityRuleRepository(BaseRepository[AvailabilityRule]):
    def __init__(self, db: Session):
        super().__init__(db, AvailabilityRule)

    def get_active_rules(self, day_of_week: int, session_type: str) -> List[AvailabilityRule]:
        """Active rules for one weekday (0 = Sunday) and session type, oldest first."""
        query = (
            self._build_query()
            .filter(
                AvailabilityRule.day_of_week == day_of_week,
                AvailabilityRule.session_type == session_type,
                AvailabilityRule.is_active.is_(True),
            )
            .order_by(AvailabilityRule.start_time.asc(), AvailabilityRule.created_at.asc())
        )
        return self._execute_query(query)

    def list_rules(
        self,
        *,
        session_type: Optional[str] = None,
        day_of_week: Optional[int] = None,
        include_inactive: bool = True,
    ) -> List[AvailabilityRule]:
        query = self._build_query()
        if session_type:
            query = query.filter(AvailabilityRule.session_type == session_type)
        if day_of_week is not None:
            query = query.filter(AvailabilityRule.day_of_week == day_of_week)
        if not include_inactive:
            query = query.filter(AvailabilityRule.is_active.is_(True))
        query = query.order_by(AvailabilityRule.day_of_week.asc(), AvailabilityRule.start_time.asc())
        return self._execute_query(query)
