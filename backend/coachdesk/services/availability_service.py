# backend/coachdesk/services/availability_service.py
"""
Availability Service.

Public slot listing plus administrator management of the recurring weekly
rules the listing is generated from. Listing is read-only and lock-free; a
slot it returns may be claimed a moment later, which the reservation
workflow detects by re-checking inside its own transaction.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import SCHEDULED_SESSION_TYPES
from ..core.exceptions import (
    BusinessRuleException,
    NotFoundException,
    RepositoryException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc, get_business_timezone, utc_now
from ..domain.slots import (
    AvailableSlot,
    CandidateSlot,
    filter_available_slots,
    generate_candidate_slots,
    normalize_hhmm,
    rule_day_of_week,
)
from ..models.availability import AvailabilityRule
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)

NO_RULES_MESSAGE = "No availability configured for this day and session type"
FULLY_BOOKED_MESSAGE = "All slots for this day are taken"
PAST_DATE_MESSAGE = "No upcoming slots remain for this day"
UNAVAILABLE_MESSAGE = "Availability is temporarily unavailable"

RULE_FIELDS = (
    "day_of_week",
    "start_time",
    "end_time",
    "slot_duration",
    "session_type",
    "is_active",
)


@dataclass
class SlotListing:
    """Result of a listing request. ``reason`` is set only when ``slots`` is empty."""

    date: date
    session_type: str
    slots: List[AvailableSlot] = field(default_factory=list)
    reason: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "session_type": self.session_type,
            "slots": [slot.to_dict() for slot in self.slots],
            "reason": self.reason,
            "message": self.message,
        }


def validate_session_type(session_type: str) -> str:
    if session_type not in SCHEDULED_SESSION_TYPES:
        raise ValidationException(
            f"Unsupported session type: {session_type}",
            code="UNSUPPORTED_SESSION_TYPE",
            details={"supported": sorted(SCHEDULED_SESSION_TYPES)},
        )
    return session_type


def compute_available_slots(
    db: Session,
    target_date: date,
    session_type: str,
    now: datetime,
) -> tuple[List[CandidateSlot], List[AvailableSlot], List[AvailabilityRule]]:
    """
    Load rules and overlapping exceptions for one day and run generator + filter.

    Shared by the listing and by the reservation re-check, which calls it
    inside its own transaction after taking the day lock.
    """
    tz = get_business_timezone()
    rule_repo = RepositoryFactory.create_availability_rule_repository(db)
    exception_repo = RepositoryFactory.create_availability_exception_repository(db)

    rules = rule_repo.get_active_rules(rule_day_of_week(target_date), session_type)
    candidates = generate_candidate_slots(rules, target_date, tz)
    if not candidates:
        return candidates, [], rules

    session_length = settings.session_length_for(session_type)
    window_start = min(c.start for c in candidates)
    window_end = max(c.start for c in candidates) + timedelta(minutes=session_length)
    exceptions = exception_repo.list_overlapping(window_start, window_end)

    available = filter_available_slots(
        candidates,
        exceptions,
        now=now,
        session_length_minutes=session_length,
        tz=tz,
        lead_time_minutes=settings.slot_lead_time_minutes,
    )
    return candidates, available, rules


class AvailabilityService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.rule_repository = RepositoryFactory.create_availability_rule_repository(db)
        self.exception_repository = RepositoryFactory.create_availability_exception_repository(db)

    @BaseService.measure_operation("list_available_slots")
    def list_available_slots(
        self, target_date: date, session_type: str, now: Optional[datetime] = None
    ) -> SlotListing:
        """
        Bookable slots for a business-zone day.

        An empty listing carries a reason code (``no_rules_configured``,
        ``past_date``, ``fully_booked``) instead of raising. Store failures
        degrade to an empty ``unavailable`` listing.
        """
        validate_session_type(session_type)
        now = ensure_utc(now) if now else utc_now()
        listing = SlotListing(date=target_date, session_type=session_type)

        try:
            candidates, available, _rules = compute_available_slots(
                self.db, target_date, session_type, now
            )
        except RepositoryException as exc:
            self.logger.error(
                "Slot listing failed",
                extra={
                    "date": target_date.isoformat(),
                    "session_type": session_type,
                    "error": str(exc),
                },
            )
            listing.reason = "unavailable"
            listing.message = UNAVAILABLE_MESSAGE
            return listing

        listing.slots = available
        if not candidates:
            listing.reason = "no_rules_configured"
            listing.message = NO_RULES_MESSAGE
        elif not available:
            lead = timedelta(minutes=settings.slot_lead_time_minutes)
            if all(c.start - lead <= now for c in candidates):
                listing.reason = "past_date"
                listing.message = PAST_DATE_MESSAGE
            else:
                listing.reason = "fully_booked"
                listing.message = FULLY_BOOKED_MESSAGE
        return listing

    # Rule administration

    def list_rules(
        self, session_type: Optional[str] = None, day_of_week: Optional[int] = None
    ) -> List[AvailabilityRule]:
        return self.rule_repository.list_rules(session_type=session_type, day_of_week=day_of_week)

    def _validated_rule_fields(
        self, data: Dict[str, Any], existing: Optional[AvailabilityRule] = None
    ) -> Dict[str, Any]:
        merged = {name: getattr(existing, name) for name in RULE_FIELDS} if existing else {}
        merged.update({k: v for k, v in data.items() if k in RULE_FIELDS and v is not None})

        required = ("day_of_week", "start_time", "end_time", "session_type")
        missing = [name for name in required if merged.get(name) is None]
        if missing:
            raise ValidationException(
                "Missing required fields", code="MISSING_FIELDS", details={"fields": missing}
            )
        if not 0 <= int(merged["day_of_week"]) <= 6:
            raise ValidationException("day_of_week must be between 0 (Sunday) and 6 (Saturday)")
        try:
            merged["start_time"] = normalize_hhmm(merged["start_time"])
            merged["end_time"] = normalize_hhmm(merged["end_time"])
        except ValueError:
            raise ValidationException("Invalid time format. Use HH:MM", code="INVALID_TIME")
        if merged["end_time"] <= merged["start_time"]:
            raise ValidationException("End time must be after start time", code="INVALID_RANGE")
        merged.setdefault("slot_duration", settings.default_slot_duration)
        if int(merged["slot_duration"]) <= 0:
            raise ValidationException("slot_duration must be positive")
        merged.setdefault("is_active", True)
        validate_session_type(merged["session_type"])
        return merged

    @BaseService.measure_operation("create_rule")
    def create_rule(self, data: Dict[str, Any]) -> AvailabilityRule:
        fields = self._validated_rule_fields(data)
        with self.transaction():
            rule = self.rule_repository.create(**fields)
        self.log_operation("create_rule", rule_id=rule.id, day_of_week=rule.day_of_week)
        return rule

    @BaseService.measure_operation("update_rule")
    def update_rule(self, rule_id: str, data: Dict[str, Any]) -> AvailabilityRule:
        rule = self.rule_repository.get_by_id(rule_id)
        if rule is None:
            raise NotFoundException("Availability rule not found", code="RULE_NOT_FOUND")
        fields = self._validated_rule_fields(data, existing=rule)
        with self.transaction():
            for key, value in fields.items():
                setattr(rule, key, value)
        return rule

    @BaseService.measure_operation("delete_rule")
    def delete_rule(self, rule_id: str, now: Optional[datetime] = None) -> None:
        """Delete a rule unless a future booking was generated from it."""
        rule = self.rule_repository.get_by_id(rule_id)
        if rule is None:
            raise NotFoundException("Availability rule not found", code="RULE_NOT_FOUND")
        future_bookings = self.exception_repository.count_future_booked_for_rule(
            rule_id, ensure_utc(now) if now else utc_now()
        )
        if future_bookings:
            raise BusinessRuleException(
                f"Cannot delete a slot with {future_bookings} future booking(s)",
                code="RULE_HAS_FUTURE_BOOKINGS",
                details={"future_bookings": future_bookings},
            )
        with self.transaction():
            self.rule_repository.delete(rule_id)
        self.log_operation("delete_rule", rule_id=rule_id)

