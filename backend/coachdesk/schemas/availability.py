"""Admin schemas for weekly availability rules and calendar exceptions."""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field, field_validator, model_validator

from ..domain.slots import normalize_hhmm
from ._strict_base import StrictModel, StrictRequestModel

ScheduledSessionType = Literal["vod-review", "live-coaching"]


def _hhmm(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    try:
        return normalize_hhmm(value)
    except ValueError:
        raise ValueError("Invalid time format. Use HH:MM")


class AvailabilityRuleCreate(StrictRequestModel):
    day_of_week: int = Field(..., ge=0, le=6, description="0 = Sunday ... 6 = Saturday")
    start_time: str = Field(..., description="HH:MM, business timezone")
    end_time: str = Field(..., description="HH:MM, business timezone")
    slot_duration: int = Field(60, gt=0, le=24 * 60, description="Minutes between slot starts")
    session_type: ScheduledSessionType
    is_active: bool = True

    @field_validator("start_time", "end_time")
    @classmethod
    def _normalize_times(cls, value: Optional[str]) -> Optional[str]:
        return _hhmm(value)

    @model_validator(mode="after")
    def _end_after_start(self) -> "AvailabilityRuleCreate":
        if self.end_time <= self.start_time:
            raise ValueError("End time must be after start time")
        return self


class AvailabilityRuleUpdate(StrictRequestModel):
    """Partial update; cross-field checks run against the merged rule in the service."""

    day_of_week: Optional[int] = Field(None, ge=0, le=6)
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    slot_duration: Optional[int] = Field(None, gt=0, le=24 * 60)
    session_type: Optional[ScheduledSessionType] = None
    is_active: Optional[bool] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _normalize_times(cls, value: Optional[str]) -> Optional[str]:
        return _hhmm(value)


class AvailabilityRuleResponse(StrictModel):
    id: str
    day_of_week: int
    start_time: str
    end_time: str
    slot_duration: int
    session_type: str
    is_active: bool


class AvailabilityExceptionCreate(StrictRequestModel):
    date: datetime = Field(..., description="Block start, ISO-8601 with offset")
    end_date: datetime = Field(..., description="Block end (exclusive), ISO-8601 with offset")
    reason: Literal["blocked", "holiday"] = "blocked"
    notes: Optional[str] = Field(None, max_length=1000)
    slot_id: Optional[str] = None

    @model_validator(mode="after")
    def _valid_range(self) -> "AvailabilityExceptionCreate":
        if self.date.tzinfo is None or self.end_date.tzinfo is None:
            raise ValueError("Dates must include a timezone offset")
        if self.end_date <= self.date:
            raise ValueError("End date must be after start date")
        return self


class AvailabilityExceptionResponse(StrictModel):
    id: str
    date: datetime
    end_date: datetime
    reason: str
    notes: Optional[str] = None
    slot_id: Optional[str] = None
    booking_id: Optional[str] = None


class AvailabilityExceptionListResponse(StrictModel):
    exceptions: List[AvailabilityExceptionResponse]
    total: int
