"""Slot computation shared by the public listing and the reservation re-check.

Everything here is pure: callers load rules and exceptions, pass ``now``
explicitly, and get plain values back.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
import re
from typing import Any, Iterable, List, Optional, Protocol, Sequence

from ..core.timezone_utils import ensure_utc, format_slot_labels, local_wall_clock_to_utc

HHMM_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")
DEFAULT_LEAD_TIME_MINUTES = 15


class RuleLike(Protocol):
    id: Any
    day_of_week: int
    start_time: str
    end_time: str
    slot_duration: int
    is_active: bool


class IntervalLike(Protocol):
    date: datetime
    end_date: datetime


@dataclass(frozen=True)
class CandidateSlot:
    start: datetime
    rule_id: Optional[str] = None


@dataclass(frozen=True)
class AvailableSlot:
    start: datetime
    time_label: str
    date_label: str
    rule_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "datetime": self.start.isoformat(),
            "time": self.time_label,
            "date": self.date_label,
        }


def parse_hhmm(value: str) -> time:
    """Parse a 24h ``HH:MM`` string. Single-digit hours are accepted."""
    if not isinstance(value, str) or not HHMM_PATTERN.match(value.strip()):
        raise ValueError(f"Invalid time {value!r}; expected HH:MM (24-hour)")
    hours, minutes = value.strip().split(":")
    return time(int(hours), int(minutes))


def normalize_hhmm(value: str) -> str:
    """Zero-padded ``HH:MM`` so string ordering matches time ordering."""
    return parse_hhmm(value).strftime("%H:%M")


def rule_day_of_week(day: date) -> int:
    """Weekday index used by rules: 0 = Sunday ... 6 = Saturday."""
    return (day.weekday() + 1) % 7


def intervals_overlap(
    start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime
) -> bool:
    """Half-open overlap test; touching intervals do not overlap."""
    return start_a < end_b and end_a > start_b


def generate_candidate_slots(
    rules: Iterable[RuleLike], target_date: date, tz
) -> List[CandidateSlot]:
    """
    Expand rules into candidate start instants for one business-zone day.

    Rules are walked in the given order; each yields starts from start_time
    while the start is strictly before end_time, stepping slot_duration
    minutes. Overlapping rules can produce the same instant twice; no
    deduplication happens here.
    """
    dow = rule_day_of_week(target_date)
    candidates: List[CandidateSlot] = []
    for rule in rules:
        if not rule.is_active or rule.day_of_week != dow:
            continue
        if not rule.slot_duration or rule.slot_duration <= 0:
            continue
        start = parse_hhmm(rule.start_time)
        end = parse_hhmm(rule.end_time)
        cursor = start.hour * 60 + start.minute
        end_minutes = end.hour * 60 + end.minute
        while cursor < end_minutes:
            wall_clock = time(cursor // 60, cursor % 60)
            candidates.append(
                CandidateSlot(
                    start=local_wall_clock_to_utc(target_date, wall_clock, tz),
                    rule_id=rule.id,
                )
            )
            cursor += rule.slot_duration
    return candidates


def filter_available_slots(
    candidates: Sequence[CandidateSlot],
    exceptions: Iterable[IntervalLike],
    now: datetime,
    session_length_minutes: int,
    tz,
    lead_time_minutes: int = DEFAULT_LEAD_TIME_MINUTES,
) -> List[AvailableSlot]:
    """
    Drop candidates that are too soon or collide with an exception.

    A candidate survives when ``start - lead_time > now`` and its occupied
    interval ``[start, start + session_length)`` overlaps no exception. The
    result is chronological with duplicate instants collapsed.
    """
    now = ensure_utc(now)
    lead = timedelta(minutes=lead_time_minutes)
    length = timedelta(minutes=session_length_minutes)
    busy = [(ensure_utc(exc.date), ensure_utc(exc.end_date)) for exc in exceptions]

    seen: set = set()
    result: List[AvailableSlot] = []
    for candidate in sorted(candidates, key=lambda c: c.start):
        start = ensure_utc(candidate.start)
        if start in seen:
            continue
        if start - lead <= now:
            continue
        end = start + length
        if any(intervals_overlap(start, end, exc_start, exc_end) for exc_start, exc_end in busy):
            continue
        seen.add(start)
        labels = format_slot_labels(start, tz)
        result.append(
            AvailableSlot(
                start=start,
                time_label=labels["time"],
                date_label=labels["date"],
                rule_id=candidate.rule_id,
            )
        )
    return result


def find_available_slot(
    available: Iterable[AvailableSlot], instant: datetime
) -> Optional[AvailableSlot]:
    target = ensure_utc(instant)
    for slot in available:
        if slot.start == target:
            return slot
    return None
