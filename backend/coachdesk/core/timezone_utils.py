"""
Timezone utilities for the booking core.

Availability rules are written as wall-clock times in the business zone.
Everything persisted or compared is an aware UTC datetime.
"""

from datetime import date, datetime, time
from typing import Optional

import pytz

from .config import settings


def get_business_timezone(name: Optional[str] = None) -> pytz.tzinfo.BaseTzInfo:
    return pytz.timezone(name or settings.business_timezone)


def utc_now() -> datetime:
    return datetime.now(pytz.UTC)


def ensure_utc(dt: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC.

    Naive values are assumed to already be UTC; SQLite hands back naive
    datetimes even for timezone-aware columns.
    """
    if dt.tzinfo is None:
        return pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC)


def local_wall_clock_to_utc(day: date, wall_clock: time, tz) -> datetime:
    """
    Convert a business-zone wall-clock time on a given day to UTC.

    Nonexistent spring-forward times are shifted forward and ambiguous
    fall-back times resolve to the first occurrence.
    """
    naive = datetime.combine(day, wall_clock)
    try:
        local = tz.localize(naive, is_dst=None)
    except pytz.NonExistentTimeError:
        local = tz.normalize(tz.localize(naive, is_dst=False))
    except pytz.AmbiguousTimeError:
        local = tz.localize(naive, is_dst=True)
    return local.astimezone(pytz.UTC)


def business_date_of(instant: datetime, tz=None) -> date:
    """Calendar date of an instant as seen in the business zone."""
    zone = tz or get_business_timezone()
    return ensure_utc(instant).astimezone(zone).date()


def format_slot_labels(instant: datetime, tz) -> dict:
    """Display labels for a slot: 12-hour local time and local ISO date."""
    local = ensure_utc(instant).astimezone(tz)
    hour = local.hour % 12 or 12
    return {
        "time": f"{hour}:{local.minute:02d} {'AM' if local.hour < 12 else 'PM'}",
        "date": local.date().isoformat(),
    }
