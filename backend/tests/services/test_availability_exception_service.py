from datetime import datetime, timedelta

import pytest

from coachdesk.core.exceptions import (
    BusinessRuleException,
    ConflictException,
    NotFoundException,
    ValidationException,
)
from coachdesk.services.availability_exception_service import AvailabilityExceptionService
from coachdesk.services.availability_service import AvailabilityService
from tests._utils.booking_seed import MONDAY, NINE_AM_UTC, NOW, TEN_AM_UTC, one_hour_after, reserve


@pytest.fixture
def service(db):
    return AvailabilityExceptionService(db)


def test_block_removes_overlapping_slots(service, db, monday_rule):
    block = service.create_block(TEN_AM_UTC, one_hour_after(TEN_AM_UTC), notes="dentist")

    listing = AvailabilityService(db).list_available_slots(MONDAY, "vod-review", now=NOW)

    assert block.reason == "blocked"
    assert TEN_AM_UTC not in [s.start for s in listing.slots]
    assert len(listing.slots) == 2


def test_block_overlapping_booking_is_rejected(service, db, monday_rule):
    result = reserve(db, NINE_AM_UTC)

    with pytest.raises(ConflictException) as exc_info:
        service.create_block(NINE_AM_UTC + timedelta(minutes=30), TEN_AM_UTC)

    assert exc_info.value.code == "BLOCK_CONFLICTS_WITH_BOOKING"
    assert exc_info.value.details["conflicting_bookings"][0]["booking_id"] == result.booking_id


def test_block_adjacent_to_booking_is_allowed(service, db, monday_rule):
    reserve(db, NINE_AM_UTC)

    block = service.create_block(TEN_AM_UTC, one_hour_after(TEN_AM_UTC), reason="holiday")

    assert block.reason == "holiday"


@pytest.mark.parametrize(
    "start, end, reason, code",
    [
        (TEN_AM_UTC, NINE_AM_UTC, "blocked", "INVALID_RANGE"),
        (datetime(2030, 1, 7, 9), datetime(2030, 1, 7, 10), "blocked", "NAIVE_DATETIME"),
        (NINE_AM_UTC, TEN_AM_UTC, "booked", "INVALID_REASON"),
    ],
)
def test_invalid_blocks(service, start, end, reason, code):
    with pytest.raises(ValidationException) as exc_info:
        service.create_block(start, end, reason=reason)

    assert exc_info.value.code == code


def test_booked_rows_cannot_be_deleted_directly(service, db, monday_rule):
    result = reserve(db, NINE_AM_UTC)

    with pytest.raises(BusinessRuleException) as exc_info:
        service.delete_block(result.exception_id)

    assert exc_info.value.code == "BOOKED_EXCEPTION_PROTECTED"


def test_delete_block_restores_slots(service, db, monday_rule):
    block = service.create_block(NINE_AM_UTC, TEN_AM_UTC)

    service.delete_block(block.id)

    listing = AvailabilityService(db).list_available_slots(MONDAY, "vod-review", now=NOW)
    assert len(listing.slots) == 3
    with pytest.raises(NotFoundException):
        service.delete_block(block.id)


def test_list_filters_by_reason(service, db, monday_rule):
    reserve(db, NINE_AM_UTC)
    service.create_block(TEN_AM_UTC, one_hour_after(TEN_AM_UTC))

    booked = service.list_exceptions(reason="booked")
    everything = service.list_exceptions(start=NINE_AM_UTC)

    assert [e.reason for e in booked] == ["booked"]
    assert [e.reason for e in everything] == ["booked", "blocked"]
