"""
Concurrent reservations against a file-backed SQLite database.

Each caller gets its own connection, so the day claim lock and the booked
overlap guard are exercised the way two web workers would hit them.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from coachdesk.core.exceptions import SlotConflictException
from coachdesk.database import init_db
from coachdesk.models.availability import AvailabilityException
from coachdesk.models.booking import Booking
from tests._utils.booking_seed import NINE_AM_UTC, reserve, seed_rule


@pytest.fixture
def file_session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'reservations.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    init_db(bind=engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    engine.dispose()


def race(session_factory, starts):
    barrier = threading.Barrier(len(starts))

    def attempt(index_and_slot):
        index, slot = index_and_slot
        session = session_factory()
        try:
            barrier.wait(timeout=10)
            return reserve(session, slot, email=f"player{index}@example.com")
        except SlotConflictException as exc:
            return exc
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=len(starts)) as pool:
        return list(pool.map(attempt, enumerate(starts)))


def booked_counts(session_factory):
    session = session_factory()
    try:
        return (
            session.query(Booking).count(),
            session.query(AvailabilityException).filter_by(reason="booked").count(),
        )
    finally:
        session.close()


@pytest.mark.parametrize(
    "offset",
    [timedelta(0), timedelta(minutes=30)],
    ids=["same-start", "overlapping-start"],
)
def test_concurrent_claims_have_exactly_one_winner(file_session_factory, offset):
    seed_session = file_session_factory()
    seed_rule(seed_session, slot_duration=30)
    seed_session.close()

    outcomes = race(file_session_factory, [NINE_AM_UTC, NINE_AM_UTC + offset])

    conflicts = [o for o in outcomes if isinstance(o, SlotConflictException)]
    winners = [o for o in outcomes if not isinstance(o, SlotConflictException)]
    assert len(conflicts) == 1
    assert len(winners) == 1
    assert winners[0].status == "PENDING"
    assert booked_counts(file_session_factory) == (1, 1)


def test_concurrent_claims_for_disjoint_slots_both_succeed(file_session_factory):
    seed_session = file_session_factory()
    seed_rule(seed_session, slot_duration=30)
    seed_session.close()

    outcomes = race(file_session_factory, [NINE_AM_UTC, NINE_AM_UTC + timedelta(hours=1)])

    assert not [o for o in outcomes if isinstance(o, SlotConflictException)]
    assert booked_counts(file_session_factory) == (2, 2)
