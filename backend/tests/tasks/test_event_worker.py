"""Draining queued domain events from background_jobs."""

from datetime import datetime, timezone
import json
from unittest.mock import Mock

import pytest

from coachdesk.models.background_job import BackgroundJob
from coachdesk.repositories.job_repository import JobRepository
from coachdesk.services.notification_service import NotificationService
from coachdesk.tasks.event_worker import drain_events, process_pending_events
from tests._utils.booking_seed import FRIEND_CODE, NINE_AM_UTC, reserve


@pytest.fixture
def provider():
    return Mock()


@pytest.fixture
def notifier(db, provider):
    return NotificationService(db, provider=provider)


def test_confirmation_notifies_customer_and_coach(db, notifier, provider, monday_rule):
    reserve(db, NINE_AM_UTC, friend_code=FRIEND_CODE)

    counts = process_pending_events(db, notifier)

    assert counts == {"succeeded": 1, "retry": 0, "dead": 0}
    recipients = [c.kwargs["recipient"] for c in provider.send.call_args_list]
    assert recipients == ["player@example.com", "coach"]
    assert "9:00 AM" in provider.send.call_args_list[0].kwargs["body"]
    assert db.query(BackgroundJob).one().status == "succeeded"


def test_failed_delivery_is_rescheduled_with_backoff(db, notifier, provider, monday_rule):
    reserve(db, NINE_AM_UTC)
    provider.send.side_effect = RuntimeError("smtp down")
    before = datetime.now(timezone.utc)

    counts = process_pending_events(db, notifier, max_attempts=3)

    job = db.query(BackgroundJob).one()
    assert counts == {"succeeded": 0, "retry": 1, "dead": 0}
    assert job.status == "queued"
    assert job.attempts == 1
    assert job.last_error == "smtp down"
    assert job.available_at > before
    # Not due again until the backoff elapses
    assert process_pending_events(db, notifier, max_attempts=3) == {
        "succeeded": 0,
        "retry": 0,
        "dead": 0,
    }


def test_job_is_dead_lettered_after_max_attempts(db, notifier, provider, monday_rule):
    reserve(db, NINE_AM_UTC)
    provider.send.side_effect = RuntimeError("smtp down")

    counts = process_pending_events(db, notifier, max_attempts=1)

    assert counts["dead"] == 1
    assert db.query(BackgroundJob).one().status == "dead"


def test_events_for_missing_bookings_are_consumed(db, notifier, provider):
    JobRepository(db).enqueue(
        type="event:BookingReleased",
        payload=json.dumps({"booking_id": "01HZZZZZZZZZZZZZZZZZZZZZZZ", "reason": "admin"}),
    )
    JobRepository(db).enqueue(type="event:SomethingNew", payload=json.dumps({}))
    db.commit()

    counts = process_pending_events(db, notifier)

    assert counts["succeeded"] == 2
    provider.send.assert_not_called()


def test_refund_alert_goes_to_coach(db, notifier, provider):
    JobRepository(db).enqueue(
        type="event:PaymentRefunded",
        payload=json.dumps({"payment_id": "pay_1", "refunded_at": "2030-01-07T14:00:00+00:00"}),
    )
    db.commit()

    process_pending_events(db, notifier)

    assert provider.send.call_args.kwargs["recipient"] == "coach"
    assert "pay_1" in provider.send.call_args.kwargs["body"]


def test_drain_uses_its_own_session(session_factory, db, monday_rule):
    reserve(db, NINE_AM_UTC)

    drain_events(session_factory)

    db.expire_all()
    assert db.query(BackgroundJob).one().status == "succeeded"


def test_claim_is_granted_once(db):
    jobs = JobRepository(db)
    job_id = jobs.enqueue(type="event:PaymentRefunded", payload=json.dumps({"payment_id": "p"}))
    db.commit()

    assert jobs.claim(job_id) is True
    assert jobs.claim(job_id) is False


def test_overlapping_drains_send_each_notice_once(
    session_factory, db, provider, monday_rule, monkeypatch
):
    reserve(db, NINE_AM_UTC, friend_code=FRIEND_CODE)
    fetch_due = JobRepository.fetch_due
    raced = []

    def fetch_then_let_another_drain_run(self, **kwargs):
        jobs = fetch_due(self, **kwargs)
        if not raced:
            raced.append(True)
            other = session_factory()
            try:
                process_pending_events(other, NotificationService(other, provider=provider))
            finally:
                other.close()
        return jobs

    monkeypatch.setattr(JobRepository, "fetch_due", fetch_then_let_another_drain_run)
    first = session_factory()
    try:
        counts = process_pending_events(first, NotificationService(first, provider=provider))
    finally:
        first.close()

    assert counts == {"succeeded": 0, "retry": 0, "dead": 0}
    assert provider.send.call_count == 2
    db.expire_all()
    assert db.query(BackgroundJob).one().status == "succeeded"
