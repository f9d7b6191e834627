# backend/coachdesk/tasks/event_worker.py
"""
Drain queued domain events from background_jobs.

Jobs are written by BaseService.publish_after_commit once a reservation or
payment transition has committed. A job is claimed (queued -> running) and
committed before it is handled, so overlapping drains never send the same
notice twice. Each job is handled in its own commit so one failing
notification never blocks the rest of the batch; failures are rescheduled
with exponential backoff and dead-lettered after
``settings.event_job_max_attempts`` tries.

Runs three ways: a FastAPI background task scheduled by the routes after a
write, an optional polling thread started with the app, or manually from a
shell via ``python -m coachdesk.tasks.event_worker``.
"""

from datetime import datetime
import logging
import threading
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import RepositoryException
from ..events.handlers import process_event
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.job_repository import JobRepository
from ..services.notification_service import NotificationService

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def process_pending_events(
    db: Session,
    notifier: Optional[NotificationService] = None,
    *,
    limit: int = 50,
    now: Optional[datetime] = None,
    max_attempts: Optional[int] = None,
) -> Dict[str, int]:
    """
    Run every due job once. Returns counts of succeeded, retried and dead jobs.
    """
    job_repo = JobRepository(db)
    max_attempts = max_attempts or settings.event_job_max_attempts
    notifier = notifier or NotificationService(db)
    counts = {"succeeded": 0, "retry": 0, "dead": 0}

    jobs = job_repo.fetch_due(limit=limit, now=now)
    if not jobs:
        db.commit()
        return counts

    for job in jobs:
        job_type = job.type or "unknown"
        claimed = job_repo.claim(job.id)
        db.commit()
        if not claimed:
            logger.debug("Skipping job %s claimed by another drain", job.id)
            continue
        try:
            if not process_event(job_type, job.payload, db, notifier):
                logger.warning(
                    "Unknown background job type encountered",
                    extra={"job_id": job.id, "type": job_type},
                )
            job_repo.mark_succeeded(job.id)
            db.commit()
            counts["succeeded"] += 1
            prometheus_metrics.record_background_job(job_type, "succeeded")
        except Exception as exc:
            db.rollback()
            logger.exception(
                "Error processing background job",
                extra={"job_id": job.id, "type": job_type, "attempts": job.attempts},
            )
            try:
                job_repo.mark_failed(job.id, error=str(exc), max_attempts=max_attempts)
                db.commit()
            except RepositoryException:
                logger.error("Could not reschedule job %s", job.id)
                continue
            result = "dead" if job.status == "dead" else "retry"
            counts[result] += 1
            prometheus_metrics.record_background_job(job_type, result)
            if result == "dead":
                logger.error(
                    "Background job moved to dead-letter queue",
                    extra={"job_id": job.id, "type": job_type, "attempts": job.attempts},
                )

    return counts


def drain_events(session_factory: SessionFactory, limit: Optional[int] = None) -> None:
    """Background-task entry point: one batch in a fresh session."""
    db = session_factory()
    try:
        counts = process_pending_events(db, limit=limit or settings.event_batch_size)
        if any(counts.values()):
            logger.info("Event drain finished", extra=counts)
    except Exception as exc:
        logger.error("Event drain failed: %s", exc)
    finally:
        db.close()


def run_worker_loop(session_factory: SessionFactory, shutdown_event: threading.Event) -> None:
    """Poll for due jobs until ``shutdown_event`` is set."""
    poll_interval = settings.event_poll_interval_seconds
    while not shutdown_event.wait(poll_interval):
        drain_events(session_factory)


def start_worker_thread(session_factory: SessionFactory) -> threading.Event:
    """Start the polling loop in a daemon thread; set the returned event to stop it."""
    shutdown_event = threading.Event()
    thread = threading.Thread(
        target=run_worker_loop,
        args=(session_factory, shutdown_event),
        name="coachdesk-event-worker",
        daemon=True,
    )
    thread.start()
    logger.info("Event worker started (poll every %ss)", settings.event_poll_interval_seconds)
    return shutdown_event


if __name__ == "__main__":
    from ..database import SessionLocal, init_db

    logging.basicConfig(level=settings.log_level)
    init_db()
    drain_events(SessionLocal)
