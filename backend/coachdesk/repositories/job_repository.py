"""Repository for the persisted background job queue."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Any, List, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import ulid

from ..core.exceptions import RepositoryException
from ..database.session_utils import get_dialect_name
from ..models.background_job import BackgroundJob

logger = logging.getLogger(__name__)

BACKOFF_BASE_SECONDS = 30
BACKOFF_CAP_SECONDS = 1800


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobRepository:
    """Data access helpers for background_jobs table."""

    def __init__(self, db: Session):
        self.db = db
        self.logger = logger

    def enqueue(
        self,
        *,
        type: str,
        payload: dict[str, Any] | str,
        available_at: datetime | None = None,
    ) -> str:
        """Persist a new job ready for processing."""

        try:
            job_id = str(ulid.ULID())
            job = BackgroundJob(
                id=job_id,
                type=type,
                payload=payload,
                status="queued",
                attempts=0,
                available_at=available_at or _utcnow(),
            )
            self.db.add(job)
            self.db.flush()
            return job_id
        except SQLAlchemyError as exc:
            self.logger.error("Failed to enqueue job %s: %s", type, str(exc))
            self.db.rollback()
            raise RepositoryException("Failed to enqueue background job") from exc

    def fetch_due(self, *, limit: int = 50, now: datetime | None = None) -> List[BackgroundJob]:
        """Return queued jobs that are ready to run. Callers must ``claim`` each one."""

        try:
            query = (
                self.db.query(BackgroundJob)
                .filter(
                    BackgroundJob.status == "queued",
                    BackgroundJob.available_at <= (now or _utcnow()),
                )
                .order_by(BackgroundJob.available_at.asc(), BackgroundJob.id.asc())
                .limit(limit)
            )
            if get_dialect_name(self.db) == "postgresql":
                query = query.with_for_update(skip_locked=True)
            return cast(List[BackgroundJob], query.all())
        except SQLAlchemyError as exc:
            self.logger.error("Failed to fetch due jobs: %s", str(exc))
            raise RepositoryException("Failed to fetch background jobs") from exc

    def claim(self, job_id: str) -> bool:
        """
        Move a queued job to running.

        Returns False when another drain claimed or finished it after it was
        fetched; the caller must skip the job.
        """

        try:
            claimed = (
                self.db.query(BackgroundJob)
                .filter(BackgroundJob.id == job_id, BackgroundJob.status == "queued")
                .update({BackgroundJob.status: "running"})
            )
            return claimed == 1
        except SQLAlchemyError as exc:
            self.logger.error("Failed to claim job %s: %s", job_id, str(exc))
            self.db.rollback()
            raise RepositoryException("Failed to claim background job") from exc

    def mark_succeeded(self, job_id: str) -> None:
        self._set_status(job_id, "succeeded")

    def mark_failed(self, job_id: str, error: str, *, max_attempts: int) -> None:
        """Increment attempts and reschedule with backoff, or dead-letter the job."""

        try:
            job = self.db.get(BackgroundJob, job_id)
            if job is None:
                self.logger.warning("Attempted to mark missing job %s failed", job_id)
                return

            attempts = (job.attempts or 0) + 1
            job.attempts = attempts
            job.last_error = error
            if attempts >= max_attempts:
                job.status = "dead"
            else:
                backoff_seconds = min(
                    BACKOFF_CAP_SECONDS, BACKOFF_BASE_SECONDS * (2 ** (attempts - 1))
                )
                job.status = "queued"
                job.available_at = _utcnow() + timedelta(seconds=backoff_seconds)
            self.db.flush()
        except SQLAlchemyError as exc:
            self.logger.error("Failed to reschedule job %s: %s", job_id, str(exc))
            self.db.rollback()
            raise RepositoryException("Failed to reschedule background job") from exc

    def _set_status(self, job_id: str, status: str) -> None:
        try:
            self.db.query(BackgroundJob).filter(BackgroundJob.id == job_id).update(
                {BackgroundJob.status: status}
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to mark job %s %s: %s", job_id, status, str(exc))
            self.db.rollback()
            raise RepositoryException(f"Failed to mark job {status}") from exc
