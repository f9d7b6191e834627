"""Ledger of inbound webhook deliveries, used to make processing idempotent."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.webhook_event import WebhookEvent
from ..repositories.webhook_event_repository import WebhookEventRepository
from .base import BaseService

TERMINAL_STATUSES = frozenset({"processed", "ignored"})


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class WebhookLedgerService(BaseService):
    """Business logic for webhook ledger entries."""

    def __init__(self, db: Session) -> None:
        super().__init__(db)
        self.repository = WebhookEventRepository(db)

    @BaseService.measure_operation("webhook_ledger.log_received")
    def log_received(
        self,
        *,
        source: str,
        event_type: str,
        payload: dict[str, Any],
        event_id: str | None = None,
    ) -> WebhookEvent:
        """
        Record a delivery before processing it.

        Redeliveries of a known event id return the existing row untouched so
        the caller can see whether it was already handled.
        """
        if event_id:
            existing = self.repository.find_by_source_and_event_id(source, event_id)
            if existing is not None:
                return existing

        try:
            return self.repository.create(
                source=source,
                event_type=event_type or "unknown",
                event_id=event_id,
                payload=payload,
                status="received",
                received_at=_now_utc(),
            )
        except RepositoryException as exc:
            # Another worker logged the same delivery first.
            if event_id and isinstance(exc.__cause__, IntegrityError):
                existing = self.repository.find_by_source_and_event_id(source, event_id)
                if existing is not None:
                    return existing
            raise

    @staticmethod
    def is_settled(event: WebhookEvent) -> bool:
        return event.status in TERMINAL_STATUSES

    def mark_processing(self, event: WebhookEvent) -> None:
        event.status = "processing"
        event.processing_error = None
        event.processed_at = None
        self.db.flush()

    def mark_processed(
        self,
        event: WebhookEvent,
        *,
        related_entity_type: str | None = None,
        related_entity_id: str | None = None,
        duration_ms: int | None = None,
        status: str = "processed",
    ) -> WebhookEvent:
        event.status = status
        event.processed_at = _now_utc()
        event.related_entity_type = related_entity_type
        event.related_entity_id = related_entity_id
        event.processing_duration_ms = duration_ms
        self.db.flush()
        return event

    def mark_failed(
        self, event: WebhookEvent, *, error: str, duration_ms: int | None = None
    ) -> WebhookEvent:
        event.status = "failed"
        event.processing_error = error[:2000]
        event.processed_at = _now_utc()
        event.processing_duration_ms = duration_ms
        self.db.flush()
        return event
