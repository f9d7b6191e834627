"""Repository helpers for the webhook event ledger."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import cast

from sqlalchemy.orm import Session

from ..models.webhook_event import WebhookEvent
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class WebhookEventRepository(BaseRepository[WebhookEvent]):
    def __init__(self, db: Session) -> None:
        super().__init__(db, WebhookEvent)

    def find_by_source_and_event_id(self, source: str, event_id: str) -> WebhookEvent | None:
        """Find webhook event by source and external event ID."""
        result = (
            self.db.query(WebhookEvent)
            .filter(WebhookEvent.source == source, WebhookEvent.event_id == event_id)
            .first()
        )
        return cast(WebhookEvent | None, result)

    def get_failed_events(
        self, *, source: str | None = None, since_hours: int = 24, limit: int = 50
    ) -> list[WebhookEvent]:
        cutoff = _now_utc() - timedelta(hours=since_hours)
        query = self._build_query().filter(
            WebhookEvent.status == "failed", WebhookEvent.received_at >= cutoff
        )
        if source:
            query = query.filter(WebhookEvent.source == source)
        query = query.order_by(WebhookEvent.received_at.desc()).limit(limit)
        return self._execute_query(query)
