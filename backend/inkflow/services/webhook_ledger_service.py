"""Service for recording inbound gateway webhooks."""

from __future__ import annotations

from datetime import datetime, timezone
import time
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inkflow.core.exceptions import RepositoryException
from inkflow.models.webhook_event import WebhookEvent
from inkflow.repositories.webhook_event_repository import WebhookEventRepository
from inkflow.services.base import BaseService

_SENSITIVE_HEADERS = {
    "authorization",
    "stripe-signature",
    "x-api-key",
    "cookie",
}

STATUS_PROCESSED = "processed"
STATUS_FAILED = "failed"
STATUS_IGNORED = "ignored"


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
        headers: dict[str, Any] | None = None,
        event_id: str | None = None,
    ) -> WebhookEvent:
        """
        Log a received webhook before processing.

        A duplicate (source, event_id) bumps the retry counter on the existing
        row instead of inserting a new one.
        """
        safe_headers = self._sanitize_headers(headers) if headers else None
        now = _now_utc()
        existing = (
            self.repository.find_by_source_and_event_id(source, event_id) if event_id else None
        )
        if existing:
            return self._touch_retry(existing, safe_headers, now)

        try:
            return self.repository.create(
                source=source,
                event_type=event_type or "unknown",
                event_id=event_id,
                payload=payload,
                headers=safe_headers,
                status="received",
                received_at=now,
                retry_count=0,
            )
        except RepositoryException as exc:
            # Another worker inserted the same event first.
            if isinstance(exc.__cause__, IntegrityError) and event_id:
                existing = self.repository.find_by_source_and_event_id(source, event_id)
                if existing is not None:
                    return self._touch_retry(existing, safe_headers, now)
            raise

    def _touch_retry(
        self, event: WebhookEvent, safe_headers: dict[str, Any] | None, now: datetime
    ) -> WebhookEvent:
        event.retry_count = (event.retry_count or 0) + 1
        event.last_retry_at = now
        if safe_headers is not None:
            event.headers = safe_headers
        self.repository.flush()
        return event

    @BaseService.measure_operation("webhook_ledger.mark_processing")
    def mark_processing(self, event: WebhookEvent) -> bool:
        """Attempt to claim an event for processing."""
        claimed = self.repository.claim_for_processing(event.id)
        if claimed:
            event.status = "processing"
            event.processing_error = None
            event.processed_at = None
        return claimed

    @BaseService.measure_operation("webhook_ledger.mark_processed")
    def mark_processed(
        self,
        event: WebhookEvent,
        *,
        related_entity_type: str | None = None,
        related_entity_id: str | None = None,
        duration_ms: int | None = None,
        status: str = STATUS_PROCESSED,
    ) -> WebhookEvent:
        """Mark webhook as successfully processed."""
        event.status = status
        event.processed_at = _now_utc()
        event.related_entity_type = related_entity_type
        event.related_entity_id = related_entity_id
        event.processing_duration_ms = duration_ms
        self.repository.flush()
        return event

    @BaseService.measure_operation("webhook_ledger.mark_failed")
    def mark_failed(
        self,
        event: WebhookEvent,
        *,
        error: str,
        duration_ms: int | None = None,
    ) -> WebhookEvent:
        """Mark webhook as failed."""
        event.status = STATUS_FAILED
        event.processing_error = error[:2000]
        event.processed_at = _now_utc()
        event.processing_duration_ms = duration_ms
        self.repository.flush()
        return event

    def _sanitize_headers(self, headers: dict[str, Any]) -> dict[str, Any]:
        return {
            key: ("***" if key.lower() in _SENSITIVE_HEADERS else value)
            for key, value in headers.items()
        }

    def elapsed_ms(self, start: float) -> int:
        return int((time.monotonic() - start) * 1000)
