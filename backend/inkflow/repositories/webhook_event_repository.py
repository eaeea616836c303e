"""Repository helpers for the webhook event ledger."""

from __future__ import annotations

import logging
from typing import cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inkflow.core.exceptions import RepositoryException
from inkflow.models.webhook_event import WebhookEvent
from inkflow.repositories.base_repository import BaseRepository

logger = logging.getLogger(__name__)


class WebhookEventRepository(BaseRepository[WebhookEvent]):
    """Repository for webhook ledger queries."""

    def __init__(self, db: Session) -> None:
        super().__init__(db, WebhookEvent)

    def get_event(self, event_id: str) -> WebhookEvent | None:
        try:
            return cast(WebhookEvent | None, self.db.get(WebhookEvent, event_id))
        except SQLAlchemyError as exc:
            self.logger.error("Failed to load webhook event %s: %s", event_id, str(exc))
            raise RepositoryException("Failed to load webhook event") from exc

    def find_by_source_and_event_id(self, source: str, event_id: str) -> WebhookEvent | None:
        """Find webhook event by source and external event ID."""
        result = (
            self.db.query(WebhookEvent)
            .filter(WebhookEvent.source == source, WebhookEvent.event_id == event_id)
            .first()
        )
        return cast(WebhookEvent | None, result)

    def claim_for_processing(self, event_id: str) -> bool:
        """Atomically move a received/failed event to processing; False if already claimed."""
        try:
            updated = (
                self.db.query(WebhookEvent)
                .filter(
                    WebhookEvent.id == event_id,
                    WebhookEvent.status.in_(("received", "failed")),
                )
                .update({WebhookEvent.status: "processing"}, synchronize_session=False)
            )
            return bool(updated)
        except SQLAlchemyError as exc:
            self.logger.error("Failed to claim webhook event %s: %s", event_id, str(exc))
            raise RepositoryException("Failed to claim webhook event") from exc
