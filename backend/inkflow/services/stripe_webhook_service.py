# backend/inkflow/services/stripe_webhook_service.py
"""
Processing of verified Stripe webhook events.

Every event is written to the webhook ledger before it is handled. A replay
of an event the ledger already processed answers ``already_processed`` and
mutates nothing. Handler failures are recorded on the ledger row and reported
as ``error``; the route still answers 200 so Stripe does not retry forever.
"""

from dataclasses import dataclass
import time
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from ..monitoring.prometheus_metrics import prometheus_metrics
from .base import BaseService
from .payment_service import RESULT_ALREADY_PROCESSED, PaymentService
from .stripe_gateway import StripeGateway
from .subscription_service import SubscriptionService
from .webhook_ledger_service import STATUS_IGNORED, STATUS_PROCESSED, WebhookLedgerService

SOURCE = "stripe"

WEBHOOK_PROCESSED = "success"
WEBHOOK_ALREADY_PROCESSED = "already_processed"
WEBHOOK_IGNORED = "ignored"
WEBHOOK_ERROR = "error"


@dataclass(frozen=True)
class WebhookResult:
    status: str
    event_type: str
    message: Optional[str] = None


class StripeWebhookService(BaseService):
    """Dispatches Stripe events to payment and subscription handlers."""

    def __init__(
        self,
        db: Session,
        gateway: Optional[StripeGateway] = None,
        payment_service: Optional[PaymentService] = None,
        subscription_service: Optional[SubscriptionService] = None,
        ledger: Optional[WebhookLedgerService] = None,
    ):
        super().__init__(db)
        self.gateway = gateway or StripeGateway()
        self.payment_service = payment_service or PaymentService(db, gateway=self.gateway)
        self.subscription_service = subscription_service or SubscriptionService(
            db, gateway=self.gateway
        )
        self.ledger = ledger or WebhookLedgerService(db)

    @BaseService.measure_operation("stripe_process_webhook")
    def process(
        self, event: Dict[str, Any], headers: Optional[Dict[str, Any]] = None
    ) -> WebhookResult:
        event_type = str(event.get("type") or "unknown")
        event_id = event.get("id")
        started = time.monotonic()

        with self.transaction():
            entry = self.ledger.log_received(
                source=SOURCE,
                event_type=event_type,
                payload=event,
                headers=headers,
                event_id=event_id,
            )
            if entry.status in (STATUS_PROCESSED, STATUS_IGNORED):
                prometheus_metrics.inc_webhook_event(event_type, WEBHOOK_ALREADY_PROCESSED)
                self.logger.info("Stripe event %s already processed", event_id)
                return WebhookResult(WEBHOOK_ALREADY_PROCESSED, event_type)
            claimed = self.ledger.mark_processing(entry)
        if not claimed:
            prometheus_metrics.inc_webhook_event(event_type, WEBHOOK_ALREADY_PROCESSED)
            return WebhookResult(WEBHOOK_ALREADY_PROCESSED, event_type, "Event is being processed")

        try:
            outcome, entity = self.handle_event(event)
        except Exception as exc:
            self.db.rollback()
            self.logger.error(
                "Error processing Stripe event %s (%s): %s", event_id, event_type, exc
            )
            with self.transaction():
                entry = self.ledger.repository.get_event(entry.id) or entry
                self.ledger.mark_failed(
                    entry, error=str(exc), duration_ms=self.ledger.elapsed_ms(started)
                )
            prometheus_metrics.inc_webhook_event(event_type, WEBHOOK_ERROR)
            return WebhookResult(WEBHOOK_ERROR, event_type, "Error logged")

        with self.transaction():
            self.ledger.mark_processed(
                entry,
                related_entity_type=entity[0] if entity else None,
                related_entity_id=entity[1] if entity else None,
                duration_ms=self.ledger.elapsed_ms(started),
                status=STATUS_IGNORED if outcome == WEBHOOK_IGNORED else STATUS_PROCESSED,
            )
        prometheus_metrics.inc_webhook_event(event_type, outcome)
        return WebhookResult(outcome, event_type)

    def handle_event(self, event: Dict[str, Any]) -> Tuple[str, Optional[Tuple[str, str]]]:
        """
        Route one event to its handler.

        Returns the outcome and the related (entity_type, entity_id), if any.
        """
        event_type = event.get("type", "")
        obj = (event.get("data") or {}).get("object") or {}

        if event_type == "payment_intent.succeeded":
            result = self.payment_service.reconcile_settled(event.get("id", ""), obj["id"])
            entity = ("booking", result.booking_id) if result.booking_id else None
            if result.status == RESULT_ALREADY_PROCESSED:
                return WEBHOOK_ALREADY_PROCESSED, entity
            return WEBHOOK_PROCESSED, entity

        if event_type == "payment_intent.payment_failed":
            error = obj.get("last_payment_error") or {}
            self.payment_service.record_payment_failure(obj["id"], error.get("message"))
            return WEBHOOK_PROCESSED, None

        if event_type == "charge.refunded":
            intent_id = obj.get("payment_intent")
            if intent_id:
                self.payment_service.mark_refunded(intent_id)
            return WEBHOOK_PROCESSED, None

        if event_type == "checkout.session.completed":
            provider_id = self.subscription_service.handle_checkout_completed(obj)
            self.db.commit()
            return WEBHOOK_PROCESSED, ("provider", provider_id) if provider_id else None

        if event_type in ("customer.subscription.created", "customer.subscription.updated"):
            provider_id = self.subscription_service.handle_subscription_updated(obj)
            self.db.commit()
            return WEBHOOK_PROCESSED, ("provider", provider_id) if provider_id else None

        if event_type == "customer.subscription.deleted":
            provider_id = self.subscription_service.handle_subscription_deleted(obj)
            self.db.commit()
            return WEBHOOK_PROCESSED, ("provider", provider_id) if provider_id else None

        self.logger.info(f"Unhandled webhook event type: {event_type}")
        return WEBHOOK_IGNORED, None
