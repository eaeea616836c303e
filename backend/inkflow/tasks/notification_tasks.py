# backend/inkflow/tasks/notification_tasks.py
"""
Celery tasks for booking notifications.

`notifications.deliver_booking_notification` sends one message, retrying
exactly once (by default) after NOTIFICATION_RETRY_DELAY_SECONDS. When the
retry also fails the failure is persisted on the booking. A message that
cannot be rendered or handed to the mail provider is flagged at once.
"""

from __future__ import annotations

from typing import Any

from celery.utils.log import get_task_logger

from inkflow.core.config import settings
from inkflow.core.exceptions import NotificationDeliveryError
from inkflow.database import Database
from inkflow.monitoring.prometheus_metrics import prometheus_metrics
from inkflow.services.notification_service import NotificationService
from inkflow.tasks.celery_app import celery_app
from inkflow.tasks.worker_db import session_scope, worker_database

logger = get_task_logger(__name__)


def run_delivery(task: Any, database: Database, template: str, booking_id: str) -> str:
    """
    Deliver one notification on behalf of ``task``.

    Returns "sent", "skipped" or "failed"; raises Celery's Retry when a retry
    has been scheduled.
    """
    with database.session_scope() as session:
        service = NotificationService(session)
        try:
            return "sent" if service.deliver(template, booking_id) else "skipped"
        except NotificationDeliveryError as exc:
            attempt = task.request.retries + 1
            if task.request.retries < settings.notification_max_retries:
                prometheus_metrics.inc_notification(template, "retry")
                logger.warning(
                    "Notification %s for booking %s failed (attempt %s); retrying in %ss",
                    template,
                    booking_id,
                    attempt,
                    settings.notification_retry_delay_seconds,
                )
                raise task.retry(countdown=settings.notification_retry_delay_seconds, exc=exc)
            service.record_failure(template, booking_id, str(exc))
            return "failed"
        except Exception as exc:
            # Rendering or mail configuration errors: a retry would fail the same way
            logger.exception(
                "Notification %s for booking %s could not be prepared", template, booking_id
            )
            service.record_failure(template, booking_id, f"{type(exc).__name__}: {exc}")
            return "failed"


@celery_app.task(
    name="notifications.deliver_booking_notification",
    bind=True,
    max_retries=settings.notification_max_retries,
    default_retry_delay=settings.notification_retry_delay_seconds,
    queue="notifications",
)
def deliver_booking_notification(self: Any, template: str, booking_id: str) -> str:
    """Deliver a single booking notification."""
    return run_delivery(self, worker_database(), template, booking_id)


@celery_app.task(name="notifications.send_appointment_reminders", queue="notifications")
def send_appointment_reminders() -> int:
    """Queue 48 h / 24 h reminders for upcoming confirmed bookings."""
    with session_scope() as session:
        count = NotificationService(session).send_appointment_reminders()
    logger.info("Queued %s appointment reminders", count)
    return count
