# backend/inkflow/services/notification_service.py
"""
Notification dispatch for the InkFlow reservation engine.

Booking and payment flows never send email inline. They call
``queue_notification`` on their session; once that session commits, each
queued message is handed to the Celery task
``notifications.deliver_booking_notification``, which renders it, sends it
through ``EmailService`` and retries once on transport failure. After the
retry is exhausted the failure is written on the booking and logged; it never
reaches the booking/payment caller.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import event
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.constants import REMINDER_24H_WINDOW_HOURS, REMINDER_48H_WINDOW_HOURS
from ..core.enums import NotificationTemplate
from ..core.timezone_utils import studio_now
from ..models.booking import Booking
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..tasks.enqueue import enqueue_task
from .base import BaseService, mask_email
from .email import EmailService
from .template_service import TemplateService

logger = logging.getLogger(__name__)

DELIVER_TASK_NAME = "notifications.deliver_booking_notification"
_PENDING_KEY = "inkflow_pending_notifications"


@dataclass(frozen=True)
class RenderedMessage:
    to: str
    subject: str
    html: str


def booking_payment_url(booking_id: str) -> str:
    return f"{settings.frontend_url}/booking/{booking_id}/pay"


def booking_calendar_url(booking_id: str) -> str:
    return f"{settings.frontend_url}/api/v1/bookings/{booking_id}/calendar.ics"


def booking_review_url(booking_id: str) -> str:
    return f"{settings.frontend_url}/booking/{booking_id}/review"


_SUBJECTS: Dict[NotificationTemplate, Callable[[Booking], str]] = {
    NotificationTemplate.PROVIDER_BOOKING_ALERT: lambda b: (
        f"New booking request from {b.client.name} on {b.start_time:%d/%m/%Y}"
    ),
    NotificationTemplate.CLIENT_BOOKING_RECEIVED: lambda b: (
        f"Your booking request with {b.provider.display_name}"
    ),
    NotificationTemplate.CLIENT_CONFIRMATION: lambda b: (
        f"Booking confirmed: {b.start_time:%d/%m/%Y at %H:%M}"
    ),
    NotificationTemplate.DEPOSIT_REMINDER: lambda b: "Reminder: your deposit is still pending",
    NotificationTemplate.BALANCE_REMINDER: lambda b: "Balance due for your session tomorrow",
    NotificationTemplate.REMINDER_48H: lambda b: (
        f"Your appointment in 2 days with {b.provider.display_name}"
    ),
    NotificationTemplate.REMINDER_24H: lambda b: (
        f"Your appointment tomorrow with {b.provider.display_name}"
    ),
    NotificationTemplate.REVIEW_REQUEST: lambda b: (
        f"How was your session with {b.provider.display_name}?"
    ),
}


# Commit-bound queue


def queue_notification(session: Session, template: NotificationTemplate, booking_id: str) -> None:
    """Queue a message to be enqueued once ``session`` commits."""
    pending: List[Tuple[str, str]] = session.info.setdefault(_PENDING_KEY, [])
    pending.append((NotificationTemplate(template).value, booking_id))


def pending_notifications(session: Session) -> List[Tuple[str, str]]:
    return list(session.info.get(_PENDING_KEY, []))


@event.listens_for(Session, "after_commit")
def _enqueue_committed_notifications(session: Session) -> None:
    pending = session.info.pop(_PENDING_KEY, None)
    if not pending:
        return
    for template, booking_id in pending:
        try:
            enqueue_task(DELIVER_TASK_NAME, args=(template, booking_id), queue="notifications")
        except Exception as exc:
            # The booking is already committed; a broker outage only costs the message.
            prometheus_metrics.inc_notification(template, "enqueue_failed")
            logger.error(
                "Failed to enqueue notification %s for booking %s: %s",
                template,
                booking_id,
                exc,
            )


@event.listens_for(Session, "after_rollback")
def _discard_rolled_back_notifications(session: Session) -> None:
    session.info.pop(_PENDING_KEY, None)


class NotificationService(BaseService):
    """Renders and sends booking notifications; records durable failures."""

    def __init__(
        self,
        db: Session,
        email_service: Optional[EmailService] = None,
        template_service: Optional[TemplateService] = None,
    ):
        super().__init__(db)
        self._email_service = email_service
        self.template_service = template_service or TemplateService()
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)

    @property
    def email_service(self) -> EmailService:
        if self._email_service is None:
            self._email_service = EmailService(self.db)
        return self._email_service

    def _context(self, booking: Booking) -> Dict[str, Any]:
        settled = self.payment_repository.get_settled_total(booking.id)
        return {
            "booking": booking,
            "client": booking.client,
            "provider": booking.provider,
            "studio_name": booking.provider.display_name,
            "amount_paid": settled,
            "remaining": max(booking.price - settled, 0),
            "payment_url": booking_payment_url(booking.id),
            "calendar_url": booking_calendar_url(booking.id),
            "review_url": booking_review_url(booking.id),
        }

    def render(self, template: NotificationTemplate, booking: Booking) -> RenderedMessage:
        template = NotificationTemplate(template)
        recipient = (
            booking.provider.email
            if template == NotificationTemplate.PROVIDER_BOOKING_ALERT
            else booking.client.email
        )
        html = self.template_service.render_template(
            f"email/{template.value}.html", self._context(booking)
        )
        return RenderedMessage(to=recipient, subject=_SUBJECTS[template](booking), html=html)

    @BaseService.measure_operation("deliver_notification")
    def deliver(self, template: str, booking_id: str) -> bool:
        """
        Render and send one notification.

        Returns False when the booking no longer exists.

        Raises:
            NotificationDeliveryError: on transport failure
        """
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            self.logger.warning("Notification %s skipped: booking %s missing", template, booking_id)
            prometheus_metrics.inc_notification(template, "skipped")
            return False

        message = self.render(NotificationTemplate(template), booking)
        self.email_service.send(to=message.to, subject=message.subject, html=message.html)
        prometheus_metrics.inc_notification(template, "sent")
        self.logger.info(
            "Notification sent",
            extra={"template": template, "booking_id": booking_id, "to": mask_email(message.to)},
        )
        return True

    def record_failure(self, template: str, booking_id: str, error: str) -> None:
        """Persist the durable failure flag after retries are exhausted."""
        booking = self.booking_repository.get_by_id(booking_id, load_relationships=False)
        prometheus_metrics.inc_notification(template, "failed")
        self.logger.error(
            "Notification %s for booking %s failed permanently: %s", template, booking_id, error
        )
        if booking is None:
            return
        booking.notification_failed_at = studio_now()
        booking.notification_error = f"{template}: {error}"[:2000]
        if template == NotificationTemplate.PROVIDER_BOOKING_ALERT.value:
            booking.provider_notification_failed = True
        self.db.flush()

    @BaseService.measure_operation("send_appointment_reminders")
    def send_appointment_reminders(self, now: Optional[datetime] = None) -> int:
        """
        Queue 48 h and 24 h reminders for confirmed bookings.

        Each reminder is sent at most once per booking; the sent-at stamp is
        written in the same transaction that queues it.
        """
        reference_now = now if now is not None else studio_now()
        queued = 0
        with self.transaction():
            window_24h = reference_now + timedelta(hours=REMINDER_24H_WINDOW_HOURS)
            for booking in self.booking_repository.get_confirmed_starting_between(
                reference_now, window_24h
            ):
                if booking.reminder_24h_sent_at is None:
                    booking.reminder_24h_sent_at = reference_now
                    # A 24 h reminder supersedes a 48 h one that was never sent.
                    if booking.reminder_48h_sent_at is None:
                        booking.reminder_48h_sent_at = reference_now
                    queue_notification(self.db, NotificationTemplate.REMINDER_24H, booking.id)
                    queued += 1

            window_48h = reference_now + timedelta(hours=REMINDER_48H_WINDOW_HOURS)
            for booking in self.booking_repository.get_confirmed_starting_between(
                window_24h, window_48h
            ):
                if booking.reminder_48h_sent_at is None:
                    booking.reminder_48h_sent_at = reference_now
                    queue_notification(self.db, NotificationTemplate.REMINDER_48H, booking.id)
                    queued += 1
        self.log_operation("appointment_reminders_queued", count=queued)
        return queued
