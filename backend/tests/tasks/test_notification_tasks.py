from types import SimpleNamespace
from unittest.mock import Mock, patch

from celery.exceptions import Retry
from jinja2 import TemplateNotFound
import pytest

from inkflow.core.config import settings
from inkflow.core.enums import NotificationTemplate
from inkflow.core.exceptions import NotificationDeliveryError, ServiceException
from inkflow.services.email import EmailService
from inkflow.services.notification_service import NotificationService
from inkflow.tasks.notification_tasks import run_delivery
from tests.factories.booking_builders import at, make_booking, next_weekday

ALERT = NotificationTemplate.PROVIDER_BOOKING_ALERT.value


def _task(retries):
    return SimpleNamespace(
        request=SimpleNamespace(retries=retries),
        retry=Mock(return_value=Retry("retry scheduled")),
    )


@pytest.fixture
def booking(db, provider, booking_client):
    return make_booking(db, provider, booking_client, at(next_weekday(0), 11))


def test_delivers_through_console_transport(database, booking):
    task = _task(0)

    assert run_delivery(task, database, ALERT, booking.id) == "sent"
    task.retry.assert_not_called()


def test_missing_booking_is_skipped(database):
    assert run_delivery(_task(0), database, ALERT, "01HF4G12ABCDEF3456789XYZAB") == "skipped"


def test_first_failure_schedules_one_retry(database, db, booking):
    task = _task(0)

    with patch.object(EmailService, "send", side_effect=NotificationDeliveryError("timeout")):
        with pytest.raises(Retry):
            run_delivery(task, database, ALERT, booking.id)

    task.retry.assert_called_once()
    assert task.retry.call_args.kwargs["countdown"] == settings.notification_retry_delay_seconds
    db.refresh(booking)
    assert booking.provider_notification_failed is False


def test_exhausted_retry_flags_the_booking(database, db, booking):
    task = _task(settings.notification_max_retries)

    with patch.object(EmailService, "send", side_effect=NotificationDeliveryError("timeout")):
        assert run_delivery(task, database, ALERT, booking.id) == "failed"

    task.retry.assert_not_called()
    db.refresh(booking)
    assert booking.provider_notification_failed is True
    assert booking.notification_error == f"{ALERT}: timeout"
    assert booking.notification_failed_at is not None


def test_client_message_failure_does_not_set_provider_flag(database, db, booking):
    task = _task(settings.notification_max_retries)
    template = NotificationTemplate.CLIENT_CONFIRMATION.value

    with patch.object(EmailService, "send", side_effect=NotificationDeliveryError("bounced")):
        assert run_delivery(task, database, template, booking.id) == "failed"

    db.refresh(booking)
    assert booking.provider_notification_failed is False
    assert booking.notification_error.startswith(template)


def test_missing_mail_configuration_flags_without_retry(database, db, booking):
    task = _task(0)

    with patch.object(
        EmailService, "__init__", side_effect=ServiceException("Resend API key not configured")
    ):
        assert run_delivery(task, database, ALERT, booking.id) == "failed"

    task.retry.assert_not_called()
    db.refresh(booking)
    assert booking.provider_notification_failed is True
    assert booking.notification_error == (
        f"{ALERT}: ServiceException: Resend API key not configured"
    )


def test_render_error_flags_the_booking(database, db, booking):
    template = NotificationTemplate.CLIENT_CONFIRMATION.value

    with patch.object(
        NotificationService,
        "render",
        side_effect=TemplateNotFound("email/client_confirmation.html"),
    ):
        assert run_delivery(_task(0), database, template, booking.id) == "failed"

    db.refresh(booking)
    assert booking.notification_failed_at is not None
    assert booking.notification_error.startswith(f"{template}: TemplateNotFound")
    assert booking.provider_notification_failed is False
