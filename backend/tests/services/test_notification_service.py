from datetime import timedelta
from decimal import Decimal

import pytest

from inkflow.core.enums import BookingStatus, NotificationTemplate
from inkflow.core.timezone_utils import studio_now
from inkflow.services.notification_service import (
    NotificationService,
    pending_notifications,
    queue_notification,
)
from inkflow.services.template_service import currency
from tests.factories.booking_builders import at, enqueued_templates, make_booking, next_weekday


@pytest.fixture
def service(db):
    return NotificationService(db)


@pytest.fixture
def booking(db, provider, booking_client):
    booking = make_booking(db, provider, booking_client, at(next_weekday(0), 11))
    booking.zone = "forearm"
    booking.description = "<script>alert(1)</script>"
    db.commit()
    return booking


@pytest.mark.parametrize("template", list(NotificationTemplate))
def test_every_template_renders(service, booking, template):
    message = service.render(template, booking)

    assert message.subject
    assert "Encre Noire" in message.html
    assert "<script>" not in message.html


def test_provider_alert_goes_to_provider(service, booking):
    message = service.render(NotificationTemplate.PROVIDER_BOOKING_ALERT, booking)

    assert message.to == "artist@example.com"
    assert message.subject.startswith("New booking request from Sam Dupont")


def test_client_messages_go_to_client(service, booking):
    message = service.render(NotificationTemplate.CLIENT_CONFIRMATION, booking)

    assert message.to == "client@example.com"
    assert "200,00 €" in message.html


def test_queued_messages_are_dropped_on_rollback(db, booking, enqueued):
    booking.notes = "changed my mind"
    db.flush()
    queue_notification(db, NotificationTemplate.REVIEW_REQUEST, booking.id)
    assert pending_notifications(db) == [("review_request", booking.id)]

    db.rollback()

    assert pending_notifications(db) == []
    db.commit()
    assert enqueued.call_count == 0


def test_currency_filter():
    assert currency(Decimal("1234.5")) == "1 234,50 €"
    assert currency(None) == "0,00 €"


class TestAppointmentReminders:
    def test_48h_then_24h(self, db, service, provider, booking_client, enqueued):
        now = studio_now().replace(second=0, microsecond=0)
        booking = make_booking(db, provider, booking_client, now + timedelta(hours=40))

        assert service.send_appointment_reminders(now=now) == 1
        assert service.send_appointment_reminders(now=now) == 0

        later = now + timedelta(hours=20)
        assert service.send_appointment_reminders(now=later) == 1
        assert enqueued_templates(enqueued) == [
            NotificationTemplate.REMINDER_48H.value,
            NotificationTemplate.REMINDER_24H.value,
        ]
        db.refresh(booking)
        assert booking.reminder_48h_sent_at == now
        assert booking.reminder_24h_sent_at == later

    def test_late_booking_only_gets_24h(self, db, service, provider, booking_client, enqueued):
        now = studio_now().replace(second=0, microsecond=0)
        make_booking(db, provider, booking_client, now + timedelta(hours=5))

        assert service.send_appointment_reminders(now=now) == 1
        assert service.send_appointment_reminders(now=now + timedelta(hours=1)) == 0
        assert enqueued_templates(enqueued) == [NotificationTemplate.REMINDER_24H.value]

    def test_pending_bookings_are_not_reminded(self, db, service, provider, booking_client):
        now = studio_now().replace(second=0, microsecond=0)
        make_booking(
            db,
            provider,
            booking_client,
            now + timedelta(hours=30),
            status=BookingStatus.PENDING_PAYMENT,
        )

        assert service.send_appointment_reminders(now=now) == 0
