from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest

from inkflow.core.config import settings
from inkflow.core.enums import (
    BookingStatus,
    NotificationTemplate,
    PaymentKind,
    PaymentMethod,
    PaymentStatus,
)
from inkflow.core.exceptions import (
    BusinessRuleException,
    EntityNotFoundException,
    GatewayCallException,
    GatewayConfigException,
    NoBalanceDueException,
    ValidationException,
)
from inkflow.core.timezone_utils import studio_now
from inkflow.models.payment import PaymentRecord
from inkflow.services.payment_service import (
    RESULT_ALREADY_PROCESSED,
    RESULT_NOT_FOUND,
    RESULT_PROCESSED,
    RESULT_REFUND_DUE,
    PaymentService,
)
from inkflow.services.stripe_gateway import StripeGateway
from tests.factories.booking_builders import at, enqueued_templates, make_booking, next_weekday

MONDAY = next_weekday(0)


@pytest.fixture
def service(db):
    return PaymentService(db, gateway=StripeGateway())


@pytest.fixture
def pending_booking(db, onboarded_provider, booking_client):
    return make_booking(
        db,
        onboarded_provider,
        booking_client,
        at(MONDAY, 11),
        status=BookingStatus.PENDING_PAYMENT,
    )


class TestDepositRequest:
    def test_mock_gateway_intent_and_pending_record(self, db, service, pending_booking):
        link = service.create_deposit_request(pending_booking.id)

        assert link.amount == Decimal("60.00")
        assert link.payment_intent_id == f"mock_pi_{pending_booking.id}_deposit_6000"
        assert link.client_secret == f"{link.payment_intent_id}_secret"
        assert link.payment_url.endswith(f"/booking/{pending_booking.id}/pay")

        record = db.get(PaymentRecord, link.payment_id)
        assert record.status == PaymentStatus.PENDING.value
        assert record.kind == PaymentKind.DEPOSIT.value
        assert record.method == PaymentMethod.GATEWAY.value
        assert record.application_fee_amount == 300
        assert pending_booking.payment_intent_id == link.payment_intent_id

    def test_provider_without_account_is_refused(self, db, service, provider, booking_client):
        booking = make_booking(
            db, provider, booking_client, at(MONDAY, 11), status=BookingStatus.PENDING_PAYMENT
        )

        with pytest.raises(GatewayConfigException) as exc_info:
            service.create_deposit_request(booking.id)

        assert exc_info.value.status_code == 422
        assert db.query(PaymentRecord).count() == 0

    def test_deposit_bounds(self, db, service, pending_booking):
        with pytest.raises(ValidationException):
            service.create_deposit_request(pending_booking.id, amount=Decimal("0"))
        with pytest.raises(ValidationException):
            service.create_deposit_request(pending_booking.id, amount=Decimal("200.01"))

    def test_gateway_failure_leaves_no_record(self, db, service, pending_booking):
        with patch.object(
            service.gateway,
            "create_payment_intent",
            side_effect=GatewayCallException("Failed to create payment intent: boom"),
        ):
            with pytest.raises(GatewayCallException):
                service.create_deposit_request(pending_booking.id)

        assert db.query(PaymentRecord).count() == 0

    def test_unknown_booking(self, db, service):
        with pytest.raises(EntityNotFoundException):
            service.create_deposit_request("01HF4G12ABCDEF3456789XYZAB")


class TestReconcile:
    def test_settled_deposit_confirms_booking(self, db, service, pending_booking, enqueued):
        link = service.create_deposit_request(pending_booking.id)

        result = service.reconcile_settled("evt_1", link.payment_intent_id)

        assert result.status == RESULT_PROCESSED
        assert result.confirmed is True
        db.refresh(pending_booking)
        assert pending_booking.status == BookingStatus.CONFIRMED
        assert pending_booking.deposit_paid is True
        assert enqueued_templates(enqueued) == [NotificationTemplate.CLIENT_CONFIRMATION.value]

    def test_second_settlement_is_already_processed(self, db, service, pending_booking, enqueued):
        link = service.create_deposit_request(pending_booking.id)
        service.reconcile_settled("evt_1", link.payment_intent_id)
        enqueued.reset_mock()

        result = service.reconcile_settled("evt_2", link.payment_intent_id)

        assert result.status == RESULT_ALREADY_PROCESSED
        assert result.booking_id == pending_booking.id
        assert enqueued.call_count == 0

    def test_unknown_intent(self, db, service):
        assert service.reconcile_settled("evt_1", "pi_unknown").status == RESULT_NOT_FOUND

    def test_deposit_on_cancelled_booking_settles_without_confirming(
        self, db, service, pending_booking
    ):
        link = service.create_deposit_request(pending_booking.id)
        pending_booking.status = BookingStatus.CANCELLED
        db.commit()

        result = service.reconcile_settled("evt_1", link.payment_intent_id)

        assert result.status == RESULT_PROCESSED
        assert result.confirmed is False
        db.refresh(pending_booking)
        assert pending_booking.status == BookingStatus.CANCELLED
        assert service.remaining_balance(pending_booking.id) == Decimal("140.00")


def test_deposit_then_balance_settles_in_full(db, service, pending_booking):
    deposit = service.create_deposit_request(pending_booking.id)
    service.reconcile_settled("evt_deposit", deposit.payment_intent_id)
    assert service.remaining_balance(pending_booking.id) == Decimal("140.00")

    balance = service.create_balance_request(pending_booking.id)
    assert balance.remaining == Decimal("140.00")
    assert balance.link.payment_intent_id == f"mock_pi_{pending_booking.id}_balance_14000"

    service.reconcile_settled("evt_balance", balance.link.payment_intent_id)
    assert service.remaining_balance(pending_booking.id) == Decimal("0.00")

    with pytest.raises(NoBalanceDueException) as exc_info:
        service.create_balance_request(pending_booking.id)
    assert exc_info.value.code == "NO_BALANCE_DUE"


def test_pending_balance_does_not_reduce_remaining(db, service, pending_booking):
    service.create_balance_request(pending_booking.id)

    assert service.remaining_balance(pending_booking.id) == Decimal("200.00")


def test_payment_failure_keeps_record_pending(db, service, pending_booking):
    link = service.create_deposit_request(pending_booking.id)

    assert service.record_payment_failure(link.payment_intent_id, "Card declined") is True

    record = db.get(PaymentRecord, link.payment_id)
    assert record.status == PaymentStatus.PENDING.value
    assert record.failure_message == "Card declined"
    db.refresh(pending_booking)
    assert pending_booking.status == BookingStatus.PENDING_PAYMENT
    assert service.record_payment_failure("pi_unknown", None) is False


def test_refund_marks_record(db, service, pending_booking):
    link = service.create_deposit_request(pending_booking.id)
    service.reconcile_settled("evt_1", link.payment_intent_id)

    assert service.mark_refunded(link.payment_intent_id) is True

    assert db.get(PaymentRecord, link.payment_id).status == PaymentStatus.REFUNDED.value
    assert service.remaining_balance(pending_booking.id) == Decimal("200.00")


class TestManualPayments:
    def test_cash_deposit_confirms_pending_booking(self, db, service, pending_booking, enqueued):
        record = service.record_manual_payment(
            pending_booking.id, Decimal("60"), PaymentKind.DEPOSIT, PaymentMethod.CASH
        )

        assert record.status == PaymentStatus.SETTLED.value
        db.refresh(pending_booking)
        assert pending_booking.status == BookingStatus.CONFIRMED
        assert enqueued_templates(enqueued) == [NotificationTemplate.CLIENT_CONFIRMATION.value]

    def test_transfer_balance_reduces_remaining(
        self, db, service, onboarded_provider, booking_client
    ):
        booking = make_booking(db, onboarded_provider, booking_client, at(MONDAY, 11))

        service.record_manual_payment(
            booking.id, Decimal("150"), PaymentKind.BALANCE, PaymentMethod.TRANSFER
        )

        assert service.remaining_balance(booking.id) == Decimal("50.00")
        db.refresh(booking)
        assert booking.status == BookingStatus.CONFIRMED

    def test_overpayment_is_refused(self, db, service, pending_booking):
        service.record_manual_payment(
            pending_booking.id, Decimal("150"), PaymentKind.DEPOSIT, PaymentMethod.CASH
        )

        with pytest.raises(BusinessRuleException) as exc_info:
            service.record_manual_payment(
                pending_booking.id, Decimal("50.01"), PaymentKind.BALANCE, PaymentMethod.CASH
            )

        assert exc_info.value.code == "PAYMENT_EXCEEDS_PRICE"
        assert exc_info.value.details["remaining"] == "50.00"

    def test_cancelled_booking_is_refused(self, db, service, pending_booking):
        pending_booking.status = BookingStatus.CANCELLED
        db.commit()

        with pytest.raises(BusinessRuleException) as exc_info:
            service.record_manual_payment(
                pending_booking.id, Decimal("60"), PaymentKind.DEPOSIT, PaymentMethod.CASH
            )
        assert exc_info.value.code == "BOOKING_CANCELLED"

    def test_gateway_method_and_non_positive_amount_are_refused(
        self, db, service, pending_booking
    ):
        with pytest.raises(ValidationException):
            service.record_manual_payment(
                pending_booking.id, Decimal("60"), PaymentKind.DEPOSIT, PaymentMethod.GATEWAY
            )
        with pytest.raises(ValidationException):
            service.record_manual_payment(
                pending_booking.id, Decimal("0"), PaymentKind.DEPOSIT, PaymentMethod.CASH
            )


class TestInvoice:
    def test_requires_completed_booking(self, db, service, pending_booking):
        with pytest.raises(BusinessRuleException) as exc_info:
            service.generate_invoice(pending_booking.id)

        assert exc_info.value.code == "BOOKING_NOT_COMPLETED"
        assert exc_info.value.status_code == 422

    def test_issued_once(self, db, service, provider, booking_client):
        booking = make_booking(
            db, provider, booking_client, at(MONDAY, 11), status=BookingStatus.COMPLETED
        )
        service.record_manual_payment(
            booking.id, Decimal("200"), PaymentKind.TOTAL, PaymentMethod.CASH
        )

        first = service.generate_invoice(booking.id)
        second = service.generate_invoice(booking.id)

        assert first == second
        assert first.invoice_number.startswith("INV-")
        assert first.invoice_url.endswith(f"/invoices/{first.invoice_id}")
        assert booking.invoice.amount_paid == Decimal("200.00")


class TestReminderSweeps:
    def test_unpaid_deposit_reminded_once(self, db, service, pending_booking, enqueued):
        service.create_deposit_request(pending_booking.id)
        later = studio_now() + timedelta(hours=settings.deposit_reminder_after_hours + 1)

        assert service.sweep_unpaid_deposits(now=later) == 1
        assert enqueued_templates(enqueued) == [NotificationTemplate.DEPOSIT_REMINDER.value]
        assert service.sweep_unpaid_deposits(now=later) == 0

    def test_recent_deposit_is_not_reminded(self, db, service, pending_booking):
        service.create_deposit_request(pending_booking.id)

        assert service.sweep_unpaid_deposits(now=studio_now()) == 0

    def test_balance_reminder_for_tomorrow(
        self, db, service, onboarded_provider, booking_client, enqueued
    ):
        today = date.today()
        booking = make_booking(
            db, onboarded_provider, booking_client, at(today + timedelta(days=1), 11)
        )
        make_booking(
            db,
            onboarded_provider,
            booking_client,
            at(today + timedelta(days=2), 11),
        )

        assert service.send_balance_reminders(today=today) == 1
        assert enqueued_templates(enqueued) == [NotificationTemplate.BALANCE_REMINDER.value]
        balance = db.query(PaymentRecord).filter_by(booking_id=booking.id).one()
        assert balance.kind == PaymentKind.BALANCE.value
        assert balance.amount == Decimal("200.00")

        assert service.send_balance_reminders(today=today) == 0

    def test_balance_reminder_without_gateway_still_notifies(
        self, db, service, provider, booking_client, enqueued
    ):
        today = date.today()
        make_booking(db, provider, booking_client, at(today + timedelta(days=1), 11))

        assert service.send_balance_reminders(today=today) == 1
        assert db.query(PaymentRecord).count() == 0

    def test_fully_paid_booking_is_skipped(self, db, service, provider, booking_client):
        today = date.today()
        booking = make_booking(db, provider, booking_client, at(today + timedelta(days=1), 11))
        service.record_manual_payment(
            booking.id, Decimal("200"), PaymentKind.TOTAL, PaymentMethod.CASH
        )

        assert service.send_balance_reminders(today=today) == 0


def test_calendar_event_holds_one_vevent(db, service, pending_booking):
    body = service.calendar_event(pending_booking.id)

    assert body.startswith("BEGIN:VCALENDAR\r\n")
    assert body.count("BEGIN:VEVENT") == 1
    assert f"UID:inkflow-{pending_booking.id}@inkflow.app" in body
    assert "SUMMARY:Tatouage - Encre Noire" in body


class TestSettledNeverExceedsPrice:
    def test_repeated_balance_request_reuses_open_intent(self, db, service, pending_booking):
        deposit = service.create_deposit_request(pending_booking.id)
        service.reconcile_settled("evt_deposit", deposit.payment_intent_id)

        first = service.create_balance_request(pending_booking.id)
        second = service.create_balance_request(pending_booking.id)

        assert second.link.payment_id == first.link.payment_id
        assert second.link.payment_intent_id == first.link.payment_intent_id
        assert second.link.client_secret == f"{first.link.payment_intent_id}_secret"
        pending = service.payment_repository.get_pending_gateway_records(
            pending_booking.id, PaymentKind.BALANCE
        )
        assert [record.id for record in pending] == [first.link.payment_id]

        service.reconcile_settled("evt_balance_1", first.link.payment_intent_id)
        replay = service.reconcile_settled("evt_balance_2", second.link.payment_intent_id)

        assert replay.status == RESULT_ALREADY_PROCESSED
        assert service.payment_repository.get_settled_total(pending_booking.id) == Decimal(
            "200.00"
        )

    def test_partial_cash_supersedes_open_balance_intent(self, db, service, pending_booking):
        deposit = service.create_deposit_request(pending_booking.id)
        service.reconcile_settled("evt_deposit", deposit.payment_intent_id)
        stale = service.create_balance_request(pending_booking.id)

        with patch.object(service.gateway, "cancel_payment_intent") as mock_cancel:
            service.record_manual_payment(
                pending_booking.id, Decimal("40"), PaymentKind.BALANCE, PaymentMethod.CASH
            )

        mock_cancel.assert_called_once_with(stale.link.payment_intent_id)
        assert db.get(PaymentRecord, stale.link.payment_id).status == (
            PaymentStatus.CANCELED.value
        )

        fresh = service.create_balance_request(pending_booking.id)
        assert fresh.remaining == Decimal("100.00")
        assert fresh.link.payment_intent_id == (
            f"mock_pi_{pending_booking.id}_balance_10000_2"
        )

    def test_cash_total_cancels_pending_deposit(self, db, service, pending_booking):
        deposit = service.create_deposit_request(pending_booking.id)

        service.record_manual_payment(
            pending_booking.id, Decimal("200"), PaymentKind.TOTAL, PaymentMethod.CASH
        )

        record = db.get(PaymentRecord, deposit.payment_id)
        assert record.status == PaymentStatus.CANCELED.value
        assert service.payment_repository.get_pending_gateway_records(pending_booking.id) == []

    def test_deposit_paid_after_cash_total_is_refund_due(
        self, db, service, pending_booking, enqueued
    ):
        deposit = service.create_deposit_request(pending_booking.id)
        service.record_manual_payment(
            pending_booking.id, Decimal("200"), PaymentKind.TOTAL, PaymentMethod.CASH
        )
        enqueued.reset_mock()

        result = service.reconcile_settled("evt_late", deposit.payment_intent_id)

        assert result.status == RESULT_REFUND_DUE
        assert result.confirmed is False
        record = db.get(PaymentRecord, deposit.payment_id)
        assert record.status == PaymentStatus.REFUND_DUE.value
        assert "60.00" in record.failure_message
        assert service.payment_repository.get_settled_total(pending_booking.id) == Decimal(
            "200.00"
        )
        assert enqueued.call_count == 0

        replay = service.reconcile_settled("evt_late_again", deposit.payment_intent_id)
        assert replay.status == RESULT_ALREADY_PROCESSED

    def test_deposit_paid_after_full_balance_is_refund_due(self, db, service, pending_booking):
        deposit = service.create_deposit_request(pending_booking.id)
        balance = service.create_balance_request(pending_booking.id)
        assert balance.remaining == Decimal("200.00")

        assert service.reconcile_settled("evt_balance", balance.link.payment_intent_id).status == (
            RESULT_PROCESSED
        )
        late = service.reconcile_settled("evt_deposit", deposit.payment_intent_id)

        assert late.status == RESULT_REFUND_DUE
        assert service.remaining_balance(pending_booking.id) == Decimal("0.00")
        assert service.payment_repository.get_settled_total(pending_booking.id) == Decimal(
            "200.00"
        )


class TestBalanceSweepRobustness:
    def test_sweep_reuses_balance_request_opened_earlier(
        self, db, service, onboarded_provider, booking_client
    ):
        today = date.today()
        booking = make_booking(
            db, onboarded_provider, booking_client, at(today + timedelta(days=1), 11)
        )
        opened = service.create_balance_request(booking.id)

        assert service.send_balance_reminders(today=today) == 1

        records = db.query(PaymentRecord).filter_by(booking_id=booking.id).all()
        assert [record.id for record in records] == [opened.link.payment_id]

    def test_one_failing_booking_does_not_stop_the_sweep(
        self, db, service, onboarded_provider, booking_client, enqueued
    ):
        today = date.today()
        tomorrow = today + timedelta(days=1)
        failing = make_booking(db, onboarded_provider, booking_client, at(tomorrow, 10))
        healthy = make_booking(db, onboarded_provider, booking_client, at(tomorrow, 14))
        create_intent = service.gateway.create_payment_intent

        def flaky_intent(**kwargs):
            if kwargs["booking_id"] == failing.id:
                raise BusinessRuleException("Provider account restricted")
            return create_intent(**kwargs)

        with patch.object(service.gateway, "create_payment_intent", side_effect=flaky_intent):
            assert service.send_balance_reminders(today=today) == 1

        assert db.query(PaymentRecord).filter_by(booking_id=failing.id).count() == 0
        assert db.query(PaymentRecord).filter_by(booking_id=healthy.id).count() == 1
        db.refresh(failing)
        assert failing.balance_reminder_sent_at is None
