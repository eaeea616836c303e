# backend/inkflow/services/payment_service.py
"""
Deposit and balance payments for InkFlow bookings.

Gateway payments go through ``StripeGateway`` as destination charges on the
provider's connected account. Settlement arrives later through the webhook and
is reconciled by payment-intent id: a record that is already settled reports
``already_processed`` and triggers nothing. A settled deposit (gateway or
manual) is what confirms a booking.

Settled payments never add up to more than the booking price. A booking holds
at most one pending gateway payment per kind, and a gateway payment that lands
after the price is covered is kept aside as ``refund_due``.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import (
    MANUAL_PAYMENT_METHODS,
    BookingStatus,
    NotificationTemplate,
    PaymentKind,
    PaymentMethod,
    PaymentStatus,
)
from ..core.exceptions import (
    BusinessRuleException,
    DomainException,
    EntityNotFoundException,
    GatewayCallException,
    GatewayConfigException,
    InvalidStateTransitionException,
    NoBalanceDueException,
    RepositoryException,
    ValidationException,
)
from ..core.timezone_utils import studio_now, studio_today
from ..core.ulid_helper import generate_ulid
from ..models.booking import Booking
from ..models.payment import Invoice, PaymentRecord
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .calendar_export import render_calendar
from .notification_service import booking_payment_url, queue_notification
from .reservation_service import ReservationService
from .stripe_gateway import StripeGateway

logger = logging.getLogger(__name__)

RESULT_PROCESSED = "processed"
RESULT_ALREADY_PROCESSED = "already_processed"
RESULT_NOT_FOUND = "not_found"
RESULT_REFUND_DUE = "refund_due"

_FINAL_PAYMENT_STATUSES = (
    PaymentStatus.SETTLED.value,
    PaymentStatus.REFUND_DUE.value,
    PaymentStatus.REFUNDED.value,
)


@dataclass(frozen=True)
class PaymentLink:
    payment_id: str
    payment_intent_id: str
    client_secret: Optional[str]
    payment_url: str
    amount: Decimal


@dataclass(frozen=True)
class BalanceRequest:
    booking_id: str
    remaining: Decimal
    link: PaymentLink


@dataclass(frozen=True)
class ReconcileResult:
    status: str
    booking_id: Optional[str] = None
    confirmed: bool = False


@dataclass(frozen=True)
class InvoiceResult:
    invoice_id: str
    invoice_number: str
    invoice_url: str


def invoice_url(invoice_id: str) -> str:
    return f"{settings.frontend_url}/invoices/{invoice_id}"


class PaymentService(BaseService):
    """Payment orchestration: gateway requests, reconciliation, manual records."""

    def __init__(
        self,
        db: Session,
        gateway: Optional[StripeGateway] = None,
        reservation_service: Optional[ReservationService] = None,
    ):
        super().__init__(db)
        self.gateway = gateway or StripeGateway()
        self.reservation_service = reservation_service or ReservationService(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)

    def _get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            raise EntityNotFoundException("booking", booking_id)
        return booking

    def _lock_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.lock_for_update(booking_id)
        if booking is None:
            raise EntityNotFoundException("booking", booking_id)
        return booking

    def remaining_balance(self, booking_id: str) -> Decimal:
        """price minus the sum of settled payments, floored at zero."""
        booking = self._get_booking(booking_id)
        return self._remaining_for(booking)

    def _remaining_for(self, booking: Booking) -> Decimal:
        settled = self.payment_repository.get_settled_total(booking.id)
        remaining = Decimal(booking.price) - settled
        return remaining if remaining > 0 else Decimal("0.00")

    def _cancel_pending(self, record: PaymentRecord, reason: str) -> None:
        """
        Withdraw a pending gateway payment. Caller commits.

        A gateway refusal is logged and the record is still marked canceled; if
        the client pays it anyway, settlement flags it as refund due.
        """
        try:
            self.gateway.cancel_payment_intent(record.stripe_payment_intent_id)
        except GatewayCallException as exc:
            self.logger.warning(
                "Could not cancel intent %s (%s): %s", record.stripe_payment_intent_id, reason, exc
            )
        record.status = PaymentStatus.CANCELED.value
        record.failure_message = reason
        self.log_operation(
            "payment_request_canceled",
            booking_id=record.booking_id,
            payment_intent_id=record.stripe_payment_intent_id,
            reason=reason,
        )

    def _reuse_pending(self, booking: Booking, record: PaymentRecord) -> Optional[PaymentLink]:
        """Link for a still-open gateway payment, or None when the gateway dropped it."""
        intent = self.gateway.retrieve_payment_intent(record.stripe_payment_intent_id)
        if intent.status == "canceled":
            record.status = PaymentStatus.CANCELED.value
            return None
        self.logger.info(
            "Reusing pending %s intent %s for booking %s",
            record.kind,
            record.stripe_payment_intent_id,
            booking.id,
        )
        return PaymentLink(
            payment_id=record.id,
            payment_intent_id=record.stripe_payment_intent_id,
            client_secret=intent.client_secret,
            payment_url=booking_payment_url(booking.id),
            amount=Decimal(record.amount),
        )

    def _issue_gateway_request(
        self, booking: Booking, amount: Decimal, kind: PaymentKind
    ) -> PaymentLink:
        """
        Create the Stripe intent and its pending record. Caller commits.

        A booking holds at most one pending gateway payment per kind: an open
        one for the same amount is handed back, one for another amount is
        canceled before the new intent is created.
        """
        provider = booking.provider
        if not provider.can_receive_payments:
            raise GatewayConfigException(provider.id)

        reusable: Optional[PaymentRecord] = None
        for pending in self.payment_repository.get_pending_gateway_records(booking.id, kind):
            if reusable is None and Decimal(pending.amount) == amount:
                reusable = pending
                continue
            self._cancel_pending(pending, f"Superseded by a {kind.value} request for {amount}")
        if reusable is not None:
            link = self._reuse_pending(booking, reusable)
            if link is not None:
                return link

        attempt = self.payment_repository.count_gateway_records(booking.id, kind) + 1
        intent = self.gateway.create_payment_intent(
            booking_id=booking.id,
            amount=amount,
            destination_account_id=provider.stripe_account_id,
            metadata={
                "booking_id": booking.id,
                "artist_id": provider.id,
                "client_email": booking.client.email,
                "payment_type": kind.value,
            },
            attempt=attempt,
        )
        record = self.payment_repository.create(
            booking_id=booking.id,
            provider_id=provider.id,
            amount=amount,
            currency=settings.stripe_currency,
            kind=kind.value,
            method=PaymentMethod.GATEWAY.value,
            status=PaymentStatus.PENDING.value,
            stripe_payment_intent_id=intent.id,
            application_fee_amount=intent.application_fee_cents,
        )
        booking.payment_intent_id = intent.id
        return PaymentLink(
            payment_id=record.id,
            payment_intent_id=intent.id,
            client_secret=intent.client_secret,
            payment_url=booking_payment_url(booking.id),
            amount=amount,
        )

    @BaseService.measure_operation("create_deposit_request")
    def create_deposit_request(
        self, booking_id: str, amount: Optional[Decimal] = None
    ) -> PaymentLink:
        """
        Ask the gateway for the booking's deposit.

        Raises:
            GatewayConfigException: provider has no onboarded Stripe account
            GatewayCallException: Stripe call failed
        """
        booking = self._get_booking(booking_id)
        deposit = Decimal(amount if amount is not None else booking.deposit_amount)
        if deposit <= 0:
            raise ValidationException("Deposit amount must be greater than 0")
        if deposit > Decimal(booking.price):
            raise ValidationException("Deposit cannot exceed the price")

        with self.transaction():
            link = self._issue_gateway_request(booking, deposit, PaymentKind.DEPOSIT)
        self.log_operation(
            "deposit_requested", booking_id=booking_id, payment_intent_id=link.payment_intent_id
        )
        return link

    @BaseService.measure_operation("create_balance_request")
    def create_balance_request(self, booking_id: str) -> BalanceRequest:
        """
        Ask the gateway for whatever is still owed.

        Raises:
            NoBalanceDueException: nothing left to pay
        """
        booking = self._get_booking(booking_id)
        remaining = self._remaining_for(booking)
        if remaining <= 0:
            raise NoBalanceDueException(booking_id)

        with self.transaction():
            link = self._issue_gateway_request(booking, remaining, PaymentKind.BALANCE)
        self.log_operation("balance_requested", booking_id=booking_id, remaining=str(remaining))
        return BalanceRequest(booking_id=booking_id, remaining=remaining, link=link)

    def _confirm_after_deposit(self, booking: Booking) -> bool:
        """Confirm ``booking`` within the current transaction; True if it moved."""
        try:
            self.reservation_service.apply_confirmation(booking)
        except InvalidStateTransitionException as exc:
            prometheus_metrics.inc_booking_transition("confirmed", exc.kind.value)
            self.logger.warning(
                "Deposit settled on booking %s but it was not confirmed: %s",
                booking.id,
                exc.kind.value,
            )
            return False
        prometheus_metrics.inc_booking_transition("confirmed", "ok")
        return True

    @BaseService.measure_operation("reconcile_settled")
    def reconcile_settled(self, gateway_event_id: str, payment_intent_id: str) -> ReconcileResult:
        """
        Apply a ``payment_intent.succeeded`` event.

        Safe under at-least-once delivery: a record that is already settled is
        left alone and ``already_processed`` is reported. A payment that would
        take the settled total above the price is not counted; it is marked
        ``refund_due`` and ``refund_due`` is reported.
        """
        with self.transaction():
            found = self.payment_repository.get_by_payment_intent_id(payment_intent_id)
            if found is None:
                self.logger.warning(
                    "No payment record for intent %s (event %s)",
                    payment_intent_id,
                    gateway_event_id,
                )
                return ReconcileResult(status=RESULT_NOT_FOUND)

            # Booking first, then the payment row: same order as manual payments
            booking = self._lock_booking(found.booking_id)
            record = self.payment_repository.lock_by_payment_intent_id(payment_intent_id)

            if record.status in _FINAL_PAYMENT_STATUSES:
                self.logger.info(
                    "Payment %s already %s; event %s ignored",
                    payment_intent_id,
                    record.status,
                    gateway_event_id,
                )
                return ReconcileResult(
                    status=RESULT_ALREADY_PROCESSED, booking_id=record.booking_id
                )

            settled = self.payment_repository.get_settled_total(booking.id)
            surplus = settled + Decimal(record.amount) - Decimal(booking.price)
            if surplus > 0:
                record.status = PaymentStatus.REFUND_DUE.value
                record.settled_at = studio_now()
                record.failure_message = f"Exceeds the booking price by {surplus}; refund due"
                self.logger.error(
                    "Payment %s on booking %s exceeds the price by %s; marked refund due",
                    payment_intent_id,
                    booking.id,
                    surplus,
                )
                return ReconcileResult(status=RESULT_REFUND_DUE, booking_id=booking.id)

            record.status = PaymentStatus.SETTLED.value
            record.settled_at = studio_now()
            record.failure_message = None
            prometheus_metrics.inc_payment_settled(record.kind, record.method)

            confirmed = False
            if record.kind == PaymentKind.DEPOSIT.value:
                confirmed = self._confirm_after_deposit(booking)

        self.log_operation(
            "payment_reconciled",
            booking_id=record.booking_id,
            payment_intent_id=payment_intent_id,
            event_id=gateway_event_id,
            confirmed=confirmed,
        )
        return ReconcileResult(
            status=RESULT_PROCESSED, booking_id=record.booking_id, confirmed=confirmed
        )

    @BaseService.measure_operation("record_manual_payment")
    def record_manual_payment(
        self,
        booking_id: str,
        amount: Decimal,
        kind: PaymentKind,
        method: PaymentMethod,
    ) -> PaymentRecord:
        """
        Record a cash or bank-transfer payment as settled.

        A manual deposit confirms a pending booking. Pending gateway payments of
        the same kind, or larger than what is left to pay, are canceled.
        """
        method = PaymentMethod(method)
        kind = PaymentKind(kind)
        if method not in MANUAL_PAYMENT_METHODS:
            raise ValidationException("Manual payments must use cash or transfer")
        amount = Decimal(amount)
        if amount <= 0:
            raise ValidationException("Amount must be greater than 0")

        with self.transaction():
            booking = self._lock_booking(booking_id)
            if BookingStatus(booking.status) == BookingStatus.CANCELLED:
                raise BusinessRuleException(
                    "Cannot record a payment on a cancelled booking",
                    code="BOOKING_CANCELLED",
                    details={"booking_id": booking_id},
                )
            settled = self.payment_repository.get_settled_total(booking.id)
            if settled + amount > Decimal(booking.price):
                raise BusinessRuleException(
                    "Payment would exceed the booking price",
                    code="PAYMENT_EXCEEDS_PRICE",
                    details={
                        "booking_id": booking_id,
                        "remaining": str(Decimal(booking.price) - settled),
                    },
                )

            remaining_after = Decimal(booking.price) - settled - amount
            for pending in self.payment_repository.get_pending_gateway_records(booking.id):
                if pending.kind == kind.value or Decimal(pending.amount) > remaining_after:
                    self._cancel_pending(pending, f"Superseded by a {method.value} payment")

            record = self.payment_repository.create(
                booking_id=booking.id,
                provider_id=booking.provider_id,
                amount=amount,
                currency=settings.stripe_currency,
                kind=kind.value,
                method=method.value,
                status=PaymentStatus.SETTLED.value,
                settled_at=studio_now(),
            )
            prometheus_metrics.inc_payment_settled(kind.value, method.value)
            is_pending = BookingStatus(booking.status) == BookingStatus.PENDING_PAYMENT
            if kind == PaymentKind.DEPOSIT and is_pending:
                self._confirm_after_deposit(booking)

        self.log_operation(
            "manual_payment_recorded",
            booking_id=booking_id,
            amount=str(amount),
            kind=kind.value,
            method=method.value,
        )
        return record

    def record_payment_failure(self, payment_intent_id: str, message: Optional[str]) -> bool:
        """Keep the record pending with failure details; the booking is untouched."""
        with self.transaction():
            record = self.payment_repository.lock_by_payment_intent_id(payment_intent_id)
            if record is None:
                return False
            if record.status == PaymentStatus.PENDING.value:
                record.failure_message = (message or "Payment failed")[:2000]
                record.failed_at = studio_now()
        self.logger.warning("Payment %s failed: %s", payment_intent_id, message)
        return True

    def mark_refunded(self, payment_intent_id: str) -> bool:
        with self.transaction():
            record = self.payment_repository.lock_by_payment_intent_id(payment_intent_id)
            if record is None:
                return False
            if record.status != PaymentStatus.REFUNDED.value:
                record.status = PaymentStatus.REFUNDED.value
                record.refunded_at = studio_now()
        self.log_operation("payment_refunded", payment_intent_id=payment_intent_id)
        return True

    @BaseService.measure_operation("generate_invoice")
    def generate_invoice(self, booking_id: str) -> InvoiceResult:
        """One invoice per completed booking; repeated calls return the same one."""
        with self.transaction():
            booking = self._lock_booking(booking_id)
            if BookingStatus(booking.status) != BookingStatus.COMPLETED:
                raise BusinessRuleException(
                    "Invoices are only issued for completed bookings",
                    code="BOOKING_NOT_COMPLETED",
                    details={
                        "booking_id": booking_id,
                        "current_status": BookingStatus(booking.status).value,
                    },
                )
            invoice: Optional[Invoice] = self.payment_repository.get_invoice_for_booking(
                booking.id
            )
            if invoice is None:
                issued_at = studio_now()
                invoice = self.payment_repository.create_invoice(
                    booking_id=booking.id,
                    provider_id=booking.provider_id,
                    number=f"INV-{issued_at:%Y%m%d}-{generate_ulid()[-8:]}",
                    total_amount=booking.price,
                    amount_paid=self.payment_repository.get_settled_total(booking.id),
                    issued_at=issued_at,
                )
                self.log_operation("invoice_issued", booking_id=booking_id, number=invoice.number)
        return InvoiceResult(
            invoice_id=invoice.id,
            invoice_number=invoice.number,
            invoice_url=invoice_url(invoice.id),
        )

    @BaseService.measure_operation("sweep_unpaid_deposits")
    def sweep_unpaid_deposits(self, now: Optional[datetime] = None) -> int:
        """Remind clients whose gateway deposit has been pending too long. Once per booking."""
        reference_now = now if now is not None else studio_now()
        cutoff = reference_now - timedelta(hours=settings.deposit_reminder_after_hours)
        reminded: List[str] = []
        with self.transaction():
            for record in self.payment_repository.get_stale_pending_deposits(cutoff):
                if record.booking_id in reminded:
                    continue
                booking = self.booking_repository.get_by_id(
                    record.booking_id, load_relationships=False
                )
                if booking is None:
                    continue
                booking.deposit_reminder_sent_at = reference_now
                queue_notification(self.db, NotificationTemplate.DEPOSIT_REMINDER, booking.id)
                reminded.append(booking.id)
        self.log_operation("deposit_reminders_queued", count=len(reminded))
        return len(reminded)

    @BaseService.measure_operation("send_balance_reminders")
    def send_balance_reminders(self, today: Optional[date] = None) -> int:
        """
        For confirmed bookings starting tomorrow with money still owed, issue a
        balance request (when the provider can take payments) and remind the client.
        """
        reference_day = today or studio_today()
        tomorrow = reference_day + timedelta(days=1)
        window_start = datetime.combine(tomorrow, time.min)
        window_end = window_start + timedelta(days=1)

        sent = 0
        for booking in self.booking_repository.get_confirmed_starting_between(
            window_start, window_end
        ):
            if booking.balance_reminder_sent_at is not None:
                continue
            remaining = self._remaining_for(booking)
            if remaining <= 0:
                continue
            try:
                with self.transaction():
                    if booking.provider.can_receive_payments:
                        self._issue_gateway_request(booking, remaining, PaymentKind.BALANCE)
                    booking.balance_reminder_sent_at = studio_now()
                    queue_notification(self.db, NotificationTemplate.BALANCE_REMINDER, booking.id)
            except (DomainException, RepositoryException) as exc:
                self.logger.error("Balance request for booking %s failed: %s", booking.id, exc)
                continue
            sent += 1
        self.log_operation("balance_reminders_queued", count=sent)
        return sent

    def calendar_event(self, booking_id: str) -> str:
        """iCalendar document holding the booking as a single VEVENT."""
        booking = self._get_booking(booking_id)
        return render_calendar([booking])
