# backend/inkflow/repositories/payment_repository.py
"""
Payment Repository for the InkFlow reservation engine.

Covers payment records (gateway and manual) and invoices.
"""

from datetime import datetime
from decimal import Decimal
import logging
from typing import List, Optional, cast

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.enums import BookingStatus, PaymentKind, PaymentMethod, PaymentStatus
from ..database.session_utils import supports_row_locks
from ..models.booking import Booking
from ..models.payment import Invoice, PaymentRecord
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PaymentRepository(BaseRepository[PaymentRecord]):
    def __init__(self, db: Session):
        super().__init__(db, PaymentRecord)

    def get_by_payment_intent_id(self, payment_intent_id: str) -> Optional[PaymentRecord]:
        return self.find_one_by(stripe_payment_intent_id=payment_intent_id)

    def lock_by_payment_intent_id(self, payment_intent_id: str) -> Optional[PaymentRecord]:
        """Load a payment record by intent id holding a row lock (no-op on SQLite)."""
        query = self.db.query(PaymentRecord).filter(
            PaymentRecord.stripe_payment_intent_id == payment_intent_id
        )
        if supports_row_locks(self.db):
            query = query.with_for_update()
        return cast(Optional[PaymentRecord], query.first())

    def get_settled_total(self, booking_id: str) -> Decimal:
        """Sum of settled payment amounts for a booking."""
        query = self.db.query(func.coalesce(func.sum(PaymentRecord.amount), 0)).filter(
            PaymentRecord.booking_id == booking_id,
            PaymentRecord.status == PaymentStatus.SETTLED.value,
        )
        total = self._execute_scalar(query)
        return Decimal(str(total or 0)).quantize(Decimal("0.01"))

    def get_pending_gateway_records(
        self, booking_id: str, kind: Optional[PaymentKind] = None
    ) -> List[PaymentRecord]:
        """Gateway payments still awaiting settlement, oldest first."""
        query = self._build_query().filter(
            PaymentRecord.booking_id == booking_id,
            PaymentRecord.method == PaymentMethod.GATEWAY.value,
            PaymentRecord.status == PaymentStatus.PENDING.value,
        )
        if kind is not None:
            query = query.filter(PaymentRecord.kind == kind.value)
        query = query.order_by(PaymentRecord.created_at)
        return cast(List[PaymentRecord], self._execute_query(query))

    def count_gateway_records(self, booking_id: str, kind: PaymentKind) -> int:
        query = self.db.query(func.count(PaymentRecord.id)).filter(
            PaymentRecord.booking_id == booking_id,
            PaymentRecord.method == PaymentMethod.GATEWAY.value,
            PaymentRecord.kind == kind.value,
        )
        return int(self._execute_scalar(query) or 0)

    def list_for_booking(self, booking_id: str) -> List[PaymentRecord]:
        query = (
            self._build_query()
            .filter(PaymentRecord.booking_id == booking_id)
            .order_by(PaymentRecord.created_at)
        )
        return cast(List[PaymentRecord], self._execute_query(query))

    def get_stale_pending_deposits(self, created_before: datetime) -> List[PaymentRecord]:
        """
        Pending gateway deposits older than the cutoff on bookings still awaiting payment
        whose client has not yet been reminded.
        """
        query = (
            self._build_query()
            .join(Booking, Booking.id == PaymentRecord.booking_id)
            .filter(
                PaymentRecord.kind == PaymentKind.DEPOSIT.value,
                PaymentRecord.method == PaymentMethod.GATEWAY.value,
                PaymentRecord.status == PaymentStatus.PENDING.value,
                PaymentRecord.created_at < created_before,
                Booking.status == BookingStatus.PENDING_PAYMENT,
                Booking.deposit_reminder_sent_at.is_(None),
            )
            .order_by(PaymentRecord.created_at)
        )
        return cast(List[PaymentRecord], self._execute_query(query))

    def get_invoice_for_booking(self, booking_id: str) -> Optional[Invoice]:
        query = self.db.query(Invoice).filter(Invoice.booking_id == booking_id)
        return cast(Optional[Invoice], query.first())

    def create_invoice(self, **kwargs: object) -> Invoice:
        invoice = Invoice(**kwargs)
        self.db.add(invoice)
        self.db.flush()
        return invoice
