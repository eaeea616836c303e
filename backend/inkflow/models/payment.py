"""
Payment models.

``PaymentRecord`` tracks each deposit/balance/total payment, whether it went
through Stripe or was recorded manually. ``Invoice`` is issued once per
completed booking.
"""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
import ulid

from inkflow.core.enums import PaymentStatus
from inkflow.core.timezone_utils import studio_now

from ..database import Base

if TYPE_CHECKING:
    from inkflow.models.booking import Booking


class PaymentRecord(Base):
    """A single payment against a booking."""

    __tablename__ = "payment_records"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("providers.id"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="eur")
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    method: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True
    )
    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(
        String(255), unique=True, nullable=True
    )
    application_fee_amount: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True, comment="Platform fee in cents"
    )
    settled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    failure_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=studio_now)

    booking: Mapped["Booking"] = relationship("Booking", back_populates="payments")

    def __repr__(self) -> str:
        return (
            f"<PaymentRecord(booking_id={self.booking_id}, kind={self.kind}, "
            f"amount={self.amount}, status={self.status})>"
        )


class Invoice(Base):
    """Invoice issued for a completed booking."""

    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("bookings.id"), nullable=False, unique=True
    )
    provider_id: Mapped[str] = mapped_column(String(26), ForeignKey("providers.id"), nullable=False)
    number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=studio_now)

    booking: Mapped["Booking"] = relationship("Booking", back_populates="invoice")

    def __repr__(self) -> str:
        return f"<Invoice {self.number} booking={self.booking_id}>"
