# backend/inkflow/models/booking.py
"""
Booking model for the InkFlow reservation engine.

A booking snapshots the prep/cleanup/buffer minutes in force when it was
created together with the derived expanded occupied range. That range is the
unit of overlap detection. On PostgreSQL the exclusion constraint
``bookings_no_overlap_per_provider`` enforces it for every booking that still
holds its slot.
"""

from datetime import datetime
import logging
from typing import Any, Tuple

from sqlalchemy import (
    DDL,
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    event,
)
from sqlalchemy.orm import relationship
import ulid

from inkflow.core.enums import BookingStatus
from inkflow.core.timezone_utils import studio_now

from ..database import Base
from .types import ACTIVE_STATUS_CODES, BookingStatusType

logger = logging.getLogger(__name__)

OVERLAP_CONSTRAINT_NAME = "bookings_no_overlap_per_provider"


class Booking(Base):
    """Time-boxed reservation of a provider by a client."""

    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))

    provider_id = Column(String(26), ForeignKey("providers.id"), nullable=False, index=True)
    client_id = Column(String(26), ForeignKey("clients.id"), nullable=False, index=True)

    # Naive wall-clock times in the studio timezone
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    kind = Column(String(20), nullable=False, default="session")
    status = Column(
        BookingStatusType(), nullable=False, default=BookingStatus.PENDING_PAYMENT, index=True
    )

    # Margins snapshot and expanded occupied range
    prep_minutes = Column(Integer, nullable=False, default=0)
    cleanup_minutes = Column(Integer, nullable=False, default=0)
    buffer_minutes = Column(Integer, nullable=False, default=0)
    occupied_start = Column(DateTime, nullable=False)
    occupied_end = Column(DateTime, nullable=False)

    # Money (EUR)
    price = Column(Numeric(10, 2), nullable=False)
    deposit_amount = Column(Numeric(10, 2), nullable=False, default=0)
    deposit_paid = Column(Boolean, nullable=False, default=False)
    payment_intent_id = Column(String(255), nullable=True, comment="Latest Stripe payment intent")

    # Project details (HTML-stripped before storage)
    description = Column(Text, nullable=True)
    zone = Column(String(100), nullable=True)
    size = Column(String(50), nullable=True)
    style = Column(String(100), nullable=True)
    reference_photos = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)

    # Lifecycle timestamps
    created_at = Column(DateTime, nullable=False, default=studio_now)
    updated_at = Column(DateTime, nullable=True, onupdate=studio_now)
    confirmed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(String(255), nullable=True)

    # Notification bookkeeping
    provider_notification_failed = Column(Boolean, nullable=False, default=False)
    notification_failed_at = Column(DateTime, nullable=True)
    notification_error = Column(Text, nullable=True)
    deposit_reminder_sent_at = Column(DateTime, nullable=True)
    balance_reminder_sent_at = Column(DateTime, nullable=True)
    reminder_48h_sent_at = Column(DateTime, nullable=True)
    reminder_24h_sent_at = Column(DateTime, nullable=True)
    review_requested_at = Column(DateTime, nullable=True)

    provider = relationship("Provider", back_populates="bookings")
    client = relationship("Client", back_populates="bookings")
    payments = relationship(
        "PaymentRecord", back_populates="booking", cascade="all, delete-orphan"
    )
    invoice = relationship("Invoice", back_populates="booking", uselist=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING_PAYMENT', 'CONFIRMED', 'CANCELLED', 'COMPLETED')",
            name="ck_bookings_status",
        ),
        CheckConstraint(
            "kind IN ('consultation', 'session', 'retouch')", name="ck_bookings_kind"
        ),
        CheckConstraint(
            "duration_minutes BETWEEN 30 AND 480", name="check_duration_bounds"
        ),
        CheckConstraint("price > 0", name="check_price_positive"),
        CheckConstraint(
            "deposit_amount >= 0 AND deposit_amount <= price", name="check_deposit_within_price"
        ),
        CheckConstraint("end_time > start_time", name="check_time_order"),
        CheckConstraint("occupied_end > occupied_start", name="check_occupied_order"),
        Index("ix_bookings_provider_occupied", "provider_id", "occupied_start", "occupied_end"),
    )

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id}: provider={self.provider_id}, client={self.client_id}, "
            f"{self.start_time}-{self.end_time}, status={self.status}>"
        )

    @property
    def expanded_range(self) -> Tuple[datetime, datetime]:
        return self.occupied_start, self.occupied_end

    @property
    def holds_slot(self) -> bool:
        return BookingStatus(self.status).holds_slot

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "provider_id": self.provider_id,
            "client_id": self.client_id,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_minutes": self.duration_minutes,
            "kind": self.kind,
            "status": BookingStatus(self.status).value,
            "price": str(self.price),
            "deposit_amount": str(self.deposit_amount),
            "deposit_paid": bool(self.deposit_paid),
        }


# Authoritative overlap guarantee on PostgreSQL; SQLite relies on the
# application-level re-check performed under the provider lock.
event.listen(
    Booking.__table__,
    "before_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
)
event.listen(
    Booking.__table__,
    "after_create",
    DDL(
        f"ALTER TABLE bookings ADD CONSTRAINT {OVERLAP_CONSTRAINT_NAME} "
        "EXCLUDE USING gist ("
        "provider_id WITH =, "
        "tsrange(occupied_start, occupied_end, '[)') WITH &&"
        ") WHERE (status IN ("
        + ", ".join(f"'{code}'" for code in ACTIVE_STATUS_CODES)
        + "))"
    ).execute_if(dialect="postgresql"),
)
