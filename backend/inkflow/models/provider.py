# backend/inkflow/models/provider.py
"""
Provider (tattoo artist) model.

A provider publishes weekly working hours and absences, owns bookings, and
holds the Stripe Connect account that receives deposits and balances.
"""

from typing import Optional, Tuple

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from inkflow.core.constants import (
    DEFAULT_BUFFER_MINUTES,
    DEFAULT_DEPOSIT_PERCENTAGE,
    DEFAULT_PREP_CLEANUP_BY_KIND,
)
from inkflow.core.enums import BookingKind, SubscriptionStatus

from ..database import Base


class Provider(Base):
    """Tattoo artist accepting reservations."""

    __tablename__ = "providers"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    name = Column(String(120), nullable=False)
    studio_name = Column(String(120), nullable=True)
    email = Column(String(255), nullable=False, unique=True, index=True)

    # Scheduling defaults; null prep/cleanup means per-kind defaults apply
    prep_minutes = Column(Integer, nullable=True)
    cleanup_minutes = Column(Integer, nullable=True)
    buffer_minutes = Column(Integer, nullable=False, default=DEFAULT_BUFFER_MINUTES)
    slot_interval_minutes = Column(Integer, nullable=False, default=30)
    deposit_percentage = Column(Integer, nullable=False, default=DEFAULT_DEPOSIT_PERCENTAGE)

    # Stripe Connect
    stripe_account_id = Column(String(255), nullable=True, unique=True)
    stripe_onboarding_completed = Column(Boolean, nullable=False, default=False)

    # Platform subscription
    stripe_customer_id = Column(String(255), nullable=True, unique=True, index=True)
    stripe_subscription_id = Column(String(255), nullable=True)
    subscription_plan = Column(String(20), nullable=True)
    subscription_status = Column(
        String(30), nullable=False, default=SubscriptionStatus.TRIALING.value
    )
    subscription_current_period_end = Column(DateTime, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    working_hours = relationship(
        "WorkingHour", back_populates="provider", cascade="all, delete-orphan"
    )
    absences = relationship("Absence", back_populates="provider", cascade="all, delete-orphan")
    bookings = relationship("Booking", back_populates="provider")

    __table_args__ = (
        CheckConstraint("buffer_minutes >= 0", name="ck_providers_buffer_non_negative"),
        CheckConstraint("slot_interval_minutes > 0", name="ck_providers_slot_interval_positive"),
        CheckConstraint(
            "deposit_percentage BETWEEN 0 AND 100", name="ck_providers_deposit_percentage"
        ),
    )

    @property
    def can_receive_payments(self) -> bool:
        return bool(self.stripe_account_id) and bool(self.stripe_onboarding_completed)

    @property
    def display_name(self) -> str:
        return str(self.studio_name or self.name)

    def margins_for(self, kind: BookingKind) -> Tuple[int, int, int]:
        """
        Effective (prep, cleanup, buffer) minutes for a booking kind.

        Provider overrides win; otherwise the per-kind defaults apply.
        """
        default_prep, default_cleanup = DEFAULT_PREP_CLEANUP_BY_KIND[BookingKind(kind).value]
        prep: Optional[int] = self.prep_minutes
        cleanup: Optional[int] = self.cleanup_minutes
        return (
            default_prep if prep is None else int(prep),
            default_cleanup if cleanup is None else int(cleanup),
            int(self.buffer_minutes or 0),
        )

    def __repr__(self) -> str:
        return f"<Provider {self.id}: {self.name}>"
