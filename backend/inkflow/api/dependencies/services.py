# backend/inkflow/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected.
"""

from functools import lru_cache
import hmac
import logging
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from ...core.config import settings
from ...core.exceptions import UnauthorizedException
from ...services.notification_service import NotificationService
from ...services.payment_service import PaymentService
from ...services.reservation_service import ReservationService
from ...services.slot_availability_service import SlotAvailabilityService
from ...services.stripe_gateway import StripeGateway
from ...services.stripe_webhook_service import StripeWebhookService
from .database import get_db

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_stripe_gateway() -> StripeGateway:
    """Process-wide gateway; it only holds the Stripe key and fee settings."""
    return StripeGateway()


def get_slot_service(db: Session = Depends(get_db)) -> SlotAvailabilityService:
    return SlotAvailabilityService(db)


def get_reservation_service(
    db: Session = Depends(get_db),
    slot_service: SlotAvailabilityService = Depends(get_slot_service),
) -> ReservationService:
    """Get ReservationService instance with proper dependencies."""
    return ReservationService(db, slot_service=slot_service)


def get_payment_service(
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    reservation_service: ReservationService = Depends(get_reservation_service),
) -> PaymentService:
    """
    Get payment service instance.

    Args:
        db: Database session
        gateway: Stripe adapter
        reservation_service: Lifecycle service used for deposit confirmation

    Returns:
        PaymentService instance
    """
    return PaymentService(db, gateway=gateway, reservation_service=reservation_service)


def get_notification_service(db: Session = Depends(get_db)) -> NotificationService:
    return NotificationService(db)


def get_webhook_service(
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    payment_service: PaymentService = Depends(get_payment_service),
) -> StripeWebhookService:
    return StripeWebhookService(db, gateway=gateway, payment_service=payment_service)


def require_cron_secret(authorization: Optional[str] = Header(default=None)) -> None:
    """
    Guard for scheduler hooks and studio back-office calls.

    Expects ``Authorization: Bearer <CRON_SECRET>``. An unset secret rejects
    every call.
    """
    expected = settings.cron_secret.get_secret_value()
    scheme, _, token = (authorization or "").partition(" ")
    if not expected or scheme.lower() != "bearer" or not hmac.compare_digest(token, expected):
        logger.warning("Rejected internal call with missing or invalid token")
        raise UnauthorizedException("Invalid or missing token", code="UNAUTHORIZED")
