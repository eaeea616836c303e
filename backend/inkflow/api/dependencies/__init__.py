# backend/inkflow/api/dependencies/__init__.py
"""
Central export point for all dependencies.

This module re-exports all dependencies from submodules
for convenient access throughout the application.
"""

from .database import get_db
from .services import (
    get_notification_service,
    get_payment_service,
    get_reservation_service,
    get_slot_service,
    get_stripe_gateway,
    get_webhook_service,
    require_cron_secret,
)

__all__ = [
    # Database
    "get_db",
    # Services
    "get_notification_service",
    "get_payment_service",
    "get_reservation_service",
    "get_slot_service",
    "get_stripe_gateway",
    "get_webhook_service",
    # Internal auth
    "require_cron_secret",
]
