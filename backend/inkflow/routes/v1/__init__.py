"""
API v1 Routes

Versioned API endpoints under /api/v1. The metrics router is mounted
without a prefix.
"""

from . import bookings, cron, metrics, slots, webhooks

__all__ = [
    "bookings",
    "cron",
    "metrics",
    "slots",
    "webhooks",
]
