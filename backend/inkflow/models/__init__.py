"""
Database models for the InkFlow reservation engine.

- Providers with working hours and absences
- Clients
- Bookings, payment records and invoices
- Webhook event ledger
"""

from .availability import Absence, WorkingHour
from .booking import OVERLAP_CONSTRAINT_NAME, Booking
from .client import Client
from .payment import Invoice, PaymentRecord
from .provider import Provider
from .webhook_event import WebhookEvent

__all__ = [
    "Absence",
    "Booking",
    "Client",
    "Invoice",
    "OVERLAP_CONSTRAINT_NAME",
    "PaymentRecord",
    "Provider",
    "WebhookEvent",
    "WorkingHour",
]
