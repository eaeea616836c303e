# backend/inkflow/core/enums.py
"""
Core enums for the InkFlow reservation engine.

``BookingStatus`` is the single canonical lifecycle type. Persistence codes are
translated in exactly one place (``inkflow.models.types.BookingStatusType``).
"""

from enum import Enum


class BookingStatus(str, Enum):
    """Reservation lifecycle states."""

    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self in (BookingStatus.CANCELLED, BookingStatus.COMPLETED)

    @property
    def holds_slot(self) -> bool:
        """Whether a booking in this state occupies provider time."""
        return self in ACTIVE_BOOKING_STATUSES


ACTIVE_BOOKING_STATUSES = (BookingStatus.PENDING_PAYMENT, BookingStatus.CONFIRMED)


class BookingKind(str, Enum):
    CONSULTATION = "consultation"
    SESSION = "session"
    RETOUCH = "retouch"


class PaymentKind(str, Enum):
    DEPOSIT = "deposit"
    BALANCE = "balance"
    TOTAL = "total"


class PaymentMethod(str, Enum):
    GATEWAY = "gateway"
    CASH = "cash"
    TRANSFER = "transfer"


MANUAL_PAYMENT_METHODS = (PaymentMethod.CASH, PaymentMethod.TRANSFER)


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SETTLED = "settled"
    REFUNDED = "refunded"
    CANCELED = "canceled"
    # Paid at the gateway after the price was already covered
    REFUND_DUE = "refund_due"


class TransitionFailure(str, Enum):
    """Reasons a lifecycle transition is refused."""

    ALREADY_CONFIRMED = "ALREADY_CONFIRMED"
    ALREADY_CANCELLED = "ALREADY_CANCELLED"
    ALREADY_COMPLETED = "ALREADY_COMPLETED"
    NOT_CONFIRMED_FOR_COMPLETION = "NOT_CONFIRMED_FOR_COMPLETION"


class SubscriptionPlan(str, Enum):
    STARTER = "STARTER"
    PRO = "PRO"
    STUDIO = "STUDIO"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    UNPAID = "unpaid"


class NotificationTemplate(str, Enum):
    """Transactional messages the dispatcher knows how to render."""

    PROVIDER_BOOKING_ALERT = "provider_booking_alert"
    CLIENT_BOOKING_RECEIVED = "client_booking_received"
    CLIENT_CONFIRMATION = "client_confirmation"
    DEPOSIT_REMINDER = "deposit_reminder"
    BALANCE_REMINDER = "balance_reminder"
    REMINDER_48H = "reminder_48h"
    REMINDER_24H = "reminder_24h"
    REVIEW_REQUEST = "review_request"
