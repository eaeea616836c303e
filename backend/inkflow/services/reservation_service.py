# backend/inkflow/services/reservation_service.py
"""
Reservation lifecycle for the InkFlow reservation engine.

States: PENDING_PAYMENT -> CONFIRMED -> COMPLETED, and PENDING_PAYMENT or
CONFIRMED -> CANCELLED. Cancelled and completed bookings are immutable.

``create`` re-checks availability under a provider row lock in the same
transaction that inserts the booking. On PostgreSQL the exclusion constraint
``bookings_no_overlap_per_provider`` is the final word; a violation (or a
deadlock between two competing inserts) surfaces as ``SlotUnavailableException``.
"""

from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
import logging
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from ..core.enums import BookingKind, BookingStatus, NotificationTemplate, TransitionFailure
from ..core.exceptions import (
    EntityNotFoundException,
    InvalidStateTransitionException,
    RepositoryException,
    SlotUnavailableException,
)
from ..core.timezone_utils import studio_now
from ..models.booking import OVERLAP_CONSTRAINT_NAME, Booking
from ..models.provider import Provider
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.booking import BookingRequest
from .base import BaseService, mask_email
from .notification_service import queue_notification
from .slot_availability_service import REASON_OVERLAP, SlotAvailabilityService, expand_range

logger = logging.getLogger(__name__)

OVERLAP_CONFLICT_MESSAGE = REASON_OVERLAP
GENERIC_CONFLICT_MESSAGE = "the requested time was taken by a concurrent booking"

_CENTS = Decimal("0.01")


def default_deposit(provider: Provider, price: Decimal) -> Decimal:
    """Provider's deposit percentage applied to ``price``, rounded to the cent."""
    percentage = Decimal(int(provider.deposit_percentage or 0))
    return (price * percentage / Decimal(100)).quantize(_CENTS, rounding=ROUND_HALF_UP)


class ReservationService(BaseService):
    """Creates bookings and drives their status transitions."""

    def __init__(self, db: Session, slot_service: Optional[SlotAvailabilityService] = None):
        super().__init__(db)
        self.repository = RepositoryFactory.create_booking_repository(db)
        self.provider_repository = RepositoryFactory.create_provider_repository(db)
        self.client_repository = RepositoryFactory.create_client_repository(db)
        self.slot_service = slot_service or SlotAvailabilityService(db)

    @staticmethod
    def _is_deadlock_error(exc: OperationalError) -> bool:
        orig = getattr(exc, "orig", None)
        pgcode = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
        if pgcode == "40P01":
            return True
        message = str(exc).lower()
        return "deadlock detected" in message

    @staticmethod
    def _resolve_integrity_conflict_message(
        integrity_error: IntegrityError,
    ) -> Tuple[str, bool]:
        """
        Map an IntegrityError to a user-facing reason.

        Returns (message, is_overlap) where ``is_overlap`` tells whether the
        exclusion constraint fired.
        """
        constraint_name: str = ""
        orig = getattr(integrity_error, "orig", None)
        diag = getattr(orig, "diag", None)

        if diag is not None:
            constraint_name = getattr(diag, "constraint_name", "") or ""

        if not constraint_name and orig is not None:
            if OVERLAP_CONSTRAINT_NAME in str(orig):
                constraint_name = OVERLAP_CONSTRAINT_NAME

        if constraint_name == OVERLAP_CONSTRAINT_NAME:
            return OVERLAP_CONFLICT_MESSAGE, True
        return GENERIC_CONFLICT_MESSAGE, False

    def _get_booking_for_update(self, booking_id: str) -> Booking:
        booking = self.repository.lock_for_update(booking_id)
        if booking is None:
            raise EntityNotFoundException("booking", booking_id)
        return booking

    # Creation

    @BaseService.measure_operation("create_booking")
    def create(
        self,
        request: BookingRequest,
        *,
        client_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        """
        Persist a validated booking request as PENDING_PAYMENT.

        The client is looked up by ``client_id`` when given (and must exist),
        otherwise by email and created on first booking.

        Raises:
            EntityNotFoundException: provider or client missing
            SlotUnavailableException: range in the past, outside working hours,
                inside an absence or overlapping an occupied range
        """
        reference_now = now if now is not None else studio_now()
        start = request.start_time
        end = start + timedelta(minutes=request.duration_minutes)
        kind = BookingKind(request.kind)

        try:
            with self.repository.transaction():
                provider = self.provider_repository.lock_for_update(request.provider_id)
                if provider is None:
                    raise EntityNotFoundException("provider", request.provider_id)

                if client_id is not None:
                    client = self.client_repository.get_by_id(client_id, load_relationships=False)
                    if client is None:
                        raise EntityNotFoundException("client", client_id)
                else:
                    client = self.client_repository.get_or_create(
                        email=str(request.client_email),
                        name=request.client_name,
                        phone=request.client_phone,
                    )

                check = self.slot_service.check_slot(provider, start, end, kind, now=reference_now)
                if not check.available:
                    conflicting = check.conflicting_range or (None, None)
                    raise SlotUnavailableException(
                        check.reason or OVERLAP_CONFLICT_MESSAGE,
                        requested_start=start,
                        requested_end=end,
                        conflicting_start=conflicting[0],
                        conflicting_end=conflicting[1],
                    )

                margins = provider.margins_for(kind)
                occupied_start, occupied_end = expand_range(start, end, margins)
                deposit = (
                    request.deposit_amount
                    if request.deposit_amount is not None
                    else default_deposit(provider, request.price)
                )
                booking = self.repository.create(
                    provider_id=provider.id,
                    client_id=client.id,
                    start_time=start,
                    end_time=end,
                    duration_minutes=request.duration_minutes,
                    kind=kind.value,
                    status=BookingStatus.PENDING_PAYMENT,
                    prep_minutes=margins[0],
                    cleanup_minutes=margins[1],
                    buffer_minutes=margins[2],
                    occupied_start=occupied_start,
                    occupied_end=occupied_end,
                    price=request.price,
                    deposit_amount=deposit,
                    deposit_paid=False,
                    description=request.description,
                    zone=request.zone,
                    size=request.size,
                    style=request.style,
                    notes=request.notes,
                    reference_photos=request.reference_photo_urls or None,
                    created_at=reference_now,
                )
                queue_notification(
                    self.db, NotificationTemplate.PROVIDER_BOOKING_ALERT, booking.id
                )
                queue_notification(
                    self.db, NotificationTemplate.CLIENT_BOOKING_RECEIVED, booking.id
                )
        except IntegrityError as exc:
            message, is_overlap = self._resolve_integrity_conflict_message(exc)
            self.logger.warning(
                "Booking insert rejected by database constraint",
                extra={"provider_id": request.provider_id, "overlap": is_overlap},
            )
            raise SlotUnavailableException(
                message, requested_start=start, requested_end=end
            ) from exc
        except OperationalError as exc:
            if self._is_deadlock_error(exc):
                raise SlotUnavailableException(
                    GENERIC_CONFLICT_MESSAGE, requested_start=start, requested_end=end
                ) from exc
            raise
        except RepositoryException as exc:
            message = str(exc).lower()
            if "deadlock detected" in message or "exclusion constraint" in message:
                raise SlotUnavailableException(
                    GENERIC_CONFLICT_MESSAGE, requested_start=start, requested_end=end
                ) from exc
            raise

        prometheus_metrics.inc_booking_created(kind.value)
        self.log_operation(
            "booking_created",
            booking_id=booking.id,
            provider_id=booking.provider_id,
            client=mask_email(str(request.client_email)),
            start=start.isoformat(),
        )
        return booking

    # Transitions

    def apply_confirmation(self, booking: Booking, *, now: Optional[datetime] = None) -> Booking:
        """
        Move ``booking`` to CONFIRMED inside the caller's transaction.

        Queues the client confirmation; does not commit.
        """
        current = BookingStatus(booking.status)
        if current == BookingStatus.CONFIRMED:
            raise InvalidStateTransitionException(
                TransitionFailure.ALREADY_CONFIRMED, booking.id, current.value
            )
        if current == BookingStatus.CANCELLED:
            raise InvalidStateTransitionException(
                TransitionFailure.ALREADY_CANCELLED, booking.id, current.value
            )
        if current == BookingStatus.COMPLETED:
            raise InvalidStateTransitionException(
                TransitionFailure.ALREADY_COMPLETED, booking.id, current.value
            )

        booking.status = BookingStatus.CONFIRMED
        booking.deposit_paid = True
        booking.confirmed_at = now or studio_now()
        queue_notification(self.db, NotificationTemplate.CLIENT_CONFIRMATION, booking.id)
        return booking

    @BaseService.measure_operation("confirm_booking")
    def confirm(self, booking_id: str) -> Booking:
        """Confirm a pending booking. Replays raise ALREADY_CONFIRMED without mutating."""
        try:
            with self.transaction():
                booking = self._get_booking_for_update(booking_id)
                self.apply_confirmation(booking)
        except InvalidStateTransitionException as exc:
            prometheus_metrics.inc_booking_transition("confirmed", exc.kind.value)
            raise
        prometheus_metrics.inc_booking_transition("confirmed", "ok")
        self.log_operation("booking_confirmed", booking_id=booking_id)
        return booking

    @BaseService.measure_operation("cancel_booking")
    def cancel(self, booking_id: str, reason: Optional[str] = None) -> Booking:
        """Cancel a pending or confirmed booking, releasing its slot."""
        try:
            with self.transaction():
                booking = self._get_booking_for_update(booking_id)
                current = BookingStatus(booking.status)
                if current == BookingStatus.CANCELLED:
                    raise InvalidStateTransitionException(
                        TransitionFailure.ALREADY_CANCELLED, booking.id, current.value
                    )
                if current == BookingStatus.COMPLETED:
                    raise InvalidStateTransitionException(
                        TransitionFailure.ALREADY_COMPLETED, booking.id, current.value
                    )
                booking.status = BookingStatus.CANCELLED
                booking.cancelled_at = studio_now()
                booking.cancellation_reason = reason
        except InvalidStateTransitionException as exc:
            prometheus_metrics.inc_booking_transition("cancelled", exc.kind.value)
            raise
        prometheus_metrics.inc_booking_transition("cancelled", "ok")
        self.log_operation("booking_cancelled", booking_id=booking_id, reason=reason)
        return booking

    @BaseService.measure_operation("complete_booking")
    def complete(self, booking_id: str) -> Booking:
        """Complete a confirmed booking and queue the review request."""
        try:
            with self.transaction():
                booking = self._get_booking_for_update(booking_id)
                current = BookingStatus(booking.status)
                if current == BookingStatus.COMPLETED:
                    raise InvalidStateTransitionException(
                        TransitionFailure.ALREADY_COMPLETED, booking.id, current.value
                    )
                if current != BookingStatus.CONFIRMED:
                    raise InvalidStateTransitionException(
                        TransitionFailure.NOT_CONFIRMED_FOR_COMPLETION, booking.id, current.value
                    )
                now = studio_now()
                booking.status = BookingStatus.COMPLETED
                booking.completed_at = now
                booking.review_requested_at = now
                queue_notification(self.db, NotificationTemplate.REVIEW_REQUEST, booking.id)
        except InvalidStateTransitionException as exc:
            prometheus_metrics.inc_booking_transition("completed", exc.kind.value)
            raise
        prometheus_metrics.inc_booking_transition("completed", "ok")
        self.log_operation("booking_completed", booking_id=booking_id)
        return booking

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.repository.get_by_id(booking_id)
        if booking is None:
            raise EntityNotFoundException("booking", booking_id)
        return booking
