# backend/inkflow/routes/v1/bookings.py
"""
Booking routes - API v1

Versioned booking endpoints under /api/v1/bookings.
All business logic delegated to ReservationService and PaymentService.

Endpoints:
    POST / - Submit a booking request and open its deposit payment
    POST /{booking_id}/cancel - Cancel a booking
    POST /{booking_id}/complete - Mark a confirmed booking as completed
    POST /{booking_id}/balance-request - Request the outstanding balance
    GET /{booking_id}/calendar.ics - iCalendar export
    POST /{booking_id}/payments/manual - Record a cash/transfer payment (internal)
    POST /{booking_id}/invoice - Issue the invoice for a completed booking
"""

import asyncio
from decimal import Decimal
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Response, status
from fastapi.params import Path

from ...api.dependencies import (
    get_payment_service,
    get_reservation_service,
    require_cron_secret,
)
from ...core.constants import ULID_PATH_PATTERN
from ...core.exceptions import DomainException, GatewayCallException
from ...errors import handle_domain_exception
from ...models.booking import Booking
from ...ratelimit.dependency import rate_limit
from ...schemas.booking import (
    BookingCreatedResponse,
    BookingStatusResponse,
    CancelBookingRequest,
    PaymentLinkResponse,
)
from ...schemas.payment import (
    BalanceRequestResponse,
    InvoiceResponse,
    ManualPaymentRequest,
    PaymentRecordResponse,
)
from ...services.booking_validator import validate_booking_input
from ...services.payment_service import PaymentService
from ...services.reservation_service import ReservationService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["bookings-v1"])

BOOKING_ID_PATH = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN)


def _status_response(booking: Booking) -> BookingStatusResponse:
    return BookingStatusResponse(booking_id=booking.id, status=booking.status)


def _open_deposit(
    payment_service: PaymentService, booking: Booking
) -> Optional[PaymentLinkResponse]:
    """
    Open the deposit payment when the provider can take one.

    The booking is already committed at this point; a provider without a
    Stripe account or a zero deposit leaves the client without a payment link.
    """
    if Decimal(booking.deposit_amount) <= 0:
        logger.info("Booking %s has no deposit to collect", booking.id)
        return None
    if not booking.provider.can_receive_payments:
        logger.info(
            "Provider %s cannot receive payments; booking %s left without a payment link",
            booking.provider_id,
            booking.id,
        )
        return None
    try:
        link = payment_service.create_deposit_request(booking.id)
    except GatewayCallException as exc:
        logger.error("Deposit request for booking %s failed: %s", booking.id, exc)
        return None
    return PaymentLinkResponse(
        payment_id=link.payment_id,
        payment_intent_id=link.payment_intent_id,
        client_secret=link.client_secret,
        payment_url=link.payment_url,
        amount=link.amount,
    )


@router.post(
    "",
    response_model=BookingCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("booking_submit"))],
    responses={
        400: {"description": "Invalid booking request"},
        404: {"description": "Provider or client not found"},
        409: {"description": "Slot unavailable"},
    },
)
async def create_booking(
    payload: Dict[str, Any] = Body(...),
    reservation_service: ReservationService = Depends(get_reservation_service),
    payment_service: PaymentService = Depends(get_payment_service),
) -> BookingCreatedResponse:
    """
    Submit a booking request.

    The booking is created as pending payment; when the provider is onboarded
    the response carries the deposit payment link.
    """
    try:
        booking_request = validate_booking_input(payload)
        booking = await asyncio.to_thread(reservation_service.create, booking_request)
        payment = await asyncio.to_thread(_open_deposit, payment_service, booking)
    except DomainException as e:
        handle_domain_exception(e)

    return BookingCreatedResponse(booking_id=booking.id, status=booking.status, payment=payment)


@router.post(
    "/{booking_id}/cancel",
    response_model=BookingStatusResponse,
    responses={404: {"description": "Booking not found"}, 409: {"description": "Already final"}},
)
async def cancel_booking(
    booking_id: str = BOOKING_ID_PATH,
    cancel_data: Optional[CancelBookingRequest] = Body(None),
    reservation_service: ReservationService = Depends(get_reservation_service),
) -> BookingStatusResponse:
    reason = cancel_data.reason if cancel_data else None
    try:
        booking = await asyncio.to_thread(reservation_service.cancel, booking_id, reason)
    except DomainException as e:
        handle_domain_exception(e)
    return _status_response(booking)


@router.post(
    "/{booking_id}/complete",
    response_model=BookingStatusResponse,
    responses={
        404: {"description": "Booking not found"},
        409: {"description": "Already completed"},
        422: {"description": "Booking is not confirmed"},
    },
)
async def complete_booking(
    booking_id: str = BOOKING_ID_PATH,
    reservation_service: ReservationService = Depends(get_reservation_service),
) -> BookingStatusResponse:
    """Mark a confirmed booking as completed and schedule the review request."""
    try:
        booking = await asyncio.to_thread(reservation_service.complete, booking_id)
    except DomainException as e:
        handle_domain_exception(e)
    return _status_response(booking)


@router.post(
    "/{booking_id}/balance-request",
    response_model=BalanceRequestResponse,
    responses={422: {"description": "No balance due or provider not onboarded"}},
)
async def request_balance(
    booking_id: str = BOOKING_ID_PATH,
    payment_service: PaymentService = Depends(get_payment_service),
) -> BalanceRequestResponse:
    try:
        request = await asyncio.to_thread(payment_service.create_balance_request, booking_id)
    except DomainException as e:
        handle_domain_exception(e)
    return BalanceRequestResponse(
        booking_id=request.booking_id,
        remaining=request.remaining,
        payment_id=request.link.payment_id,
        payment_intent_id=request.link.payment_intent_id,
        payment_url=request.link.payment_url,
    )


@router.get(
    "/{booking_id}/calendar.ics",
    response_class=Response,
    responses={200: {"content": {"text/calendar": {}}}, 404: {"description": "Booking not found"}},
)
async def export_calendar(
    booking_id: str = BOOKING_ID_PATH,
    payment_service: PaymentService = Depends(get_payment_service),
) -> Response:
    try:
        body = await asyncio.to_thread(payment_service.calendar_event, booking_id)
    except DomainException as e:
        handle_domain_exception(e)
    return Response(
        content=body,
        media_type="text/calendar; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="booking-{booking_id}.ics"'},
    )


@router.post(
    "/{booking_id}/payments/manual",
    response_model=PaymentRecordResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_cron_secret)],
    responses={401: {"description": "Missing or invalid token"}},
)
async def record_manual_payment(
    payment_data: ManualPaymentRequest,
    booking_id: str = BOOKING_ID_PATH,
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentRecordResponse:
    """Record a cash or transfer payment taken at the studio."""
    try:
        record = await asyncio.to_thread(
            payment_service.record_manual_payment,
            booking_id,
            payment_data.amount,
            payment_data.kind,
            payment_data.method,
        )
        remaining = await asyncio.to_thread(payment_service.remaining_balance, booking_id)
    except DomainException as e:
        handle_domain_exception(e)
    return PaymentRecordResponse(
        payment_id=record.id,
        booking_id=record.booking_id,
        amount=record.amount,
        kind=record.kind,
        method=record.method,
        status=record.status,
        remaining=remaining,
    )


@router.post(
    "/{booking_id}/invoice",
    response_model=InvoiceResponse,
    responses={422: {"description": "Booking is not completed"}},
)
async def issue_invoice(
    booking_id: str = BOOKING_ID_PATH,
    payment_service: PaymentService = Depends(get_payment_service),
) -> InvoiceResponse:
    try:
        invoice = await asyncio.to_thread(payment_service.generate_invoice, booking_id)
    except DomainException as e:
        handle_domain_exception(e)
    return InvoiceResponse(
        invoice_id=invoice.invoice_id,
        invoice_number=invoice.invoice_number,
        invoice_url=invoice.invoice_url,
    )
