# backend/inkflow/core/exceptions.py
"""
Domain-specific exceptions for the InkFlow reservation engine.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status

from .enums import TransitionFailure

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class UnauthorizedException(DomainException):
    """Raised when an internal endpoint is called without a valid token."""

    status_code = status.HTTP_401_UNAUTHORIZED


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Specific business exceptions


class BookingValidationException(ValidationException):
    """
    Raised when booking input fails validation.

    ``first_error`` is the single user-facing message, ``errors`` the complete
    violation list for diagnostics.
    """

    def __init__(self, errors: List[Dict[str, str]]):
        self.errors = errors
        self.first_error = errors[0] if errors else {"field": "", "message": "Invalid booking"}
        super().__init__(
            message=self.first_error["message"],
            code="BOOKING_VALIDATION_FAILED",
            details={"first_error": self.first_error, "errors": errors},
        )


class EntityNotFoundException(NotFoundException):
    """Raised when a referenced client, provider, booking or payment does not exist."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            message=f"{entity.capitalize()} not found",
            code=f"{entity.upper()}_NOT_FOUND",
            details={"entity": entity, "id": entity_id},
        )


class SlotUnavailableException(ConflictException):
    """Raised when a requested range is outside working hours or overlaps an occupied range."""

    def __init__(
        self,
        reason: str,
        *,
        requested_start: Optional[datetime] = None,
        requested_end: Optional[datetime] = None,
        conflicting_start: Optional[datetime] = None,
        conflicting_end: Optional[datetime] = None,
    ):
        self.reason = reason
        self.conflicting_start = conflicting_start
        self.conflicting_end = conflicting_end
        details: Dict[str, Any] = {"reason": reason}
        if requested_start is not None and requested_end is not None:
            details["requested_start"] = requested_start.isoformat()
            details["requested_end"] = requested_end.isoformat()
        if conflicting_start is not None and conflicting_end is not None:
            details["conflicting_start"] = conflicting_start.isoformat()
            details["conflicting_end"] = conflicting_end.isoformat()
        super().__init__(
            message=f"Slot unavailable: {reason}",
            code="SLOT_UNAVAILABLE",
            details=details,
        )


_TRANSITION_MESSAGES = {
    TransitionFailure.ALREADY_CONFIRMED: "Booking is already confirmed",
    TransitionFailure.ALREADY_CANCELLED: "Booking is already cancelled",
    TransitionFailure.ALREADY_COMPLETED: "Booking is already completed",
    TransitionFailure.NOT_CONFIRMED_FOR_COMPLETION: "Only confirmed bookings can be completed",
}


class InvalidStateTransitionException(BusinessRuleException):
    """
    Raised when a lifecycle transition is refused.

    The "already" kinds are the replay signal for idempotent operations.
    """

    def __init__(self, kind: TransitionFailure, booking_id: str, current_status: str):
        self.kind = kind
        self.booking_id = booking_id
        self.current_status = current_status
        if kind != TransitionFailure.NOT_CONFIRMED_FOR_COMPLETION:
            self.status_code = status.HTTP_409_CONFLICT
        super().__init__(
            message=_TRANSITION_MESSAGES[kind],
            code=kind.value,
            details={"booking_id": booking_id, "current_status": current_status},
        )

    @property
    def is_replay(self) -> bool:
        return self.kind in (
            TransitionFailure.ALREADY_CONFIRMED,
            TransitionFailure.ALREADY_CANCELLED,
            TransitionFailure.ALREADY_COMPLETED,
        )


class GatewayConfigException(BusinessRuleException):
    """Raised when the provider's payment account is missing or not onboarded."""

    def __init__(self, provider_id: str):
        super().__init__(
            message="Provider is not configured to receive payments",
            code="GATEWAY_NOT_CONFIGURED",
            details={"provider_id": provider_id},
        )


class GatewayCallException(ServiceException):
    """Raised when a call to the payment gateway fails."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="GATEWAY_CALL_FAILED", details=details)


class NoBalanceDueException(BusinessRuleException):
    """Raised when a balance request is made for a fully paid booking."""

    def __init__(self, booking_id: str):
        super().__init__(
            message="No balance due",
            code="NO_BALANCE_DUE",
            details={"booking_id": booking_id, "remaining": "0.00"},
        )


class NotificationDeliveryError(Exception):
    """Transport failure while sending a transactional message."""


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
