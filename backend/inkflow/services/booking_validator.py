# backend/inkflow/services/booking_validator.py
"""
Booking input validation.

Pure: no database or network access. Turns a raw booking body into a
``BookingRequest`` or raises ``BookingValidationException`` carrying the first
violated rule and the complete violation list.
"""

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from ..core.exceptions import BookingValidationException
from ..core.timezone_utils import studio_now
from ..schemas.booking import BookingRequest

_PYDANTIC_PREFIXES = ("Value error, ", "Assertion failed, ")


def _clean_message(message: str) -> str:
    for prefix in _PYDANTIC_PREFIXES:
        if message.startswith(prefix):
            return message[len(prefix) :]
    return message


def format_validation_errors(exc: ValidationError) -> List[Dict[str, str]]:
    """Flatten pydantic errors into ``[{"field", "message"}]`` in declaration order."""
    errors: List[Dict[str, str]] = []
    for error in exc.errors():
        loc = ".".join(str(part) for part in error.get("loc", ()))
        if error.get("type") == "extra_forbidden":
            message = f"Unexpected field: {loc}"
        else:
            message = _clean_message(str(error.get("msg", "Invalid value")))
        errors.append({"field": loc or "__root__", "message": message})
    return errors


def validate_booking_input(
    raw: Mapping[str, Any], *, now: Optional[datetime] = None
) -> BookingRequest:
    """
    Validate and sanitise a booking submission.

    Args:
        raw: Untrusted request body
        now: Reference "now" (naive studio time); defaults to the current studio time

    Raises:
        BookingValidationException: on any violated rule
    """
    reference_now = now if now is not None else studio_now()
    try:
        return BookingRequest.model_validate(dict(raw), context={"now": reference_now})
    except ValidationError as exc:
        raise BookingValidationException(format_validation_errors(exc)) from exc
