# backend/inkflow/schemas/booking.py
"""
Booking schemas for the InkFlow reservation engine.

``BookingRequest`` is the strict public booking body. Free-text fields are
HTML-stripped before their length bounds are checked, and ``start_time`` must
be strictly after the ``now`` supplied in the validation context.
"""

from datetime import date, datetime
from decimal import Decimal
import re
from typing import List, Optional

from pydantic import (
    EmailStr,
    Field,
    HttpUrl,
    ValidationInfo,
    field_validator,
    model_validator,
)

from ..core.constants import (
    MAX_BOOKING_DURATION,
    MAX_BOOKING_PRICE,
    MAX_DESCRIPTION_LENGTH,
    MAX_NAME_LENGTH,
    MAX_NOTES_LENGTH,
    MAX_PHONE_LENGTH,
    MAX_REASON_LENGTH,
    MAX_REFERENCE_PHOTOS,
    MAX_SIZE_LENGTH,
    MAX_STYLE_LENGTH,
    MAX_ZONE_LENGTH,
    MIN_BOOKING_DURATION,
    ULID_PATH_PATTERN,
)
from ..core.enums import BookingKind, BookingStatus
from ..core.timezone_utils import to_studio_naive
from ._strict_base import StrictModel, StrictRequestModel

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"[ \t]+")


def strip_html(value: object) -> object:
    """Remove markup from free text; blank results become ``None``."""
    if not isinstance(value, str):
        return value
    text = _TAG_RE.sub("", value)
    text = _WS_RE.sub(" ", text).strip()
    return text or None


class BookingRequest(StrictRequestModel):
    """Public booking submission."""

    provider_id: str = Field(..., pattern=ULID_PATH_PATTERN, description="Provider to book")
    client_email: EmailStr
    client_name: str = Field(..., min_length=1, max_length=MAX_NAME_LENGTH)
    client_phone: Optional[str] = Field(None, max_length=MAX_PHONE_LENGTH)

    start_time: datetime = Field(..., description="Start (studio local time, or offset-aware)")
    duration_minutes: int
    kind: BookingKind = BookingKind.SESSION

    price: Decimal = Field(..., max_digits=10, decimal_places=2)
    deposit_amount: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)

    description: Optional[str] = Field(None, max_length=MAX_DESCRIPTION_LENGTH)
    zone: Optional[str] = Field(None, max_length=MAX_ZONE_LENGTH)
    size: Optional[str] = Field(None, max_length=MAX_SIZE_LENGTH)
    style: Optional[str] = Field(None, max_length=MAX_STYLE_LENGTH)
    notes: Optional[str] = Field(None, max_length=MAX_NOTES_LENGTH)
    reference_photos: List[HttpUrl] = Field(default_factory=list, max_length=MAX_REFERENCE_PHOTOS)

    @field_validator(
        "client_name", "description", "zone", "size", "style", "notes", mode="before"
    )
    @classmethod
    def _strip_markup(cls, v: object) -> object:
        return strip_html(v)

    @field_validator("start_time")
    @classmethod
    def validate_future_start(cls, v: datetime, info: ValidationInfo) -> datetime:
        """Normalise to studio wall-clock time and require a future start."""
        v = to_studio_naive(v).replace(microsecond=0)
        now = (info.context or {}).get("now")
        if now is not None and v <= now:
            raise ValueError("Start time must be in the future")
        return v

    @field_validator("duration_minutes")
    @classmethod
    def validate_duration(cls, v: int) -> int:
        if v < MIN_BOOKING_DURATION:
            raise ValueError(f"Duration must be at least {MIN_BOOKING_DURATION} minutes")
        if v > MAX_BOOKING_DURATION:
            raise ValueError(f"Duration cannot exceed {MAX_BOOKING_DURATION} minutes")
        return v

    @field_validator("price")
    @classmethod
    def validate_price(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("Price must be greater than 0")
        if v > MAX_BOOKING_PRICE:
            raise ValueError(f"Price cannot exceed {MAX_BOOKING_PRICE}")
        return v

    @model_validator(mode="after")
    def validate_deposit_within_price(self) -> "BookingRequest":
        if self.deposit_amount is not None and self.deposit_amount > self.price:
            raise ValueError("Deposit cannot exceed the price")
        return self

    @property
    def reference_photo_urls(self) -> List[str]:
        return [str(url) for url in self.reference_photos]


class CancelBookingRequest(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=MAX_REASON_LENGTH)

    @field_validator("reason", mode="before")
    @classmethod
    def _strip_markup(cls, v: object) -> object:
        return strip_html(v)


class SlotResponse(StrictModel):
    start: datetime
    end: datetime
    duration_minutes: int


class SlotListResponse(StrictModel):
    provider_id: str
    start_date: date
    end_date: date
    duration_minutes: int
    kind: BookingKind
    slots: List[SlotResponse]
    truncated: bool = False


class PaymentLinkResponse(StrictModel):
    payment_id: str
    payment_intent_id: str
    client_secret: Optional[str] = None
    payment_url: str
    amount: Decimal


class BookingCreatedResponse(StrictModel):
    booking_id: str
    status: BookingStatus
    payment: Optional[PaymentLinkResponse] = None


class BookingStatusResponse(StrictModel):
    booking_id: str
    status: BookingStatus
