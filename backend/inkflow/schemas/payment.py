# backend/inkflow/schemas/payment.py
"""Payment request/response schemas."""

from decimal import Decimal
from typing import Optional

from pydantic import Field, field_validator

from ..core.enums import MANUAL_PAYMENT_METHODS, PaymentKind, PaymentMethod, PaymentStatus
from ._strict_base import StrictModel, StrictRequestModel


class ManualPaymentRequest(StrictRequestModel):
    """Cash or bank-transfer payment recorded by the studio."""

    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    kind: PaymentKind
    method: PaymentMethod

    @field_validator("method")
    @classmethod
    def validate_manual_method(cls, v: PaymentMethod) -> PaymentMethod:
        if v not in MANUAL_PAYMENT_METHODS:
            raise ValueError("Manual payments must use cash or transfer")
        return v


class PaymentRecordResponse(StrictModel):
    payment_id: str
    booking_id: str
    amount: Decimal
    kind: PaymentKind
    method: PaymentMethod
    status: PaymentStatus
    remaining: Decimal


class BalanceRequestResponse(StrictModel):
    booking_id: str
    remaining: Decimal
    payment_id: str
    payment_intent_id: str
    payment_url: str


class InvoiceResponse(StrictModel):
    invoice_id: str
    invoice_number: str
    invoice_url: str


class WebhookResponse(StrictModel):
    """Response for webhook processing."""

    status: str = Field(..., description="Processing status")
    event_type: Optional[str] = Field(None, description="Stripe event type")
    message: Optional[str] = Field(None, description="Additional message")


class CronRunResponse(StrictModel):
    job: str
    sent: int
