# backend/inkflow/services/stripe_gateway.py
"""
Thin Stripe adapter used by the payment and subscription services.

Every Stripe failure is wrapped in ``GatewayCallException``. When no secret
key is configured the gateway runs in mock mode and hands back deterministic
``mock_pi_<booking_id>`` intents so development and CI never reach the network.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
import logging
from typing import Any, Dict, List, Optional

import stripe

from ..core.config import settings
from ..core.exceptions import GatewayCallException

logger = logging.getLogger(__name__)


def to_cents(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class GatewayIntent:
    id: str
    client_secret: Optional[str]
    status: str
    amount_cents: int
    application_fee_cents: int


class StripeGateway:
    """Creates payment intents, verifies webhooks and reads subscriptions."""

    def __init__(self) -> None:
        self.logger = logging.getLogger(__name__)
        self.stripe_configured = False
        if settings.stripe_configured:
            stripe.api_key = settings.stripe_secret_key.get_secret_value()
            stripe.max_network_retries = 1
            self.stripe_configured = True
        else:
            self.logger.warning(
                "Stripe secret key not configured - gateway will operate in mock mode"
            )

        # 5 means 5%, not 0.05
        self.platform_fee_percentage = settings.stripe_platform_fee_percentage / 100.0

    def application_fee_cents(self, amount_cents: int) -> int:
        return int(round(amount_cents * self.platform_fee_percentage))

    def create_payment_intent(
        self,
        *,
        booking_id: str,
        amount: Decimal,
        destination_account_id: str,
        metadata: Dict[str, str],
        currency: Optional[str] = None,
        attempt: int = 1,
    ) -> GatewayIntent:
        """
        Create a destination-charge PaymentIntent for a booking.

        The platform fee is split off with ``application_fee_amount``; the rest
        is transferred to the provider's connected account.

        Raises:
            GatewayCallException: Stripe rejected the call or was unreachable
        """
        amount_cents = to_cents(amount)
        fee_cents = self.application_fee_cents(amount_cents)

        if not self.stripe_configured:
            # Keep ids unique when one booking gets a deposit and a balance intent
            suffix = metadata.get("payment_type", "deposit")
            mock_id = f"mock_pi_{booking_id}_{suffix}_{amount_cents}"
            if attempt > 1:
                mock_id = f"{mock_id}_{attempt}"
            self.logger.info("Using mock payment intent %s", mock_id)
            return GatewayIntent(
                id=mock_id,
                client_secret=f"{mock_id}_secret",
                status="requires_payment_method",
                amount_cents=amount_cents,
                application_fee_cents=fee_cents,
            )

        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=currency or settings.stripe_currency,
                transfer_data={"destination": destination_account_id},
                application_fee_amount=fee_cents,
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as e:
            self.logger.error(f"Stripe error creating payment intent: {str(e)}")
            raise GatewayCallException(
                f"Failed to create payment intent: {str(e)}",
                details={"booking_id": booking_id},
            ) from e

        self.logger.info(f"Created payment intent {intent.id} for booking {booking_id}")
        return GatewayIntent(
            id=intent.id,
            client_secret=getattr(intent, "client_secret", None),
            status=intent.status,
            amount_cents=amount_cents,
            application_fee_cents=fee_cents,
        )

    def retrieve_payment_intent(self, payment_intent_id: str) -> GatewayIntent:
        """Fetch an existing intent so its client secret can be handed out again."""
        if not self.stripe_configured:
            return GatewayIntent(
                id=payment_intent_id,
                client_secret=f"{payment_intent_id}_secret",
                status="requires_payment_method",
                amount_cents=0,
                application_fee_cents=0,
            )

        try:
            intent = stripe.PaymentIntent.retrieve(payment_intent_id)
        except stripe.StripeError as e:
            self.logger.error(f"Stripe error retrieving payment intent: {str(e)}")
            raise GatewayCallException(
                f"Failed to retrieve payment intent: {str(e)}",
                details={"payment_intent_id": payment_intent_id},
            ) from e
        return GatewayIntent(
            id=intent.id,
            client_secret=getattr(intent, "client_secret", None),
            status=intent.status,
            amount_cents=intent.amount,
            application_fee_cents=getattr(intent, "application_fee_amount", None) or 0,
        )

    def cancel_payment_intent(self, payment_intent_id: str) -> None:
        """
        Cancel an intent that has not been paid.

        Raises:
            GatewayCallException: Stripe refused (e.g. the intent already succeeded)
        """
        if not self.stripe_configured:
            self.logger.info("Cancelling mock payment intent %s", payment_intent_id)
            return

        try:
            stripe.PaymentIntent.cancel(payment_intent_id)
        except stripe.StripeError as e:
            self.logger.error(f"Stripe error cancelling payment intent: {str(e)}")
            raise GatewayCallException(
                f"Failed to cancel payment intent: {str(e)}",
                details={"payment_intent_id": payment_intent_id},
            ) from e
        self.logger.info(f"Cancelled payment intent {payment_intent_id}")

    def construct_event(self, payload: bytes, signature: str, secrets: List[str]) -> Any:
        """
        Verify ``signature`` against each configured secret in turn.

        Raises:
            stripe.SignatureVerificationError: no secret matched
            ValueError: the payload is not valid JSON
        """
        last_error: Optional[Exception] = None
        for secret in secrets:
            try:
                return stripe.Webhook.construct_event(payload, signature, secret)
            except stripe.SignatureVerificationError as exc:
                last_error = exc
                continue
        if last_error is not None:
            raise last_error
        raise stripe.SignatureVerificationError("No webhook secret configured", signature)

    def retrieve_subscription(self, subscription_id: str) -> Any:
        try:
            return stripe.Subscription.retrieve(subscription_id)
        except stripe.StripeError as e:
            self.logger.error(f"Stripe error retrieving subscription {subscription_id}: {str(e)}")
            raise GatewayCallException(
                f"Failed to retrieve subscription: {str(e)}",
                details={"subscription_id": subscription_id},
            ) from e
