# backend/inkflow/routes/v1/webhooks.py
"""
Stripe webhook - API v1

Endpoints:
    POST /webhooks/stripe - Handle Stripe platform and Connect events
"""

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
import stripe

from ...api.dependencies import get_stripe_gateway, get_webhook_service
from ...core.config import settings
from ...schemas.payment import WebhookResponse
from ...services.stripe_gateway import StripeGateway
from ...services.stripe_webhook_service import StripeWebhookService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["webhooks-v1"])


@router.post("/webhooks/stripe", response_model=WebhookResponse)
async def handle_stripe_webhook(
    request: Request,
    gateway: StripeGateway = Depends(get_stripe_gateway),
    webhook_service: StripeWebhookService = Depends(get_webhook_service),
) -> WebhookResponse:
    """
    Handle Stripe webhook events from both platform and connected accounts.

    Tries each configured webhook secret until one verifies the signature.
    Anything that fails after verification is answered with 200 so Stripe
    does not retry an event that can never succeed.
    """
    try:
        payload = await request.body()
        sig_header = request.headers.get("stripe-signature")

        if not sig_header:
            logger.warning("Webhook received without signature")
            raise HTTPException(status_code=400, detail="No signature")

        webhook_secrets = settings.webhook_secrets
        if not webhook_secrets:
            logger.error("No webhook secrets configured")
            raise HTTPException(status_code=500, detail="Webhook configuration error")

        try:
            gateway.construct_event(payload, sig_header, webhook_secrets)
        except (stripe.SignatureVerificationError, ValueError):
            logger.error(
                "Webhook signature verification failed with all %s configured secrets",
                len(webhook_secrets),
            )
            raise HTTPException(status_code=400, detail="Invalid signature")

        event = json.loads(payload)
        if event.get("account"):
            logger.info(f"Event from connected account: {event['account']}")

        result = await asyncio.to_thread(
            webhook_service.process, event, dict(request.headers)
        )
        logger.info(f"Webhook {event.get('id')} handled: {result.status}")
        return WebhookResponse(
            status=result.status, event_type=result.event_type, message=result.message
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Unexpected webhook error: {str(e)}")
        return WebhookResponse(
            status="error",
            event_type="unknown",
            message="Error logged - returning 200 to prevent retries",
        )
