"""
Payment provider webhook router.

Wired to:
- verify_signature for the ``Stripe-Signature`` header
- WebhookEventProcessor for idempotent per-type handling

Responses:
- 200 ``{"received": true}`` once the event is handled, ignored or a duplicate
- 400 on a missing or invalid signature, or a malformed payload
- 500 when the handler failed; the event is dead-lettered and released so the
  provider's redelivery retries it
"""

import json
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from zenith.config import get_settings
from zenith.connectors.email_client import EmailSender
from zenith.connectors.stripe_client import (
    PaymentProviderClient,
    WebhookVerificationError,
    verify_signature,
)
from zenith.connectors.webhook_handler import WebhookEventProcessor, WebhookValidationError
from zenith.storage import get_storage
from zenith.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


async def get_webhook_processor() -> AsyncGenerator[WebhookEventProcessor, None]:
    """Build a processor with a request-scoped provider client."""
    settings = get_settings()
    async with PaymentProviderClient(
        api_key=settings.stripe_api_key,
        base_url=settings.stripe_api_base_url,
    ) as client:
        yield WebhookEventProcessor(
            storage=get_storage(),
            payment_client=client,
            email_sender=EmailSender(
                api_key=settings.resend_api_key,
                from_email=settings.from_email,
                base_url=settings.resend_api_base_url,
            ),
            price_plan_mapping=settings.price_plan_mapping,
            app_url=settings.app_url,
        )


@router.post("/stripe")
async def receive_stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None, alias="Stripe-Signature"),
    processor: WebhookEventProcessor = Depends(get_webhook_processor),
):
    """Verify, validate and process one payment provider event."""
    settings = get_settings()

    if not settings.stripe_configured:
        logger.info("webhook_received_provider_not_configured")
        return {"received": True}

    body = await request.body()

    try:
        verify_signature(
            body,
            stripe_signature,
            settings.stripe_webhook_secret,
            tolerance_seconds=settings.stripe_signature_tolerance_seconds,
        )
    except WebhookVerificationError as e:
        logger.warning("webhook_signature_rejected", reason=str(e))
        raise HTTPException(status_code=400, detail="Webhook signature verification failed")

    try:
        event = processor.validate_payload(json.loads(body.decode("utf-8")))
    except (UnicodeDecodeError, json.JSONDecodeError, WebhookValidationError) as e:
        logger.warning("webhook_payload_rejected", reason=str(e))
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    logger.info("webhook_received", event_id=event.id, event_type=event.type)
    result = await processor.process_event(event)

    if not result.success:
        return JSONResponse(
            status_code=500,
            content={"received": False, "error": "Webhook handler failed"},
        )

    return {"received": True, "action": result.action}
