"""
External collaborators for the Zenith backend.

Main Components:
    PaymentProviderClient: Customer lookups against the payment provider API
    verify_signature: Webhook signature header verification
    EmailSender: Transactional email delivery (demo mode without an API key)
    WebhookEventProcessor: Idempotent per-type webhook handling

Usage:
    >>> from zenith.connectors import EmailSender, PaymentProviderClient, WebhookEventProcessor
    >>>
    >>> async with PaymentProviderClient(api_key="sk_test_...") as client:
    ...     processor = WebhookEventProcessor(storage, client, EmailSender())
    ...     event = processor.validate_payload(payload)
    ...     result = await processor.process_event(event)
"""

from zenith.connectors.email_client import EmailDeliveryError, EmailSender, render_email
from zenith.connectors.stripe_client import (
    PaymentProviderClient,
    PaymentProviderError,
    WebhookVerificationError,
    compute_signature,
    verify_signature,
)
from zenith.connectors.webhook_handler import (
    CustomerNotFoundError,
    WebhookEventProcessor,
    WebhookValidationError,
)

__all__ = [
    # Payment provider
    "PaymentProviderClient",
    "PaymentProviderError",
    "WebhookVerificationError",
    "compute_signature",
    "verify_signature",
    # Email
    "EmailSender",
    "EmailDeliveryError",
    "render_email",
    # Webhook processing
    "WebhookEventProcessor",
    "WebhookValidationError",
    "CustomerNotFoundError",
]
