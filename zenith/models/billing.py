"""
Billing and user models used by the webhook processor.

``ProviderEvent`` is the validated shape of an inbound payment provider
webhook; the remaining models mirror rows in the relational store.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from .enums import InvoiceStatus, SubscriptionStatus


class ProviderEventData(BaseModel):
    """Envelope around the provider object an event describes."""

    object: dict[str, Any] = Field(description="Subscription, invoice, customer or session")


class ProviderEvent(BaseModel):
    """
    An inbound payment provider webhook event.

    Only ``id``, ``type`` and ``data.object`` are required; anything else the
    provider sends is ignored.
    """

    id: str = Field(description="Provider event ID, used as idempotency key")
    type: str = Field(description="Provider event type")
    data: ProviderEventData
    created: Optional[int] = Field(default=None, description="Epoch seconds")

    @field_validator("id", "type")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        """Reject blank identifiers."""
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @property
    def object(self) -> dict[str, Any]:
        """The provider object carried by this event."""
        return self.data.object


class User(BaseModel):
    """A local user account, matched to provider customers by email."""

    user_id: str = Field(default_factory=lambda: str(uuid4()))
    email: str
    name: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Subscription(BaseModel):
    """
    The subscription held by a user, one row per user.

    Attributes:
        user_id: Owning user
        stripe_subscription_id: Provider subscription ID
        plan: Plan name resolved from the price ID
        status: Provider subscription status
        current_period_start: Start of the billing period
        current_period_end: End of the billing period
        cancel_at_period_end: Whether the subscription ends with this period
        canceled_at: When the subscription was canceled
    """

    user_id: str
    stripe_subscription_id: str
    plan: str = "Unknown"
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Invoice(BaseModel):
    """A payment attempt recorded from an invoice webhook."""

    invoice_id: str
    user_id: str
    amount: float = Field(description="Amount in currency units (not cents)")
    status: InvoiceStatus
    plan: str = "Unknown"
    hosted_invoice_url: Optional[str] = None
    period_end: Optional[datetime] = None
    attempt_count: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)


class FailedWebhook(BaseModel):
    """Dead-letter record for a webhook that could not be processed."""

    record_id: str = Field(default_factory=lambda: str(uuid4()))
    event_id: str
    event_type: str
    error: str
    payload: dict[str, Any] = Field(default_factory=dict)
    failed_at: datetime = Field(default_factory=datetime.utcnow)


class WebhookResult(BaseModel):
    """
    Outcome of processing one webhook event.

    Attributes:
        event_id: Provider event ID
        event_type: Provider event type
        success: False only when a handler raised
        action: Short description of what was done ("skipped", "duplicate", ...)
        error: Error message when ``success`` is False
    """

    event_id: str
    event_type: str
    success: bool = True
    action: str = "processed"
    error: Optional[str] = None
