"""
Enumeration types for the Zenith real-time analytics backend.

All enums inherit from str to ensure JSON serialization compatibility.
"""

from enum import Enum


class Severity(str, Enum):
    """
    Severity levels for threshold rules and alerts.

    Severity determines how prominently an alert is surfaced on the
    dashboard and which notification channels pick it up.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertType(str, Enum):
    """Origin of a real-time alert."""

    THRESHOLD = "threshold"
    ANOMALY = "anomaly"
    SYSTEM = "system"
    ERROR = "error"


class ThresholdOperator(str, Enum):
    """Comparison applied between a metric value and a rule bound."""

    GT = "gt"
    LT = "lt"
    EQ = "eq"
    NE = "ne"


class RealtimeEventName(str, Enum):
    """
    Lifecycle events broadcast by the real-time aggregator.

    Subscribers receive the event name together with its payload
    (a snapshot, an alert, a rule or an error).
    """

    METRICS_UPDATED = "metrics_updated"
    AGGREGATION_ERROR = "aggregation_error"
    ALERT_GENERATED = "alert_generated"
    ALERT_ACKNOWLEDGED = "alert_acknowledged"
    THRESHOLD_ADDED = "threshold_added"
    THRESHOLD_REMOVED = "threshold_removed"


class WebhookEventType(str, Enum):
    """Payment provider webhook event types handled by the processor."""

    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    CUSTOMER_CREATED = "customer.created"
    CUSTOMER_UPDATED = "customer.updated"
    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"


class TrackedEvent(str, Enum):
    """
    Analytics events recorded for each processed billing action.

    These rows land in the same analytics event trail that the
    aggregator's metric sources read from.
    """

    SUBSCRIPTION_CREATED = "subscription_created"
    PLAN_CHANGED = "plan_changed"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    CHECKOUT_COMPLETED = "checkout_completed"


class SubscriptionStatus(str, Enum):
    """Subscription states mirrored from the payment provider."""

    INCOMPLETE = "incomplete"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"


class InvoiceStatus(str, Enum):
    """Outcome of an invoice payment attempt."""

    PAID = "paid"
    FAILED = "failed"


class EmailKind(str, Enum):
    """Transactional email templates the webhook processor can trigger."""

    WELCOME = "welcome"
    SUBSCRIPTION_UPDATE = "subscription_update"
    PAYMENT_CONFIRMATION = "payment_confirmation"
    PAYMENT_FAILED = "payment_failed"
