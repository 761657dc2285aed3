"""
Pydantic v2 data models for the Zenith real-time analytics backend.

Model Organization:
    - enums: Enumeration types for consistent classification
    - metrics: Aggregated metric snapshots and their series
    - alerts: Threshold rules and real-time alerts
    - analytics: Sessions, page views and tracked analytics events
    - billing: Webhook events, users, subscriptions, invoices, dead letters
"""

from .alerts import RealtimeAlert, ThresholdConfig, generate_alert_id
from .analytics import AnalyticsEvent, PageView, UserSession
from .billing import (
    FailedWebhook,
    Invoice,
    ProviderEvent,
    Subscription,
    User,
    WebhookResult,
)
from .enums import (
    AlertType,
    EmailKind,
    InvoiceStatus,
    RealtimeEventName,
    Severity,
    SubscriptionStatus,
    ThresholdOperator,
    TrackedEvent,
    WebhookEventType,
)
from .metrics import (
    NUMERIC_METRICS,
    AggregatedMetrics,
    GrowthPoint,
    TopPage,
    normalize_metric_name,
)

__all__ = [
    # Enums
    "AlertType",
    "EmailKind",
    "InvoiceStatus",
    "RealtimeEventName",
    "Severity",
    "SubscriptionStatus",
    "ThresholdOperator",
    "TrackedEvent",
    "WebhookEventType",
    # Metrics
    "AggregatedMetrics",
    "GrowthPoint",
    "TopPage",
    "NUMERIC_METRICS",
    "normalize_metric_name",
    # Alerts
    "RealtimeAlert",
    "ThresholdConfig",
    "generate_alert_id",
    # Analytics rows
    "AnalyticsEvent",
    "PageView",
    "UserSession",
    # Billing
    "FailedWebhook",
    "Invoice",
    "ProviderEvent",
    "Subscription",
    "User",
    "WebhookResult",
]
