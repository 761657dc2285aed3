"""
Pytest configuration and shared fixtures for the Zenith test suite.

Provides data factories, an in-memory storage double, fakes for the payment
provider and email sender, controllable metric sources for the aggregator,
environment isolation and reusable fixtures across unit, integration and
property-based tests.
"""

import asyncio
import os
import tempfile
import uuid as _uuid
from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

# Set testing environment BEFORE importing app.
# Use a temp path that does not exist yet (DuckDB creates the file); :memory:
# gives one database per connection, which breaks the thread-local storage.
_test_db_path = os.path.join(tempfile.gettempdir(), f"zenith_test_{_uuid.uuid4().hex[:8]}.duckdb")
os.environ["TESTING"] = "true"
os.environ["DB_PATH"] = _test_db_path
os.environ["ENABLE_REALTIME_AGGREGATION"] = "false"
os.environ["STRIPE_API_KEY"] = "sk_test_zenith"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_zenith"
os.environ["STRIPE_PRICE_PRO"] = "price_pro"
os.environ["STRIPE_PRICE_ENTERPRISE"] = "price_enterprise"
os.environ["RESEND_API_KEY"] = ""
os.environ["LOG_FORMAT"] = "console"


from zenith.connectors.stripe_client import PaymentProviderError
from zenith.engine.realtime import RealtimeDataAggregator
from zenith.models.alerts import RealtimeAlert, ThresholdConfig
from zenith.models.analytics import AnalyticsEvent, PageView, UserSession
from zenith.models.billing import (
    FailedWebhook,
    Invoice,
    ProviderEvent,
    Subscription,
    User,
)
from zenith.models.enums import EmailKind, InvoiceStatus, Severity, ThresholdOperator
from zenith.models.metrics import AggregatedMetrics, TopPage


TEST_WEBHOOK_SECRET = "whsec_test_zenith"
PRICE_PLAN_MAPPING = {"price_pro": "Pro", "price_enterprise": "Enterprise"}


# ---------------------------------------------------------------------------
# Pydantic model factories reused across all test suites
# ---------------------------------------------------------------------------


def make_snapshot(**overrides) -> AggregatedMetrics:
    """Factory function for creating test AggregatedMetrics snapshots."""
    defaults = dict(
        timestamp=datetime.utcnow(),
        active_users=42,
        page_views=300,
        events=120,
        revenue=0.0,
        conversions=10,
        bounce_rate=30.0,
        avg_session_duration=120.0,
        top_pages=(TopPage(page="/pricing", views=50), TopPage(page="/", views=40)),
        user_growth=(),
        revenue_growth=(),
    )
    defaults.update(overrides)
    return AggregatedMetrics(**defaults)


def make_threshold(
    metric: str = "active_users",
    operator: ThresholdOperator = ThresholdOperator.GT,
    value: float = 10,
    severity: Severity = Severity.MEDIUM,
    time_window: int = 5,
) -> ThresholdConfig:
    """Factory function for creating test ThresholdConfig rules."""
    return ThresholdConfig(
        metric=metric,
        operator=operator,
        value=value,
        time_window=time_window,
        severity=severity,
    )


def make_alert(severity: Severity = Severity.HIGH, **overrides) -> RealtimeAlert:
    """Factory function for creating test RealtimeAlert objects."""
    defaults = dict(
        severity=severity,
        title="bounce_rate threshold exceeded",
        message="bounce_rate value (62.5) gt 50",
        metadata={"metric": "bounce_rate", "threshold": 50, "actual_value": 62.5, "operator": "gt"},
    )
    defaults.update(overrides)
    return RealtimeAlert(**defaults)


def make_user(email: str = "ada@example.com", name: Optional[str] = "Ada", **overrides) -> User:
    """Factory function for creating test User objects."""
    return User(email=email, name=name, **overrides)


def make_subscription_object(
    price_id: Optional[str] = "price_pro",
    customer: str = "cus_123",
    status: str = "active",
    unit_amount: int = 2900,
    **overrides,
) -> dict[str, Any]:
    """Provider subscription object as carried in ``data.object``."""
    now = int(datetime.utcnow().timestamp())
    items = [{"price": {"id": price_id, "unit_amount": unit_amount}}] if price_id else []
    obj = {
        "id": "sub_123",
        "object": "subscription",
        "customer": customer,
        "status": status,
        "items": {"data": items},
        "current_period_start": now,
        "current_period_end": now + 30 * 86400,
        "cancel_at_period_end": False,
        "canceled_at": None,
    }
    obj.update(overrides)
    return obj


def make_invoice_object(
    price_id: Optional[str] = "price_pro",
    customer: str = "cus_123",
    amount_paid: int = 2900,
    amount_due: int = 2900,
    **overrides,
) -> dict[str, Any]:
    """Provider invoice object as carried in ``data.object``."""
    lines = [{"price": {"id": price_id}}] if price_id else []
    obj = {
        "id": f"in_{uuid4().hex[:8]}",
        "object": "invoice",
        "customer": customer,
        "amount_paid": amount_paid,
        "amount_due": amount_due,
        "hosted_invoice_url": "https://pay.example.com/in_1",
        "period_end": int(datetime.utcnow().timestamp()) + 30 * 86400,
        "attempt_count": 1,
        "lines": {"data": lines},
    }
    obj.update(overrides)
    return obj


def make_provider_event(
    event_type: str,
    obj: dict[str, Any],
    event_id: Optional[str] = None,
) -> ProviderEvent:
    """Factory function for creating validated ProviderEvent objects."""
    return ProviderEvent(
        id=event_id or f"evt_{uuid4().hex[:12]}",
        type=event_type,
        data={"object": obj},
        created=int(datetime.utcnow().timestamp()),
    )


# ---------------------------------------------------------------------------
# MockStorage: in-memory storage for unit tests
# ---------------------------------------------------------------------------


class MockStorage:
    """
    In-memory storage backend implementing the StorageBackend interface.

    ``fail_on`` maps a method name to an exception raised when that method is
    called, to exercise failure boundaries.
    """

    def __init__(self):
        self.sessions: dict[str, UserSession] = {}
        self.page_views: list[PageView] = []
        self.events: list[AnalyticsEvent] = []
        self.users: dict[str, User] = {}
        self.subscriptions: dict[str, Subscription] = {}
        self.invoices: dict[str, Invoice] = {}
        self.claimed: dict[str, str] = {}
        self.failed_webhooks: list[FailedWebhook] = []
        self.fail_on: dict[str, Exception] = {}
        self.writes = 0

    def _check(self, name: str) -> None:
        if name in self.fail_on:
            raise self.fail_on[name]

    # --- windowed queries --------------------------------------------------

    def count_active_sessions(self, since):
        self._check("count_active_sessions")
        return sum(1 for s in self.sessions.values() if s.is_active and s.last_activity_at >= since)

    def count_page_views(self, start, end):
        self._check("count_page_views")
        return sum(1 for v in self.page_views if start <= v.timestamp < end)

    def count_events(self, start, end, event_name=None):
        self._check("count_events")
        return sum(
            1
            for e in self.events
            if start <= e.timestamp < end and (event_name is None or e.event_name == event_name)
        )

    def top_pages(self, start, end, limit=10):
        self._check("top_pages")
        counts: dict[str, int] = {}
        for v in self.page_views:
            if start <= v.timestamp < end:
                counts[v.page] = counts.get(v.page, 0) + 1
        ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]
        return [{"page": page, "views": views} for page, views in ranked]

    def count_sessions(self, start, end, max_page_views=None):
        self._check("count_sessions")
        return sum(
            1
            for s in self.sessions.values()
            if start <= s.start_time < end
            and (max_page_views is None or s.page_views <= max_page_views)
        )

    def session_durations(self, start, end):
        self._check("session_durations")
        return [
            s.duration
            for s in self.sessions.values()
            if start <= s.start_time < end and s.duration is not None
        ]

    def sum_revenue(self, start, end):
        self._check("sum_revenue")
        return float(
            sum(
                i.amount
                for i in self.invoices.values()
                if i.status == InvoiceStatus.PAID and start <= i.created_at < end
            )
        )

    # --- analytics writes --------------------------------------------------

    def write_session(self, session):
        self._check("write_session")
        self.sessions[session.session_id] = session
        return session.session_id

    def read_session(self, session_id):
        return self.sessions.get(session_id)

    def write_page_view(self, view):
        self._check("write_page_view")
        self.page_views.append(view)
        return view.view_id

    def write_analytics_event(self, event):
        self._check("write_analytics_event")
        self.events.append(event)
        self.writes += 1
        return event.event_id

    def read_analytics_events(self, event_name=None, user_id=None, limit=1000):
        events = [
            e
            for e in self.events
            if (event_name is None or e.event_name == event_name)
            and (user_id is None or e.user_id == user_id)
        ]
        return sorted(events, key=lambda e: e.timestamp, reverse=True)[:limit]

    # --- users and billing -------------------------------------------------

    def find_user_by_email(self, email):
        self._check("find_user_by_email")
        for user in self.users.values():
            if user.email.lower() == email.lower():
                return user
        return None

    def create_user(self, user):
        self.users[user.user_id] = user
        return user.user_id

    def update_user(self, user_id, **updates):
        self._check("update_user")
        user = self.users.get(user_id)
        if user is None or not updates:
            return False
        self.users[user_id] = user.model_copy(update=updates)
        self.writes += 1
        return True

    def read_subscription(self, user_id):
        return self.subscriptions.get(user_id)

    def upsert_subscription(self, subscription):
        self._check("upsert_subscription")
        previous = self.subscriptions.get(subscription.user_id)
        self.subscriptions[subscription.user_id] = subscription
        self.writes += 1
        return previous

    def set_subscription_status(self, user_id, status):
        self._check("set_subscription_status")
        current = self.subscriptions.get(user_id)
        if current is None:
            return False
        self.subscriptions[user_id] = current.model_copy(
            update={"status": status, "updated_at": datetime.utcnow()}
        )
        self.writes += 1
        return True

    def write_invoice(self, invoice):
        self._check("write_invoice")
        self.invoices[invoice.invoice_id] = invoice
        self.writes += 1
        return invoice.invoice_id

    def read_invoices(self, user_id=None):
        return [i for i in self.invoices.values() if user_id is None or i.user_id == user_id]

    # --- webhook bookkeeping -----------------------------------------------

    def claim_webhook_event(self, event_id, event_type):
        self._check("claim_webhook_event")
        if event_id in self.claimed:
            return False
        self.claimed[event_id] = event_type
        return True

    def release_webhook_event(self, event_id):
        self.claimed.pop(event_id, None)

    def write_failed_webhook(self, record):
        self._check("write_failed_webhook")
        self.failed_webhooks.append(record)
        return record.record_id

    def read_failed_webhooks(self, limit=100):
        return list(reversed(self.failed_webhooks))[:limit]


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


class FakePaymentClient:
    """Payment provider double serving customers from a dict."""

    def __init__(self, customers: Optional[dict[str, dict]] = None):
        self.customers = dict(customers or {})
        self.calls: list[str] = []

    async def retrieve_customer(self, customer_id: str) -> dict:
        self.calls.append(customer_id)
        if customer_id not in self.customers:
            raise PaymentProviderError(f"No such customer: {customer_id}")
        return self.customers[customer_id]


class FakeEmailSender:
    """Email sender double recording every send."""

    def __init__(self, result: bool = True):
        self.result = result
        self.sent: list[tuple[EmailKind, str, dict]] = []

    async def send(self, kind: EmailKind, to: str, data: dict) -> bool:
        self.sent.append((kind, to, data))
        return self.result

    def kinds(self) -> list[EmailKind]:
        return [kind for kind, _, _ in self.sent]


class FakeMetricSources:
    """
    Metric sources returning configured values.

    ``values`` overrides per-metric results; ``failures`` maps a metric to an
    exception to raise; ``hang`` names metrics that never complete.
    """

    def __init__(self, **values):
        self.values: dict[str, Any] = {
            "active_users": 42,
            "page_views": 300,
            "events": 120,
            "revenue": 0.0,
            "conversions": 10,
            "bounce_rate": 30.0,
            "avg_session_duration": 120.0,
            "top_pages": (TopPage(page="/pricing", views=50),),
            "user_growth": (),
            "revenue_growth": (),
        }
        self.values.update(values)
        self.failures: dict[str, Exception] = {}
        self.hang: set[str] = set()
        self.calls = 0

    async def _value(self, name: str):
        self.calls += 1
        if name in self.hang:
            await asyncio.sleep(3600)
        if name in self.failures:
            raise self.failures[name]
        return self.values[name]

    async def active_users(self, now, minutes=5):
        return await self._value("active_users")

    async def page_views(self, start, end):
        return await self._value("page_views")

    async def events(self, start, end):
        return await self._value("events")

    async def revenue(self, start, end):
        return await self._value("revenue")

    async def conversions(self, start, end):
        return await self._value("conversions")

    async def bounce_rate(self, start, end):
        return await self._value("bounce_rate")

    async def avg_session_duration(self, start, end):
        return await self._value("avg_session_duration")

    async def top_pages(self, start, end, limit=10):
        return await self._value("top_pages")

    async def user_growth(self, start, end, bucket_minutes=60):
        return await self._value("user_growth")

    async def revenue_growth(self, start, end, bucket_minutes=60):
        return await self._value("revenue_growth")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_storage():
    """Fresh in-memory storage for each test."""
    return MockStorage()


@pytest.fixture
def sample_user(mock_storage):
    """A local user matching provider customer ``cus_123``."""
    user = make_user()
    mock_storage.create_user(user)
    return user


@pytest.fixture
def payment_client():
    """Provider double that knows customer ``cus_123``."""
    return FakePaymentClient(
        {"cus_123": {"id": "cus_123", "email": "ada@example.com", "name": "Ada Lovelace"}}
    )


@pytest.fixture
def email_sender():
    """Email double recording sends."""
    return FakeEmailSender()


@pytest.fixture
def processor(mock_storage, payment_client, email_sender):
    """Webhook processor wired to in-memory fakes."""
    from zenith.connectors.webhook_handler import WebhookEventProcessor

    return WebhookEventProcessor(
        storage=mock_storage,
        payment_client=payment_client,
        email_sender=email_sender,
        price_plan_mapping=PRICE_PLAN_MAPPING,
        app_url="https://app.zenith.test",
    )


@pytest.fixture
def metric_sources():
    """Controllable metric sources."""
    return FakeMetricSources()


@pytest.fixture
def aggregator(metric_sources):
    """Aggregator over fake sources with the default rule set."""
    return RealtimeDataAggregator(
        sources=metric_sources,
        interval_seconds=0.05,
        adapter_timeout_seconds=0.2,
    )


@pytest.fixture
def client():
    """FastAPI test client for integration tests."""
    from zenith.main import app

    with TestClient(app) as c:
        yield c


def make_admin_token(
    scope: str = "realtime:read realtime:write",
    expires_in: timedelta = timedelta(minutes=5),
    secret: Optional[str] = None,
    **claims,
) -> str:
    """Token shaped like the identity provider's, signed with the configured key."""
    from jose import jwt

    from zenith.config import get_settings

    settings = get_settings()
    payload = {"sub": "admin_1", "scope": scope, "exp": datetime.utcnow() + expires_in}
    payload.update(claims)
    return jwt.encode(payload, secret or settings.jwt_secret, algorithm=settings.jwt_algorithm)


@pytest.fixture
def auth_headers():
    """Headers carrying an admin token with read and write scopes."""
    return {
        "Authorization": f"Bearer {make_admin_token()}",
        "X-Request-ID": str(uuid4()),
    }
