"""
Abstract storage interface for the Zenith analytics backend.

The storage abstraction keeps the real-time aggregator and the webhook
processor independent of the concrete datastore. All operations are
synchronous; async callers run them in a worker thread.

Data groups:
- Analytics: sessions, page views and the analytics event trail (read in
  time windows by the metric sources)
- Billing: users, subscriptions and invoices (written by webhooks)
- Webhook bookkeeping: processed event ids and the dead-letter table

Time windows are half-open ``[start, end)`` intervals of naive UTC datetimes.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from zenith.models.analytics import AnalyticsEvent, PageView, UserSession
from zenith.models.billing import FailedWebhook, Invoice, Subscription, User
from zenith.models.enums import SubscriptionStatus


class StorageBackend(ABC):
    """
    Abstract base class for all storage implementations.

    Implementations must be safe to call from multiple threads: metric
    queries run concurrently in worker threads while webhook requests write
    to the same tables.
    """

    # =========================================================================
    # Analytics - Windowed Queries
    # =========================================================================

    @abstractmethod
    def count_active_sessions(self, since: datetime) -> int:
        """
        Count sessions still open with activity at or after ``since``.

        Args:
            since: Activity cutoff

        Returns:
            Number of active sessions

        Raises:
            StorageError: If the query fails
        """
        pass

    @abstractmethod
    def count_page_views(self, start: datetime, end: datetime) -> int:
        """Count page views with a timestamp in ``[start, end)``."""
        pass

    @abstractmethod
    def count_events(
        self,
        start: datetime,
        end: datetime,
        event_name: Optional[str] = None,
    ) -> int:
        """
        Count analytics events in ``[start, end)``.

        Args:
            start: Window start (inclusive)
            end: Window end (exclusive)
            event_name: Optional filter on the event name (e.g. "conversion")

        Returns:
            Number of matching events
        """
        pass

    @abstractmethod
    def top_pages(self, start: datetime, end: datetime, limit: int = 10) -> list[dict]:
        """
        Group page views in ``[start, end)`` by page.

        Returns:
            Up to ``limit`` dicts ``{"page": str, "views": int}`` ordered by
            views descending, then page ascending
        """
        pass

    @abstractmethod
    def count_sessions(
        self,
        start: datetime,
        end: datetime,
        max_page_views: Optional[int] = None,
    ) -> int:
        """
        Count sessions that started in ``[start, end)``.

        Args:
            start: Window start (inclusive)
            end: Window end (exclusive)
            max_page_views: If set, only count sessions with at most this
                many page views (bounced sessions use 1)
        """
        pass

    @abstractmethod
    def session_durations(self, start: datetime, end: datetime) -> list[float]:
        """Durations (seconds) of sessions started in ``[start, end)`` with a known duration."""
        pass

    @abstractmethod
    def sum_revenue(self, start: datetime, end: datetime) -> float:
        """Sum of paid invoice amounts recorded in ``[start, end)``."""
        pass

    # =========================================================================
    # Analytics - Writes
    # =========================================================================

    @abstractmethod
    def write_session(self, session: UserSession) -> str:
        """Insert or replace a session. Returns the session ID."""
        pass

    @abstractmethod
    def read_session(self, session_id: str) -> Optional[UserSession]:
        """Read a session by ID, or None if unknown."""
        pass

    @abstractmethod
    def write_page_view(self, view: PageView) -> str:
        """Append a page view. Returns the view ID."""
        pass

    @abstractmethod
    def write_analytics_event(self, event: AnalyticsEvent) -> str:
        """
        Append an event to the analytics trail.

        Returns:
            The event ID

        Raises:
            StorageError: If write operation fails
        """
        pass

    @abstractmethod
    def read_analytics_events(
        self,
        event_name: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: int = 1000,
    ) -> list[AnalyticsEvent]:
        """Read analytics events, most recent first."""
        pass

    # =========================================================================
    # Billing - Users, Subscriptions, Invoices
    # =========================================================================

    @abstractmethod
    def find_user_by_email(self, email: str) -> Optional[User]:
        """Look up a user by email (case-insensitive). None when absent."""
        pass

    @abstractmethod
    def create_user(self, user: User) -> str:
        """Create a user. Returns the user ID."""
        pass

    @abstractmethod
    def update_user(self, user_id: str, **updates) -> bool:
        """
        Update user columns (``name``, ``stripe_customer_id``).

        Returns:
            True if the user exists and was updated
        """
        pass

    @abstractmethod
    def read_subscription(self, user_id: str) -> Optional[Subscription]:
        """Read the subscription held by a user."""
        pass

    @abstractmethod
    def upsert_subscription(self, subscription: Subscription) -> Optional[Subscription]:
        """
        Write a user's subscription, replacing any existing row.

        The read of the previous row and the write happen in one
        transaction so concurrent webhook deliveries cannot lose updates.

        Returns:
            The subscription row that was replaced, or None
        """
        pass

    @abstractmethod
    def set_subscription_status(self, user_id: str, status: SubscriptionStatus) -> bool:
        """
        Set the status of a user's subscription in a single statement.

        Only ``status`` and ``updated_at`` change, so a plan written by a
        concurrent delivery survives.

        Returns:
            True if the user has a subscription row
        """
        pass

    @abstractmethod
    def write_invoice(self, invoice: Invoice) -> str:
        """Insert or replace an invoice payment record. Returns the invoice ID."""
        pass

    @abstractmethod
    def read_invoices(self, user_id: Optional[str] = None) -> list[Invoice]:
        """Read invoices, most recent first."""
        pass

    # =========================================================================
    # Webhook Bookkeeping
    # =========================================================================

    @abstractmethod
    def claim_webhook_event(self, event_id: str, event_type: str) -> bool:
        """
        Record a provider event id as being processed.

        Returns:
            True if the id was new, False if it was already claimed
        """
        pass

    @abstractmethod
    def release_webhook_event(self, event_id: str) -> None:
        """Forget a claimed event id so a later redelivery is processed again."""
        pass

    @abstractmethod
    def write_failed_webhook(self, record: FailedWebhook) -> str:
        """Persist a dead-letter record. Returns the record ID."""
        pass

    @abstractmethod
    def read_failed_webhooks(self, limit: int = 100) -> list[FailedWebhook]:
        """Read dead-letter records, most recent first."""
        pass
