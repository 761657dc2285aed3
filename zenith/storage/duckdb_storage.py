"""
DuckDB storage implementation for the Zenith analytics backend.

Provides the local relational store behind the real-time metric sources and
the webhook processor. DuckDB's columnar engine handles the windowed counts
and group-bys the aggregator issues every tick.

Key features:
- Thread-safe per-thread connections (metric queries run in worker threads)
- Automatic, idempotent schema creation
- Transactional read-then-write for subscription state
- Comprehensive error handling with structured logging
"""

import json
import os
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional

import duckdb
import structlog

from zenith.models.analytics import AnalyticsEvent, PageView, UserSession
from zenith.models.billing import FailedWebhook, Invoice, Subscription, User
from zenith.models.enums import SubscriptionStatus

from .base import StorageBackend

logger = structlog.get_logger(__name__)


class StorageError(Exception):
    """Base exception for all storage operation failures."""

    pass


_SUBSCRIPTION_COLUMNS = """
    user_id, stripe_subscription_id, plan, status, current_period_start,
    current_period_end, cancel_at_period_end, canceled_at, updated_at
"""

_INVOICE_COLUMNS = """
    invoice_id, user_id, amount, status, plan, hosted_invoice_url,
    period_end, attempt_count, created_at
"""

_ALLOWED_USER_COLUMNS = {"name", "stripe_customer_id"}


class DuckDBStorage(StorageBackend):
    """
    DuckDB implementation of the storage backend.

    Attributes:
        db_path: Path to the DuckDB database file
        _local: Thread-local storage for per-thread connections
        _lock: Thread lock for schema operations
        _initialized: Flag tracking whether schema is initialized
    """

    def __init__(self, db_path: str = "./data/zenith.duckdb"):
        """
        Initialize DuckDB storage backend.

        Args:
            db_path: Path to DuckDB database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._local = threading.local()
        self._lock = threading.Lock()
        self._initialized = False

        logger.info("duckdb_storage_initialized", db_path=str(self.db_path))

        self._initialize_schema()

    @contextmanager
    def _get_connection(self):
        """
        Get a thread-local DuckDB connection.

        Yields:
            DuckDB connection instance

        Raises:
            StorageError: If connection cannot be established
        """
        if not hasattr(self._local, "connection"):
            try:
                self._local.connection = duckdb.connect(str(self.db_path))
                logger.debug("duckdb_connection_created", thread_id=threading.get_ident())
            except Exception as e:
                logger.error("duckdb_connection_failed", error=str(e))
                raise StorageError(f"Failed to connect to DuckDB: {e}") from e

        try:
            yield self._local.connection
        except Exception:
            try:
                self._local.connection.rollback()
            except duckdb.Error:
                pass
            raise

    def _initialize_schema(self):
        """
        Create all tables and indexes. Idempotent.

        Raises:
            StorageError: If schema creation fails
        """
        if self._initialized:
            return

        with self._lock:
            if self._initialized:
                return

            try:
                with self._get_connection() as conn:
                    # =========================================================
                    # Analytics Tables
                    # =========================================================

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS user_sessions (
                            session_id VARCHAR PRIMARY KEY,
                            user_id VARCHAR,
                            start_time TIMESTAMP NOT NULL,
                            last_activity_at TIMESTAMP NOT NULL,
                            is_active BOOLEAN NOT NULL DEFAULT TRUE,
                            page_views INTEGER NOT NULL DEFAULT 0,
                            duration DOUBLE
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS page_views (
                            view_id VARCHAR PRIMARY KEY,
                            page VARCHAR NOT NULL,
                            session_id VARCHAR,
                            user_id VARCHAR,
                            timestamp TIMESTAMP NOT NULL
                        )
                    """)

                    conn.execute("""
                        CREATE INDEX IF NOT EXISTS idx_page_views_timestamp
                        ON page_views(timestamp)
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS analytics_events (
                            event_id VARCHAR PRIMARY KEY,
                            event_name VARCHAR NOT NULL,
                            user_id VARCHAR,
                            session_id VARCHAR,
                            properties JSON,
                            timestamp TIMESTAMP NOT NULL
                        )
                    """)

                    conn.execute("""
                        CREATE INDEX IF NOT EXISTS idx_analytics_events_timestamp
                        ON analytics_events(timestamp)
                    """)

                    conn.execute("""
                        CREATE INDEX IF NOT EXISTS idx_analytics_events_name
                        ON analytics_events(event_name)
                    """)

                    # =========================================================
                    # Billing Tables
                    # =========================================================

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS users (
                            user_id VARCHAR PRIMARY KEY,
                            email VARCHAR NOT NULL UNIQUE,
                            name VARCHAR,
                            stripe_customer_id VARCHAR,
                            created_at TIMESTAMP NOT NULL
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS subscriptions (
                            user_id VARCHAR PRIMARY KEY,
                            stripe_subscription_id VARCHAR NOT NULL,
                            plan VARCHAR NOT NULL,
                            status VARCHAR NOT NULL,
                            current_period_start TIMESTAMP,
                            current_period_end TIMESTAMP,
                            cancel_at_period_end BOOLEAN NOT NULL DEFAULT FALSE,
                            canceled_at TIMESTAMP,
                            updated_at TIMESTAMP NOT NULL
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS invoices (
                            invoice_id VARCHAR PRIMARY KEY,
                            user_id VARCHAR NOT NULL,
                            amount DOUBLE NOT NULL,
                            status VARCHAR NOT NULL,
                            plan VARCHAR NOT NULL,
                            hosted_invoice_url VARCHAR,
                            period_end TIMESTAMP,
                            attempt_count INTEGER NOT NULL DEFAULT 0,
                            created_at TIMESTAMP NOT NULL
                        )
                    """)

                    # =========================================================
                    # Webhook Bookkeeping Tables
                    # =========================================================

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS processed_webhook_events (
                            event_id VARCHAR PRIMARY KEY,
                            event_type VARCHAR NOT NULL,
                            processed_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS failed_webhooks (
                            record_id VARCHAR PRIMARY KEY,
                            event_id VARCHAR NOT NULL,
                            event_type VARCHAR NOT NULL,
                            error VARCHAR NOT NULL,
                            payload JSON,
                            failed_at TIMESTAMP NOT NULL
                        )
                    """)

                    conn.commit()
                    logger.info("duckdb_schema_initialized")
                    self._initialized = True

            except Exception as e:
                logger.error("duckdb_schema_initialization_failed", error=str(e))
                raise StorageError(f"Failed to initialize schema: {e}") from e

    def clear_for_testing(self) -> None:
        """
        Truncate all tables. For testing only, use when TESTING=true.
        """
        if not os.environ.get("TESTING"):
            return
        tables = [
            "user_sessions", "page_views", "analytics_events", "users",
            "subscriptions", "invoices", "processed_webhook_events",
            "failed_webhooks",
        ]
        with self._get_connection() as conn:
            for t in tables:
                conn.execute(f"DELETE FROM {t}")
            conn.commit()

    # =========================================================================
    # Analytics - Windowed Queries
    # =========================================================================

    def _scalar(self, query: str, params: list, name: str):
        """Run a single-value query, wrapping failures in StorageError."""
        try:
            with self._get_connection() as conn:
                row = conn.execute(query, params).fetchone()
                return row[0] if row else None
        except Exception as e:
            logger.error(f"{name}_failed", error=str(e))
            raise StorageError(f"Failed to run {name}: {e}") from e

    def count_active_sessions(self, since: datetime) -> int:
        """Count open sessions with recent activity."""
        return self._scalar(
            """
            SELECT COUNT(*) FROM user_sessions
            WHERE is_active = TRUE AND last_activity_at >= ?
            """,
            [since],
            "count_active_sessions",
        ) or 0

    def count_page_views(self, start: datetime, end: datetime) -> int:
        """Count page views in the window."""
        return self._scalar(
            "SELECT COUNT(*) FROM page_views WHERE timestamp >= ? AND timestamp < ?",
            [start, end],
            "count_page_views",
        ) or 0

    def count_events(
        self,
        start: datetime,
        end: datetime,
        event_name: Optional[str] = None,
    ) -> int:
        """Count analytics events in the window."""
        query = "SELECT COUNT(*) FROM analytics_events WHERE timestamp >= ? AND timestamp < ?"
        params: list = [start, end]
        if event_name:
            query += " AND event_name = ?"
            params.append(event_name)
        return self._scalar(query, params, "count_events") or 0

    def top_pages(self, start: datetime, end: datetime, limit: int = 10) -> list[dict]:
        """Group page views by page, most viewed first."""
        try:
            with self._get_connection() as conn:
                result = conn.execute(
                    """
                    SELECT page, COUNT(*) AS views
                    FROM page_views
                    WHERE timestamp >= ? AND timestamp < ?
                    GROUP BY page
                    ORDER BY views DESC, page ASC
                    LIMIT ?
                    """,
                    [start, end, limit],
                ).fetchall()
                return [{"page": row[0], "views": int(row[1])} for row in result]

        except Exception as e:
            logger.error("top_pages_failed", error=str(e))
            raise StorageError(f"Failed to read top pages: {e}") from e

    def count_sessions(
        self,
        start: datetime,
        end: datetime,
        max_page_views: Optional[int] = None,
    ) -> int:
        """Count sessions started in the window."""
        query = "SELECT COUNT(*) FROM user_sessions WHERE start_time >= ? AND start_time < ?"
        params: list = [start, end]
        if max_page_views is not None:
            query += " AND page_views <= ?"
            params.append(max_page_views)
        return self._scalar(query, params, "count_sessions") or 0

    def session_durations(self, start: datetime, end: datetime) -> list[float]:
        """Known durations of sessions started in the window."""
        try:
            with self._get_connection() as conn:
                result = conn.execute(
                    """
                    SELECT duration FROM user_sessions
                    WHERE start_time >= ? AND start_time < ?
                      AND duration IS NOT NULL
                    """,
                    [start, end],
                ).fetchall()
                return [float(row[0]) for row in result]

        except Exception as e:
            logger.error("session_durations_failed", error=str(e))
            raise StorageError(f"Failed to read session durations: {e}") from e

    def sum_revenue(self, start: datetime, end: datetime) -> float:
        """Sum paid invoice amounts in the window."""
        value = self._scalar(
            """
            SELECT SUM(amount) FROM invoices
            WHERE status = 'paid' AND created_at >= ? AND created_at < ?
            """,
            [start, end],
            "sum_revenue",
        )
        return float(value) if value is not None else 0.0

    # =========================================================================
    # Analytics - Writes
    # =========================================================================

    def write_session(self, session: UserSession) -> str:
        """Insert or replace a session."""
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO user_sessions (
                        session_id, user_id, start_time, last_activity_at,
                        is_active, page_views, duration
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        session.session_id,
                        session.user_id,
                        session.start_time,
                        session.last_activity_at,
                        session.is_active,
                        session.page_views,
                        session.duration,
                    ],
                )
                conn.commit()
                return session.session_id

        except Exception as e:
            logger.error("write_session_failed", session_id=session.session_id, error=str(e))
            raise StorageError(f"Failed to write session: {e}") from e

    def read_session(self, session_id: str) -> Optional[UserSession]:
        """Read a session by ID."""
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    """
                    SELECT session_id, user_id, start_time, last_activity_at,
                           is_active, page_views, duration
                    FROM user_sessions WHERE session_id = ?
                    """,
                    [session_id],
                ).fetchone()

                if row is None:
                    return None

                return UserSession(
                    session_id=row[0],
                    user_id=row[1],
                    start_time=row[2],
                    last_activity_at=row[3],
                    is_active=row[4],
                    page_views=row[5],
                    duration=row[6],
                )

        except Exception as e:
            logger.error("read_session_failed", session_id=session_id, error=str(e))
            raise StorageError(f"Failed to read session: {e}") from e

    def write_page_view(self, view: PageView) -> str:
        """Append a page view."""
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO page_views (view_id, page, session_id, user_id, timestamp)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    [view.view_id, view.page, view.session_id, view.user_id, view.timestamp],
                )
                conn.commit()
                return view.view_id

        except Exception as e:
            logger.error("write_page_view_failed", page=view.page, error=str(e))
            raise StorageError(f"Failed to write page view: {e}") from e

    def write_analytics_event(self, event: AnalyticsEvent) -> str:
        """Append an analytics event."""
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO analytics_events (
                        event_id, event_name, user_id, session_id, properties, timestamp
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [
                        event.event_id,
                        event.event_name,
                        event.user_id,
                        event.session_id,
                        json.dumps(event.properties, default=str),
                        event.timestamp,
                    ],
                )
                conn.commit()
                logger.debug(
                    "analytics_event_written",
                    event_id=event.event_id,
                    event_name=event.event_name,
                )
                return event.event_id

        except Exception as e:
            logger.error(
                "write_analytics_event_failed",
                event_name=event.event_name,
                error=str(e),
            )
            raise StorageError(f"Failed to write analytics event: {e}") from e

    def read_analytics_events(
        self,
        event_name: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: int = 1000,
    ) -> list[AnalyticsEvent]:
        """Read analytics events, most recent first."""
        try:
            with self._get_connection() as conn:
                query = """
                    SELECT event_id, event_name, user_id, session_id, properties, timestamp
                    FROM analytics_events
                    WHERE 1=1
                """
                params: list = []

                if event_name:
                    query += " AND event_name = ?"
                    params.append(event_name)

                if user_id:
                    query += " AND user_id = ?"
                    params.append(user_id)

                query += " ORDER BY timestamp DESC LIMIT ?"
                params.append(limit)

                result = conn.execute(query, params).fetchall()

                return [
                    AnalyticsEvent(
                        event_id=row[0],
                        event_name=row[1],
                        user_id=row[2],
                        session_id=row[3],
                        properties=json.loads(row[4]) if row[4] else {},
                        timestamp=row[5],
                    )
                    for row in result
                ]

        except Exception as e:
            logger.error("read_analytics_events_failed", error=str(e))
            raise StorageError(f"Failed to read analytics events: {e}") from e

    # =========================================================================
    # Billing - Users
    # =========================================================================

    def find_user_by_email(self, email: str) -> Optional[User]:
        """Look up a user by email."""
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    """
                    SELECT user_id, email, name, stripe_customer_id, created_at
                    FROM users WHERE lower(email) = lower(?)
                    """,
                    [email],
                ).fetchone()

                if row is None:
                    return None

                return User(
                    user_id=row[0],
                    email=row[1],
                    name=row[2],
                    stripe_customer_id=row[3],
                    created_at=row[4],
                )

        except Exception as e:
            logger.error("find_user_by_email_failed", error=str(e))
            raise StorageError(f"Failed to look up user: {e}") from e

    def create_user(self, user: User) -> str:
        """Create a user."""
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO users (user_id, email, name, stripe_customer_id, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    [user.user_id, user.email, user.name, user.stripe_customer_id, user.created_at],
                )
                conn.commit()
                logger.info("user_created", user_id=user.user_id)
                return user.user_id

        except Exception as e:
            logger.error("create_user_failed", error=str(e))
            raise StorageError(f"Failed to create user: {e}") from e

    def update_user(self, user_id: str, **updates) -> bool:
        """Update whitelisted user columns."""
        if not updates:
            return False

        for key in updates:
            if key not in _ALLOWED_USER_COLUMNS:
                raise ValueError(f"Invalid column: {key}")

        try:
            with self._get_connection() as conn:
                exists = conn.execute(
                    "SELECT 1 FROM users WHERE user_id = ?", [user_id]
                ).fetchone()
                if exists is None:
                    return False

                set_clauses = ", ".join(f"{key} = ?" for key in updates)
                conn.execute(
                    f"UPDATE users SET {set_clauses} WHERE user_id = ?",
                    [*updates.values(), user_id],
                )
                conn.commit()
                logger.info("user_updated", user_id=user_id, fields=sorted(updates))
                return True

        except Exception as e:
            logger.error("update_user_failed", user_id=user_id, error=str(e))
            raise StorageError(f"Failed to update user: {e}") from e

    # =========================================================================
    # Billing - Subscriptions and Invoices
    # =========================================================================

    @staticmethod
    def _row_to_subscription(row) -> Subscription:
        return Subscription(
            user_id=row[0],
            stripe_subscription_id=row[1],
            plan=row[2],
            status=row[3],
            current_period_start=row[4],
            current_period_end=row[5],
            cancel_at_period_end=row[6],
            canceled_at=row[7],
            updated_at=row[8],
        )

    def read_subscription(self, user_id: str) -> Optional[Subscription]:
        """Read a user's subscription."""
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    f"SELECT {_SUBSCRIPTION_COLUMNS} FROM subscriptions WHERE user_id = ?",
                    [user_id],
                ).fetchone()
                return self._row_to_subscription(row) if row else None

        except Exception as e:
            logger.error("read_subscription_failed", user_id=user_id, error=str(e))
            raise StorageError(f"Failed to read subscription: {e}") from e

    def upsert_subscription(self, subscription: Subscription) -> Optional[Subscription]:
        """Replace a user's subscription and return the previous row."""
        try:
            with self._get_connection() as conn:
                conn.begin()
                row = conn.execute(
                    f"SELECT {_SUBSCRIPTION_COLUMNS} FROM subscriptions WHERE user_id = ?",
                    [subscription.user_id],
                ).fetchone()
                conn.execute(
                    f"""
                    INSERT OR REPLACE INTO subscriptions ({_SUBSCRIPTION_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        subscription.user_id,
                        subscription.stripe_subscription_id,
                        subscription.plan,
                        subscription.status.value,
                        subscription.current_period_start,
                        subscription.current_period_end,
                        subscription.cancel_at_period_end,
                        subscription.canceled_at,
                        subscription.updated_at,
                    ],
                )
                conn.commit()

                logger.info(
                    "subscription_written",
                    user_id=subscription.user_id,
                    plan=subscription.plan,
                    status=subscription.status.value,
                )
                return self._row_to_subscription(row) if row else None

        except Exception as e:
            logger.error(
                "upsert_subscription_failed",
                user_id=subscription.user_id,
                error=str(e),
            )
            raise StorageError(f"Failed to write subscription: {e}") from e

    def set_subscription_status(self, user_id: str, status: SubscriptionStatus) -> bool:
        """Update only the status column of a user's subscription."""
        try:
            with self._get_connection() as conn:
                updated = conn.execute(
                    """
                    UPDATE subscriptions SET status = ?, updated_at = ?
                    WHERE user_id = ?
                    RETURNING user_id
                    """,
                    [status.value, datetime.utcnow(), user_id],
                ).fetchall()
                conn.commit()

                if updated:
                    logger.info("subscription_status_set", user_id=user_id, status=status.value)
                return bool(updated)

        except Exception as e:
            logger.error("set_subscription_status_failed", user_id=user_id, error=str(e))
            raise StorageError(f"Failed to set subscription status: {e}") from e

    def write_invoice(self, invoice: Invoice) -> str:
        """Insert or replace an invoice record."""
        try:
            with self._get_connection() as conn:
                conn.execute(
                    f"""
                    INSERT OR REPLACE INTO invoices ({_INVOICE_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        invoice.invoice_id,
                        invoice.user_id,
                        invoice.amount,
                        invoice.status.value,
                        invoice.plan,
                        invoice.hosted_invoice_url,
                        invoice.period_end,
                        invoice.attempt_count,
                        invoice.created_at,
                    ],
                )
                conn.commit()
                logger.info(
                    "invoice_written",
                    invoice_id=invoice.invoice_id,
                    status=invoice.status.value,
                )
                return invoice.invoice_id

        except Exception as e:
            logger.error("write_invoice_failed", invoice_id=invoice.invoice_id, error=str(e))
            raise StorageError(f"Failed to write invoice: {e}") from e

    def read_invoices(self, user_id: Optional[str] = None) -> list[Invoice]:
        """Read invoices, most recent first."""
        try:
            with self._get_connection() as conn:
                query = f"SELECT {_INVOICE_COLUMNS} FROM invoices WHERE 1=1"
                params: list = []
                if user_id:
                    query += " AND user_id = ?"
                    params.append(user_id)
                query += " ORDER BY created_at DESC"

                result = conn.execute(query, params).fetchall()
                return [
                    Invoice(
                        invoice_id=row[0],
                        user_id=row[1],
                        amount=row[2],
                        status=row[3],
                        plan=row[4],
                        hosted_invoice_url=row[5],
                        period_end=row[6],
                        attempt_count=row[7],
                        created_at=row[8],
                    )
                    for row in result
                ]

        except Exception as e:
            logger.error("read_invoices_failed", error=str(e))
            raise StorageError(f"Failed to read invoices: {e}") from e

    # =========================================================================
    # Webhook Bookkeeping
    # =========================================================================

    def claim_webhook_event(self, event_id: str, event_type: str) -> bool:
        """Record an event id; False if it was already recorded."""
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO processed_webhook_events (event_id, event_type, processed_at)
                    VALUES (?, ?, ?)
                    """,
                    [event_id, event_type, datetime.utcnow()],
                )
                conn.commit()
                return True

        except duckdb.ConstraintException:
            logger.info("webhook_event_already_claimed", event_id=event_id)
            return False
        except Exception as e:
            logger.error("claim_webhook_event_failed", event_id=event_id, error=str(e))
            raise StorageError(f"Failed to claim webhook event: {e}") from e

    def release_webhook_event(self, event_id: str) -> None:
        """Forget a claimed event id."""
        try:
            with self._get_connection() as conn:
                conn.execute(
                    "DELETE FROM processed_webhook_events WHERE event_id = ?", [event_id]
                )
                conn.commit()

        except Exception as e:
            logger.error("release_webhook_event_failed", event_id=event_id, error=str(e))
            raise StorageError(f"Failed to release webhook event: {e}") from e

    def write_failed_webhook(self, record: FailedWebhook) -> str:
        """Persist a dead-letter record."""
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO failed_webhooks (
                        record_id, event_id, event_type, error, payload, failed_at
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [
                        record.record_id,
                        record.event_id,
                        record.event_type,
                        record.error,
                        json.dumps(record.payload, default=str),
                        record.failed_at,
                    ],
                )
                conn.commit()
                logger.info(
                    "failed_webhook_written",
                    record_id=record.record_id,
                    event_id=record.event_id,
                )
                return record.record_id

        except Exception as e:
            logger.error("write_failed_webhook_failed", event_id=record.event_id, error=str(e))
            raise StorageError(f"Failed to write failed webhook: {e}") from e

    def read_failed_webhooks(self, limit: int = 100) -> list[FailedWebhook]:
        """Read dead-letter records, most recent first."""
        try:
            with self._get_connection() as conn:
                result = conn.execute(
                    """
                    SELECT record_id, event_id, event_type, error, payload, failed_at
                    FROM failed_webhooks
                    ORDER BY failed_at DESC
                    LIMIT ?
                    """,
                    [limit],
                ).fetchall()

                return [
                    FailedWebhook(
                        record_id=row[0],
                        event_id=row[1],
                        event_type=row[2],
                        error=row[3],
                        payload=json.loads(row[4]) if row[4] else {},
                        failed_at=row[5],
                    )
                    for row in result
                ]

        except Exception as e:
            logger.error("read_failed_webhooks_failed", error=str(e))
            raise StorageError(f"Failed to read failed webhooks: {e}") from e
