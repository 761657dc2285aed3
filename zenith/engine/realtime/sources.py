"""
Metric Sources — Time-Windowed Queries Behind the Real-Time Dashboard.

Each source answers one question about a ``[start, end)`` window (active
users, page views, conversions, bounce rate, ...) by querying the storage
backend on a small dedicated thread pool. Sources know nothing about caching,
history or alerting; failure isolation and timeouts are applied by the
aggregator.

Derived-metric formulas:
    bounce_rate = sessions with page_views <= 1 / total sessions * 100
                  (0 when there are no sessions)
    avg_session_duration = mean duration over sessions with a known duration
                  (0 when no session has one)
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from functools import partial
from typing import Optional

import structlog

from zenith.models.metrics import GrowthPoint, TopPage
from zenith.storage.base import StorageBackend

logger = structlog.get_logger(__name__)

CONVERSION_EVENT_NAME = "conversion"
TOP_PAGES_LIMIT = 10
DEFAULT_MAX_WORKERS = 4


def compute_bounce_rate(total_sessions: int, bounced_sessions: int) -> float:
    """Percentage of sessions with at most one page view."""
    if total_sessions <= 0:
        return 0.0
    return bounced_sessions / total_sessions * 100


def compute_avg_session_duration(durations: list[Optional[float]]) -> float:
    """Mean of the known durations; unknown (None) durations are excluded."""
    known = [d for d in durations if d is not None]
    if not known:
        return 0.0
    return sum(known) / len(known)


def generate_time_intervals(
    start: datetime,
    end: datetime,
    interval_minutes: int,
) -> list[tuple[datetime, datetime]]:
    """
    Split ``[start, end)`` into consecutive buckets of ``interval_minutes``.

    The last bucket is truncated at ``end``.
    """
    if interval_minutes <= 0:
        raise ValueError("interval_minutes must be positive")

    step = timedelta(minutes=interval_minutes)
    intervals = []
    current = start
    while current < end:
        bucket_end = min(current + step, end)
        intervals.append((current, bucket_end))
        current = bucket_end
    return intervals


def build_growth_series(points: list[tuple[datetime, float]]) -> tuple[GrowthPoint, ...]:
    """Attach to each bucket its delta from the previous bucket."""
    series = []
    previous: Optional[float] = None
    for timestamp, value in points:
        delta = 0.0 if previous is None else value - previous
        series.append(GrowthPoint(timestamp=timestamp, value=value, delta=delta))
        previous = value
    return tuple(series)


def compute_change_percent(current: float, previous: Optional[float]) -> float:
    """Percent change from ``previous``; 0 when there is no usable baseline."""
    if not previous:
        return 0.0
    return round((current - previous) / previous * 100, 2)


class MetricSources:
    """
    Async adapters over the storage backend's windowed queries.

    Attributes:
        storage: Storage backend holding sessions, page views, events and invoices
        max_workers: Size of the dedicated query thread pool

    Example:
        >>> sources = MetricSources(storage=duckdb_storage)
        >>> now = datetime.utcnow()
        >>> await sources.bounce_rate(now - timedelta(hours=1), now)
        30.0
    """

    def __init__(self, storage: StorageBackend, max_workers: int = DEFAULT_MAX_WORKERS):
        self.storage = storage
        self.max_workers = max_workers
        # A query abandoned by a timeout keeps its worker until it returns;
        # only this pool is held up, never the loop's default executor.
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="metric-source"
        )

    async def _run(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, partial(func, *args, **kwargs))

    def close(self) -> None:
        """Stop accepting queries; queued ones are cancelled, running ones finish."""
        self._executor.shutdown(wait=False, cancel_futures=True)
        logger.info("metric_sources_closed")

    async def active_users(self, now: datetime, minutes: int = 5) -> int:
        """Sessions active within the last ``minutes``."""
        return await self._run(
            self.storage.count_active_sessions, now - timedelta(minutes=minutes)
        )

    async def page_views(self, start: datetime, end: datetime) -> int:
        return await self._run(self.storage.count_page_views, start, end)

    async def events(self, start: datetime, end: datetime) -> int:
        return await self._run(self.storage.count_events, start, end)

    async def conversions(self, start: datetime, end: datetime) -> int:
        return await self._run(
            self.storage.count_events, start, end, event_name=CONVERSION_EVENT_NAME
        )

    async def revenue(self, start: datetime, end: datetime) -> float:
        return await self._run(self.storage.sum_revenue, start, end)

    async def bounce_rate(self, start: datetime, end: datetime) -> float:
        def query() -> float:
            total = self.storage.count_sessions(start, end)
            bounced = self.storage.count_sessions(start, end, max_page_views=1)
            return compute_bounce_rate(total, bounced)

        return await self._run(query)

    async def avg_session_duration(self, start: datetime, end: datetime) -> float:
        durations = await self._run(self.storage.session_durations, start, end)
        return compute_avg_session_duration(durations)

    async def top_pages(
        self,
        start: datetime,
        end: datetime,
        limit: int = TOP_PAGES_LIMIT,
    ) -> tuple[TopPage, ...]:
        """
        Most viewed pages in the window.

        ``change_percent`` is left at 0 here; the aggregator fills it in
        against the previous snapshot.
        """
        rows = await self._run(self.storage.top_pages, start, end, limit)
        return tuple(TopPage(page=row["page"], views=row["views"]) for row in rows)

    async def user_growth(
        self,
        start: datetime,
        end: datetime,
        bucket_minutes: int = 60,
    ) -> tuple[GrowthPoint, ...]:
        """Sessions started per bucket."""
        intervals = generate_time_intervals(start, end, bucket_minutes)

        def query() -> list[tuple[datetime, float]]:
            return [
                (bucket_start, float(self.storage.count_sessions(bucket_start, bucket_end)))
                for bucket_start, bucket_end in intervals
            ]

        return build_growth_series(await self._run(query))

    async def revenue_growth(
        self,
        start: datetime,
        end: datetime,
        bucket_minutes: int = 60,
    ) -> tuple[GrowthPoint, ...]:
        """Paid invoice revenue per bucket."""
        intervals = generate_time_intervals(start, end, bucket_minutes)

        def query() -> list[tuple[datetime, float]]:
            return [
                (bucket_start, self.storage.sum_revenue(bucket_start, bucket_end))
                for bucket_start, bucket_end in intervals
            ]

        return build_growth_series(await self._run(query))
