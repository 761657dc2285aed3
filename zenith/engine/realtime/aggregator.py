"""
Real-Time Data Aggregator — Periodic Snapshot Production and Alerting.

Runs on a fixed period. Each tick:
1. Computes windows relative to now (5 minutes, 1 hour, 24 hours in buckets)
2. Queries every metric source concurrently, each bounded by a timeout
3. Assembles one immutable snapshot; a failed source falls back to its
   zero/empty value and is logged, the other metrics are unaffected
4. Appends the snapshot to the bounded history
5. Evaluates threshold rules against it
6. Publishes ``metrics_updated``

A tick that fails as a whole is logged and published as
``aggregation_error``; the schedule keeps running. Ticks never overlap: a
tick that finds the previous one still running is skipped.

Version: realtime_aggregator_v1
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Awaitable, Optional

import structlog

from zenith.models.alerts import RealtimeAlert, ThresholdConfig
from zenith.models.enums import RealtimeEventName
from zenith.models.metrics import AggregatedMetrics, TopPage

from .alert_store import DEFAULT_MAX_ALERTS, AlertStore
from .history import MetricsHistory
from .publisher import EventPublisher
from .rules import ThresholdRuleEngine
from .sources import MetricSources, compute_change_percent

logger = structlog.get_logger(__name__)


ACTIVE_WINDOW_MINUTES = 5
HOURLY_WINDOW = timedelta(hours=1)


class RealtimeDataAggregator:
    """
    Produces metric snapshots on a timer and drives rule evaluation.

    The aggregator is an explicit service: sources, publisher and stores are
    injected, so several instances can coexist (e.g. one per tenant) and
    tests can substitute fakes.

    Attributes:
        sources: Metric source adapters
        publisher: Event publisher shared with rule engine and alert store
        interval_seconds: Period between ticks
        adapter_timeout_seconds: Upper bound for each metric source call

    Example:
        >>> aggregator = RealtimeDataAggregator(sources=MetricSources(storage))
        >>> aggregator.publisher.subscribe(on_event)
        >>> await aggregator.start()
        >>> ...
        >>> await aggregator.stop()
    """

    def __init__(
        self,
        sources: MetricSources,
        publisher: Optional[EventPublisher] = None,
        interval_seconds: float = 30.0,
        history_size: int = 100,
        adapter_timeout_seconds: float = 10.0,
        growth_lookback_hours: int = 24,
        growth_bucket_minutes: int = 60,
        thresholds: Optional[list[ThresholdConfig]] = None,
        alert_store_max_size: int = DEFAULT_MAX_ALERTS,
        alert_cooldown_seconds: float = 0.0,
    ):
        self.sources = sources
        self.publisher = publisher or EventPublisher()
        self.interval_seconds = interval_seconds
        self.adapter_timeout_seconds = adapter_timeout_seconds
        self.growth_lookback = timedelta(hours=growth_lookback_hours)
        self.growth_bucket_minutes = growth_bucket_minutes

        self.history = MetricsHistory(max_size=history_size)
        self.alert_store = AlertStore(publisher=self.publisher, max_size=alert_store_max_size)
        self.rule_engine = ThresholdRuleEngine(
            alert_store=self.alert_store,
            publisher=self.publisher,
            thresholds=thresholds,
            cooldown_seconds=alert_cooldown_seconds,
        )

        self._loop_task: Optional[asyncio.Task] = None
        self._tick_tasks: set[asyncio.Task] = set()
        self._tick_lock = asyncio.Lock()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def start(self) -> None:
        """Start the periodic schedule. Calling it while running is a no-op."""
        if self.is_running:
            logger.warning("aggregator_already_running")
            return

        self._loop_task = asyncio.create_task(self._run_schedule())
        logger.info("aggregator_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Cancel the schedule and any in-flight tick. Safe when not started."""
        tasks = list(self._tick_tasks)
        if self._loop_task is not None:
            tasks.append(self._loop_task)
        self._loop_task = None

        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("aggregator_stopped")

    async def _run_schedule(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            task = asyncio.create_task(self.run_tick())
            self._tick_tasks.add(task)
            task.add_done_callback(self._tick_tasks.discard)

    # =========================================================================
    # Tick
    # =========================================================================

    async def run_tick(self) -> Optional[AggregatedMetrics]:
        """
        Execute one aggregation tick.

        Returns:
            The new snapshot, or None when the tick was skipped or failed.
            Never raises.
        """
        if self._tick_lock.locked():
            logger.warning("aggregation_tick_skipped", reason="previous_tick_running")
            return None

        async with self._tick_lock:
            try:
                snapshot = await self.aggregate_metrics()
                self.history.append(snapshot)
                alerts = self.rule_engine.evaluate(snapshot)
                self.publisher.publish(RealtimeEventName.METRICS_UPDATED, snapshot)

                logger.info(
                    "aggregation_tick_complete",
                    active_users=snapshot.active_users,
                    page_views=snapshot.page_views,
                    conversions=snapshot.conversions,
                    alerts_generated=len(alerts),
                    history_size=len(self.history),
                )
                return snapshot

            except Exception as e:
                logger.error("aggregation_failed", error=str(e), exc_info=True)
                self.publisher.publish(RealtimeEventName.AGGREGATION_ERROR, e)
                return None

    async def aggregate_metrics(self, now: Optional[datetime] = None) -> AggregatedMetrics:
        """
        Query all metric sources concurrently and assemble a snapshot.

        Args:
            now: Reference instant for the windows (defaults to current UTC time)
        """
        now = now or datetime.utcnow()
        five_minutes_ago = now - timedelta(minutes=ACTIVE_WINDOW_MINUTES)
        one_hour_ago = now - HOURLY_WINDOW
        lookback_start = now - self.growth_lookback
        bucket = self.growth_bucket_minutes

        s = self.sources
        queries: dict[str, tuple[Awaitable, Any]] = {
            "active_users": (s.active_users(now, ACTIVE_WINDOW_MINUTES), 0),
            "page_views": (s.page_views(five_minutes_ago, now), 0),
            "events": (s.events(five_minutes_ago, now), 0),
            "revenue": (s.revenue(one_hour_ago, now), 0.0),
            "conversions": (s.conversions(one_hour_ago, now), 0),
            "bounce_rate": (s.bounce_rate(one_hour_ago, now), 0.0),
            "avg_session_duration": (s.avg_session_duration(one_hour_ago, now), 0.0),
            "top_pages": (s.top_pages(one_hour_ago, now), ()),
            "user_growth": (s.user_growth(lookback_start, now, bucket), ()),
            "revenue_growth": (s.revenue_growth(lookback_start, now, bucket), ()),
        }

        results = await asyncio.gather(
            *(self._guarded(name, coro, default) for name, (coro, default) in queries.items())
        )
        values = dict(zip(queries.keys(), results))
        values["top_pages"] = self._with_page_changes(values["top_pages"])

        return AggregatedMetrics(timestamp=now, **values)

    async def _guarded(self, name: str, coro: Awaitable, default: Any) -> Any:
        """
        Await one source with a timeout, falling back to ``default`` on failure.

        A timed-out query is abandoned, not interrupted: its thread stays busy
        in the sources' own pool until the database call returns.
        """
        try:
            return await asyncio.wait_for(coro, timeout=self.adapter_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "metric_source_timeout",
                metric=name,
                timeout_seconds=self.adapter_timeout_seconds,
            )
        except Exception as e:
            logger.warning("metric_source_failed", metric=name, error=str(e))
        return default

    def _with_page_changes(self, pages: tuple[TopPage, ...]) -> tuple[TopPage, ...]:
        previous = self.history.latest()
        previous_views = {p.page: p.views for p in previous.top_pages} if previous else {}
        return tuple(
            page.model_copy(
                update={
                    "change_percent": compute_change_percent(
                        page.views, previous_views.get(page.page)
                    )
                }
            )
            for page in pages
        )

    # =========================================================================
    # Read Accessors and Rule/Alert Operations
    # =========================================================================

    def get_latest_metrics(self) -> Optional[AggregatedMetrics]:
        return self.history.latest()

    def get_metrics_history(self, count: int = 10) -> list[AggregatedMetrics]:
        """Up to ``count`` most recent snapshots, oldest to newest."""
        return self.history.recent(count)

    def get_active_alerts(self) -> list[RealtimeAlert]:
        return self.alert_store.get_active_alerts()

    def acknowledge_alert(self, alert_id: str) -> bool:
        return self.alert_store.acknowledge_alert(alert_id)

    def add_threshold(self, rule: ThresholdConfig) -> ThresholdConfig:
        return self.rule_engine.add_threshold(rule)

    def remove_threshold(self, index: int) -> Optional[ThresholdConfig]:
        return self.rule_engine.remove_threshold(index)

    def get_thresholds(self) -> list[ThresholdConfig]:
        return self.rule_engine.get_thresholds()
