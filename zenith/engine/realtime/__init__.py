"""
Real-time metrics pipeline.

Components:
    MetricSources: Time-windowed queries over the storage backend
    RealtimeDataAggregator: Periodic snapshot production and tick orchestration
    MetricsHistory: Bounded snapshot history
    ThresholdRuleEngine: Threshold evaluation and alert creation
    AlertStore: Alert state and acknowledgement
    EventPublisher: In-process pub/sub for dashboard consumers

Usage:
    >>> from zenith.engine.realtime import get_aggregator
    >>> aggregator = get_aggregator()
    >>> aggregator.publisher.subscribe(on_event, events=["alert_generated"])
    >>> await aggregator.start()
"""

from functools import lru_cache
from typing import Optional

from zenith.config import Settings, get_settings
from zenith.storage import StorageBackend, get_storage

from .aggregator import RealtimeDataAggregator
from .alert_store import AlertStore
from .history import MetricsHistory
from .publisher import EventPublisher
from .rules import ThresholdRuleEngine, default_thresholds, evaluate_threshold
from .sources import MetricSources


def build_aggregator(
    storage: StorageBackend,
    settings: Optional[Settings] = None,
) -> RealtimeDataAggregator:
    """Wire an aggregator over ``storage`` using the configured intervals and limits."""
    settings = settings or get_settings()
    return RealtimeDataAggregator(
        sources=MetricSources(storage, max_workers=settings.metric_source_workers),
        interval_seconds=settings.aggregation_interval_seconds,
        history_size=settings.metrics_history_size,
        adapter_timeout_seconds=settings.adapter_timeout_seconds,
        growth_lookback_hours=settings.growth_lookback_hours,
        growth_bucket_minutes=settings.growth_bucket_minutes,
        alert_store_max_size=settings.alert_store_max_size,
        alert_cooldown_seconds=settings.alert_cooldown_seconds,
    )


@lru_cache
def get_aggregator() -> RealtimeDataAggregator:
    """
    Get the application-wide aggregator (singleton).

    Returns:
        RealtimeDataAggregator bound to the cached storage backend
    """
    return build_aggregator(get_storage(), get_settings())


__all__ = [
    "AlertStore",
    "EventPublisher",
    "MetricSources",
    "MetricsHistory",
    "RealtimeDataAggregator",
    "ThresholdRuleEngine",
    "build_aggregator",
    "default_thresholds",
    "evaluate_threshold",
    "get_aggregator",
]
