"""
Aggregated real-time metric snapshots.

One ``AggregatedMetrics`` value is produced per aggregation tick. Snapshots are
immutable once built and are identified by their timestamp.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class TopPage(BaseModel):
    """
    View count for one page over the top-pages window.

    Attributes:
        page: Page path
        views: Page views in the window
        change_percent: Change versus the same page in the previous snapshot
    """

    model_config = ConfigDict(frozen=True)

    page: str = Field(description="Page path")
    views: int = Field(ge=0, description="Page views in the window")
    change_percent: float = Field(
        default=0.0, description="Percent change versus the previous snapshot"
    )


class GrowthPoint(BaseModel):
    """
    One bucket of a growth series.

    Attributes:
        timestamp: Bucket start
        value: Bucket value (sessions started, or revenue)
        delta: Difference from the previous bucket (0 for the first)
    """

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(description="Bucket start")
    value: float = Field(description="Bucket value")
    delta: float = Field(default=0.0, description="Change from the previous bucket")


class AggregatedMetrics(BaseModel):
    """
    Snapshot of dashboard metrics produced by one aggregation tick.

    Windows: active users, page views and events cover the last 5 minutes;
    conversions, bounce rate, session duration, revenue and top pages cover the
    last hour; the growth series cover a 24-hour lookback in hourly buckets.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(description="When the snapshot was taken")
    active_users: int = Field(default=0, ge=0)
    page_views: int = Field(default=0, ge=0)
    events: int = Field(default=0, ge=0)
    revenue: float = Field(default=0.0)
    conversions: int = Field(default=0, ge=0)
    bounce_rate: float = Field(default=0.0, ge=0.0, le=100.0)
    avg_session_duration: float = Field(default=0.0, ge=0.0)
    top_pages: tuple[TopPage, ...] = Field(default=())
    user_growth: tuple[GrowthPoint, ...] = Field(default=())
    revenue_growth: tuple[GrowthPoint, ...] = Field(default=())

    def metric_value(self, name: str) -> float:
        """
        Numeric value of a named field, 0 when unknown or non-numeric.

        Accepts camelCase aliases (``activeUsers``) as well as field names.
        """
        value = getattr(self, normalize_metric_name(name), None)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return 0
        return value


NUMERIC_METRICS = (
    "active_users",
    "page_views",
    "events",
    "revenue",
    "conversions",
    "bounce_rate",
    "avg_session_duration",
)

_CAMEL_ALIASES = {
    "activeUsers": "active_users",
    "pageViews": "page_views",
    "avgSessionDuration": "avg_session_duration",
    "bounceRate": "bounce_rate",
    "topPages": "top_pages",
    "userGrowth": "user_growth",
    "revenueGrowth": "revenue_growth",
}


def normalize_metric_name(name: str) -> str:
    """Map a camelCase metric alias to its snapshot field name."""
    return _CAMEL_ALIASES.get(name, name)
