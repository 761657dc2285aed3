"""API routers for all endpoints."""

from zenith.routers import analytics, realtime, webhooks

__all__ = [
    "analytics",
    "realtime",
    "webhooks",
]
