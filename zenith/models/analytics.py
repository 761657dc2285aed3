"""
Raw analytics rows: user sessions, page views and tracked events.

These are the inputs the real-time metric sources count over time windows.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


class UserSession(BaseModel):
    """
    A browsing session.

    Attributes:
        session_id: Unique session identifier
        user_id: Owning user, if signed in
        start_time: Session start
        last_activity_at: Last recorded activity
        is_active: Whether the session is still open
        page_views: Pages viewed in the session
        duration: Session length in seconds, unknown while the session is open
    """

    session_id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: Optional[str] = None
    start_time: datetime = Field(default_factory=datetime.utcnow)
    last_activity_at: datetime = Field(default_factory=datetime.utcnow)
    is_active: bool = True
    page_views: int = Field(default=0, ge=0)
    duration: Optional[float] = Field(default=None, ge=0)


class PageView(BaseModel):
    """A single page view."""

    view_id: str = Field(default_factory=lambda: str(uuid4()))
    page: str
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class AnalyticsEvent(BaseModel):
    """
    One row in the append-only analytics event trail.

    Written by the tracking API and by the webhook processor; read back in
    aggregate by the real-time metric sources.
    """

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    event_name: str
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    properties: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.utcnow)
