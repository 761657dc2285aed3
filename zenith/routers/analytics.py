"""
Analytics tracking router.

Records the raw rows the real-time metric sources count: sessions, page
views and named events. Endpoints are called from the browser and are not
authenticated.
"""

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from zenith.models.analytics import AnalyticsEvent, PageView, UserSession
from zenith.storage import get_storage
from zenith.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()

PAGE_VIEW_EVENT = "page_view"


class TrackEventRequest(BaseModel):
    """Track a page view or a named event."""

    event_name: str = Field(..., min_length=1, description="Event name, or 'page_view'")
    page: Optional[str] = Field(None, description="Page path (required for page views)")
    properties: dict[str, Any] = Field(default_factory=dict)
    session_id: Optional[str] = None
    user_id: Optional[str] = None


class StartSessionRequest(BaseModel):
    """Start a session, or refresh its activity if it already exists."""

    session_id: str = Field(..., min_length=1)
    user_id: Optional[str] = None


@router.post("/track")
async def track_event(request: TrackEventRequest):
    """
    Record a page view or an analytics event.

    Page views also bump the session's page count; any tracked call refreshes
    the session's last activity.
    """
    storage = get_storage()
    now = datetime.utcnow()

    if request.event_name == PAGE_VIEW_EVENT:
        if not request.page:
            raise HTTPException(status_code=400, detail="page is required for page views")
        record_id = storage.write_page_view(
            PageView(
                page=request.page,
                session_id=request.session_id,
                user_id=request.user_id,
                timestamp=now,
            )
        )
    else:
        record_id = storage.write_analytics_event(
            AnalyticsEvent(
                event_name=request.event_name,
                user_id=request.user_id,
                session_id=request.session_id,
                properties=request.properties,
                timestamp=now,
            )
        )

    if request.session_id:
        session = storage.read_session(request.session_id)
        if session is not None and session.is_active:
            updates: dict[str, Any] = {"last_activity_at": now}
            if request.event_name == PAGE_VIEW_EVENT:
                updates["page_views"] = session.page_views + 1
            storage.write_session(session.model_copy(update=updates))

    logger.info("analytics_tracked", event_name=request.event_name, session_id=request.session_id)
    return {"success": True, "data": {"id": record_id}}


@router.post("/sessions")
async def start_session(request: StartSessionRequest):
    """Create a session, or mark an existing one active again."""
    storage = get_storage()
    now = datetime.utcnow()

    existing = storage.read_session(request.session_id)
    if existing is None:
        session = UserSession(
            session_id=request.session_id,
            user_id=request.user_id,
            start_time=now,
            last_activity_at=now,
        )
    else:
        session = existing.model_copy(update={"last_activity_at": now, "is_active": True})

    storage.write_session(session)
    logger.info("session_started", session_id=session.session_id, resumed=existing is not None)
    return {"success": True, "data": session.model_dump(mode="json")}


@router.post("/sessions/{session_id}/end")
async def end_session(session_id: str):
    """Close a session and record its duration in seconds."""
    storage = get_storage()
    session = storage.read_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")

    now = datetime.utcnow()
    duration = float(int((now - session.start_time).total_seconds()))
    ended = session.model_copy(
        update={"is_active": False, "duration": duration, "last_activity_at": now}
    )
    storage.write_session(ended)

    logger.info("session_ended", session_id=session_id, duration=duration)
    return {"success": True, "data": ended.model_dump(mode="json")}
