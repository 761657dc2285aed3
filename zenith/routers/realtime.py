"""
Real-time dashboard router.

Wired to:
- RealtimeDataAggregator for snapshots, history and on-demand ticks
- ThresholdRuleEngine (through the aggregator) for rule management
- AlertStore (through the aggregator) for active alerts and acknowledgement

Reads need the ``realtime:read`` scope; ticks, acknowledgements and rule
changes need ``realtime:write``.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from zenith.auth.dependencies import require_realtime_read, require_realtime_write
from zenith.auth.jwt import AdminClaims
from zenith.engine.realtime import RealtimeDataAggregator, get_aggregator
from zenith.models.alerts import ThresholdConfig
from zenith.models.enums import Severity
from zenith.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


@router.get("/metrics/latest")
async def get_latest_metrics(
    admin: AdminClaims = Depends(require_realtime_read),
    aggregator: RealtimeDataAggregator = Depends(get_aggregator),
):
    """Most recent snapshot, or null before the first tick."""
    snapshot = aggregator.get_latest_metrics()
    return {
        "success": True,
        "data": snapshot.model_dump(mode="json") if snapshot else None,
    }


@router.get("/metrics/history")
async def get_metrics_history(
    count: int = Query(10, ge=1, le=1000, description="Snapshots to return"),
    admin: AdminClaims = Depends(require_realtime_read),
    aggregator: RealtimeDataAggregator = Depends(get_aggregator),
):
    """Up to ``count`` most recent snapshots, oldest first."""
    history = aggregator.get_metrics_history(count)
    return {
        "success": True,
        "data": [s.model_dump(mode="json") for s in history],
        "count": len(history),
    }


@router.post("/aggregate")
async def run_aggregation(
    admin: AdminClaims = Depends(require_realtime_write),
    aggregator: RealtimeDataAggregator = Depends(get_aggregator),
):
    """Run one aggregation tick now."""
    logger.info("manual_aggregation_requested", admin_id=admin.subject)
    snapshot = await aggregator.run_tick()
    if snapshot is None:
        raise HTTPException(status_code=503, detail="Aggregation failed or already running")
    return {"success": True, "data": snapshot.model_dump(mode="json")}


@router.get("/alerts")
async def list_active_alerts(
    severity: Optional[Severity] = None,
    admin: AdminClaims = Depends(require_realtime_read),
    aggregator: RealtimeDataAggregator = Depends(get_aggregator),
):
    """Unacknowledged alerts, newest first."""
    alerts = aggregator.alert_store.get_active_alerts(severity=severity)
    return {
        "success": True,
        "data": [a.model_dump(mode="json") for a in alerts],
        "count": len(alerts),
    }


@router.post("/alerts/{alert_id}/acknowledge")
async def acknowledge_alert(
    alert_id: str,
    admin: AdminClaims = Depends(require_realtime_write),
    aggregator: RealtimeDataAggregator = Depends(get_aggregator),
):
    """Acknowledge an alert by id."""
    if not aggregator.acknowledge_alert(alert_id):
        raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")

    logger.info("alert_acknowledged_via_api", alert_id=alert_id, admin_id=admin.subject)
    return {"success": True, "data": {"alert_id": alert_id, "acknowledged": True}}


@router.get("/thresholds")
async def list_thresholds(
    admin: AdminClaims = Depends(require_realtime_read),
    aggregator: RealtimeDataAggregator = Depends(get_aggregator),
):
    """Threshold rules in evaluation order."""
    thresholds = aggregator.get_thresholds()
    return {
        "success": True,
        "data": [t.model_dump(mode="json") for t in thresholds],
        "count": len(thresholds),
    }


@router.post("/thresholds", status_code=201)
async def add_threshold(
    rule: ThresholdConfig,
    admin: AdminClaims = Depends(require_realtime_write),
    aggregator: RealtimeDataAggregator = Depends(get_aggregator),
):
    """Append a threshold rule."""
    added = aggregator.add_threshold(rule)
    return {
        "success": True,
        "data": added.model_dump(mode="json"),
        "index": len(aggregator.get_thresholds()) - 1,
    }


@router.delete("/thresholds/{index}")
async def remove_threshold(
    index: int,
    admin: AdminClaims = Depends(require_realtime_write),
    aggregator: RealtimeDataAggregator = Depends(get_aggregator),
):
    """Remove the threshold rule at ``index``."""
    removed = aggregator.remove_threshold(index)
    if removed is None:
        raise HTTPException(status_code=404, detail=f"No threshold at index {index}")
    return {"success": True, "data": removed.model_dump(mode="json")}
