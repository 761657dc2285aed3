"""
Alert Store — In-Memory Alert State and Acknowledgement.

Holds alerts keyed by id in insertion order. Acknowledgement is one-way and
publishes ``alert_acknowledged`` once. The store is capped: when full,
acknowledged alerts are evicted first (oldest first), then the oldest
active alerts. State is process-local and resets on restart.
"""

import threading
from typing import Optional

import structlog

from zenith.models.alerts import RealtimeAlert
from zenith.models.enums import RealtimeEventName, Severity

from .publisher import EventPublisher

logger = structlog.get_logger(__name__)

DEFAULT_MAX_ALERTS = 1000


class AlertStore:
    """
    Alert state keyed by alert id.

    Example:
        >>> store = AlertStore(publisher=publisher)
        >>> store.add(alert)
        >>> store.acknowledge_alert(alert.id)
        True
    """

    def __init__(self, publisher: EventPublisher, max_size: int = DEFAULT_MAX_ALERTS):
        self.publisher = publisher
        self.max_size = max_size
        self._alerts: dict[str, RealtimeAlert] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._alerts)

    def add(self, alert: RealtimeAlert) -> None:
        with self._lock:
            self._alerts[alert.id] = alert
            self._evict()

    def get(self, alert_id: str) -> Optional[RealtimeAlert]:
        return self._alerts.get(alert_id)

    def get_active_alerts(self, severity: Optional[Severity] = None) -> list[RealtimeAlert]:
        """
        Unacknowledged alerts, newest first.

        Args:
            severity: Optional filter by severity level
        """
        with self._lock:
            alerts = [a for a in self._alerts.values() if not a.acknowledged]
        if severity is not None:
            alerts = [a for a in alerts if a.severity == severity]
        return sorted(alerts, key=lambda a: a.timestamp, reverse=True)

    def acknowledge_alert(self, alert_id: str) -> bool:
        """
        Mark an alert as acknowledged.

        Returns:
            True if the alert exists, False otherwise. Acknowledging an
            already acknowledged alert returns True without publishing again.
        """
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                return False
            if alert.acknowledged:
                return True
            alert.acknowledged = True

        logger.info("alert_acknowledged", alert_id=alert_id)
        self.publisher.publish(RealtimeEventName.ALERT_ACKNOWLEDGED, alert)
        return True

    def _evict(self) -> None:
        overflow = len(self._alerts) - self.max_size
        if overflow <= 0:
            return

        acknowledged = [a.id for a in self._alerts.values() if a.acknowledged]
        victims = acknowledged[:overflow]
        if len(victims) < overflow:
            active = [a.id for a in self._alerts.values() if not a.acknowledged]
            victims += active[: overflow - len(victims)]

        for alert_id in victims:
            del self._alerts[alert_id]

        logger.debug("alerts_evicted", count=len(victims))
