"""
Threshold Rule Engine — Snapshot Evaluation Against Threshold Rules.

Holds an ordered, mutable list of threshold rules and evaluates each one
against a freshly produced snapshot. Every violated rule yields exactly one
alert; rules are independent, so several rules on the same metric may fire
on the same tick.

Rules compare the snapshot's instantaneous value. ``ThresholdConfig.time_window``
is carried for clients but not used in evaluation.

An optional per-rule cooldown suppresses repeat alerts from a rule that
stays violated across ticks. With the default cooldown of 0 a persistently
violated rule fires on every tick.
"""

from datetime import datetime, timedelta
from typing import Optional

import structlog

from zenith.models.alerts import RealtimeAlert, ThresholdConfig
from zenith.models.enums import AlertType, RealtimeEventName, Severity, ThresholdOperator
from zenith.models.metrics import AggregatedMetrics

from .alert_store import AlertStore
from .publisher import EventPublisher

logger = structlog.get_logger(__name__)


_OPERATORS = {
    ThresholdOperator.GT: lambda value, bound: value > bound,
    ThresholdOperator.LT: lambda value, bound: value < bound,
    ThresholdOperator.EQ: lambda value, bound: value == bound,
    ThresholdOperator.NE: lambda value, bound: value != bound,
}


def default_thresholds() -> list[ThresholdConfig]:
    """Seed rule set installed on every new engine."""
    return [
        ThresholdConfig(
            metric="active_users",
            operator=ThresholdOperator.GT,
            value=1000,
            time_window=5,
            severity=Severity.MEDIUM,
        ),
        ThresholdConfig(
            metric="bounce_rate",
            operator=ThresholdOperator.GT,
            value=50,
            time_window=10,
            severity=Severity.HIGH,
        ),
        ThresholdConfig(
            metric="avg_session_duration",
            operator=ThresholdOperator.LT,
            value=60,
            time_window=5,
            severity=Severity.MEDIUM,
        ),
        ThresholdConfig(
            metric="conversions",
            operator=ThresholdOperator.LT,
            value=5,
            time_window=5,
            severity=Severity.CRITICAL,
        ),
    ]


def evaluate_threshold(value: float, rule: ThresholdConfig) -> bool:
    """Apply the rule's operator to ``value`` and the rule bound."""
    compare = _OPERATORS.get(rule.operator)
    if compare is None:
        return False
    return compare(value, rule.value)


def _fmt(number: float) -> str:
    return f"{number:g}"


class ThresholdRuleEngine:
    """
    Evaluates threshold rules and raises alerts for violations.

    Attributes:
        alert_store: Store receiving every raised alert
        publisher: Publisher for rule and alert lifecycle events
        cooldown_seconds: Repeat-alert suppression window per rule (0 disables)

    Example:
        >>> engine = ThresholdRuleEngine(alert_store=store, publisher=publisher)
        >>> alerts = engine.evaluate(snapshot)
        >>> for alert in alerts:
        ...     print(f"{alert.severity}: {alert.message}")
    """

    def __init__(
        self,
        alert_store: AlertStore,
        publisher: EventPublisher,
        thresholds: Optional[list[ThresholdConfig]] = None,
        cooldown_seconds: float = 0.0,
    ):
        self.alert_store = alert_store
        self.publisher = publisher
        self.cooldown_seconds = cooldown_seconds
        self._thresholds: list[ThresholdConfig] = (
            list(thresholds) if thresholds is not None else default_thresholds()
        )
        self._last_fired: dict[tuple, datetime] = {}

    # =========================================================================
    # Rule Management
    # =========================================================================

    def get_thresholds(self) -> list[ThresholdConfig]:
        """Copy of the current rule list, in evaluation order."""
        return list(self._thresholds)

    def add_threshold(self, rule: ThresholdConfig) -> ThresholdConfig:
        """Append a rule and publish ``threshold_added``."""
        self._thresholds.append(rule)
        logger.info(
            "threshold_added",
            metric=rule.metric,
            operator=rule.operator.value,
            value=rule.value,
            severity=rule.severity.value,
        )
        self.publisher.publish(RealtimeEventName.THRESHOLD_ADDED, rule)
        return rule

    def remove_threshold(self, index: int) -> Optional[ThresholdConfig]:
        """
        Remove the rule at ``index``.

        Returns:
            The removed rule, or None when the index is out of range
        """
        if not 0 <= index < len(self._thresholds):
            return None

        removed = self._thresholds.pop(index)
        logger.info("threshold_removed", index=index, metric=removed.metric)
        self.publisher.publish(RealtimeEventName.THRESHOLD_REMOVED, removed)
        return removed

    # =========================================================================
    # Evaluation
    # =========================================================================

    def evaluate(self, snapshot: AggregatedMetrics) -> list[RealtimeAlert]:
        """
        Evaluate every rule against ``snapshot``.

        Each violated rule produces one alert, which is stored and published
        as ``alert_generated``.

        Returns:
            The alerts raised for this snapshot
        """
        alerts = []
        for rule in list(self._thresholds):
            value = snapshot.metric_value(rule.metric)
            if not evaluate_threshold(value, rule):
                continue

            if self._in_cooldown(rule, snapshot.timestamp):
                logger.debug("threshold_alert_suppressed", metric=rule.metric)
                continue

            alert = self._build_alert(rule, value)
            self._last_fired[self._rule_key(rule)] = snapshot.timestamp
            self.alert_store.add(alert)
            self.publisher.publish(RealtimeEventName.ALERT_GENERATED, alert)
            alerts.append(alert)

            logger.info(
                "threshold_alert_generated",
                alert_id=alert.id,
                metric=rule.metric,
                value=value,
                threshold=rule.value,
                severity=rule.severity.value,
            )

        return alerts

    # =========================================================================
    # Internal Methods
    # =========================================================================

    @staticmethod
    def _rule_key(rule: ThresholdConfig) -> tuple:
        return (rule.metric, rule.operator, rule.value, rule.severity)

    def _in_cooldown(self, rule: ThresholdConfig, now: datetime) -> bool:
        if self.cooldown_seconds <= 0:
            return False
        last = self._last_fired.get(self._rule_key(rule))
        return last is not None and now - last < timedelta(seconds=self.cooldown_seconds)

    @staticmethod
    def _build_alert(rule: ThresholdConfig, value: float) -> RealtimeAlert:
        return RealtimeAlert(
            type=AlertType.THRESHOLD,
            severity=rule.severity,
            title=f"{rule.metric} threshold exceeded",
            message=(
                f"{rule.metric} value ({_fmt(value)}) "
                f"{rule.operator.value} {_fmt(rule.value)}"
            ),
            metadata={
                "metric": rule.metric,
                "threshold": rule.value,
                "actual_value": value,
                "operator": rule.operator.value,
            },
        )
