"""
Threshold rule and real-time alert models.

Threshold rules are evaluated against every fresh metric snapshot; each
violation produces a ``RealtimeAlert`` that lives in the alert store until
it is acknowledged.
"""

import random
import string
import time
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from .enums import AlertType, Severity, ThresholdOperator
from .metrics import normalize_metric_name

_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_alert_id() -> str:
    """Build an alert id of the form ``alert_<epoch millis>_<9 base36 chars>``."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"alert_{int(time.time() * 1000)}_{suffix}"


class ThresholdConfig(BaseModel):
    """
    A declarative threshold rule over one snapshot metric.

    Attributes:
        metric: Snapshot field name (camelCase aliases are normalized)
        operator: Comparison operator (gt, lt, eq, ne)
        value: Numeric bound
        time_window: Window in minutes. Reserved: rules are evaluated against
            the latest snapshot only.
        severity: Severity carried by alerts raised from this rule
    """

    metric: str = Field(description="Snapshot metric the rule applies to")
    operator: ThresholdOperator = Field(description="Comparison operator")
    value: float = Field(description="Numeric bound")
    time_window: int = Field(default=5, ge=1, description="Window in minutes (reserved)")
    severity: Severity = Field(description="Severity of raised alerts")

    @field_validator("metric")
    @classmethod
    def validate_metric(cls, v: str) -> str:
        """Normalize metric aliases and reject blank names."""
        if not v or not v.strip():
            raise ValueError("Metric name must not be empty")
        return normalize_metric_name(v.strip())

    class Config:
        """Pydantic configuration."""

        json_schema_extra = {
            "example": {
                "metric": "bounce_rate",
                "operator": "gt",
                "value": 50,
                "time_window": 10,
                "severity": "high",
            }
        }


class RealtimeAlert(BaseModel):
    """
    An alert raised by the real-time pipeline.

    Alerts are created unacknowledged; acknowledgement is one-way.

    Attributes:
        id: Unique alert identifier
        type: Alert origin
        severity: Severity level
        title: Short headline
        message: Human-readable description
        timestamp: When the alert was raised
        acknowledged: Whether an operator acknowledged the alert
        metadata: Triggering metric, threshold, actual value and operator
    """

    id: str = Field(default_factory=generate_alert_id)
    type: AlertType = Field(default=AlertType.THRESHOLD)
    severity: Severity
    title: str
    message: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    acknowledged: bool = Field(default=False)
    metadata: Optional[dict[str, Any]] = Field(default=None)

    class Config:
        """Pydantic configuration."""

        json_schema_extra = {
            "example": {
                "id": "alert_1760870400000_k3j9x2m1q",
                "type": "threshold",
                "severity": "high",
                "title": "bounce_rate threshold exceeded",
                "message": "bounce_rate value (62.5) gt 50",
                "timestamp": "2026-10-19T10:00:00Z",
                "acknowledged": False,
                "metadata": {
                    "metric": "bounce_rate",
                    "threshold": 50,
                    "actual_value": 62.5,
                    "operator": "gt",
                },
            }
        }
