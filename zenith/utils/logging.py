"""
Structured logging configuration using structlog.

Every line carries the request or webhook context bound by the HTTP middleware
and the webhook processor (``request_id``, ``event_id``, ``event_type``,
``admin_id``), plus the ``service`` and ``component`` that emitted it.
Provider credentials never reach the log stream; customer emails are masked.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from zenith.config import get_settings

SERVICE_NAME = "zenith-realtime"

_SECRET_KEYS = frozenset(
    {"api_key", "authorization", "password", "secret", "stripe_signature", "token"}
)
_EMAIL_KEYS = frozenset({"email", "to", "customer_email"})


def add_severity(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add severity level for structured logging."""
    event_dict["severity"] = method_name.upper()
    return event_dict


def add_service_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Tag the line with the service and the zenith subpackage that logged it."""
    event_dict.setdefault("service", SERVICE_NAME)
    name = event_dict.get("logger") or ""
    parts = name.split(".")
    if len(parts) > 1 and parts[0] == "zenith":
        event_dict.setdefault("component", parts[1])
    return event_dict


def mask_email(value: str) -> str:
    """``ada@example.com`` -> ``a***@example.com``."""
    local, at, domain = value.partition("@")
    if not at:
        return "***"
    return f"{local[:1]}***@{domain}"


def redact_sensitive_fields(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Drop credential values and mask email addresses in log context."""
    for key, value in event_dict.items():
        if key in _SECRET_KEYS and value:
            event_dict[key] = "[REDACTED]"
        elif key in _EMAIL_KEYS and isinstance(value, str):
            event_dict[key] = mask_email(value)
    return event_dict


def configure_logging() -> None:
    """
    Configure structured logging for the application.

    JSON lines in production; the colored console renderer in dev mode or
    when ``log_format`` is ``console``.
    """
    settings = get_settings()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
    )

    if settings.log_format == "json" and not settings.dev_mode:
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=not settings.testing)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            add_severity,
            add_service_context,
            redact_sensitive_fields,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    """Get a structured logger instance (``name`` is typically ``__name__``)."""
    return structlog.get_logger(name)
