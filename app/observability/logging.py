"""
Structured Logging with Structlog.

Provides JSON-formatted logs with request correlation and service context.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from app.config import settings

# Keys whose values must never reach a log line
REDACTED_KEYS = frozenset(
    {
        "password",
        "current_password",
        "new_password",
        "client_secret",
        "secret",
        "token",
        "access_token",
        "refresh_token",
        "backup_code",
        "authorization",
    }
)


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application-level context to all log entries."""
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.api_version
    return event_dict


def redact_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Replace credential values with a marker, whatever the call site passed."""
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = "[REDACTED]"
    return event_dict


def setup_logging(level: str | None = None) -> None:
    """
    Configure structured logging with structlog.

    Logs are formatted as JSON for machine parsing:
    {
        "event": "token_revoked",
        "level": "info",
        "timestamp": "2025-01-08T12:00:00.123456Z",
        "logger": "app.services.tokens",
        "service": "banking-intelligence-auth",
        "version": "0.1.0",
        "request_id": "req-123",
        ...additional context
    }
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, (level or settings.log_level).upper()),
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        redact_secrets,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("login_failed", reason="wrong_password", user_id=str(user_id))
    """
    return structlog.get_logger(name)  # type: ignore[no-any-return]
