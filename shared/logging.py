"""
Centralized structured logging for bems-gateway.

Provides:
- configure_structlog() / setup_logging(): process-wide configuration
- get_logger(): get a configured logger instance

JSON output in production, pretty console output in development. Secrets
(API keys, key hashes, webhook secrets, signatures) are redacted before any
renderer sees them.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone

import structlog
from structlog.stdlib import BoundLogger
from structlog.types import EventDict, Processor

# Sensitive fields to redact from logs
REDACTED_FIELDS = {
    "authorization",
    "api_key",
    "x-api-key",
    "key_hash",
    "plaintext",
    "secret",
    "signature",
    "token",
    "password",
}

_SENSITIVE_FRAGMENTS = ("secret", "token", "password", "signature", "hash")

# Keys whose names look sensitive but only carry identifiers
_SAFE_KEYS = {"level", "event", "timestamp", "logger", "key_prefix", "key_id"}


def add_timestamp(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add ISO format timestamp to event dict."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def redact_sensitive_fields(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Redact sensitive fields from logs."""
    for key in list(event_dict.keys()):
        if key in _SAFE_KEYS:
            continue
        lowered = key.lower()
        if lowered in REDACTED_FIELDS or any(
            fragment in lowered for fragment in _SENSITIVE_FRAGMENTS
        ):
            event_dict[key] = "***REDACTED***"
    return event_dict


def configure_structlog(log_format: str = "console") -> None:
    """
    Configure structlog with appropriate processors for the environment.

    Production: JSON formatting for easy parsing
    Development: Pretty console formatting with colors
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_timestamp,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        redact_sensitive_fields,
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True, pad_event=15, sort_keys=False)

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def setup_logging(log_level: str = "INFO", log_format: str = "console") -> None:
    """Configure stdlib logging and structlog together."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )
    configure_structlog(log_format)


def get_logger(name: str) -> BoundLogger:
    """
    Get a configured logger instance.

    Example:
        >>> log = get_logger(__name__)
        >>> log.info("api_key_created", key_id="...", user_id="...")
    """
    return structlog.get_logger(name)


__all__ = [
    "REDACTED_FIELDS",
    "configure_structlog",
    "get_logger",
    "redact_sensitive_fields",
    "setup_logging",
]
