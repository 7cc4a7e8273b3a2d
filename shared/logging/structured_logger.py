"""Structured logging configuration using structlog.

Provides JSON-formatted logs with correlation IDs, timestamps, and
application context for the form sync API.
"""

import logging
import sys
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor

_APP_CONTEXT = {"app": "formtosheets-api", "environment": "production"}

# Keys whose values must never reach the log output
REDACTED_KEYS = frozenset({"access_token", "refresh_token", "client_secret", "api_key", "authorization"})


def add_app_context(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application context to log entries.

    Args:
        logger: The logger instance
        method_name: The logging method name
        event_dict: The event dictionary

    Returns:
        Updated event dictionary with application context
    """
    for key, value in _APP_CONTEXT.items():
        event_dict.setdefault(key, value)
    return event_dict


def redact_secrets(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Replace OAuth tokens and API keys with a marker."""
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = "***REDACTED***"
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_logs: bool = True,
    service_name: Optional[str] = None,
    environment: Optional[str] = None,
) -> None:
    """Configure structured logging for the application.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Whether to output logs in JSON format
        service_name: Name of the service for log tagging
        environment: Deployment environment reported in every entry
    """
    if environment:
        _APP_CONTEXT["environment"] = environment
    if service_name:
        _APP_CONTEXT["service"] = service_name

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_app_context,
        redact_secrets,
    ]

    if json_logs:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


def bind_context(**kwargs: Any) -> None:
    """Bind context variables to all subsequent log entries in this context.

    Args:
        **kwargs: Context key-value pairs to bind
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all context variables."""
    structlog.contextvars.clear_contextvars()
