"""
Structured Logging with Structlog.

Every event is a snake_case name plus keyword context, rendered as JSON in
production and as coloured console output when LOG_FORMAT=console.
Credentials passed as log context are shortened before rendering.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from creditgate.config import settings

# Keys whose values must never reach the log stream in full
MASKED_KEYS = frozenset({"api_key", "password", "access_token", "authorization"})
MASKED_PREFIX_LENGTH = 4

# Chatty third-party loggers kept at WARNING unless running at DEBUG
QUIET_LOGGERS = ("httpx", "httpcore", "openai", "uvicorn.access", "sqlalchemy.engine")


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Stamp service name and version on every entry."""
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.api_version
    return event_dict


def mask_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Replace credential-like values with a short prefix."""
    for key in MASKED_KEYS.intersection(event_dict):
        value = event_dict[key]
        if isinstance(value, str) and value:
            event_dict[key] = f"{value[:MASKED_PREFIX_LENGTH]}..."
    return event_dict


def setup_logging() -> None:
    """
    Configure structlog on top of the stdlib root logger.

    A JSON entry looks like:
    {
        "event": "payment_credited",
        "level": "info",
        "timestamp": "2026-10-18T12:00:00.123456Z",
        "logger": "creditgate.services.ledger",
        "service": "creditgate-api",
        "version": "0.1.0",
        "request_id": "5f0c...",
        "payment_id": "SALE-1",
        ...
    }
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(level if level <= logging.DEBUG else logging.WARNING)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        mask_secrets,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if settings.log_format == "console":
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    else:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)  # type: ignore[no-any-return]


@contextmanager
def log_context(**context: Any) -> Iterator[None]:
    """
    Bind context to every log entry emitted inside the block.

    Usage:
        with log_context(request_id=request_id):
            logger.info("request_started")
    """
    structlog.contextvars.bind_contextvars(**context)
    try:
        yield
    finally:
        structlog.contextvars.unbind_contextvars(*context)
