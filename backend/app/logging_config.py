"""Structured logging configuration using structlog."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from .settings import settings
from .utils import request_id_ctx

SERVICE_NAME = "placebuddy"
SERVICE_VERSION = "0.3.0"

SECRET_KEYS = frozenset({"api_key", "authorization", "openai_api_key", "mcp_api_key", "anon_id"})
TRUNCATED_KEYS = frozenset({"query", "message", "keyword"})
MAX_FIELD_LENGTH = 120


def add_request_id(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Attach the current request id (if any) to every log entry."""
    request_id = request_id_ctx.get("")
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["service"] = SERVICE_NAME
    event_dict["environment"] = settings.SENTRY_ENVIRONMENT
    event_dict["version"] = SERVICE_VERSION
    return event_dict


def scrub_sensitive(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Keep credentials and raw user text out of log lines.

    Secret-bearing keys are masked; free-text fields typed by users are cut
    to a short prefix so full chat transcripts never land in log storage.
    """
    for key in list(event_dict):
        value = event_dict[key]
        if key.lower() in SECRET_KEYS and value:
            event_dict[key] = "***"
        elif key in TRUNCATED_KEYS and isinstance(value, str) and len(value) > MAX_FIELD_LENGTH:
            event_dict[key] = value[:MAX_FIELD_LENGTH] + "…"
    return event_dict


def drop_color_message_key(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """uvicorn adds 'color_message' for its console formatter; it is noise in JSON."""
    event_dict.pop("color_message", None)
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        add_request_id,
        add_app_context,
        scrub_sensitive,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
    ]


def configure_structlog(json_logs: bool = False) -> None:
    """
    Configure structlog for the application.

    JSON output is used whenever `json_logs` is set or DEBUG is off; the
    console renderer is only for local debugging.
    """
    processors = _shared_processors()
    if json_logs or not settings.DEBUG:
        processors += [
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            drop_color_message_key,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors += [
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    level = logging.getLevelName((settings.LOG_LEVEL or "INFO").upper())
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level if isinstance(level, int) else logging.INFO,
    )

    for noisy in ("httpx", "httpcore", "uvicorn.access", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("chat_turn_complete", session_id=session_id, places=3)
    """
    return structlog.get_logger(name)


__all__ = ["configure_structlog", "get_logger", "scrub_sensitive"]
