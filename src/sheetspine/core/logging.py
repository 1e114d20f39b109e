"""
Structured logging for sheetspine.

Every module logs through structlog with dotted event names and key/value
context (``logger.info("chunk_store.put", key=..., chunks=3)``), so cache,
retry and budget decisions can be reconstructed from logs alone.

Architecture:
    ::

        configure_logging(level="INFO", json_format=None, service="sheetspine")
            │
            ▼
        structlog processor chain:
            1. TimeStamper (iso)
            2. merge_contextvars   (LogContext / bind_context)
            3. add_log_level, add_logger_name
            4. _add_service_metadata
            5. _elasticsearch_compatible  (JSON only)
            6. JSONRenderer | ConsoleRenderer

Examples:
    >>> from sheetspine.core.logging import configure_logging, get_logger
    >>> configure_logging(level="INFO", json_format=True)
    >>> logger = get_logger(__name__)
    >>> with LogContext(operation_id="load_sheet"):
    ...     logger.info("retry.attempt", attempt=1)

Guardrails:
    - Auto-detects JSON vs console based on TTY
    - Service name stored once at startup
    - Context is copied into timeout worker threads by the caller
      (see ``sheetspine.execution.timeout``)

Tags:
    logging, structlog, observability, sheetspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_SERVICE_NAME = "sheetspine"


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def _elasticsearch_compatible(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Make field names Elasticsearch/ECS compatible."""
    if "timestamp" in event_dict:
        event_dict["@timestamp"] = event_dict.pop("timestamp")

    if "level" in event_dict:
        event_dict["log.level"] = event_dict.pop("level")

    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "sheetspine",
    add_timestamp: bool = True,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name to include in logs
        add_timestamp: Include ISO timestamp in logs
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    if json_format is None:
        json_format = not sys.stdout.isatty()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]

    if add_timestamp:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    if json_format:
        shared_processors.append(_elasticsearch_compatible)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound context."""
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Context manager for scoped logging context.

    Example:
        with LogContext(operation_id="load_sheet", cache_key="contracts"):
            logger.info("coordinator.load")
        # Context cleared here
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs
        self._tokens: dict[str, Any] = {}

    def __enter__(self) -> LogContext:
        self._tokens = dict(structlog.contextvars.bind_contextvars(**self._context))
        return self

    def __exit__(self, *args) -> None:
        # Restores outer values for nested scopes binding the same keys
        structlog.contextvars.reset_contextvars(**self._tokens)


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
