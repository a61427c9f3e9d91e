"""
Structured logging for the replication core.

structlog is configured once at process start. Every reconcile binds its
intent key and correlation id into the contextvars, so discovery, adapter
calls, retries and breaker transitions underneath all carry them without
passing them around.

Architecture:
    ::

        configure_logging(level, json_format, service)
          │
          ▼
        processor chain
          TimeStamper(iso) → merge_contextvars → add_log_level
          → StackInfoRenderer → set_exc_info → service.name
          → [json] ECS renames (@timestamp, log.level) → format_exc_info
          → JSONRenderer | ConsoleRenderer

        async with LogContext(key="ns/db", correlation_id="ns-db-17..."):
            logger.info("reconcile_started", operation="create")

        {"@timestamp": "...", "log.level": "info",
         "service.name": "unirepl-controller", "event": "reconcile_started",
         "key": "ns/db", "correlation_id": "ns-db-17...", "operation": "create"}

Examples:
    >>> from unirepl.core.logging import configure_from_settings, get_logger
    >>> configure_from_settings(get_settings())
    >>> logger = get_logger(__name__)
    >>> logger.info("backend_selected", backend="ceph", via="hint")

Guardrails:
    - Event names are snake_case; details go in key/value fields
    - JSON when stdout is not a TTY, unless told otherwise
    - A nested ``LogContext`` restores the outer value of a key it shadows

Tags:
    logging, structlog, contextvars, ecs, unirepl-core
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping
from contextvars import Token
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

if TYPE_CHECKING:
    from unirepl.core.settings import ControllerSettings

_service_name = "unirepl"

# structlog key → ECS field name, applied to JSON output only
_ECS_RENAMES = {"timestamp": "@timestamp", "level": "log.level"}


def _add_service_name(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service.name", _service_name)
    return event_dict


def _rename_ecs_fields(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    for key, ecs_key in _ECS_RENAMES.items():
        if key in event_dict:
            event_dict[ecs_key] = event_dict.pop(key)
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "unirepl",
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None to pick JSON
            whenever stdout is not a TTY
        service: Value of the ``service.name`` field on every event
    """
    global _service_name
    _service_name = service

    if json_format is None:
        json_format = not sys.stdout.isatty()
    numeric_level = getattr(logging, level.upper())

    processors: list[Processor] = [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_name,
    ]
    if json_format:
        processors += [
            _rename_ecs_fields,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    # libraries that log through stdlib end up on the same stream
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)


def configure_from_settings(settings: ControllerSettings) -> None:
    """Configure logging from ``log_level``, ``json_logs`` and ``service_name``."""
    configure_logging(
        level=settings.log_level,
        json_format=settings.json_logs,
        service=settings.service_name,
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> Mapping[str, Token[Any]]:
    """Bind fields into every event of the current task.

    Returns the contextvar tokens; hand them to :func:`reset_context` to
    restore the previous values.
    """
    return structlog.contextvars.bind_contextvars(**kwargs)


def reset_context(tokens: Mapping[str, Token[Any]]) -> None:
    """Restore the values that were bound before ``bind_context`` returned ``tokens``."""
    structlog.contextvars.reset_contextvars(**tokens)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Scoped logging fields, usable with ``with`` and ``async with``.

    On exit every key is put back to what it was on entry, so an inner
    ``LogContext(backend="trident")`` inside an outer
    ``LogContext(backend="ceph")`` leaves ``backend="ceph"`` behind.

    Example:
        async with LogContext(key="default/db", backend="ceph"):
            logger.info("ensure_started")
    """

    def __init__(self, **fields: Any):
        self._fields = fields
        self._tokens: Mapping[str, Token[Any]] = {}

    def _enter(self) -> LogContext:
        self._tokens = bind_context(**self._fields)
        return self

    def _exit(self) -> None:
        reset_context(self._tokens)
        self._tokens = {}

    def __enter__(self) -> LogContext:
        return self._enter()

    def __exit__(self, *exc_info: Any) -> None:
        self._exit()

    async def __aenter__(self) -> LogContext:
        return self._enter()

    async def __aexit__(self, *exc_info: Any) -> None:
        self._exit()


__all__ = [
    "configure_logging",
    "configure_from_settings",
    "get_logger",
    "bind_context",
    "reset_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
