"""
Structured logging for ecs-runner.

The runner is driven by a scheduler that reads the completion record and the
task's log lines from **stdout**. Diagnostics therefore go to **stderr**,
rendered by structlog as JSON (non-tty) or coloured console output (tty).

Usage:
    >>> from ecs_runner.core.logging import configure_logging, get_logger
    >>> configure_logging(level="INFO", service="ecs-runner")
    >>> logger = get_logger(__name__)
    >>> logger.info("task_launched", task_arn="arn:aws:ecs:...:task/c1/abc")

Processor chain:
    1. merge_contextvars (run_id, task_arn bound by the orchestrator)
    2. add_log_level, logger name (bound by get_logger as ``logger_name``)
    3. TimeStamper(iso)
    4. service metadata
    5. JSONRenderer or ConsoleRenderer

Tags:
    logging, structlog, observability, stderr
"""

from __future__ import annotations

import logging
import sys
from typing import Any, TextIO

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_SERVICE_NAME = "ecs-runner"


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service", _SERVICE_NAME)
    return event_dict


def _rename_logger_name(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Expose the bound ``logger_name`` as ``logger``."""
    name = event_dict.pop("logger_name", None)
    if name is not None:
        event_dict.setdefault("logger", name)
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "ecs-runner",
    stream: TextIO | None = None,
) -> None:
    """Configure structured logging for the process.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name to include in logs
        stream: Output stream, stderr when omitted
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service
    out = stream or sys.stderr

    if json_format is None:
        json_format = not out.isatty()

    processors: list[Processor] = [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _rename_logger_name,
        _add_service_metadata,
    ]

    if json_format:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=out.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper())),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=out),
        cache_logger_on_first_use=False,
    )

    # botocore logs through stdlib; keep it on the same channel
    logging.basicConfig(
        format="%(levelname)s %(name)s: %(message)s",
        stream=out,
        level=logging.WARNING,
    )


def ensure_logging() -> None:
    """Configure stderr logging unless the application already has."""
    if not structlog.is_configured():
        configure_logging()


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    # PrintLogger has no ``name``; ``logger`` itself is taken by wrap_logger
    if name:
        return structlog.get_logger(logger_name=name)
    return structlog.get_logger()


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs.

    Example:
        bind_context(run_id="abc123", task_arn=handle.arn)
    """
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
        with LogContext(run_id="abc123"):
            logger.info("run_started")
        # Context cleared here
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args: Any) -> None:
        unbind_context(*self._context.keys())


__all__ = [
    "configure_logging",
    "ensure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
