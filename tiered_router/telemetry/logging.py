"""Structured logging configuration for the router.

Configures structlog with JSON output in production and a readable
console renderer in development.

Log format (production):
    {
        "timestamp": "2026-02-17T10:30:45.123456Z",
        "level": "info",
        "event": "router.attempt_succeeded",
        "logger": "tiered_router.model_router.router",
        "task_id": "task_789...",
        "model": "anthropic/claude-3-opus",
        "tier": 4
    }
"""

from __future__ import annotations

import logging
import sys

import structlog
from structlog.types import Processor


def configure_logging(
    *,
    json_logs: bool = False,
    log_level: str = "INFO",
) -> None:
    """Configure structured logging for the router.

    Args:
        json_logs: Use JSON format (True for production, False for dev)
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_logs:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.RichTracebackFormatter(),
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ------------------------------------------------------------------ #
# Context Binding Helpers
# ------------------------------------------------------------------ #


def bind_task_context(task_id: str, **extra: str | int) -> None:
    """Bind the task being routed to the log context.

    Args:
        task_id: Task identifier
        **extra: Additional context (e.g. starting tier)
    """
    structlog.contextvars.bind_contextvars(task_id=task_id, **extra)


def unbind_task_context(*keys: str) -> None:
    """Remove task keys from the log context."""
    structlog.contextvars.unbind_contextvars("task_id", *keys)


def clear_context() -> None:
    """Clear all context variables (useful for testing)."""
    structlog.contextvars.clear_contextvars()
