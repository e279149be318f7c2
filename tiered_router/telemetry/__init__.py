"""Telemetry package for observability.

This package contains:
- Structured logging with task correlation
- Prometheus metrics for routing and spend
"""

from __future__ import annotations

from tiered_router.telemetry.logging import (
    bind_task_context,
    clear_context,
    configure_logging,
    unbind_task_context,
)

__all__ = [
    "bind_task_context",
    "clear_context",
    "configure_logging",
    "unbind_task_context",
]
