"""Prometheus instrumentation for routing decisions and spend.

Metrics exported:
- routing_attempts_total: Counter of execution attempts by tier, model, outcome
- routing_attempt_duration_seconds: Histogram of attempt latencies by tier
- routing_results_total: Counter of terminal routing results by status
- routing_escalations_total: Counter of tier escalations
- budget_spent_usd: Gauge of spend in the current period
- budget_ratio: Gauge of spent/budget in the current period

Uses a private CollectorRegistry so embedding applications can mount it
next to their own exporters without name clashes.
"""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry(auto_describe=True)


# ------------------------------------------------------------------ #
# Routing Metrics
# ------------------------------------------------------------------ #

routing_attempts_total = Counter(
    "routing_attempts_total",
    "Execution attempts made by the router",
    ["tier", "model", "outcome"],
    registry=REGISTRY,
)

routing_attempt_duration_seconds = Histogram(
    "routing_attempt_duration_seconds",
    "Execution attempt latency in seconds",
    ["tier"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=REGISTRY,
)

routing_results_total = Counter(
    "routing_results_total",
    "Terminal routing results",
    ["status"],
    registry=REGISTRY,
)

routing_escalations_total = Counter(
    "routing_escalations_total",
    "Tier escalations during routing runs",
    ["from_tier", "to_tier"],
    registry=REGISTRY,
)


# ------------------------------------------------------------------ #
# Budget Metrics
# ------------------------------------------------------------------ #

budget_spent_usd = Gauge(
    "budget_spent_usd",
    "Spend recorded in the current budget period",
    registry=REGISTRY,
)

budget_ratio = Gauge(
    "budget_ratio",
    "Spent divided by budget for the current period",
    registry=REGISTRY,
)


def record_attempt(tier: int, model: str, outcome: str, duration_seconds: float) -> None:
    """Record one execution attempt."""
    routing_attempts_total.labels(tier=str(tier), model=model, outcome=outcome).inc()
    routing_attempt_duration_seconds.labels(tier=str(tier)).observe(duration_seconds)


def record_escalation(from_tier: int, to_tier: int) -> None:
    routing_escalations_total.labels(from_tier=str(from_tier), to_tier=str(to_tier)).inc()


def record_result(status: str) -> None:
    routing_results_total.labels(status=status).inc()


def set_budget(spent: float, budget: float) -> None:
    budget_spent_usd.set(spent)
    budget_ratio.set(spent / budget if budget > 0 else 0.0)


def render_metrics() -> tuple[bytes, str]:
    """Return (payload, content type) in Prometheus exposition format."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
