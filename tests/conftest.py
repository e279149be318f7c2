"""
Shared test fixtures for pytest.

Provides common building blocks for the router tests:
- test_settings: Test environment configuration
- make_model: Factory for ModelDescriptor with sensible defaults
- make_task: Factory for Task
- registry, cost_tracker, monitor, classifier: Fresh router services
- scripted_client: ScriptedExecutionClient with no scripts
- make_router: Factory wiring a TieredRouter with fast test timings
- fixed_clock: Mutable UTC clock for period-reset tests
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from tiered_router.config import Environment, Settings, get_settings
from tiered_router.execution.scripted import ScriptedExecutionClient
from tiered_router.model_router.budget import CostTracker
from tiered_router.model_router.complexity import ComplexityClassifier
from tiered_router.model_router.metrics import PerformanceMonitor
from tiered_router.model_router.models import (
    HostedAPIProvider,
    LocalProvider,
    ModelDescriptor,
    Task,
    Tier,
)
from tiered_router.model_router.registry import ModelRegistry
from tiered_router.model_router.router import TieredRouter
from tiered_router.model_router.templates import TemplateCatalog


# ------------------------------------------------------------------ #
# Session-scoped: clear settings cache between test sessions
# ------------------------------------------------------------------ #

@pytest.fixture(autouse=True, scope="session")
def _clear_settings_cache():
    """Clear the lru_cache on get_settings so test overrides take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        environment=Environment.TEST,
        litellm_base_url="http://localhost:4000",
        litellm_api_key="sk-test",
        daily_budget_usd=1.0,
        attempt_timeout_seconds=0.2,
        retry_backoff_seconds=0.0,
    )


# ------------------------------------------------------------------ #
# Factories
# ------------------------------------------------------------------ #

@pytest.fixture
def make_model():
    """Return a factory for ModelDescriptor."""

    def _make(
        name: str,
        tier: Tier | int,
        *,
        cost: float = 0.0,
        latency: float = 1.0,
        local: bool | None = None,
        context_window: int = 0,
        capabilities: frozenset[str] = frozenset(),
    ) -> ModelDescriptor:
        is_local = cost == 0.0 if local is None else local
        provider = LocalProvider(runtime="ollama") if is_local else HostedAPIProvider(name="hosted")
        return ModelDescriptor(
            provider=provider,
            name=name,
            tier=Tier(tier),
            cost_per_1k_tokens=cost,
            latency_estimate=latency,
            context_window=context_window,
            capabilities=capabilities,
        )

    return _make


@pytest.fixture
def make_task():
    """Return a factory for Task; keyword args override fields."""
    counter = {"n": 0}

    def _make(description: str = "write some code", **fields) -> Task:
        counter["n"] += 1
        fields.setdefault("task_id", f"task-{counter['n']}")
        fields.setdefault("estimated_tokens", 1000)
        return Task(description=description, **fields)

    return _make


# ------------------------------------------------------------------ #
# Services
# ------------------------------------------------------------------ #

@pytest.fixture
def registry() -> ModelRegistry:
    return ModelRegistry()


@pytest.fixture
def cost_tracker() -> CostTracker:
    return CostTracker(daily_budget=1.0)


@pytest.fixture
def monitor() -> PerformanceMonitor:
    return PerformanceMonitor(health_window=20, min_samples=10, success_floor=0.5)


@pytest.fixture
def classifier() -> ComplexityClassifier:
    return ComplexityClassifier(templates=TemplateCatalog())


@pytest.fixture
def scripted_client() -> ScriptedExecutionClient:
    return ScriptedExecutionClient()


@pytest.fixture
def make_router(registry, classifier, cost_tracker, monitor, scripted_client):
    """Return a factory for TieredRouter over the shared fixtures."""

    def _make(**overrides) -> TieredRouter:
        params = dict(
            registry=registry,
            classifier=classifier,
            cost_tracker=cost_tracker,
            monitor=monitor,
            client=scripted_client,
            max_attempts_per_tier=2,
            attempt_timeout=0.2,
            retry_backoff=0.0,
        )
        params.update(overrides)
        return TieredRouter(**params)

    return _make


# ------------------------------------------------------------------ #
# Time
# ------------------------------------------------------------------ #

class FixedClock:
    """Callable UTC clock that tests move forward explicitly."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


@pytest.fixture
def fixed_clock() -> FixedClock:
    return FixedClock(datetime(2026, 3, 14, 10, 30, tzinfo=UTC))
