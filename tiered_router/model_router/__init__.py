"""Tiered model routing with budget governance and fallback.

Tasks are classified into one of five tiers (0 = stored patterns, no
model; 4 = the most capable hosted models) and routed to the cheapest
adequate model, escalating upward on failure. Routing adapts to budget
consumption through three strategies (QualityFirst, Balanced,
PreferLocal) and to live model health from the PerformanceMonitor.

CostTracker, PerformanceMonitor and ModelRegistry are owned services;
build them once and share them between routers.
"""

from __future__ import annotations

from tiered_router.model_router.budget import BudgetStatus, CostLedger, CostTracker, strategy_for_ratio
from tiered_router.model_router.cache import ResponseCache
from tiered_router.model_router.complexity import (
    ComplexityClassifier,
    FeatureExtractor,
    TierClassification,
    WeightedFeatureClassifier,
)
from tiered_router.model_router.errors import (
    AllTiersExhausted,
    BudgetBlocked,
    ClassificationAmbiguous,
    ExecutionError,
    ExecutionProviderFailure,
    ExecutionTimeout,
    ExecutionUnavailable,
    ExhaustionCause,
    NoModelsForTier,
    RouterError,
)
from tiered_router.model_router.metrics import ModelHealth, PerformanceMonitor, TierAdjustment
from tiered_router.model_router.models import (
    HostedAPIProvider,
    LocalProvider,
    ModelDescriptor,
    RoutingAttempt,
    RoutingResult,
    RoutingStrategy,
    Task,
    TaskKind,
    Tier,
)
from tiered_router.model_router.registry import ModelRegistry, default_catalog
from tiered_router.model_router.router import TieredRouter
from tiered_router.model_router.selection import BatchPlan
from tiered_router.model_router.templates import StoredTemplate, TemplateCatalog, default_templates

__all__ = [
    "AllTiersExhausted",
    "BatchPlan",
    "BudgetBlocked",
    "BudgetStatus",
    "ClassificationAmbiguous",
    "ComplexityClassifier",
    "CostLedger",
    "CostTracker",
    "ExecutionError",
    "ExecutionProviderFailure",
    "ExecutionTimeout",
    "ExecutionUnavailable",
    "ExhaustionCause",
    "FeatureExtractor",
    "HostedAPIProvider",
    "LocalProvider",
    "ModelDescriptor",
    "ModelHealth",
    "ModelRegistry",
    "NoModelsForTier",
    "PerformanceMonitor",
    "ResponseCache",
    "RouterError",
    "RoutingAttempt",
    "RoutingResult",
    "RoutingStrategy",
    "StoredTemplate",
    "Task",
    "TaskKind",
    "TemplateCatalog",
    "Tier",
    "TierAdjustment",
    "TierClassification",
    "TieredRouter",
    "WeightedFeatureClassifier",
    "default_catalog",
    "default_templates",
    "strategy_for_ratio",
]
