"""Model registry - the read-mostly catalog of models per tier.

The registry holds static-ish metadata only. Cost and latency are baseline
estimates; ranking between models of one tier happens at selection time
with live figures from the PerformanceMonitor.

Descriptors are immutable. Administrative writes (enable, disable,
refresh) replace a descriptor; readers always receive a snapshot tuple,
so a routing run already holding candidates is never affected
retroactively.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable, Mapping
from typing import Any

import structlog
from pydantic import BaseModel, Field

from tiered_router.model_router.errors import NoModelsForTier
from tiered_router.model_router.models import (
    HostedAPIProvider,
    LocalProvider,
    ModelDescriptor,
    ModelStatus,
    Tier,
)

log = structlog.get_logger(__name__)


class CatalogEntry(BaseModel):
    """One catalog entry as supplied by the external configuration loader."""

    name: str = Field(min_length=1)
    provider: str = Field(min_length=1)
    local: bool = False
    api_base: str | None = None
    api_key_env: str | None = None
    cost_per_1k_tokens: float = Field(default=0.0, ge=0)
    latency_estimate: float = Field(default=1.0, ge=0, description="Baseline latency in seconds")
    context_window: int = Field(default=0, ge=0)
    capabilities: list[str] = Field(default_factory=list)
    enabled: bool = True

    def to_descriptor(self, tier: Tier) -> ModelDescriptor:
        if self.local:
            provider: LocalProvider | HostedAPIProvider = LocalProvider(
                runtime=self.provider, api_base=self.api_base
            )
        else:
            provider = HostedAPIProvider(
                name=self.provider, api_base=self.api_base, api_key_env=self.api_key_env
            )
        return ModelDescriptor(
            provider=provider,
            name=self.name,
            tier=tier,
            cost_per_1k_tokens=self.cost_per_1k_tokens,
            latency_estimate=self.latency_estimate,
            context_window=self.context_window,
            capabilities=frozenset(self.capabilities),
            status=ModelStatus.ENABLED if self.enabled else ModelStatus.DISABLED,
        )


def parse_catalog(catalog: Mapping[int | str, Iterable[Mapping[str, Any]]]) -> list[ModelDescriptor]:
    """Validate a tier-keyed catalog mapping into descriptors.

    Args:
        catalog: {tier: [entry, ...]} where tier is 0-4 (int or numeric str)

    Raises:
        pydantic.ValidationError: If an entry is malformed
        ValueError: If a tier key is out of range
    """
    descriptors: list[ModelDescriptor] = []
    for raw_tier, entries in catalog.items():
        tier = Tier(int(raw_tier))
        for entry in entries:
            descriptors.append(CatalogEntry.model_validate(entry).to_descriptor(tier))
    return descriptors


class ModelRegistry:
    """Catalog of model descriptors keyed by "<provider>/<name>"."""

    def __init__(self, models: Iterable[ModelDescriptor] | None = None) -> None:
        """Initialize registry.

        Args:
            models: Initial descriptors. Insertion order is kept within a tier.
        """
        self._models: dict[str, ModelDescriptor] = {}
        for model in models or []:
            self.register(model)

        log.info(
            "model_registry.initialized",
            models=len(self._models),
            tiers=sorted({int(m.tier) for m in self._models.values()}),
        )

    @classmethod
    def from_catalog(cls, catalog: Mapping[int | str, Iterable[Mapping[str, Any]]]) -> ModelRegistry:
        return cls(parse_catalog(catalog))

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def models_for_tier(self, tier: Tier | int) -> tuple[ModelDescriptor, ...]:
        """Return the enabled models of a tier.

        Raises:
            NoModelsForTier: If the tier has zero enabled models
        """
        models = tuple(m for m in self._models.values() if m.tier == tier and m.enabled)
        if not models:
            raise NoModelsForTier(tier)
        return models

    def get(self, key: str) -> ModelDescriptor | None:
        return self._models.get(key)

    def all_models(self) -> tuple[ModelDescriptor, ...]:
        return tuple(self._models.values())

    def __len__(self) -> int:
        return len(self._models)

    def __contains__(self, key: object) -> bool:
        return key in self._models

    def find_cheapest(self, tier: Tier | int) -> ModelDescriptor | None:
        return min(self._enabled_in(tier), key=lambda m: m.cost_per_1k_tokens, default=None)

    def find_fastest(self, tier: Tier | int) -> ModelDescriptor | None:
        return min(self._enabled_in(tier), key=lambda m: m.latency_estimate, default=None)

    def find_largest_context(self) -> ModelDescriptor | None:
        enabled = [m for m in self._models.values() if m.enabled]
        return max(enabled, key=lambda m: m.context_window, default=None)

    def _enabled_in(self, tier: Tier | int) -> list[ModelDescriptor]:
        return [m for m in self._models.values() if m.tier == tier and m.enabled]

    # ------------------------------------------------------------------ #
    # Administrative writes
    # ------------------------------------------------------------------ #

    def register(self, model: ModelDescriptor) -> None:
        self._models[model.key] = model
        log.debug("model_registry.registered", model=model.key, tier=int(model.tier))

    def disable(self, key: str) -> None:
        """Remove a model from every subsequent models_for_tier result."""
        self._set_status(key, ModelStatus.DISABLED)

    def enable(self, key: str) -> None:
        self._set_status(key, ModelStatus.ENABLED)

    def _set_status(self, key: str, status: ModelStatus) -> None:
        model = self._models.get(key)
        if model is None:
            raise KeyError(f"Unknown model: {key}")
        self._models[key] = dataclasses.replace(model, status=status)
        log.info("model_registry.status_changed", model=key, status=status.value)

    def update_baseline(
        self,
        key: str,
        *,
        cost_per_1k_tokens: float | None = None,
        latency_estimate: float | None = None,
    ) -> ModelDescriptor:
        """Replace a model's baseline cost and/or latency."""
        model = self._models.get(key)
        if model is None:
            raise KeyError(f"Unknown model: {key}")

        changes: dict[str, float] = {}
        if cost_per_1k_tokens is not None:
            changes["cost_per_1k_tokens"] = cost_per_1k_tokens
        if latency_estimate is not None:
            changes["latency_estimate"] = latency_estimate
        updated = dataclasses.replace(model, **changes)
        self._models[key] = updated
        log.info("model_registry.baseline_updated", model=key, **changes)
        return updated

    def refresh(self, models: Iterable[ModelDescriptor]) -> None:
        """Replace the catalog with fresh metadata from the external loader.

        Models that were administratively disabled stay disabled. Models no
        longer in the catalog are dropped.
        """
        disabled = {key for key, m in self._models.items() if not m.enabled}
        fresh: dict[str, ModelDescriptor] = {}
        for model in models:
            if model.key in disabled:
                model = dataclasses.replace(model, status=ModelStatus.DISABLED)
            fresh[model.key] = model

        removed = set(self._models) - set(fresh)
        self._models = fresh
        log.info(
            "model_registry.refreshed",
            models=len(fresh),
            removed=sorted(removed),
            kept_disabled=sorted(disabled & fresh.keys()),
        )


def default_catalog() -> list[ModelDescriptor]:
    """Built-in catalog with at least one model per tier."""
    pattern = LocalProvider(runtime="pattern")
    ollama = LocalProvider(runtime="ollama", api_base="http://localhost:11434")
    together = HostedAPIProvider(name="together_ai", api_key_env="TOGETHERAI_API_KEY")
    anthropic = HostedAPIProvider(name="anthropic", api_key_env="ANTHROPIC_API_KEY")
    openai = HostedAPIProvider(name="openai", api_key_env="OPENAI_API_KEY")

    code = frozenset({"code_completion", "code_generation"})
    return [
        ModelDescriptor(
            provider=pattern,
            name="heuristic",
            tier=Tier.NO_MODEL,
            latency_estimate=0.001,
            capabilities=frozenset({"pattern_matching", "templates"}),
        ),
        ModelDescriptor(
            provider=ollama,
            name="qwen2.5-coder:0.5b",
            tier=Tier.TINY,
            latency_estimate=0.05,
            context_window=2048,
            capabilities=frozenset({"code_completion", "formatting"}),
        ),
        ModelDescriptor(
            provider=ollama,
            name="phi",
            tier=Tier.TINY,
            latency_estimate=0.1,
            context_window=2048,
            capabilities=frozenset({"code_completion", "formatting", "documentation"}),
        ),
        ModelDescriptor(
            provider=ollama,
            name="codellama:7b",
            tier=Tier.SMALL,
            latency_estimate=0.5,
            context_window=4096,
            capabilities=code | {"refactoring", "testing"},
        ),
        ModelDescriptor(
            provider=together,
            name="mistralai/Mistral-7B-Instruct-v0.2",
            tier=Tier.SMALL,
            cost_per_1k_tokens=0.0002,
            latency_estimate=0.8,
            context_window=8192,
            capabilities=code | {"refactoring", "testing", "documentation"},
        ),
        ModelDescriptor(
            provider=together,
            name="mistralai/Mixtral-8x7B-Instruct-v0.1",
            tier=Tier.MEDIUM,
            cost_per_1k_tokens=0.0006,
            latency_estimate=1.5,
            context_window=32768,
            capabilities=code | {"refactoring", "testing", "documentation", "reasoning"},
        ),
        ModelDescriptor(
            provider=together,
            name="codellama/CodeLlama-34b-Instruct-hf",
            tier=Tier.MEDIUM,
            cost_per_1k_tokens=0.0008,
            latency_estimate=2.0,
            context_window=16384,
            capabilities=code | {"refactoring", "testing"},
        ),
        ModelDescriptor(
            provider=anthropic,
            name="claude-3-opus-20240229",
            tier=Tier.LARGE,
            cost_per_1k_tokens=0.015,
            latency_estimate=3.0,
            context_window=200_000,
            capabilities=code | {"refactoring", "testing", "documentation", "reasoning", "architecture"},
        ),
        ModelDescriptor(
            provider=openai,
            name="gpt-4-turbo",
            tier=Tier.LARGE,
            cost_per_1k_tokens=0.01,
            latency_estimate=2.5,
            context_window=128_000,
            capabilities=code | {"refactoring", "testing", "documentation", "reasoning", "architecture"},
        ),
    ]
