"""Core data types shared by the routing components.

Tiers are ordered 0 (no model, pattern/template resolution) through
4 (large, high-cost models). Within one routing run the tier only moves
upward.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum, IntEnum, StrEnum
from typing import Any

from tiered_router.model_router.errors import AllTiersExhausted, ExhaustionCause


class Tier(IntEnum):
    """Ordered execution tiers."""

    NO_MODEL = 0  # Pattern matching / templates
    TINY = 1  # Local sub-1B models
    SMALL = 2  # Local or cheap 7B-class models
    MEDIUM = 3  # Mid-size hosted models
    LARGE = 4  # Most capable, most expensive models

    @property
    def next(self) -> Tier:
        """One tier up, saturating at LARGE."""
        return Tier(min(self + 1, Tier.LARGE))


class TaskKind(StrEnum):
    """Structural category assigned by the task producer."""

    FORMATTING = "formatting"
    SIMPLE_REFACTOR = "simple_refactor"
    COMMENT = "comment"
    SINGLE_FUNCTION = "single_function"
    SIMPLE_TEST = "simple_test"
    MULTI_FUNCTION = "multi_function"
    INTEGRATION = "integration"
    ARCHITECTURE = "architecture"
    API_DESIGN = "api_design"
    UNKNOWN = "unknown"


class ModelStatus(StrEnum):
    ENABLED = "enabled"
    DISABLED = "disabled"


class AttemptOutcome(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"


class RoutingStrategy(str, Enum):
    """Cost/quality policy derived from budget consumption."""

    QUALITY_FIRST = "quality_first"
    BALANCED = "balanced"
    PREFER_LOCAL = "prefer_local"


# ------------------------------------------------------------------ #
# Task
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class Task:
    """Immutable description of a unit of generation work.

    Attributes:
        task_id: Producer-assigned identifier
        description: Free-text intent
        kind: Structural category (UNKNOWN when the producer cannot tell)
        estimated_tokens: Expected prompt + completion size
        estimated_lines: Expected lines of code, None when unknown
        function_count: Number of functions touched, None when unknown
        integration: Task wires several components together
        architecture_signal: Producer saw architecture/design keywords
        requires_creativity: Open-ended output with no fixed shape
        required_capabilities: Capability tags a model must carry
        template_key: Name of a stored pattern/template that may satisfy the task
        context_size: Tokens of surrounding context to be supplied
        affected_files: Number of files the change touches
        payload: Structured inputs passed through to the execution client
    """

    task_id: str
    description: str
    kind: TaskKind = TaskKind.UNKNOWN
    estimated_tokens: int = 0
    estimated_lines: int | None = None
    function_count: int | None = None
    integration: bool = False
    architecture_signal: bool = False
    requires_creativity: bool = False
    required_capabilities: frozenset[str] = frozenset()
    template_key: str | None = None
    context_size: int = 0
    affected_files: int = 1
    payload: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self) -> None:
        if self.estimated_tokens < 0:
            raise ValueError("estimated_tokens cannot be negative")
        if self.estimated_lines is not None and self.estimated_lines < 0:
            raise ValueError("estimated_lines cannot be negative")

    def fingerprint(self) -> str:
        """Stable cache key for identical work, independent of task_id.

        Covers every field that classification or candidate filtering reads,
        so tasks that would start at different tiers never share an entry.
        """
        parts = [
            self.description.strip().lower(),
            self.kind.value,
            str(self.estimated_tokens),
            str(self.estimated_lines),
            str(self.function_count),
            str(self.integration),
            str(self.architecture_signal),
            str(self.requires_creativity),
            ",".join(sorted(self.required_capabilities)),
            self.template_key or "",
            str(self.context_size),
            str(self.affected_files),
            repr(sorted(self.payload.items())),
        ]
        return hashlib.sha256("\x1f".join(parts).encode()).hexdigest()


# ------------------------------------------------------------------ #
# Providers
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class LocalProvider:
    """Model executed on this machine (pattern engine, Ollama, llama.cpp...)."""

    runtime: str
    api_base: str | None = None

    @property
    def name(self) -> str:
        return self.runtime


@dataclass(frozen=True)
class HostedAPIProvider:
    """Model served by a remote API billed per token."""

    name: str
    api_base: str | None = None
    api_key_env: str | None = None


Provider = LocalProvider | HostedAPIProvider


# ------------------------------------------------------------------ #
# ModelDescriptor
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class ModelDescriptor:
    """Static-ish metadata for one model in the catalog.

    cost_per_1k_tokens and latency_estimate are baselines; live figures
    come from the PerformanceMonitor at selection time.
    """

    provider: Provider
    name: str
    tier: Tier
    cost_per_1k_tokens: float = 0.0
    latency_estimate: float = 1.0  # seconds
    context_window: int = 0  # 0 = not applicable (pattern engines)
    capabilities: frozenset[str] = frozenset()
    status: ModelStatus = ModelStatus.ENABLED

    def __post_init__(self) -> None:
        if self.cost_per_1k_tokens < 0:
            raise ValueError("cost_per_1k_tokens cannot be negative")
        if self.latency_estimate < 0:
            raise ValueError("latency_estimate cannot be negative")
        if self.context_window < 0:
            raise ValueError("context_window cannot be negative")

    @property
    def key(self) -> str:
        """Identity as "<provider>/<name>", also the LiteLLM model id."""
        return f"{self.provider.name}/{self.name}"

    @property
    def enabled(self) -> bool:
        return self.status == ModelStatus.ENABLED

    @property
    def is_local(self) -> bool:
        return isinstance(self.provider, LocalProvider)

    def can_handle(self, required: frozenset[str]) -> bool:
        return required <= self.capabilities

    def fits_context(self, tokens: int) -> bool:
        return self.context_window == 0 or tokens <= self.context_window

    def estimate_cost(self, tokens: int) -> float:
        return (tokens / 1000.0) * self.cost_per_1k_tokens


# ------------------------------------------------------------------ #
# Attempts and results
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class RoutingAttempt:
    """One execution attempt, folded into monitor and ledger state."""

    task_id: str
    tier: Tier
    model_key: str
    outcome: AttemptOutcome
    duration: float
    cost: float = 0.0
    tokens: int = 0
    quality_score: float | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == AttemptOutcome.SUCCESS


@dataclass(frozen=True)
class TierSkip:
    """A tier passed over without executing anything."""

    tier: Tier
    reason: ExhaustionCause


@dataclass
class RoutingResult:
    """Terminal outcome of a routing run.

    Either a success carrying the response and the fulfilling model, or a
    failure carrying the exhaustion cause. Both carry the attempt trail.
    """

    task_id: str
    succeeded: bool
    response: Any = None
    model_key: str | None = None
    tier: Tier | None = None
    cause: ExhaustionCause | None = None
    attempts: list[RoutingAttempt] = field(default_factory=list)
    skipped: list[TierSkip] = field(default_factory=list)
    cached: bool = False

    @property
    def tiers_attempted(self) -> list[Tier]:
        return [attempt.tier for attempt in self.attempts]

    @property
    def total_cost(self) -> float:
        return sum(attempt.cost for attempt in self.attempts)

    def unwrap(self) -> Any:
        """Return the response or raise AllTiersExhausted."""
        if self.succeeded:
            return self.response
        raise AllTiersExhausted(
            task_id=self.task_id,
            cause=self.cause or ExhaustionCause.EXECUTION_FAILED,
            attempts=list(self.attempts),
        )
