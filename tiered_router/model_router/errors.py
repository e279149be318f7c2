"""Router error taxonomy.

Recoverable execution errors (timeout, unavailable, provider failure) are
absorbed by the router's fallback cascade and recorded on the attempt
trail. Only two errors cross the public boundary:

- NoModelsForTier: configuration defect, raised synchronously, never retried
- AllTiersExhausted: terminal routing failure with the full attempt trail
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tiered_router.model_router.models import RoutingAttempt, Tier


class ExhaustionCause(StrEnum):
    """Why a tier produced no result (or why a whole run failed)."""

    BUDGET_BLOCKED = "budget_blocked"
    NO_MODELS_FOR_TIER = "no_models_for_tier"
    NO_ELIGIBLE_CANDIDATES = "no_eligible_candidates"
    EXECUTION_FAILED = "execution_failed"


class RouterError(Exception):
    """Base exception for all router failures."""


class ClassificationAmbiguous(RouterError):
    """Rule confidence was below threshold.

    ComplexityClassifier resolves this case itself (learned prediction,
    bumped one tier), so the router never raises it. Available to custom
    classifiers that want to signal the same condition.
    """


class NoModelsForTier(RouterError):
    """A tier has zero enabled models in the registry."""

    def __init__(self, tier: Tier | int) -> None:
        self.tier = tier
        super().__init__(f"No enabled models registered for tier {int(tier)}")


class BudgetBlocked(RouterError):
    """A tier is reachable but excluded by the current routing strategy."""

    def __init__(self, tier: Tier | int, strategy: str) -> None:
        self.tier = tier
        self.strategy = strategy
        super().__init__(f"Tier {int(tier)} blocked by {strategy} strategy")


class AllTiersExhausted(RouterError):
    """Terminal failure: every remaining tier was tried, blocked or empty."""

    def __init__(
        self,
        task_id: str,
        cause: ExhaustionCause,
        attempts: list[RoutingAttempt] | None = None,
    ) -> None:
        self.task_id = task_id
        self.cause = cause
        self.attempts = attempts or []
        super().__init__(
            f"All tiers exhausted for task {task_id}: {cause.value} "
            f"after {len(self.attempts)} attempt(s)"
        )


# ------------------------------------------------------------------ #
# Execution errors (raised by execution clients)
# ------------------------------------------------------------------ #


class ExecutionError(RouterError):
    """Base for failures reported by an execution client.

    Attributes:
        model_key: Model that failed
        transient: Whether another same-tier candidate is worth trying
        tokens_used: Tokens the provider reports as consumed (billable)
    """

    transient: bool = True

    def __init__(
        self,
        message: str,
        *,
        model_key: str = "",
        transient: bool | None = None,
        tokens_used: int = 0,
    ) -> None:
        super().__init__(message)
        self.model_key = model_key
        if transient is not None:
            self.transient = transient
        self.tokens_used = tokens_used


class ExecutionTimeout(ExecutionError):
    """The attempt did not finish within its timeout. Never billed."""


class ExecutionUnavailable(ExecutionError):
    """The model or provider could not be reached. Never billed."""


class ExecutionProviderFailure(ExecutionError):
    """The provider answered with an error.

    Transient failures (rate limits, 5xx) allow a same-tier retry.
    Non-transient ones (bad request, auth, context overflow) end the tier.
    """
