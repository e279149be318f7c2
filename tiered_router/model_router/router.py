"""Tiered router - classify, select, execute, retry, escalate.

Per task the router runs a small state machine:

    Classify -> SelectCandidate -> Execute -> Success
                                           -> RetrySameTier
                                           -> EscalateTier
                                           -> Exhausted

- The classifier runs once; its tier is the floor for the whole run.
- Candidates come from the registry, minus disabled/unhealthy/tried
  models, ranked by the strategy the budget currently dictates.
- Every attempt has its own timeout. Timeouts, unavailability and
  transient provider failures retry the same tier (bounded by
  max_attempts_per_tier); anything else ends the tier.
- Tiers only go up. A tier blocked by the budget strategy, or with no
  enabled models, is skipped. The run fails with the cause of the last
  tier evaluated.

Only the terminal outcome crosses the public boundary. The one exception
is NoModelsForTier when no tier from the starting tier upward has any
enabled model: that is a configuration error and is raised immediately.

No lock is held across an execution call: the cost reservation is taken
before the call and settled after it.
"""

from __future__ import annotations

import asyncio
import dataclasses
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from tiered_router.model_router.budget import BudgetStatus, CostTracker, Reservation
from tiered_router.model_router.cache import ResponseCache
from tiered_router.model_router.complexity import ComplexityClassifier
from tiered_router.model_router.errors import (
    BudgetBlocked,
    ExecutionError,
    ExecutionProviderFailure,
    ExecutionTimeout,
    ExecutionUnavailable,
    ExhaustionCause,
    NoModelsForTier,
)
from tiered_router.model_router.metrics import ModelHealth, PerformanceMonitor
from tiered_router.model_router.models import (
    AttemptOutcome,
    ModelDescriptor,
    RoutingAttempt,
    RoutingResult,
    RoutingStrategy,
    Task,
    Tier,
    TierSkip,
)
from tiered_router.model_router.registry import ModelRegistry
from tiered_router.model_router.selection import BatchPlan, plan_batch, select_candidate
from tiered_router.telemetry import bind_task_context, metrics, unbind_task_context

if TYPE_CHECKING:
    from tiered_router.config import Settings
    from tiered_router.execution.base import ExecutionClient, ExecutionResponse
    from tiered_router.model_router.complexity import LearnedClassifier
    from tiered_router.model_router.templates import TemplateCatalog

log = structlog.get_logger(__name__)


@dataclass
class RouterStats:
    """Counters across all routing runs of one router."""

    total_requests: int = 0
    successes: int = 0
    failures: int = 0
    cache_hits: int = 0
    attempts: int = 0
    escalations: int = 0
    total_cost: float = 0.0
    tier_distribution: dict[int, int] = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        finished = self.successes + self.failures
        return self.successes / finished if finished else 0.0


@dataclass
class _AttemptResult:
    attempt: RoutingAttempt
    response: ExecutionResponse | None = None
    retryable: bool = False


class TieredRouter:
    """Routes tasks to the cheapest adequate model tier with fallback."""

    def __init__(
        self,
        registry: ModelRegistry,
        classifier: ComplexityClassifier,
        cost_tracker: CostTracker,
        monitor: PerformanceMonitor,
        client: ExecutionClient,
        *,
        max_attempts_per_tier: int = 2,
        attempt_timeout: float = 60.0,
        retry_backoff: float = 0.5,
        cache: ResponseCache | None = None,
    ) -> None:
        """Initialize router.

        Args:
            registry: Model catalog
            classifier: Task classifier deciding the starting tier
            cost_tracker: Budget governor (shared, single source of truth)
            monitor: Performance monitor (shared)
            client: Execution client for every provider
            max_attempts_per_tier: Execution attempts allowed per tier per task
            attempt_timeout: Timeout for one execution attempt, in seconds
            retry_backoff: Base delay before a same-tier retry, doubled each retry
            cache: Optional response cache for identical tasks
        """
        if max_attempts_per_tier < 1:
            raise ValueError("max_attempts_per_tier must be at least 1")
        if attempt_timeout <= 0:
            raise ValueError("attempt_timeout must be positive")

        self._registry = registry
        self._classifier = classifier
        self._costs = cost_tracker
        self._monitor = monitor
        self._client = client
        self._max_attempts = max_attempts_per_tier
        self._timeout = attempt_timeout
        self._backoff = retry_backoff
        self._cache = cache
        self._stats = RouterStats()

        log.info(
            "router.initialized",
            models=len(registry),
            max_attempts_per_tier=max_attempts_per_tier,
            attempt_timeout=attempt_timeout,
            cache=cache is not None,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        registry: ModelRegistry | None = None,
        client: ExecutionClient | None = None,
        templates: TemplateCatalog | None = None,
        learned: LearnedClassifier | None = None,
    ) -> TieredRouter:
        """Wire a router from Settings with the built-in catalog and clients."""
        from tiered_router.config import get_settings
        from tiered_router.execution import (
            LiteLLMExecutionClient,
            PatternExecutionClient,
            ProviderDispatchClient,
        )
        from tiered_router.model_router.complexity import WeightedFeatureClassifier
        from tiered_router.model_router.registry import default_catalog
        from tiered_router.model_router.templates import default_templates

        settings = settings or get_settings()
        templates = templates if templates is not None else default_templates()

        if client is None:
            client = ProviderDispatchClient(
                default=LiteLLMExecutionClient(settings),
                local={"pattern": PatternExecutionClient(templates)},
            )

        return cls(
            registry=registry if registry is not None else ModelRegistry(default_catalog()),
            classifier=ComplexityClassifier(
                templates=templates,
                learned=learned if learned is not None else WeightedFeatureClassifier(),
                confidence_threshold=settings.classifier_confidence_threshold,
            ),
            cost_tracker=CostTracker(
                daily_budget=settings.daily_budget_usd,
                monthly_budget=settings.monthly_budget_usd,
                alert_thresholds=settings.budget_alert_thresholds,
                quality_first_below=settings.quality_first_below,
                prefer_local_above=settings.prefer_local_above,
            ),
            monitor=PerformanceMonitor(
                health_window=settings.health_window,
                min_samples=settings.health_min_samples,
                success_floor=settings.health_success_floor,
                quality_window=settings.quality_window,
                latency_window=settings.latency_window,
                health_ttl=settings.health_ttl_seconds,
            ),
            client=client,
            max_attempts_per_tier=settings.max_attempts_per_tier,
            attempt_timeout=settings.attempt_timeout_seconds,
            retry_backoff=settings.retry_backoff_seconds,
            cache=(
                ResponseCache(settings.cache_ttl_seconds, settings.cache_max_entries)
                if settings.cache_enabled
                else None
            ),
        )

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    @property
    def registry(self) -> ModelRegistry:
        return self._registry

    @property
    def cost_tracker(self) -> CostTracker:
        return self._costs

    @property
    def monitor(self) -> PerformanceMonitor:
        return self._monitor

    def current_budget_status(self) -> BudgetStatus:
        return self._costs.current_budget_status()

    def performance_snapshot(self) -> dict[str, ModelHealth]:
        return self._monitor.snapshot()

    def stats(self) -> dict[str, Any]:
        stats = self._stats
        return {
            "total_requests": stats.total_requests,
            "successes": stats.successes,
            "failures": stats.failures,
            "success_rate": round(stats.success_rate, 4),
            "cache_hits": stats.cache_hits,
            "attempts": stats.attempts,
            "escalations": stats.escalations,
            "total_cost": stats.total_cost,
            "tier_distribution": dict(stats.tier_distribution),
            "cache": self._cache.info() if self._cache is not None else None,
        }

    # ------------------------------------------------------------------ #
    # Batch planning
    # ------------------------------------------------------------------ #

    def plan_batch(self, tasks: Sequence[Task], *, override_budget: bool = False) -> BatchPlan:
        """Assign each task the model routing would try first, within budget.

        Nothing is executed or reserved. Each task gets the first candidate
        of its classified tier, or of the next tier up when that one is
        blocked, empty or has no eligible model. Paid assignments stop once
        the remaining daily budget is used up.

        Raises:
            ValueError: Two tasks share a task id
        """
        choices = [(task, self._first_candidate(task, override_budget)) for task in tasks]
        plan = plan_batch(choices, self._monitor.health_of, self._costs.remaining_budget())

        log.info(
            "router.batch_planned",
            tasks=len(tasks),
            assigned=len(plan.assignments),
            unassigned=len(plan.unassigned),
            total_cost=round(plan.total_cost, 6),
            models=plan.models_used,
        )
        return plan

    def _first_candidate(self, task: Task, override_budget: bool) -> ModelDescriptor | None:
        start = self._classifier.classify(task).tier
        for tier in range(start, Tier.LARGE + 1):
            try:
                strategy = self._costs.strategy_for_tier(Tier(tier), override=override_budget)
                models = self._registry.models_for_tier(Tier(tier))
            except (BudgetBlocked, NoModelsForTier):
                continue
            model = select_candidate(models, task, strategy, self._monitor.health_of)
            if model is not None:
                return model
        return None

    # ------------------------------------------------------------------ #
    # Routing
    # ------------------------------------------------------------------ #

    async def route(self, task: Task, *, override_budget: bool = False) -> RoutingResult:
        """Route a task through the tiers until a model succeeds.

        Args:
            task: Work to execute
            override_budget: Allow tiers the current strategy would block

        Returns:
            RoutingResult: success with response, model and tier, or failure
            with the exhaustion cause. Both carry the attempt trail.

        Raises:
            NoModelsForTier: No tier from the starting tier upward has an
                enabled model
        """
        bind_task_context(task.task_id)
        try:
            return await self._route(task, override_budget)
        finally:
            unbind_task_context()

    async def _route(self, task: Task, override_budget: bool) -> RoutingResult:
        self._stats.total_requests += 1

        cache_key = task.fingerprint() if self._cache is not None else None
        if self._cache is not None and cache_key is not None:
            cached = await self._cache.get(cache_key)
            if cached is not None:
                self._stats.cache_hits += 1
                metrics.record_result("cached")
                log.info("router.cache_hit", model=cached.model_key)
                return dataclasses.replace(
                    cached, task_id=task.task_id, attempts=[], skipped=[], cached=True
                )

        classification = self._classifier.classify(task)
        start = classification.tier
        remaining = [Tier(t) for t in range(start, Tier.LARGE + 1)]
        if not any(self._has_models(tier) for tier in remaining):
            log.error("router.no_models", start_tier=int(start))
            raise NoModelsForTier(start)

        log.info(
            "router.route_started",
            tier=int(start),
            confidence=classification.confidence,
            rule=classification.rule,
            override_budget=override_budget,
        )

        attempts: list[RoutingAttempt] = []
        skipped: list[TierSkip] = []
        tried: set[str] = set()
        cause = ExhaustionCause.EXECUTION_FAILED
        previous: Tier | None = None

        for tier in remaining:
            if previous is not None:
                self._stats.escalations += 1
                metrics.record_escalation(int(previous), int(tier))
                log.info("router.escalated", from_tier=int(previous), to_tier=int(tier), reason=cause.value)
            previous = tier

            try:
                strategy = self._costs.strategy_for_tier(tier, override=override_budget)
            except BudgetBlocked as exc:
                cause = ExhaustionCause.BUDGET_BLOCKED
                skipped.append(TierSkip(tier, cause))
                log.info("router.tier_blocked", tier=int(tier), strategy=exc.strategy)
                continue

            try:
                models = self._registry.models_for_tier(tier)
            except NoModelsForTier:
                cause = ExhaustionCause.NO_MODELS_FOR_TIER
                skipped.append(TierSkip(tier, cause))
                log.info("router.tier_empty", tier=int(tier))
                continue

            outcome = await self._run_tier(task, tier, models, strategy, attempts, tried)
            if isinstance(outcome, ExhaustionCause):
                cause = outcome
                if not any(a.tier == tier for a in attempts):
                    skipped.append(TierSkip(tier, cause))
                continue

            response, model = outcome
            result = RoutingResult(
                task_id=task.task_id,
                succeeded=True,
                response=response,
                model_key=model.key,
                tier=tier,
                attempts=attempts,
                skipped=skipped,
            )
            self._finish(result)
            if self._cache is not None and cache_key is not None:
                await self._cache.put(cache_key, result)
            return result

        result = RoutingResult(
            task_id=task.task_id,
            succeeded=False,
            cause=cause,
            attempts=attempts,
            skipped=skipped,
        )
        self._finish(result)
        return result

    async def _run_tier(
        self,
        task: Task,
        tier: Tier,
        models: tuple[ModelDescriptor, ...],
        strategy: RoutingStrategy,
        attempts: list[RoutingAttempt],
        tried: set[str],
    ) -> tuple[ExecutionResponse, ModelDescriptor] | ExhaustionCause:
        """Try candidates of one tier; return the success or why the tier ended."""
        executed = 0
        budget_refused = False

        while executed < self._max_attempts:
            model = select_candidate(models, task, strategy, self._monitor.health_of, tried)
            if model is None:
                break
            tried.add(model.key)

            if executed > 0 and self._backoff > 0:
                await asyncio.sleep(self._backoff * 2 ** (executed - 1))

            reservation = await self._costs.reserve(model, task.estimated_tokens)
            if reservation is None:
                budget_refused = True
                continue

            executed += 1
            result = await self._attempt(task, tier, model, reservation)
            attempts.append(result.attempt)

            if result.response is not None:
                return result.response, model
            if not result.retryable:
                break
            log.info("router.retry_same_tier", tier=int(tier), failed_model=model.key, attempt=executed)

        if executed == 0:
            return ExhaustionCause.BUDGET_BLOCKED if budget_refused else ExhaustionCause.NO_ELIGIBLE_CANDIDATES
        return ExhaustionCause.EXECUTION_FAILED

    async def _attempt(
        self,
        task: Task,
        tier: Tier,
        model: ModelDescriptor,
        reservation: Reservation,
    ) -> _AttemptResult:
        """Execute once and settle spend, outcome and metrics."""
        log.debug("router.attempt_started", tier=int(tier), model=model.key, timeout=self._timeout)
        started = time.monotonic()

        try:
            response = await asyncio.wait_for(
                self._client.execute(model, task, self._timeout), timeout=self._timeout
            )
        except asyncio.CancelledError:
            # Ambiguous completion: nothing is billed or recorded
            await self._settle(model, reservation)
            log.info("router.attempt_cancelled", tier=int(tier), model=model.key)
            raise
        except (TimeoutError, ExecutionTimeout) as exc:
            await self._settle(model, reservation)
            result = _AttemptResult(
                attempt=self._make_attempt(
                    task, tier, model, AttemptOutcome.TIMEOUT, started,
                    error=str(exc) or f"timed out after {self._timeout}s",
                ),
                retryable=True,
            )
        except ExecutionUnavailable as exc:
            await self._settle(model, reservation)
            result = _AttemptResult(
                attempt=self._make_attempt(task, tier, model, AttemptOutcome.FAILURE, started, error=str(exc)),
                retryable=True,
            )
        except ExecutionProviderFailure as exc:
            cost = await self._settle(model, reservation, exc.tokens_used or None)
            result = _AttemptResult(
                attempt=self._make_attempt(
                    task, tier, model, AttemptOutcome.FAILURE, started,
                    cost=cost, tokens=exc.tokens_used, error=str(exc),
                ),
                retryable=exc.transient,
            )
        except ExecutionError as exc:
            await self._settle(model, reservation)
            result = _AttemptResult(
                attempt=self._make_attempt(task, tier, model, AttemptOutcome.FAILURE, started, error=str(exc)),
                retryable=exc.transient,
            )
        except Exception:
            await self._settle(model, reservation)
            log.exception("router.attempt_crashed", tier=int(tier), model=model.key)
            raise
        else:
            cost = await self._settle(model, reservation, response.tokens_used)
            result = _AttemptResult(
                attempt=self._make_attempt(
                    task, tier, model, AttemptOutcome.SUCCESS, started,
                    cost=cost, tokens=response.tokens_used, quality=response.quality_score,
                ),
                response=response,
            )

        attempt = result.attempt
        await self._monitor.record_outcome(model, attempt)
        metrics.record_attempt(int(tier), model.key, attempt.outcome.value, attempt.duration)
        self._stats.attempts += 1
        self._stats.total_cost += attempt.cost

        if attempt.succeeded:
            log.info(
                "router.attempt_succeeded",
                tier=int(tier),
                model=model.key,
                duration=round(attempt.duration, 3),
                tokens=attempt.tokens,
                cost=attempt.cost,
            )
        else:
            log.warning(
                "router.attempt_failed",
                tier=int(tier),
                model=model.key,
                outcome=attempt.outcome.value,
                error=attempt.error,
                retryable=result.retryable,
            )
        return result

    async def _settle(
        self, model: ModelDescriptor, reservation: Reservation, tokens: int | None = None
    ) -> float:
        """Bill `tokens` against the reservation, or just release it when None.

        Shielded: once the call has returned, cancelling the routing run
        cannot leave the reservation in flight or drop a determinable bill.
        """
        if tokens is None:
            await asyncio.shield(self._costs.release(reservation))
            return 0.0
        return await asyncio.shield(self._costs.record_spend(model, tokens, reservation=reservation))

    def _make_attempt(
        self,
        task: Task,
        tier: Tier,
        model: ModelDescriptor,
        outcome: AttemptOutcome,
        started: float,
        *,
        cost: float = 0.0,
        tokens: int = 0,
        quality: float | None = None,
        error: str | None = None,
    ) -> RoutingAttempt:
        return RoutingAttempt(
            task_id=task.task_id,
            tier=tier,
            model_key=model.key,
            outcome=outcome,
            duration=time.monotonic() - started,
            cost=cost,
            tokens=tokens,
            quality_score=quality,
            error=error,
        )

    def _has_models(self, tier: Tier) -> bool:
        try:
            self._registry.models_for_tier(tier)
        except NoModelsForTier:
            return False
        return True

    def _finish(self, result: RoutingResult) -> None:
        if result.succeeded and result.tier is not None:
            self._stats.successes += 1
            tier = int(result.tier)
            self._stats.tier_distribution[tier] = self._stats.tier_distribution.get(tier, 0) + 1
            metrics.record_result("success")
            log.info(
                "router.route_succeeded",
                tier=tier,
                model=result.model_key,
                attempts=len(result.attempts),
                cost=result.total_cost,
            )
        else:
            self._stats.failures += 1
            metrics.record_result("exhausted")
            log.warning(
                "router.route_exhausted",
                cause=result.cause.value if result.cause else None,
                attempts=len(result.attempts),
                tiers_attempted=sorted({int(t) for t in result.tiers_attempted}),
                skipped=[(int(s.tier), s.reason.value) for s in result.skipped],
            )
