"""Candidate filtering and ranking.

Everything here is a pure function of its inputs: the candidate
descriptors, the strategy in force and a health lookup. Lower scores are
better. Cost and latency are min-max normalized over the candidate set
(0.0 when all candidates share a value).

    QUALITY_FIRST: 0.5 * latency + 0.5 * (1 - quality)
    BALANCED:      0.6 * cost + 0.4 * latency
    PREFER_LOCAL:  0.8 * cost + 0.2 * latency

Ties break on higher recent success rate, then lower declared cost, then
model key.

plan_batch packs one chosen model per task into a spend limit for
up-front batch planning.
"""

from __future__ import annotations

from collections.abc import Callable, Collection, Sequence
from dataclasses import dataclass

from tiered_router.model_router.metrics import DEFAULT_QUALITY, ModelHealth
from tiered_router.model_router.models import ModelDescriptor, RoutingStrategy, Task

HealthLookup = Callable[[str], ModelHealth]

# Scores closer than this are ties
_SCORE_PRECISION = 9


@dataclass(frozen=True)
class ScoredCandidate:
    model: ModelDescriptor
    score: float
    latency: float
    quality: float
    success_rate: float


def normalize(values: Sequence[float]) -> list[float]:
    """Min-max normalize to [0, 1]."""
    if not values:
        return []
    low, high = min(values), max(values)
    if high == low:
        return [0.0] * len(values)
    return [(v - low) / (high - low) for v in values]


def strategy_score(
    strategy: RoutingStrategy,
    cost: float,
    latency: float,
    quality: float,
) -> float:
    """Score one candidate from normalized cost/latency and raw quality."""
    if strategy == RoutingStrategy.QUALITY_FIRST:
        return 0.5 * latency + 0.5 * (1.0 - quality)
    if strategy == RoutingStrategy.PREFER_LOCAL:
        return 0.8 * cost + 0.2 * latency
    return 0.6 * cost + 0.4 * latency


def filter_candidates(
    models: Sequence[ModelDescriptor],
    task: Task,
    health: HealthLookup,
    tried: Collection[str] = (),
) -> list[ModelDescriptor]:
    """Drop disabled, unhealthy, incapable, too-small and already-tried models."""
    return [
        model
        for model in models
        if model.enabled
        and model.key not in tried
        and health(model.key).healthy
        and model.can_handle(task.required_capabilities)
        and model.fits_context(task.estimated_tokens)
    ]


def rank_candidates(
    models: Sequence[ModelDescriptor],
    strategy: RoutingStrategy,
    health: HealthLookup,
) -> list[ScoredCandidate]:
    """Order candidates best-first under a strategy.

    Latency is the live average when the monitor has samples, otherwise
    the registry baseline. Quality defaults to 0.5 without samples.
    """
    healths = [health(m.key) for m in models]
    latencies = [
        h.avg_latency if h.avg_latency is not None else m.latency_estimate
        for m, h in zip(models, healths, strict=True)
    ]
    qualities = [h.quality_score if h.quality_score is not None else DEFAULT_QUALITY for h in healths]
    cost_norm = normalize([m.cost_per_1k_tokens for m in models])
    latency_norm = normalize(latencies)

    scored = [
        ScoredCandidate(
            model=model,
            score=strategy_score(strategy, cost_norm[i], latency_norm[i], qualities[i]),
            latency=latencies[i],
            quality=qualities[i],
            success_rate=healths[i].success_rate,
        )
        for i, model in enumerate(models)
    ]
    scored.sort(
        key=lambda c: (
            round(c.score, _SCORE_PRECISION),
            -c.success_rate,
            c.model.cost_per_1k_tokens,
            c.model.key,
        )
    )
    return scored


def select_candidate(
    models: Sequence[ModelDescriptor],
    task: Task,
    strategy: RoutingStrategy,
    health: HealthLookup,
    tried: Collection[str] = (),
) -> ModelDescriptor | None:
    """Top-ranked eligible model not yet tried, or None."""
    eligible = filter_candidates(models, task, health, tried)
    if not eligible:
        return None
    return rank_candidates(eligible, strategy, health)[0].model


@dataclass(frozen=True)
class BatchPlan:
    """Model assignments for a batch of tasks, nothing executed.

    Attributes:
        assignments: Task id to model key
        total_cost: Estimated cost of all assignments
        estimated_latency: Slowest assigned model's latency, the batch
            finishing time when tasks run concurrently
        models_used: Distinct model keys in first-assigned order
        unassigned: Task ids without a candidate or without budget left,
            in input order
    """

    assignments: dict[str, str]
    total_cost: float
    estimated_latency: float
    models_used: list[str]
    unassigned: list[str]


def plan_batch(
    choices: Sequence[tuple[Task, ModelDescriptor | None]],
    health: HealthLookup,
    budget: float,
) -> BatchPlan:
    """Fit each task's chosen model into a budget.

    Tasks are taken in ascending tier order so cheap work is never
    crowded out by expensive work. An assignment is made only while the
    running total stays within `budget`; free models always fit.

    Args:
        choices: Each task with the model picked for it, None when no
            tier offers a candidate
        health: Live latency source, falling back to the registry baseline
        budget: Spend available to the whole batch

    Raises:
        ValueError: Two tasks share a task id
    """
    task_ids = [task.task_id for task, _ in choices]
    if len(set(task_ids)) != len(task_ids):
        raise ValueError("task ids in a batch must be unique")

    assignments: dict[str, str] = {}
    models_used: list[str] = []
    total = 0.0
    latency = 0.0

    placed = sorted(
        ((task, model) for task, model in choices if model is not None),
        key=lambda choice: choice[1].tier,
    )
    for task, model in placed:
        cost = model.estimate_cost(task.estimated_tokens)
        if cost > 0 and total + cost > budget:
            continue
        assignments[task.task_id] = model.key
        total += cost
        avg_latency = health(model.key).avg_latency
        latency = max(latency, avg_latency if avg_latency is not None else model.latency_estimate)
        if model.key not in models_used:
            models_used.append(model.key)

    return BatchPlan(
        assignments=assignments,
        total_cost=total,
        estimated_latency=latency,
        models_used=models_used,
        unassigned=[task_id for task_id in task_ids if task_id not in assignments],
    )
