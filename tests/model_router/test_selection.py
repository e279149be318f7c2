"""Tests for candidate filtering, strategy scoring and batch planning."""

from __future__ import annotations

import dataclasses

import pytest

from tiered_router.model_router.metrics import ModelHealth
from tiered_router.model_router.models import ModelStatus, RoutingStrategy, Tier
from tiered_router.model_router.selection import (
    filter_candidates,
    normalize,
    plan_batch,
    rank_candidates,
    select_candidate,
    strategy_score,
)


def _health(table=None):
    table = table or {}

    def lookup(key: str) -> ModelHealth:
        return table.get(
            key,
            ModelHealth(success_rate=1.0, avg_latency=None, quality_score=None, samples=0, healthy=True),
        )

    return lookup


def test_normalize():
    assert normalize([]) == []
    assert normalize([3.0, 3.0]) == [0.0, 0.0]
    assert normalize([1.0, 2.0, 3.0]) == [0.0, 0.5, 1.0]


def test_strategy_scores():
    assert strategy_score(RoutingStrategy.BALANCED, 1.0, 0.5, 0.9) == pytest.approx(0.8)
    assert strategy_score(RoutingStrategy.PREFER_LOCAL, 1.0, 0.5, 0.9) == pytest.approx(0.9)
    assert strategy_score(RoutingStrategy.QUALITY_FIRST, 1.0, 0.5, 0.9) == pytest.approx(0.3)


def test_balanced_prefers_cheaper_model(make_model):
    cheap = make_model("cheap", Tier.MEDIUM, cost=0.0006, latency=2.0)
    pricey = make_model("pricey", Tier.MEDIUM, cost=0.0008, latency=1.5)

    ranked = rank_candidates([pricey, cheap], RoutingStrategy.BALANCED, _health())

    assert [c.model.name for c in ranked] == ["cheap", "pricey"]


def test_quality_first_prefers_fast_high_quality_model(make_model):
    cheap = make_model("cheap", Tier.LARGE, cost=0.01, latency=3.0)
    pricey = make_model("pricey", Tier.LARGE, cost=0.015, latency=1.0)
    health = _health(
        {
            pricey.key: ModelHealth(success_rate=1.0, avg_latency=None, quality_score=0.95, samples=5, healthy=True),
        }
    )

    ranked = rank_candidates([cheap, pricey], RoutingStrategy.QUALITY_FIRST, health)

    assert ranked[0].model == pricey
    assert ranked[0].quality == pytest.approx(0.95)
    assert ranked[1].quality == pytest.approx(0.5)


def test_live_latency_overrides_baseline(make_model):
    a = make_model("a", Tier.SMALL, latency=0.5)
    b = make_model("b", Tier.SMALL, latency=2.0)
    health = _health(
        {a.key: ModelHealth(success_rate=1.0, avg_latency=4.0, quality_score=None, samples=3, healthy=True)}
    )

    ranked = rank_candidates([a, b], RoutingStrategy.BALANCED, health)

    assert ranked[0].model == b
    assert ranked[1].latency == pytest.approx(4.0)


def test_ties_break_on_success_rate_then_cost(make_model):
    a = make_model("a", Tier.SMALL, latency=1.0)
    b = make_model("b", Tier.SMALL, latency=1.0)
    health = _health(
        {
            a.key: ModelHealth(success_rate=0.7, avg_latency=None, quality_score=None, samples=3, healthy=True),
            b.key: ModelHealth(success_rate=0.9, avg_latency=None, quality_score=None, samples=3, healthy=True),
        }
    )

    assert rank_candidates([a, b], RoutingStrategy.BALANCED, health)[0].model == b

    # Equal score and success rate: lower declared cost wins. With two
    # candidates cost normalizes to 0/1, so use QUALITY_FIRST where cost
    # does not enter the score.
    c = make_model("c", Tier.SMALL, cost=0.002, latency=1.0)
    d = make_model("d", Tier.SMALL, cost=0.001, latency=1.0)
    assert rank_candidates([c, d], RoutingStrategy.QUALITY_FIRST, _health())[0].model == d


def test_filter_drops_disabled_unhealthy_tried_and_incapable(make_model, make_task):
    ok = make_model("ok", Tier.SMALL, capabilities=frozenset({"python"}), context_window=8000)
    disabled = dataclasses.replace(make_model("off", Tier.SMALL), status=ModelStatus.DISABLED)
    sick = make_model("sick", Tier.SMALL, capabilities=frozenset({"python"}))
    tried = make_model("tried", Tier.SMALL, capabilities=frozenset({"python"}))
    incapable = make_model("incapable", Tier.SMALL)
    small_ctx = make_model("small", Tier.SMALL, capabilities=frozenset({"python"}), context_window=512)
    health = _health(
        {sick.key: ModelHealth(success_rate=0.4, avg_latency=None, quality_score=None, samples=20, healthy=False)}
    )
    task = make_task(estimated_tokens=1000, required_capabilities=frozenset({"python"}))

    eligible = filter_candidates(
        [ok, disabled, sick, tried, incapable, small_ctx], task, health, tried={tried.key}
    )

    assert eligible == [ok]


def test_select_candidate_returns_none_when_nothing_eligible(make_model, make_task):
    a = make_model("a", Tier.SMALL)

    assert select_candidate([a], make_task(), RoutingStrategy.BALANCED, _health(), tried={a.key}) is None
    assert select_candidate([a], make_task(), RoutingStrategy.BALANCED, _health()) == a


# ------------------------------------------------------------------ #
# Batch planning
# ------------------------------------------------------------------ #


def test_plan_batch_fills_cheap_tiers_before_expensive_ones(make_model, make_task):
    cheap = make_model("cheap", Tier.SMALL, cost=0.1)
    pricey = make_model("pricey", Tier.LARGE, cost=1.0)
    big = make_task("design the platform")
    first = make_task("parser")
    second = make_task("formatter")

    plan = plan_batch([(big, pricey), (first, cheap), (second, cheap)], _health(), budget=0.5)

    assert plan.assignments == {first.task_id: cheap.key, second.task_id: cheap.key}
    assert plan.total_cost == pytest.approx(0.2)
    assert plan.models_used == [cheap.key]
    assert plan.unassigned == [big.task_id]


def test_plan_batch_free_models_fit_any_budget(make_model, make_task):
    local = make_model("local", Tier.SMALL, latency=2.0)
    hosted = make_model("hosted", Tier.MEDIUM, cost=0.5, latency=1.0)
    tasks = [make_task(f"task {i}") for i in range(3)]
    health = _health(
        {hosted.key: ModelHealth(success_rate=1.0, avg_latency=4.0, quality_score=None, samples=3, healthy=True)}
    )

    plan = plan_batch([(tasks[0], local), (tasks[1], None), (tasks[2], hosted)], health, budget=0.0)

    assert plan.assignments == {tasks[0].task_id: local.key}
    assert plan.unassigned == [tasks[1].task_id, tasks[2].task_id]
    assert plan.total_cost == 0.0
    assert plan.estimated_latency == pytest.approx(2.0)


def test_plan_batch_latency_is_slowest_assignment(make_model, make_task):
    fast = make_model("fast", Tier.SMALL, latency=0.5)
    slow = make_model("slow", Tier.MEDIUM, latency=3.0)
    health = _health(
        {slow.key: ModelHealth(success_rate=1.0, avg_latency=6.0, quality_score=None, samples=3, healthy=True)}
    )

    plan = plan_batch([(make_task("a"), fast), (make_task("b"), slow)], health, budget=1.0)

    assert plan.estimated_latency == pytest.approx(6.0)
    assert plan.models_used == [fast.key, slow.key]


def test_plan_batch_rejects_duplicate_task_ids(make_model, make_task):
    model = make_model("m", Tier.SMALL)
    task = make_task("a")

    with pytest.raises(ValueError):
        plan_batch([(task, model), (task, model)], _health(), budget=1.0)
