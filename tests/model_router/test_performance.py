"""Tests for PerformanceMonitor health, recommendations and reports."""

from __future__ import annotations

import pytest

from tiered_router.model_router.metrics import PerformanceMonitor
from tiered_router.model_router.models import AttemptOutcome, RoutingAttempt, Tier


def _attempt(model, outcome=AttemptOutcome.SUCCESS, duration=1.0, quality=None) -> RoutingAttempt:
    return RoutingAttempt(
        task_id="t",
        tier=model.tier,
        model_key=model.key,
        outcome=outcome,
        duration=duration,
        quality_score=quality,
    )


async def _feed(monitor, model, successes, failures, **kwargs):
    for _ in range(successes):
        await monitor.record_outcome(model, _attempt(model, AttemptOutcome.SUCCESS, **kwargs))
    for _ in range(failures):
        await monitor.record_outcome(model, _attempt(model, AttemptOutcome.FAILURE, **kwargs))


class TestHealth:
    async def test_unknown_model_is_healthy(self, monitor):
        health = monitor.health_of("nobody/none")

        assert health.healthy is True
        assert health.samples == 0
        assert health.avg_latency is None

    async def test_forty_percent_over_twenty_samples_is_unhealthy(self, monitor, make_model):
        model = make_model("flaky", Tier.SMALL)

        await _feed(monitor, model, successes=8, failures=12)

        health = monitor.health_of(model.key)
        assert health.samples == 20
        assert health.success_rate == pytest.approx(0.4)
        assert health.healthy is False
        assert monitor.is_healthy(model.key) is False

    async def test_below_min_samples_stays_healthy(self, monitor, make_model):
        model = make_model("new", Tier.SMALL)

        await _feed(monitor, model, successes=0, failures=5)

        assert monitor.health_of(model.key).healthy is True

    async def test_window_evicts_old_outcomes(self, make_model):
        monitor = PerformanceMonitor(health_window=10, min_samples=5, success_floor=0.5)
        model = make_model("m", Tier.SMALL)

        await _feed(monitor, model, successes=0, failures=10)
        assert monitor.is_healthy(model.key) is False

        await _feed(monitor, model, successes=10, failures=0)
        assert monitor.is_healthy(model.key) is True
        record = monitor.record_for(model.key)
        assert record is not None and record.total == 20

    async def test_timeouts_count_as_failures_but_not_latency(self, monitor, make_model):
        model = make_model("m", Tier.SMALL)

        await monitor.record_outcome(model, _attempt(model, AttemptOutcome.SUCCESS, duration=0.5))
        await monitor.record_outcome(model, _attempt(model, AttemptOutcome.TIMEOUT, duration=60.0))

        health = monitor.health_of(model.key)
        assert health.success_rate == pytest.approx(0.5)
        assert health.avg_latency == pytest.approx(0.5)
        assert monitor.record_for(model.key).timeouts == 1

    async def test_quality_and_percentiles(self, monitor, make_model):
        model = make_model("m", Tier.SMALL)
        for i in range(1, 101):
            await monitor.record_outcome(model, _attempt(model, duration=float(i), quality=0.8))

        record = monitor.record_for(model.key)
        assert record.avg_quality == pytest.approx(0.8)
        assert record.percentile(50) == pytest.approx(51.0)
        assert record.percentile(99) == pytest.approx(99.0)

    def test_min_samples_cannot_exceed_window(self):
        with pytest.raises(ValueError):
            PerformanceMonitor(health_window=5, min_samples=10)
        with pytest.raises(ValueError):
            PerformanceMonitor(health_ttl=0)


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestOutcomeExpiry:
    async def test_unhealthy_model_recovers_once_outcomes_expire(self, make_model):
        clock = _Clock()
        monitor = PerformanceMonitor(
            health_window=20, min_samples=10, success_floor=0.5, health_ttl=60.0, clock=clock
        )
        model = make_model("flaky", Tier.SMALL)

        await _feed(monitor, model, successes=8, failures=12)
        assert monitor.is_healthy(model.key) is False
        assert monitor.record_for(model.key).unhealthy is True

        clock.now += 61.0

        health = monitor.health_of(model.key)
        assert health.healthy is True
        assert health.samples == 0
        assert monitor.record_for(model.key).unhealthy is False
        # Lifetime counters survive expiry
        assert monitor.record_for(model.key).total == 20

    async def test_only_stale_outcomes_expire(self, make_model):
        clock = _Clock()
        monitor = PerformanceMonitor(
            health_window=20, min_samples=5, success_floor=0.5, health_ttl=60.0, clock=clock
        )
        model = make_model("m", Tier.SMALL)

        await _feed(monitor, model, successes=0, failures=5)
        clock.now += 30.0
        await _feed(monitor, model, successes=0, failures=5)
        clock.now += 31.0

        health = monitor.health_of(model.key)
        assert health.samples == 5
        assert health.healthy is False

    async def test_without_ttl_outcomes_never_expire(self, make_model):
        clock = _Clock()
        monitor = PerformanceMonitor(
            health_window=10, min_samples=5, success_floor=0.5, health_ttl=None, clock=clock
        )
        model = make_model("m", Tier.SMALL)

        await _feed(monitor, model, successes=0, failures=10)
        clock.now += 1_000_000.0

        assert monitor.is_healthy(model.key) is False


class TestRecommendations:
    async def test_high_failure_rate_recommends_next_tier(self, monitor, make_model):
        model = make_model("weak", Tier.SMALL)

        await _feed(monitor, model, successes=7, failures=3)

        [adjustment] = monitor.recommend_tier_adjustments()
        assert adjustment.model_key == model.key
        assert adjustment.current_tier == Tier.SMALL
        assert adjustment.suggested_tier == Tier.MEDIUM
        assert "failure rate" in adjustment.reason

    async def test_slow_model_recommended(self, monitor, make_model):
        model = make_model("slow", Tier.TINY)

        await _feed(monitor, model, successes=10, failures=0, duration=12.0)

        [adjustment] = monitor.recommend_tier_adjustments()
        assert adjustment.suggested_tier == Tier.SMALL
        assert "latency" in adjustment.reason

    async def test_low_quality_recommended(self, monitor, make_model):
        model = make_model("sloppy", Tier.MEDIUM)

        await _feed(monitor, model, successes=10, failures=0, quality=0.5)

        [adjustment] = monitor.recommend_tier_adjustments()
        assert adjustment.suggested_tier == Tier.LARGE

    async def test_healthy_and_top_tier_models_not_recommended(self, monitor, make_model):
        good = make_model("good", Tier.SMALL)
        top = make_model("top", Tier.LARGE, cost=0.01)

        await _feed(monitor, good, successes=10, failures=0, quality=0.9)
        await _feed(monitor, top, successes=0, failures=10)

        assert monitor.recommend_tier_adjustments() == []


class TestReport:
    async def test_rankings_and_tier_summary(self, monitor, make_model):
        fast = make_model("fast", Tier.SMALL)
        slow = make_model("slow", Tier.SMALL)

        await _feed(monitor, fast, successes=10, failures=0, duration=0.5, quality=0.9)
        await _feed(monitor, slow, successes=5, failures=5, duration=2.0)

        report = monitor.report()

        assert [key for key, _ in report.rankings] == [fast.key, slow.key]
        assert report.tiers[2].attempts == 20
        assert report.tiers[2].success_rate == pytest.approx(0.75)
        assert set(report.models) == {fast.key, slow.key}
        assert report.latency_percentiles[fast.key]["p50"] == pytest.approx(0.5)

    async def test_snapshot_and_recent_events(self, monitor, make_model):
        model = make_model("m", Tier.TINY)

        await _feed(monitor, model, successes=3, failures=0)

        assert list(monitor.snapshot()) == [model.key]
        assert len(monitor.recent_events(limit=2)) == 2
