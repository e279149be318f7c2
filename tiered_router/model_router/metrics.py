"""Per-model performance tracking and health.

The PerformanceMonitor folds every routing attempt into a
PerformanceRecord per model:
- lifetime counters (attempts, successes, failures, timeouts)
- a bounded window of recent, timestamped outcomes, which drives health
- bounded windows of quality scores and latencies (p50/p95/p99)
- a bounded event history across all models

A model is unhealthy, and excluded from candidate selection, when its
window holds at least `min_samples` outcomes and the window success rate
is below `success_floor`. Unhealthy models stay in the registry.

Outcomes older than `health_ttl` seconds drop out of the window. An
excluded model receives no traffic and so records no new outcomes; expiry
is what lets it fall back under `min_samples` and return to selection.

Tier-adjustment recommendations are advisory output only.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog

from tiered_router.model_router.models import (
    AttemptOutcome,
    ModelDescriptor,
    RoutingAttempt,
    Tier,
)

log = structlog.get_logger(__name__)

# Recommendation thresholds
MAX_FAILURE_RATE = 0.2
MAX_AVG_LATENCY_SECONDS = 10.0
MIN_AVG_QUALITY = 0.7

DEFAULT_QUALITY = 0.5


@dataclass(frozen=True)
class ModelHealth:
    """Health metrics for one model.

    Attributes:
        success_rate: Success rate over the recent outcome window
        avg_latency: Mean latency over the latency window, None without samples
        quality_score: Mean quality over the quality window, None without samples
        samples: Outcomes in the window
        healthy: False when the model is excluded from selection
    """

    success_rate: float
    avg_latency: float | None
    quality_score: float | None
    samples: int
    healthy: bool


@dataclass(frozen=True)
class PerformanceEvent:
    timestamp: float
    model_key: str
    outcome: AttemptOutcome
    duration: float


@dataclass
class PerformanceRecord:
    """Aggregates for a single model."""

    model_key: str
    tier: Tier
    outcomes: deque[tuple[float, bool]]
    qualities: deque[float]
    latencies: deque[float]
    total: int = 0
    successes: int = 0
    failures: int = 0
    timeouts: int = 0
    total_latency: float = 0.0
    total_cost: float = 0.0
    unhealthy: bool = False

    @property
    def window_success_rate(self) -> float:
        if not self.outcomes:
            return 1.0
        return sum(ok for _, ok in self.outcomes) / len(self.outcomes)

    @property
    def lifetime_success_rate(self) -> float:
        return self.successes / self.total if self.total else 1.0

    @property
    def avg_latency(self) -> float | None:
        if not self.latencies:
            return None
        return sum(self.latencies) / len(self.latencies)

    @property
    def avg_quality(self) -> float | None:
        if not self.qualities:
            return None
        return sum(self.qualities) / len(self.qualities)

    def percentile(self, pct: float) -> float | None:
        """Latency percentile (0-100) over the latency window."""
        if not self.latencies:
            return None
        ordered = sorted(self.latencies)
        index = round(pct / 100.0 * (len(ordered) - 1))
        return ordered[index]


@dataclass(frozen=True)
class TierAdjustment:
    """Advisory suggestion to move a model to another tier."""

    model_key: str
    current_tier: Tier
    suggested_tier: Tier
    reason: str


@dataclass(frozen=True)
class TierSummary:
    models: int
    attempts: int
    success_rate: float
    avg_latency: float | None


@dataclass(frozen=True)
class PerformanceReport:
    models: dict[str, ModelHealth]
    latency_percentiles: dict[str, dict[str, float | None]]
    tiers: dict[int, TierSummary]
    rankings: list[tuple[str, float]]
    recommendations: list[TierAdjustment] = field(default_factory=list)


class PerformanceMonitor:
    """Tracks per-model outcomes and derives health and recommendations."""

    def __init__(
        self,
        health_window: int = 50,
        min_samples: int = 10,
        success_floor: float = 0.5,
        quality_window: int = 100,
        latency_window: int = 100,
        history_size: int = 1000,
        health_ttl: float | None = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize performance monitor.

        Args:
            health_window: Recent outcomes kept per model for health
            min_samples: Outcomes required before a model can be unhealthy
            success_floor: Window success rate under which a model is unhealthy
            quality_window: Quality scores kept per model
            latency_window: Latencies kept per model
            history_size: Events kept across all models
            health_ttl: Seconds an outcome counts toward health, None to keep
                outcomes until evicted by newer ones
            clock: Monotonic time source for outcome expiry
        """
        if min_samples > health_window:
            raise ValueError("min_samples cannot exceed health_window")
        if health_ttl is not None and health_ttl <= 0:
            raise ValueError("health_ttl must be positive")

        self._health_window = health_window
        self._min_samples = min_samples
        self._success_floor = success_floor
        self._health_ttl = health_ttl
        self._clock = clock
        self._quality_window = quality_window
        self._latency_window = latency_window
        self._records: dict[str, PerformanceRecord] = {}
        self._history: deque[PerformanceEvent] = deque(maxlen=history_size)
        self._lock = asyncio.Lock()

        log.info(
            "performance_monitor.initialized",
            health_window=health_window,
            min_samples=min_samples,
            success_floor=success_floor,
            health_ttl=health_ttl,
        )

    async def record_outcome(self, model: ModelDescriptor, attempt: RoutingAttempt) -> None:
        """Fold one attempt into the model's aggregates."""
        async with self._lock:
            record = self._records.get(model.key)
            if record is None:
                record = PerformanceRecord(
                    model_key=model.key,
                    tier=model.tier,
                    outcomes=deque(maxlen=self._health_window),
                    qualities=deque(maxlen=self._quality_window),
                    latencies=deque(maxlen=self._latency_window),
                )
                self._records[model.key] = record

            self._refresh_health(record)

            record.tier = model.tier
            record.total += 1
            record.total_cost += attempt.cost
            record.outcomes.append((self._clock(), attempt.succeeded))
            if attempt.outcome == AttemptOutcome.SUCCESS:
                record.successes += 1
            elif attempt.outcome == AttemptOutcome.TIMEOUT:
                record.timeouts += 1
            else:
                record.failures += 1

            # Timed-out attempts carry the timeout, not a real latency
            if attempt.outcome != AttemptOutcome.TIMEOUT:
                record.latencies.append(attempt.duration)
                record.total_latency += attempt.duration
            if attempt.quality_score is not None:
                record.qualities.append(attempt.quality_score)

            self._history.append(
                PerformanceEvent(
                    timestamp=time.time(),
                    model_key=model.key,
                    outcome=attempt.outcome,
                    duration=attempt.duration,
                )
            )
            self._refresh_health(record)

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def health_of(self, model_key: str) -> ModelHealth:
        record = self._records.get(model_key)
        if record is None:
            return ModelHealth(
                success_rate=1.0, avg_latency=None, quality_score=None, samples=0, healthy=True
            )
        healthy = self._refresh_health(record)
        return ModelHealth(
            success_rate=record.window_success_rate,
            avg_latency=record.avg_latency,
            quality_score=record.avg_quality,
            samples=len(record.outcomes),
            healthy=healthy,
        )

    def is_healthy(self, model_key: str) -> bool:
        record = self._records.get(model_key)
        return record is None or self._refresh_health(record)

    def record_for(self, model_key: str) -> PerformanceRecord | None:
        return self._records.get(model_key)

    def recent_events(self, limit: int = 100) -> list[PerformanceEvent]:
        return list(self._history)[-limit:]

    def snapshot(self) -> dict[str, ModelHealth]:
        return {key: self.health_of(key) for key in self._records}

    def _refresh_health(self, record: PerformanceRecord) -> bool:
        """Expire stale outcomes, re-derive health and log transitions."""
        if self._health_ttl is not None:
            cutoff = self._clock() - self._health_ttl
            while record.outcomes and record.outcomes[0][0] <= cutoff:
                record.outcomes.popleft()

        healthy = (
            len(record.outcomes) < self._min_samples
            or record.window_success_rate >= self._success_floor
        )
        if record.unhealthy and healthy:
            log.info(
                "performance_monitor.model_recovered",
                model=record.model_key,
                samples=len(record.outcomes),
            )
        elif not record.unhealthy and not healthy:
            log.warning(
                "performance_monitor.model_unhealthy",
                model=record.model_key,
                success_rate=round(record.window_success_rate, 3),
                samples=len(record.outcomes),
            )
        record.unhealthy = not healthy
        return healthy

    # ------------------------------------------------------------------ #
    # Advisory output
    # ------------------------------------------------------------------ #

    def recommend_tier_adjustments(self) -> list[TierAdjustment]:
        """Suggest moving struggling models one tier up.

        Applying a suggestion is an out-of-band operation; nothing here
        touches the registry.
        """
        recommendations = []
        for record in self._records.values():
            if record.total < self._min_samples or record.tier == Tier.LARGE:
                continue

            reason = None
            failure_rate = 1.0 - record.lifetime_success_rate
            avg_latency = record.total_latency / max(record.successes + record.failures, 1)
            if failure_rate > MAX_FAILURE_RATE:
                reason = f"failure rate {failure_rate:.0%}"
            elif avg_latency > MAX_AVG_LATENCY_SECONDS:
                reason = f"average latency {avg_latency:.1f}s"
            elif record.avg_quality is not None and record.avg_quality < MIN_AVG_QUALITY:
                reason = f"average quality {record.avg_quality:.2f}"

            if reason is not None:
                recommendations.append(
                    TierAdjustment(
                        model_key=record.model_key,
                        current_tier=record.tier,
                        suggested_tier=record.tier.next,
                        reason=reason,
                    )
                )

        if recommendations:
            log.info(
                "performance_monitor.tier_adjustments_recommended",
                models=[r.model_key for r in recommendations],
            )
        return recommendations

    def rankings(self) -> list[tuple[str, float]]:
        """Models ordered by 0.4*success + 0.3*(1 - norm latency) + 0.3*quality."""
        latencies = {key: r.avg_latency or 0.0 for key, r in self._records.items()}
        max_latency = max(latencies.values(), default=0.0)

        scored = []
        for key, record in self._records.items():
            norm_latency = latencies[key] / max_latency if max_latency > 0 else 0.0
            quality = record.avg_quality if record.avg_quality is not None else DEFAULT_QUALITY
            score = 0.4 * record.lifetime_success_rate + 0.3 * (1.0 - norm_latency) + 0.3 * quality
            scored.append((key, round(score, 6)))

        return sorted(scored, key=lambda item: (-item[1], item[0]))

    def report(self) -> PerformanceReport:
        tiers: dict[int, TierSummary] = {}
        by_tier: dict[int, list[PerformanceRecord]] = {}
        for record in self._records.values():
            by_tier.setdefault(int(record.tier), []).append(record)

        for tier, records in sorted(by_tier.items()):
            attempts = sum(r.total for r in records)
            successes = sum(r.successes for r in records)
            latencies = [r.avg_latency for r in records if r.avg_latency is not None]
            tiers[tier] = TierSummary(
                models=len(records),
                attempts=attempts,
                success_rate=successes / attempts if attempts else 1.0,
                avg_latency=sum(latencies) / len(latencies) if latencies else None,
            )

        return PerformanceReport(
            models=self.snapshot(),
            latency_percentiles={
                key: {"p50": r.percentile(50), "p95": r.percentile(95), "p99": r.percentile(99)}
                for key, r in self._records.items()
            },
            tiers=tiers,
            rankings=self.rankings(),
            recommendations=self.recommend_tier_adjustments(),
        )
