"""Cost tracking and budget-driven routing strategy.

The CostTracker owns the CostLedger, the single serialization point of the
router: every billable attempt is applied exactly once under an
asyncio.Lock. The lock is never held across an execution call; callers
reserve before executing and record (or release) afterwards.

Paid attempts are admitted one at a time once their estimates stop
fitting the headroom, so concurrent attempts pass the budget by at most
the cost of one attempt (given estimates that do not undercount).

Strategy derivation is a pure function of spent/budget:
- ratio > 0.9  -> PREFER_LOCAL (tiers 3-4 blocked unless overridden)
- ratio < 0.3  -> QUALITY_FIRST
- otherwise    -> BALANCED

One-shot alerts fire per period at each configured threshold
(default 50%, 80%, 100%); the 80% alert is advisory, never a hard block.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime

import structlog

from tiered_router.model_router.errors import BudgetBlocked
from tiered_router.model_router.models import ModelDescriptor, RoutingStrategy, Tier
from tiered_router.telemetry import metrics

log = structlog.get_logger(__name__)

DEFAULT_QUALITY_FIRST_BELOW = 0.3
DEFAULT_PREFER_LOCAL_ABOVE = 0.9
ADVISORY_THRESHOLD = 0.8

# Tiers considered under PREFER_LOCAL
LOCAL_TIERS = frozenset({Tier.NO_MODEL, Tier.TINY, Tier.SMALL})


def strategy_for_ratio(
    ratio: float,
    quality_first_below: float = DEFAULT_QUALITY_FIRST_BELOW,
    prefer_local_above: float = DEFAULT_PREFER_LOCAL_ABOVE,
) -> RoutingStrategy:
    """Map a spent/budget ratio onto a routing strategy."""
    if ratio > prefer_local_above:
        return RoutingStrategy.PREFER_LOCAL
    if ratio < quality_first_below:
        return RoutingStrategy.QUALITY_FIRST
    return RoutingStrategy.BALANCED


def is_tier_blocked(tier: Tier | int, strategy: RoutingStrategy, override: bool = False) -> bool:
    """Whether a strategy excludes a tier from consideration."""
    if override:
        return False
    return strategy == RoutingStrategy.PREFER_LOCAL and tier not in LOCAL_TIERS


@dataclass(frozen=True)
class BudgetStatus:
    """Read-only view of the current period."""

    spent: float
    budget: float
    strategy: RoutingStrategy
    in_flight: float = 0.0

    @property
    def ratio(self) -> float:
        return self.spent / self.budget if self.budget > 0 else 0.0


@dataclass(frozen=True)
class BudgetAlert:
    threshold: float
    spent: float
    budget: float
    period: date
    timestamp: datetime

    @property
    def advisory(self) -> bool:
        return self.threshold >= ADVISORY_THRESHOLD


@dataclass(frozen=True)
class Reservation:
    """In-flight hold for one admitted attempt."""

    model_key: str
    amount: float
    paid: bool


@dataclass
class CostLedger:
    """Spend for one tracking period (a UTC day).

    Attributes:
        budget: Spend limit for the period
        period: Day the ledger covers
        spent: Sum of incurred costs of billable attempts this period
        in_flight: Reserved cost of attempts currently executing
        month_to_date: Spend this calendar month, carried across daily resets
        by_model: Spend per model key
        tokens_by_tier: Billed tokens per tier
        hourly: Spend per hour of day (UTC)
        alerts_fired: Thresholds already alerted this period
    """

    budget: float
    period: date
    spent: float = 0.0
    in_flight: float = 0.0
    month_to_date: float = 0.0
    by_model: dict[str, float] = field(default_factory=dict)
    tokens_by_tier: dict[int, int] = field(default_factory=dict)
    hourly: list[float] = field(default_factory=lambda: [0.0] * 24)
    alerts_fired: set[float] = field(default_factory=set)

    @property
    def ratio(self) -> float:
        return self.spent / self.budget if self.budget > 0 else 0.0


@dataclass(frozen=True)
class CostStats:
    spent: float
    budget: float
    remaining: float
    in_flight: float
    month_to_date: float
    monthly_budget: float | None
    by_model: dict[str, float]
    tokens_by_tier: dict[int, int]
    most_expensive_model: str | None
    peak_hour: int | None
    alerts_fired: list[float]


class CostTracker:
    """Budget governor for the router.

    Tracks spend per period, derives the routing strategy and gates paid
    attempts through in-flight reservations so concurrent tasks cannot
    push spend past budget by more than one attempt.
    """

    def __init__(
        self,
        daily_budget: float,
        monthly_budget: float | None = None,
        alert_thresholds: Iterable[float] = (0.5, 0.8, 1.0),
        quality_first_below: float = DEFAULT_QUALITY_FIRST_BELOW,
        prefer_local_above: float = DEFAULT_PREFER_LOCAL_ABOVE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize cost tracker.

        Args:
            daily_budget: Spend limit per UTC day (USD)
            monthly_budget: Optional spend limit per calendar month (USD)
            alert_thresholds: Fractions of the daily budget that fire one alert each
            quality_first_below: Ratio under which QUALITY_FIRST applies
            prefer_local_above: Ratio over which PREFER_LOCAL applies
            clock: Returns the current UTC datetime (injectable for tests)
        """
        if daily_budget <= 0:
            raise ValueError("daily_budget must be positive")
        if quality_first_below >= prefer_local_above:
            raise ValueError("quality_first_below must be lower than prefer_local_above")

        self._clock = clock or (lambda: datetime.now(UTC))
        self._monthly_budget = monthly_budget
        self._thresholds = sorted(alert_thresholds)
        self._quality_first_below = quality_first_below
        self._prefer_local_above = prefer_local_above
        self._listeners: list[Callable[[BudgetAlert], None]] = []
        self._lock = asyncio.Lock()
        # Woken whenever a paid reservation settles
        self._settled = asyncio.Condition(self._lock)
        self._paid_in_flight = 0

        now = self._clock()
        self._month = (now.year, now.month)
        self._ledger = CostLedger(budget=daily_budget, period=now.date())

        log.info(
            "cost_tracker.initialized",
            daily_budget=daily_budget,
            monthly_budget=monthly_budget,
            alert_thresholds=self._thresholds,
        )

    @property
    def ledger(self) -> CostLedger:
        self._maybe_reset()
        return self._ledger

    def add_alert_listener(self, listener: Callable[[BudgetAlert], None]) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------ #
    # Strategy and status
    # ------------------------------------------------------------------ #

    def current_strategy(self) -> RoutingStrategy:
        return strategy_for_ratio(
            self._effective_ratio(), self._quality_first_below, self._prefer_local_above
        )

    def strategy_for_tier(self, tier: Tier, *, override: bool = False) -> RoutingStrategy:
        """Strategy in force for a tier.

        Raises:
            BudgetBlocked: The strategy excludes the tier and no override was given
        """
        strategy = self.current_strategy()
        if is_tier_blocked(tier, strategy, override):
            raise BudgetBlocked(tier, strategy.value)
        return strategy

    def current_budget_status(self) -> BudgetStatus:
        ledger = self.ledger
        return BudgetStatus(
            spent=ledger.spent,
            budget=ledger.budget,
            strategy=self.current_strategy(),
            in_flight=ledger.in_flight,
        )

    def remaining_budget(self) -> float:
        ledger = self.ledger
        return max(ledger.budget - ledger.spent, 0.0)

    @staticmethod
    def estimate_cost(model: ModelDescriptor, tokens: int) -> float:
        return model.estimate_cost(tokens)

    def can_afford(self, model: ModelDescriptor, tokens: int) -> bool:
        """Whether an attempt would be admitted right now without waiting."""
        if model.cost_per_1k_tokens == 0:
            return True
        ledger = self.ledger
        return ledger.spent < ledger.budget and self._fits(model.estimate_cost(tokens))

    def _fits(self, estimate: float) -> bool:
        """A paid attempt fits when it is the only one in flight, or when its
        estimate provably fits the headroom left by the others."""
        if self._paid_in_flight == 0:
            return True
        ledger = self._ledger
        return estimate > 0 and ledger.spent + ledger.in_flight + estimate <= ledger.budget

    def _effective_ratio(self) -> float:
        ledger = self.ledger
        ratio = ledger.ratio
        if self._monthly_budget:
            ratio = max(ratio, ledger.month_to_date / self._monthly_budget)
        return ratio

    # ------------------------------------------------------------------ #
    # Ledger updates
    # ------------------------------------------------------------------ #

    async def reserve(self, model: ModelDescriptor, tokens: int) -> Reservation | None:
        """Admit an attempt and hold its estimated cost as in-flight.

        Free models are always admitted. A paid attempt is refused once the
        budget is spent. While other paid attempts are in flight and this
        one's estimate does not fit the remaining headroom (including an
        unknown, zero estimate), it waits for them to settle, so spend can
        pass the budget by at most one attempt.

        Returns:
            Reservation to settle with record_spend() or release(), or None
            if the budget cannot admit another paid attempt
        """
        estimate = model.estimate_cost(tokens)
        if model.cost_per_1k_tokens == 0:
            return Reservation(model_key=model.key, amount=0.0, paid=False)

        async with self._settled:
            while True:
                self._maybe_reset()
                ledger = self._ledger
                if ledger.spent >= ledger.budget:
                    log.info(
                        "cost_tracker.reservation_refused",
                        model=model.key,
                        spent=ledger.spent,
                        in_flight=ledger.in_flight,
                        budget=ledger.budget,
                    )
                    return None
                if self._fits(estimate):
                    break
                log.debug(
                    "cost_tracker.reservation_waiting",
                    model=model.key,
                    paid_in_flight=self._paid_in_flight,
                )
                await self._settled.wait()

            ledger.in_flight += estimate
            self._paid_in_flight += 1
        return Reservation(model_key=model.key, amount=estimate, paid=True)

    async def release(self, reservation: Reservation) -> None:
        """Drop an in-flight reservation without recording spend."""
        if not reservation.paid:
            return
        async with self._lock:
            self._maybe_reset()
            self._settle(reservation)

    def _settle(self, reservation: Reservation | None) -> None:
        """Return a reservation's in-flight share; caller holds the lock."""
        if reservation is None or not reservation.paid:
            return
        self._ledger.in_flight = max(self._ledger.in_flight - reservation.amount, 0.0)
        self._paid_in_flight = max(self._paid_in_flight - 1, 0)
        self._settled.notify_all()

    async def record_spend(
        self,
        model: ModelDescriptor,
        tokens: int,
        *,
        reservation: Reservation | None = None,
    ) -> float:
        """Apply one billable attempt to the ledger.

        Args:
            model: Model that incurred the cost
            tokens: Billed tokens
            reservation: Reservation taken for this attempt, settled here

        Returns:
            Incurred cost in USD
        """
        if tokens < 0:
            raise ValueError("tokens cannot be negative")

        cost = model.estimate_cost(tokens)
        async with self._lock:
            self._maybe_reset()
            ledger = self._ledger
            ledger.spent += cost
            ledger.month_to_date += cost
            ledger.by_model[model.key] = ledger.by_model.get(model.key, 0.0) + cost
            tier = int(model.tier)
            ledger.tokens_by_tier[tier] = ledger.tokens_by_tier.get(tier, 0) + tokens
            ledger.hourly[self._clock().hour] += cost
            self._settle(reservation)
            alerts = self._collect_alerts()
            spent, budget = ledger.spent, ledger.budget

        metrics.set_budget(spent, budget)
        log.debug("cost_tracker.spend_recorded", model=model.key, tokens=tokens, cost=cost, spent=spent)

        for alert in alerts:
            self._emit(alert)
        return cost

    def _collect_alerts(self) -> list[BudgetAlert]:
        ledger = self._ledger
        ratio = ledger.ratio
        alerts = []
        for threshold in self._thresholds:
            if ratio >= threshold and threshold not in ledger.alerts_fired:
                ledger.alerts_fired.add(threshold)
                alerts.append(
                    BudgetAlert(
                        threshold=threshold,
                        spent=ledger.spent,
                        budget=ledger.budget,
                        period=ledger.period,
                        timestamp=self._clock(),
                    )
                )
        return alerts

    def _emit(self, alert: BudgetAlert) -> None:
        event = dict(
            threshold=alert.threshold,
            spent=round(alert.spent, 6),
            budget=alert.budget,
            usage_pct=round(alert.spent / alert.budget * 100, 1),
        )
        if alert.threshold >= 1.0:
            log.error("cost_tracker.budget_exhausted", **event)
        elif alert.advisory:
            log.warning("cost_tracker.alert", **event)
        else:
            log.info("cost_tracker.alert", **event)

        for listener in self._listeners:
            listener(alert)

    def _maybe_reset(self) -> None:
        """Start a new ledger when the UTC day (and possibly month) changed."""
        now = self._clock()
        today = now.date()
        if today == self._ledger.period:
            return

        previous = self._ledger
        month_to_date = previous.month_to_date
        if (now.year, now.month) != self._month:
            log.info("cost_tracker.monthly_reset", previous_spend=month_to_date)
            month_to_date = 0.0
            self._month = (now.year, now.month)

        log.info("cost_tracker.daily_reset", previous_spend=previous.spent, period=str(previous.period))
        self._ledger = CostLedger(
            budget=previous.budget,
            period=today,
            in_flight=previous.in_flight,
            month_to_date=month_to_date,
        )
        metrics.set_budget(0.0, previous.budget)

    # ------------------------------------------------------------------ #
    # Reporting
    # ------------------------------------------------------------------ #

    def stats(self) -> CostStats:
        ledger = self.ledger
        most_expensive = max(ledger.by_model, key=ledger.by_model.__getitem__, default=None)
        peak = max(range(24), key=lambda h: ledger.hourly[h])
        return CostStats(
            spent=ledger.spent,
            budget=ledger.budget,
            remaining=max(ledger.budget - ledger.spent, 0.0),
            in_flight=ledger.in_flight,
            month_to_date=ledger.month_to_date,
            monthly_budget=self._monthly_budget,
            by_model=dict(ledger.by_model),
            tokens_by_tier=dict(ledger.tokens_by_tier),
            most_expensive_model=most_expensive,
            peak_hour=peak if ledger.hourly[peak] > 0 else None,
            alerts_fired=sorted(ledger.alerts_fired),
        )
