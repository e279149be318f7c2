"""Task complexity classification for tier selection.

The ComplexityClassifier maps a task to a starting tier with deterministic
rules, evaluated in order (first match wins):

    a) satisfiable by a stored pattern/template  -> tier 0
    b) formatting / simple refactor / comments    -> tier 1
    c) single function or < 50 estimated lines    -> tier 2
    d) multi-function / integration or < 200 lines -> tier 3
    e) architecture / API design / open-ended     -> tier 4
    f) default                                    -> tier 3

When a learned classifier is configured and the rule confidence falls
below the threshold, the learned prediction is used, bumped up exactly one
tier as a safety margin.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Protocol

import structlog

from tiered_router.model_router.models import Task, TaskKind, Tier
from tiered_router.model_router.templates import TemplateCatalog

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TierClassification:
    """Result of classifying a task.

    Attributes:
        tier: Starting tier for the routing run
        confidence: Confidence in the tier (0.0-1.0)
        rule: Which rule (or "learned") produced the tier
        factors: Signals that drove the decision, for observability
    """

    tier: Tier
    confidence: float
    rule: str
    factors: dict[str, float | int | bool | str] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be 0.0-1.0, got {self.confidence}")

    def __iter__(self) -> Iterator[Tier | float]:
        yield self.tier
        yield self.confidence


# ------------------------------------------------------------------ #
# Learned classifier support
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class TaskFeatures:
    """Numeric/boolean features fed to a learned classifier."""

    token_count: int
    has_architecture_keywords: bool
    requires_context: bool
    complexity_score: float
    estimated_difficulty: float
    has_tests: bool
    is_refactoring: bool
    involves_multiple_files: bool
    requires_creativity: bool


class LearnedClassifier(Protocol):
    """Anything that predicts a tier with a confidence from task features."""

    def predict(self, features: TaskFeatures) -> tuple[Tier, float]: ...


class FeatureExtractor:
    """Derives TaskFeatures from a Task."""

    ARCHITECTURE_KEYWORDS = ("design", "architecture", "system", "interface", "api")
    COMPLEXITY_PATTERNS = ("async", "concurrent", "distributed", "optimize", "performance")

    DIFFICULTY_BY_KIND = {
        TaskKind.ARCHITECTURE: 5.0,
        TaskKind.API_DESIGN: 4.0,
        TaskKind.INTEGRATION: 3.0,
        TaskKind.MULTI_FUNCTION: 2.5,
        TaskKind.SINGLE_FUNCTION: 1.5,
    }

    def extract(self, task: Task) -> TaskFeatures:
        lower = task.description.lower()
        return TaskFeatures(
            token_count=task.estimated_tokens or len(task.description) // 4,
            has_architecture_keywords=task.architecture_signal
            or any(k in lower for k in self.ARCHITECTURE_KEYWORDS),
            requires_context=task.context_size > 1000,
            complexity_score=self._complexity(task, lower),
            estimated_difficulty=self._difficulty(task),
            has_tests="test" in lower,
            is_refactoring="refactor" in lower,
            involves_multiple_files=task.affected_files > 1,
            requires_creativity=task.requires_creativity
            or any(k in lower for k in ("create", "design", "implement")),
        )

    def _complexity(self, task: Task, lower: str) -> float:
        score = 10.0 * sum(1 for p in self.COMPLEXITY_PATTERNS if p in lower)
        if task.estimated_lines:
            score += math.log2(task.estimated_lines)
        if task.context_size > 5000:
            score += 20.0
        return score

    def _difficulty(self, task: Task) -> float:
        difficulty = self.DIFFICULTY_BY_KIND.get(task.kind, 1.0)
        if task.affected_files > 3:
            difficulty *= 1.5
        return difficulty


class WeightedFeatureClassifier:
    """Linear scorer over TaskFeatures.

    Stand-in for a trained model; weights can be fitted offline from routing
    history and passed in.
    """

    TIER_CUTOFFS = ((10.0, Tier.NO_MODEL), (50.0, Tier.TINY), (200.0, Tier.SMALL), (500.0, Tier.MEDIUM))

    def __init__(self, weights: tuple[float, float, float, float, float] = (0.1, 0.2, 0.3, 0.4, 0.5)) -> None:
        self._weights = weights

    def predict(self, features: TaskFeatures) -> tuple[Tier, float]:
        w = self._weights
        score = (
            features.token_count * w[0]
            + features.complexity_score * w[1]
            + float(features.has_architecture_keywords) * w[2]
            + float(features.requires_context) * w[3]
            + features.estimated_difficulty * w[4]
        )

        tier = Tier.LARGE
        for cutoff, candidate in self.TIER_CUTOFFS:
            if score < cutoff:
                tier = candidate
                break

        # Scores near a cutoff are less certain
        confidence = min(max(1.0 - (score % 50.0) / 50.0, 0.3), 0.95)
        return tier, confidence


# ------------------------------------------------------------------ #
# ComplexityClassifier
# ------------------------------------------------------------------ #


class ComplexityClassifier:
    """Rule-first task classifier with an optional learned fallback.

    Classification is pure: identical tasks always produce identical
    results and nothing is mutated.
    """

    CONFIDENCE_THRESHOLD = 0.7

    SMALL_LINE_LIMIT = 50
    MEDIUM_LINE_LIMIT = 200
    # Within this fraction of a line limit the size rule is less certain
    BOUNDARY_MARGIN = 0.15

    TINY_KINDS = {TaskKind.FORMATTING, TaskKind.SIMPLE_REFACTOR, TaskKind.COMMENT}
    SMALL_KINDS = {TaskKind.SINGLE_FUNCTION, TaskKind.SIMPLE_TEST}
    MEDIUM_KINDS = {TaskKind.MULTI_FUNCTION, TaskKind.INTEGRATION}
    LARGE_KINDS = {TaskKind.ARCHITECTURE, TaskKind.API_DESIGN}

    TINY_KEYWORDS = {"format", "reformat", "comment", "comments", "docstring", "typo", "lint"}
    LARGE_KEYWORDS = {"architecture", "architect", "design", "redesign"}
    LARGE_PHRASES = ("api design", "system design", "design an api", "design the api")

    def __init__(
        self,
        templates: TemplateCatalog | None = None,
        learned: LearnedClassifier | None = None,
        confidence_threshold: float | None = None,
        extractor: FeatureExtractor | None = None,
    ) -> None:
        """Initialize classifier.

        Args:
            templates: Stored patterns/templates that resolve tasks at tier 0
            learned: Optional learned classifier for low-confidence cases
            confidence_threshold: Rule confidence under which the learned
                classifier takes over (default 0.7)
            extractor: Feature extractor for the learned classifier
        """
        self._templates = templates if templates is not None else TemplateCatalog()
        self._learned = learned
        self._threshold = (
            confidence_threshold if confidence_threshold is not None else self.CONFIDENCE_THRESHOLD
        )
        self._extractor = extractor or FeatureExtractor()
        log.debug(
            "complexity_classifier.initialized",
            templates=len(self._templates),
            learned=learned is not None,
            threshold=self._threshold,
        )

    def classify(self, task: Task) -> TierClassification:
        """Classify a task into its starting tier.

        Returns:
            TierClassification, which also unpacks as (tier, confidence)
        """
        result = self._apply_rules(task)
        if self._learned is not None and result.confidence < self._threshold:
            result = self._classify_learned(self._learned, task, result)

        log.debug(
            "complexity_classifier.classified",
            task_id=task.task_id,
            tier=int(result.tier),
            confidence=result.confidence,
            rule=result.rule,
        )
        return result

    def _classify_learned(
        self,
        learned: LearnedClassifier,
        task: Task,
        rule_result: TierClassification,
    ) -> TierClassification:
        """Low rule confidence: use the learned prediction, one tier higher."""
        features = self._extractor.extract(task)
        predicted, confidence = learned.predict(features)
        bumped = Tier(predicted).next
        return TierClassification(
            tier=bumped,
            confidence=min(max(confidence, 0.0), 1.0),
            rule="learned",
            factors={
                "predicted_tier": int(predicted),
                "rule_tier": int(rule_result.tier),
                "rule": rule_result.rule,
                "rule_confidence": rule_result.confidence,
            },
        )

    # ------------------------------------------------------------------ #
    # Rules
    # ------------------------------------------------------------------ #

    def _apply_rules(self, task: Task) -> TierClassification:
        words = set(re.findall(r"\b\w+\b", task.description.lower()))
        lines = task.estimated_lines

        # a) stored pattern / template
        template = self._templates.find(task)
        if template is not None:
            return TierClassification(Tier.NO_MODEL, 0.95, "template", {"template": template.name})

        # b) formatting, simple refactor, comments
        if task.kind in self.TINY_KINDS:
            return TierClassification(Tier.TINY, 0.9, "simple_edit", {"kind": task.kind.value})
        if task.kind == TaskKind.UNKNOWN and words & self.TINY_KEYWORDS:
            return TierClassification(
                Tier.TINY, 0.75, "simple_edit_keyword", {"keywords": ",".join(sorted(words & self.TINY_KEYWORDS))}
            )

        # c) single function or small
        if task.kind in self.SMALL_KINDS or task.function_count == 1:
            return TierClassification(Tier.SMALL, 0.85, "single_function", {"kind": task.kind.value})
        if lines is not None and lines < self.SMALL_LINE_LIMIT:
            return TierClassification(
                Tier.SMALL, self._size_confidence(lines, self.SMALL_LINE_LIMIT), "small_size", {"lines": lines}
            )

        # d) multi-function, integration or medium
        if task.kind in self.MEDIUM_KINDS or (task.function_count or 0) > 1 or task.integration:
            return TierClassification(
                Tier.MEDIUM,
                0.85,
                "multi_function",
                {"kind": task.kind.value, "integration": task.integration},
            )
        if lines is not None and lines < self.MEDIUM_LINE_LIMIT:
            return TierClassification(
                Tier.MEDIUM, self._size_confidence(lines, self.MEDIUM_LINE_LIMIT), "medium_size", {"lines": lines}
            )

        # e) architecture / API design / open-ended creativity
        if task.kind in self.LARGE_KINDS or task.architecture_signal or task.requires_creativity:
            return TierClassification(Tier.LARGE, 0.9, "architecture", {"kind": task.kind.value})
        lower = task.description.lower()
        if words & self.LARGE_KEYWORDS or any(p in lower for p in self.LARGE_PHRASES):
            return TierClassification(Tier.LARGE, 0.75, "architecture_keyword", {})

        # f) default
        return TierClassification(Tier.MEDIUM, 0.4, "default", {})

    def _size_confidence(self, lines: int, limit: int) -> float:
        """Size-only evidence is weaker just below a limit."""
        if lines >= limit * (1.0 - self.BOUNDARY_MARGIN):
            return 0.6
        return 0.8
