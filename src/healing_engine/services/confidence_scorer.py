"""
Confidence scoring for healed locators.

The score decides whether a healed locator is committed automatically or
parked for manual approval. It is additive and clamped to [0, 100]:

    50 (base)
    + strategy bonus        fallback chain 25, AI suggestion 20, similarity 15
    + locator type bonus    accessibility id 15, resource id 12, xpath/css 5,
                            platform automation query 3
    + element stability     up to 10
    + test success rate     5 above 95%, 3 above 80%
    - 5 per earlier failed healing of the same element
"""

import math
from dataclasses import dataclass
from typing import Dict, Optional

from ..core.models import HealingAttempt, HealingStrategy, LocatorType


BASE_SCORE = 50

STRATEGY_BONUS: Dict[HealingStrategy, int] = {
    HealingStrategy.FALLBACK_CHAIN: 25,
    HealingStrategy.AI_SUGGESTED: 20,
    HealingStrategy.SIMILARITY_MATCH: 15,
}

LOCATOR_TYPE_BONUS: Dict[str, int] = {
    LocatorType.ACCESSIBILITY_ID: 15,
    LocatorType.RESOURCE_ID: 12,
    LocatorType.ID: 12,
    LocatorType.XPATH: 5,
    LocatorType.CSS: 5,
    LocatorType.ANDROID_UIAUTOMATOR: 3,
    LocatorType.IOS_PREDICATE: 3,
    LocatorType.IOS_CLASS_CHAIN: 3,
}

MAX_STABILITY_BONUS = 10
PENALTY_PER_PREVIOUS_FAILURE = 5


@dataclass(frozen=True)
class ScoringContext:
    """Element and test history that feeds the score."""
    previous_failures: int = 0
    element_stability: float = 0.0
    test_success_rate: Optional[float] = None


class ConfidenceScorer:
    """Maps a healing attempt and its context to a 0-100 confidence score."""

    def score(self, attempt: HealingAttempt, context: ScoringContext) -> int:
        """Score an attempt. Never raises; identical inputs give identical scores."""
        return self._clamp(sum(self.explain(attempt, context).values()))

    def explain(self, attempt: HealingAttempt, context: ScoringContext) -> Dict[str, int]:
        """Per-term breakdown of the score, before clamping."""
        return {
            "base": BASE_SCORE,
            "strategy": STRATEGY_BONUS.get(attempt.strategy, 0),
            "locator_type": LOCATOR_TYPE_BONUS.get(attempt.candidate.type, 0),
            "stability": self._stability_bonus(context.element_stability),
            "test_history": self._history_bonus(context.test_success_rate),
            "previous_failures": self._failure_penalty(context.previous_failures),
        }

    def _failure_penalty(self, previous_failures: int) -> int:
        try:
            count = max(0, int(previous_failures or 0))
        except (TypeError, ValueError):
            return 0
        return -PENALTY_PER_PREVIOUS_FAILURE * count

    def _stability_bonus(self, stability: float) -> int:
        try:
            stability = float(stability)
        except (TypeError, ValueError):
            return 0
        if stability != stability:  # NaN
            return 0
        stability = min(1.0, max(0.0, stability))
        # Half-up rounding: a stability of 0.85 is worth 9, not 8
        return int(math.floor(round(stability * MAX_STABILITY_BONUS, 9) + 0.5))

    def _history_bonus(self, success_rate: Optional[float]) -> int:
        if not isinstance(success_rate, (int, float)):
            return 0
        if success_rate > 0.95:
            return 5
        if success_rate > 0.8:
            return 3
        return 0

    @staticmethod
    def _clamp(value: int) -> int:
        return max(0, min(100, int(value)))
