"""Data models for failure triage."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Tuple
from enum import Enum


class FailureCategory(Enum):
    """Root-cause categories a failure can be triaged into."""
    ACTUAL_BUG = "actual_bug"
    FLAKY_LOCATOR = "flaky_locator"
    TIMING_ISSUE = "timing_issue"
    ENVIRONMENTAL_ISSUE = "environmental_issue"
    TEST_DATA_ISSUE = "test_data_issue"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str) -> 'FailureCategory':
        """Accept both ``FLAKY_LOCATOR`` and ``flaky_locator`` spellings."""
        return cls(value.strip().lower())


class TriageSource(Enum):
    """Which path produced a triage verdict."""
    ORACLE = "oracle"
    RULES = "rules"


# Base probability that a failure of each category is a real product defect
BUG_PROBABILITY_BY_CATEGORY: Dict[FailureCategory, int] = {
    FailureCategory.ACTUAL_BUG: 90,
    FailureCategory.FLAKY_LOCATOR: 10,
    FailureCategory.TIMING_ISSUE: 30,
    FailureCategory.ENVIRONMENTAL_ISSUE: 5,
    FailureCategory.TEST_DATA_ISSUE: 20,
    FailureCategory.UNKNOWN: 50,
}

CATEGORY_DESCRIPTIONS: Dict[FailureCategory, str] = {
    FailureCategory.ACTUAL_BUG: "Application Bug",
    FailureCategory.FLAKY_LOCATOR: "Changed UI Element",
    FailureCategory.TIMING_ISSUE: "Timing/Synchronization Issue",
    FailureCategory.ENVIRONMENTAL_ISSUE: "Environment Problem",
    FailureCategory.TEST_DATA_ISSUE: "Test Data Problem",
    FailureCategory.UNKNOWN: "Unknown Issue",
}


@dataclass(frozen=True)
class TriageResult:
    """Verdict on the likely root cause of a failure."""
    category: FailureCategory
    confidence: int
    bug_probability: int
    reasoning: str
    evidence_points: Tuple[str, ...] = ()
    suggested_actions: Tuple[str, ...] = ()
    root_cause: Optional[str] = None
    source: TriageSource = TriageSource.RULES
    summary: str = ""

    @property
    def is_locator_failure(self) -> bool:
        return self.category == FailureCategory.FLAKY_LOCATOR

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary for API responses."""
        return {
            "category": self.category.value,
            "confidence": self.confidence,
            "bug_probability": self.bug_probability,
            "reasoning": self.reasoning,
            "evidence_points": list(self.evidence_points),
            "suggested_actions": list(self.suggested_actions),
            "root_cause": self.root_cause,
            "source": self.source.value,
            "summary": self.summary,
        }
