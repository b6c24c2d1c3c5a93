"""Core data models for the triage and self-healing engine."""

from .healing_models import (
    LocatorType,
    HealingStrategy,
    ChangeStatus,
    OutcomeStatus,
    HealingPhase,
    Locator,
    Rect,
    ElementSnapshot,
    LiveElement,
    RunHistory,
    FailureContext,
    ElementRef,
    HealingRecord,
    LocatorDefinition,
    HealingAttempt,
    LocatorChange,
    HealingOutcome,
    EngineConfiguration
)
from .triage_models import (
    FailureCategory,
    TriageSource,
    TriageResult,
    BUG_PROBABILITY_BY_CATEGORY,
    CATEGORY_DESCRIPTIONS
)
from .oracle_models import (
    TriagePayload,
    LocatorSuggestion,
    LocatorSuggestionPayload,
    extract_json_text,
    parse_oracle_payload
)

__all__ = [
    "LocatorType",
    "HealingStrategy",
    "ChangeStatus",
    "OutcomeStatus",
    "HealingPhase",
    "Locator",
    "Rect",
    "ElementSnapshot",
    "LiveElement",
    "RunHistory",
    "FailureContext",
    "ElementRef",
    "HealingRecord",
    "LocatorDefinition",
    "HealingAttempt",
    "LocatorChange",
    "HealingOutcome",
    "EngineConfiguration",
    "FailureCategory",
    "TriageSource",
    "TriageResult",
    "BUG_PROBABILITY_BY_CATEGORY",
    "CATEGORY_DESCRIPTIONS",
    "TriagePayload",
    "LocatorSuggestion",
    "LocatorSuggestionPayload",
    "extract_json_text",
    "parse_oracle_payload"
]
