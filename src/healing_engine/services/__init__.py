"""
Services module for failure triage and locator self-healing.
"""

from .ai_oracle import AIOracle, LLMOracle, OracleGateway
from .change_registry import ChangeRegistry, ChangeRepository, InMemoryChangeRepository
from .confidence_scorer import ConfidenceScorer, ScoringContext
from .engine import HealingEngine
from .healing_orchestrator import HealingOrchestrator
from .locator_store import InMemoryLocatorStore, JsonFileLocatorStore, LocatorStore
from .similarity_scorer import SimilarityScorer
from .strategy_pipeline import (
    NOT_FOUND, ElementLocator, PageContext, StrategyPipeline, VisualContext, infer_element_kind
)
from .triage_classifier import TriageClassifier, calculate_bug_probability

__all__ = [
    "AIOracle",
    "LLMOracle",
    "OracleGateway",
    "ChangeRegistry",
    "ChangeRepository",
    "InMemoryChangeRepository",
    "ConfidenceScorer",
    "ScoringContext",
    "HealingEngine",
    "HealingOrchestrator",
    "InMemoryLocatorStore",
    "JsonFileLocatorStore",
    "LocatorStore",
    "SimilarityScorer",
    "NOT_FOUND",
    "ElementLocator",
    "PageContext",
    "StrategyPipeline",
    "VisualContext",
    "infer_element_kind",
    "TriageClassifier",
    "calculate_bug_probability",
]
