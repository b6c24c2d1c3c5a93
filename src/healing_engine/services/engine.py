"""
Engine facade.

``HealingEngine`` wires triage, the strategy pipeline, scoring, the change
registry and the orchestrator together and exposes the operations test
runners and the HTTP layer call.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from ..core.audit_trail import AuditTrail
from ..core.config import settings
from ..core.config_loader import get_engine_config
from ..core.exceptions import ConfigurationError
from ..core.models import (
    ElementRef, EngineConfiguration, FailureContext, HealingOutcome, LocatorChange,
    TriageResult
)
from .ai_oracle import AIOracle, LLMOracle, OracleGateway
from .change_registry import ChangeRegistry
from .confidence_scorer import ConfidenceScorer
from .healing_orchestrator import HealingOrchestrator
from .locator_store import JsonFileLocatorStore, LocatorStore
from .similarity_scorer import SimilarityScorer
from .strategy_pipeline import ElementLocator, StrategyPipeline
from .triage_classifier import TriageClassifier


logger = logging.getLogger(__name__)


class HealingEngine:
    """Failure triage and locator self-healing behind one object."""

    def __init__(self, oracle: Optional[AIOracle], store: LocatorStore,
                 element_locator: Optional[ElementLocator] = None,
                 config: Optional[EngineConfiguration] = None,
                 registry: Optional[ChangeRegistry] = None,
                 audit_trail: Optional[AuditTrail] = None):
        """
        Args:
            oracle: AI oracle; None runs triage on rules only and skips AI suggestions
            store: Locator definitions
            element_locator: Driver access; without it only triage and change
                management are available
            config: Engine configuration, defaults apply when omitted
            registry: Change registry, an in-memory one is created when omitted
            audit_trail: Audit trail, an in-memory one is created when omitted
        """
        self.config = config or EngineConfiguration()
        self.store = store
        self.audit_trail = audit_trail or AuditTrail()
        self.registry = registry or ChangeRegistry(audit_trail=self.audit_trail)

        self.oracle = OracleGateway(oracle, timeout=self.config.oracle_timeout,
                                    retries=self.config.oracle_retries)
        self.classifier = TriageClassifier(self.oracle, self.config.triage_min_confidence,
                                           audit_trail=self.audit_trail)

        self.pipeline: Optional[StrategyPipeline] = None
        self.orchestrator: Optional[HealingOrchestrator] = None
        if element_locator is not None:
            self.pipeline = StrategyPipeline(
                element_locator, self.oracle, SimilarityScorer(),
                similarity_threshold=self.config.similarity_threshold,
            )
            self.orchestrator = HealingOrchestrator(
                self.pipeline, store, self.registry, self.config,
                scorer=ConfidenceScorer(), audit_trail=self.audit_trail,
            )

        logger.info(
            f"Healing engine ready (oracle: {'yes' if self.oracle.available else 'no'}, "
            f"driver: {'yes' if element_locator is not None else 'no'})"
        )

    @classmethod
    def from_settings(cls, element_locator: Optional[ElementLocator] = None,
                      oracle: Optional[AIOracle] = None,
                      config_path: Optional[str] = None) -> 'HealingEngine':
        """Build an engine from environment settings and the YAML configuration."""
        config = get_engine_config(config_path)
        if oracle is None:
            oracle = LLMOracle()
        return cls(
            oracle=oracle,
            store=JsonFileLocatorStore(settings.LOCATORS_FILE),
            element_locator=element_locator,
            config=config,
        )

    async def classify_failure(self, context: FailureContext) -> TriageResult:
        return await self.classifier.classify(context)

    async def classify_failures(self, contexts: Sequence[FailureContext]) -> List[TriageResult]:
        return await self.classifier.classify_batch(contexts)

    async def heal_locator(self, element: ElementRef, context: FailureContext) -> HealingOutcome:
        return await self._require_orchestrator().heal(element, context)

    async def approve_change(self, change_id: str) -> LocatorChange:
        return await self._require_orchestrator().approve(change_id)

    async def reject_change(self, change_id: str, reason: Optional[str] = None) -> LocatorChange:
        return self.registry.reject(change_id, reason)

    async def record_healing_outcome(self, change_id: str, success: bool) -> LocatorChange:
        return await self._require_orchestrator().record_outcome(change_id, success)

    def pending_changes(self) -> List[LocatorChange]:
        return self.registry.list_pending()

    def healing_statistics(self) -> Dict[str, Any]:
        if self.orchestrator is not None:
            return self.orchestrator.statistics()
        stats = self.registry.statistics()
        stats["configuration"] = self.config.to_dict()
        return stats

    def _require_orchestrator(self) -> HealingOrchestrator:
        if self.orchestrator is None:
            raise ConfigurationError("No element locator configured; healing needs a driver connection")
        return self.orchestrator
