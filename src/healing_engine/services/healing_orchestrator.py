"""
Healing Orchestrator Service.

Coordinates one healing request from a broken locator to a recorded
decision:

    STARTED -> PIPELINE_RUNNING -> SCORED -> DECIDED -> COMMITTED | PARKED
                                \\-> EXHAUSTED
    (a request that loses a race to another healer ends SUPERSEDED)

The strategy pipeline runs without any lock, so slow oracle calls for one
element never block another request. The decision and the store write run
under a per-element ``asyncio.Lock``; between the store write and the
registry insert there is no ``await``, so a cancelled request never leaves a
half-written change behind.
"""

import asyncio
import threading
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, Optional

from ..core.audit_trail import AuditTrail
from ..core.exceptions import ElementBusyError, HealingDisabledError, InvalidStateTransition
from ..core.logging_config import HealingLoggerAdapter, get_healing_logger
from ..core.models import (
    ChangeStatus, ElementRef, EngineConfiguration, FailureContext, HealingAttempt,
    HealingOutcome, HealingPhase, HealingRecord, LocatorChange,
    LocatorDefinition, OutcomeStatus
)
from .change_registry import ChangeRegistry
from .confidence_scorer import ConfidenceScorer, ScoringContext
from .locator_store import LocatorStore
from .strategy_pipeline import PageContext, StrategyPipeline, VisualContext


class HealingOrchestrator:
    """Runs healing requests and applies approved locator changes."""

    def __init__(self, pipeline: StrategyPipeline, store: LocatorStore, registry: ChangeRegistry,
                 config: Optional[EngineConfiguration] = None,
                 scorer: Optional[ConfidenceScorer] = None,
                 audit_trail: Optional[AuditTrail] = None):
        """Initialize the healing orchestrator.

        Args:
            pipeline: Strategy pipeline producing candidate locators
            store: Locator definitions to read and update
            registry: Registry recording every proposed or applied change
            config: Engine configuration, defaults apply when omitted
            scorer: Confidence scorer for candidates
            audit_trail: Optional audit trail for healing decisions
        """
        self.pipeline = pipeline
        self.store = store
        self.registry = registry
        self.config = config or EngineConfiguration()
        self.scorer = scorer or ConfidenceScorer()
        self.audit_trail = audit_trail

        # Lock table: one asyncio.Lock per element path, created lazily
        self._element_locks: Dict[str, asyncio.Lock] = {}
        self._lock_table_guard = threading.Lock()

        self.logger = get_healing_logger("orchestrator")
        self.logger.info(
            f"Healing orchestrator initialized (threshold {self.config.auto_apply_threshold}, "
            f"approval required: {self.config.require_approval})"
        )

    async def heal(self, element: ElementRef, context: FailureContext) -> HealingOutcome:
        """Try to repair the locator of ``element`` after ``context`` failed.

        Raises:
            HealingDisabledError: If healing is switched off
            LocatorNotFoundError: If the store does not know the element
            ElementBusyError: If the element lock is not acquired in time
        """
        if not self.config.enabled:
            raise HealingDisabledError("Self-healing is disabled in configuration")

        element_path = element.element_path
        log = get_healing_logger(
            "orchestrator", request_id=str(uuid.uuid4()),
            element_path=element_path, test_name=context.test_name,
        )
        start_time = time.time()
        log.log_operation_start("heal", platform=context.platform)

        snapshot = self.store.read(element_path)
        failed_locator = context.failed_locator or snapshot.primary
        log.log_phase("heal", HealingPhase.STARTED.value,
                      f"Healing {failed_locator} (definition version {snapshot.version})")

        log.log_phase("heal", HealingPhase.PIPELINE_RUNNING.value,
                      f"Trying {len(snapshot.fallbacks)} fallbacks and live strategies")
        attempt = await self.pipeline.repair(
            failed_locator,
            snapshot.fallbacks,
            VisualContext(context.screenshot_ref) if context.screenshot_ref else None,
            PageContext(
                element_path=element_path,
                kind=element.kind,
                last_known=snapshot.last_known,
                error_message=context.error_message,
            ),
        )
        if not attempt:
            outcome = HealingOutcome(OutcomeStatus.EXHAUSTED, message="No viable repair found")
            return self._finish(log, element_path, outcome, start_time)

        scoring_context = self._scoring_context(attempt, snapshot, context)
        score = self.scorer.score(attempt, scoring_context)
        log.log_phase("heal", HealingPhase.SCORED.value,
                      f"{attempt.strategy.value} proposed {attempt.candidate} with confidence {score}",
                      breakdown=self.scorer.explain(attempt, scoring_context))

        async with self._element_lock(element_path):
            outcome = await self._decide(log, element_path, snapshot, attempt, score)

        return self._finish(log, element_path, outcome, start_time)

    async def approve(self, change_id: str) -> LocatorChange:
        """Approve a pending change and apply it to the store.

        Raises:
            ChangeNotFoundError: If the change does not exist
            InvalidStateTransition: If the change is not pending approval
            ElementBusyError: If the element lock is not acquired in time
        """
        element_path = self.registry.get(change_id).element_path

        async with self._element_lock(element_path):
            change = self.registry.get(change_id)
            if change.status != ChangeStatus.PENDING_APPROVAL:
                raise InvalidStateTransition(change_id, change.status.value, "approve")

            definition = self.store.read(element_path)
            if definition.primary != change.old_locator:
                self.logger.warning(
                    f"Approving change {change_id} for {element_path}: primary is now "
                    f"{definition.primary}, change was proposed against {change.old_locator}"
                )

            # Store first: a failed write leaves the change pending
            self.store.update(
                element_path,
                lambda current: self._promote(current, change, "Approved locator change"),
            )
            try:
                approved = self.registry.approve(change_id)
            except InvalidStateTransition:
                # Lost a race against a transition made outside the event loop
                self.store.update(element_path, lambda current: definition)
                raise

        self.logger.info(f"Applied approved change {change_id} to {element_path}",
                         extra={'change_id': change_id, 'element_path': element_path})
        return approved

    async def reject(self, change_id: str, reason: Optional[str] = None) -> LocatorChange:
        """Reject a pending change; the store is not touched."""
        return self.registry.reject(change_id, reason)

    async def record_outcome(self, change_id: str, success: bool) -> LocatorChange:
        """Record whether an auto-applied change fixed the test.

        A failed outcome counts against the element, lowering the confidence
        of its future repairs. Nothing is recorded unless the element lock is
        acquired, so an ``ElementBusyError`` can be retried.
        """
        element_path = self.registry.get(change_id).element_path

        async with self._element_lock(element_path):
            change = self.registry.get(change_id)
            if change.status != ChangeStatus.AUTO_APPLIED or change.success is not None:
                state = change.status.value
                if change.success is not None:
                    state = f"{state} (outcome recorded)"
                raise InvalidStateTransition(change_id, state, "record the outcome of")

            if success:
                return self.registry.mark_auto_applied(change_id, True)

            # Counter first: a failed write leaves the outcome unrecorded
            self.store.update(element_path, self._count_failed_healing)
            try:
                change = self.registry.mark_auto_applied(change_id, False)
            except InvalidStateTransition:
                self.store.update(element_path, self._uncount_failed_healing)
                raise

        self.logger.warning(
            f"Auto-applied change {change_id} did not fix {element_path}",
            extra={'change_id': change_id, 'element_path': element_path}
        )
        return change

    def statistics(self) -> Dict[str, Any]:
        stats = self.registry.statistics()
        with self._lock_table_guard:
            stats["tracked_elements"] = len(self._element_locks)
        stats["configuration"] = self.config.to_dict()
        return stats

    # =================== Internals ===================

    async def _decide(self, log: HealingLoggerAdapter, element_path: str,
                      snapshot: LocatorDefinition, attempt: HealingAttempt,
                      score: int) -> HealingOutcome:
        """Decision and commit; runs while holding the element lock."""
        current = self.store.read(element_path)

        if current.version != snapshot.version:
            if await self.pipeline.verify(current.primary):
                log.log_phase("heal", HealingPhase.SUPERSEDED.value,
                              f"Element was healed concurrently, primary is now {current.primary}")
                return HealingOutcome(
                    OutcomeStatus.SUPERSEDED, score=score, attempt=attempt,
                    message=f"Element already healed to {current.primary}",
                )
            log.warning(f"Definition moved to version {current.version} but its primary "
                        f"{current.primary} does not resolve, continuing")

        if attempt.candidate == current.primary:
            return HealingOutcome(
                OutcomeStatus.SUPERSEDED, score=score, attempt=attempt,
                message=f"{attempt.candidate} is already the primary locator",
            )

        auto_apply = score >= self.config.auto_apply_threshold and not self.config.require_approval
        log.log_phase("heal", HealingPhase.DECIDED.value,
                      "auto-apply" if auto_apply else "needs approval",
                      score=score, threshold=self.config.auto_apply_threshold)

        if not auto_apply:
            return self._park(log, element_path, current, attempt, score)

        if self.config.reverify_before_commit and not await self.pipeline.verify(attempt.candidate):
            return HealingOutcome(
                OutcomeStatus.EXHAUSTED, score=score, attempt=attempt,
                message=f"Candidate {attempt.candidate} no longer resolves",
            )

        # No awaits from here on: store write and registry insert go together
        change_id = str(uuid.uuid4())
        record = HealingRecord(
            timestamp=datetime.now(),
            old_locator=current.primary,
            new_locator=attempt.candidate,
            strategy=attempt.strategy,
            confidence=score,
            change_id=change_id,
        )
        self.store.update(element_path, lambda definition: definition.promote(attempt.candidate, record))
        change = self.registry.create(
            element_path, current.primary, attempt.candidate, attempt.strategy, score,
            status=ChangeStatus.AUTO_APPLIED, metadata=dict(attempt.raw_signal),
            change_id=change_id,
        )
        log.log_phase("heal", HealingPhase.COMMITTED.value,
                      f"{current.primary} replaced by {attempt.candidate}")
        return HealingOutcome(
            OutcomeStatus.AUTO_APPLIED, change=change, score=score, attempt=attempt,
            message=f"Auto-applied {attempt.strategy.value} locator with confidence {score}",
        )

    def _park(self, log: HealingLoggerAdapter, element_path: str, current: LocatorDefinition,
              attempt: HealingAttempt, score: int) -> HealingOutcome:
        change = self.registry.find_pending(element_path, current.primary, attempt.candidate)
        if change is None:
            change = self.registry.create(
                element_path, current.primary, attempt.candidate, attempt.strategy, score,
                status=ChangeStatus.PENDING_APPROVAL, metadata=dict(attempt.raw_signal),
            )
        else:
            log.info(f"Reusing pending change {change.id}", extra={'change_id': change.id})

        log.log_phase("heal", HealingPhase.PARKED.value, f"Change {change.id} awaits approval")
        if score < self.config.auto_apply_threshold:
            message = f"Confidence {score} below {self.config.auto_apply_threshold}, approval required"
        else:
            message = "Manual approval required"
        return HealingOutcome(
            OutcomeStatus.PENDING_APPROVAL, change=change, score=score, attempt=attempt,
            message=message,
        )

    def _scoring_context(self, attempt: HealingAttempt, definition: LocatorDefinition,
                         context: FailureContext) -> ScoringContext:
        # Strategy/type pairs that keep failing make the element look less stable
        failure_ratio = self.registry.failure_ratio(attempt.strategy, attempt.candidate.type)
        history = context.test_history
        return ScoringContext(
            previous_failures=definition.failed_healings,
            element_stability=definition.stability * (1.0 - failure_ratio),
            test_success_rate=history.success_rate if history.total_runs > 0 else None,
        )

    @staticmethod
    def _promote(definition: LocatorDefinition, change: LocatorChange, reason: str) -> LocatorDefinition:
        record = HealingRecord(
            timestamp=datetime.now(),
            old_locator=definition.primary,
            new_locator=change.new_locator,
            strategy=change.strategy,
            confidence=change.confidence,
            change_id=change.id,
            reason=reason,
        )
        return definition.promote(change.new_locator, record)

    @staticmethod
    def _count_failed_healing(definition: LocatorDefinition) -> LocatorDefinition:
        definition.failed_healings += 1
        return definition

    @staticmethod
    def _uncount_failed_healing(definition: LocatorDefinition) -> LocatorDefinition:
        definition.failed_healings = max(0, definition.failed_healings - 1)
        return definition

    def _finish(self, log: HealingLoggerAdapter, element_path: str, outcome: HealingOutcome,
                start_time: float) -> HealingOutcome:
        duration = time.time() - start_time
        if outcome.status == OutcomeStatus.EXHAUSTED:
            log.log_phase("heal", HealingPhase.EXHAUSTED.value, outcome.message)
            log.log_operation_failure("heal", duration, outcome.message, error_code="EXHAUSTED")
        else:
            log.log_operation_success("heal", duration, status=outcome.status.value, score=outcome.score)
        if self.audit_trail:
            self.audit_trail.log_healing_completed(element_path, outcome)
        return outcome

    @asynccontextmanager
    async def _element_lock(self, element_path: str):
        """Hold the element's lock, waiting at most ``lock_timeout`` seconds."""
        with self._lock_table_guard:
            lock = self._element_locks.get(element_path)
            if lock is None:
                lock = self._element_locks[element_path] = asyncio.Lock()

        acquire = asyncio.ensure_future(lock.acquire())
        try:
            done, _ = await asyncio.wait({acquire}, timeout=self.config.lock_timeout)
        except asyncio.CancelledError:
            self._abandon_acquire(lock, acquire)
            raise
        if not done:
            self._abandon_acquire(lock, acquire)
            raise ElementBusyError(element_path, self.config.lock_timeout)

        try:
            yield
        finally:
            lock.release()

    @staticmethod
    def _abandon_acquire(lock: asyncio.Lock, acquire: asyncio.Future) -> None:
        """Give up on a pending acquire; a lock it still obtains is released."""
        def release_if_acquired(future: asyncio.Future) -> None:
            if not future.cancelled() and future.exception() is None:
                lock.release()

        acquire.add_done_callback(release_if_acquired)
        acquire.cancel()
