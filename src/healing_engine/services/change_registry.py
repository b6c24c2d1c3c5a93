"""
Locator Change Registry.

Every locator replacement the engine proposes or applies is recorded here
as a ``LocatorChange``. Status transitions are compare-and-swap under a
lock, so two racing transitions on one change have exactly one winner:

    PENDING_APPROVAL --approve--> APPROVED
    PENDING_APPROVAL --reject---> REJECTED
    AUTO_APPLIED --mark_auto_applied(success)--> AUTO_APPLIED (outcome recorded)
"""

import threading
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from ..core.audit_trail import AuditEventType, AuditTrail
from ..core.exceptions import ChangeNotFoundError, InvalidStateTransition
from ..core.logging_config import get_healing_logger
from ..core.models import ChangeStatus, HealingStrategy, Locator, LocatorChange


class ChangeRepository(Protocol):
    """Persistence for locator changes."""

    def add(self, change: LocatorChange) -> None:
        ...

    def get(self, change_id: str) -> Optional[LocatorChange]:
        ...

    def replace(self, change: LocatorChange) -> None:
        ...

    def all(self) -> List[LocatorChange]:
        ...


class InMemoryChangeRepository:
    """Keeps changes in insertion order in a dictionary."""

    def __init__(self):
        self._changes: Dict[str, LocatorChange] = {}

    def add(self, change: LocatorChange) -> None:
        self._changes[change.id] = change

    def get(self, change_id: str) -> Optional[LocatorChange]:
        return self._changes.get(change_id)

    def replace(self, change: LocatorChange) -> None:
        if change.id not in self._changes:
            raise ChangeNotFoundError(change.id)
        self._changes[change.id] = change

    def all(self) -> List[LocatorChange]:
        return list(self._changes.values())


def _copy(change: LocatorChange) -> LocatorChange:
    return replace(change, metadata=dict(change.metadata))


class ChangeRegistry:
    """Records locator changes and guards their lifecycle."""

    INITIAL_STATUSES = (ChangeStatus.PENDING_APPROVAL, ChangeStatus.AUTO_APPLIED)

    def __init__(self, repository: Optional[ChangeRepository] = None,
                 audit_trail: Optional[AuditTrail] = None):
        self.repository = repository or InMemoryChangeRepository()
        self.audit_trail = audit_trail
        self.logger = get_healing_logger("registry")
        self._lock = threading.RLock()

    def create(self, element_path: str, old_locator: Locator, new_locator: Locator,
               strategy: HealingStrategy, confidence: int,
               status: ChangeStatus = ChangeStatus.PENDING_APPROVAL,
               metadata: Optional[Dict[str, Any]] = None,
               change_id: Optional[str] = None) -> LocatorChange:
        """
        Record a new locator change.

        Args:
            change_id: Id to use, when the caller already referenced it elsewhere
            status: PENDING_APPROVAL, or AUTO_APPLIED when the change has
                already been written to the store

        Raises:
            ValueError: For any other initial status
        """
        if status not in self.INITIAL_STATUSES:
            raise ValueError(f"A locator change cannot be created as '{status.value}'")

        now = datetime.now()
        change = LocatorChange(
            id=change_id or str(uuid.uuid4()),
            element_path=element_path,
            old_locator=old_locator,
            new_locator=new_locator,
            strategy=strategy,
            confidence=confidence,
            status=status,
            created_at=now,
            updated_at=now,
            applied_at=now if status == ChangeStatus.AUTO_APPLIED else None,
            metadata=dict(metadata or {}),
        )

        with self._lock:
            self.repository.add(change)

        self.logger.info(
            f"Recorded locator change {change.id} for {element_path}: "
            f"{old_locator} -> {new_locator} ({status.value}, confidence {confidence})",
            extra={'change_id': change.id, 'element_path': element_path}
        )
        self._audit(AuditEventType.CHANGE_CREATED, change)
        return _copy(change)

    def approve(self, change_id: str) -> LocatorChange:
        return self._transition(
            change_id, "approve", ChangeStatus.PENDING_APPROVAL,
            lambda change, now: replace(change, status=ChangeStatus.APPROVED,
                                        updated_at=now, applied_at=now),
            AuditEventType.CHANGE_APPROVED,
        )

    def reject(self, change_id: str, reason: Optional[str] = None) -> LocatorChange:
        def rejected(change: LocatorChange, now: datetime) -> LocatorChange:
            metadata = dict(change.metadata)
            if reason:
                metadata["rejection_reason"] = reason
            return replace(change, status=ChangeStatus.REJECTED, updated_at=now, metadata=metadata)

        return self._transition(
            change_id, "reject", ChangeStatus.PENDING_APPROVAL, rejected,
            AuditEventType.CHANGE_REJECTED,
        )

    def mark_auto_applied(self, change_id: str, success: bool) -> LocatorChange:
        """Record whether an auto-applied change made the test pass."""
        return self._transition(
            change_id, "record the outcome of", ChangeStatus.AUTO_APPLIED,
            lambda change, now: replace(change, success=bool(success), updated_at=now),
            AuditEventType.CHANGE_OUTCOME_RECORDED,
            require_unrecorded=True,
        )

    def get(self, change_id: str) -> LocatorChange:
        with self._lock:
            change = self.repository.get(change_id)
            if change is None:
                raise ChangeNotFoundError(change_id)
            return _copy(change)

    def list_changes(self, status: Optional[ChangeStatus] = None,
                     element_path: Optional[str] = None) -> List[LocatorChange]:
        with self._lock:
            changes = self.repository.all()
        return [
            _copy(change) for change in changes
            if (status is None or change.status == status)
            and (element_path is None or change.element_path == element_path)
        ]

    def list_pending(self) -> List[LocatorChange]:
        return self.list_changes(status=ChangeStatus.PENDING_APPROVAL)

    def find_pending(self, element_path: str, old_locator: Locator,
                     new_locator: Locator) -> Optional[LocatorChange]:
        """Pending change proposing the same replacement, if any."""
        for change in self.list_changes(ChangeStatus.PENDING_APPROVAL, element_path):
            if change.old_locator == old_locator and change.new_locator == new_locator:
                return change
        return None

    def failure_ratio(self, strategy: HealingStrategy, locator_type: str) -> float:
        """Share of recorded outcomes that failed for a strategy and locator type."""
        entry = self.statistics()["by_strategy_and_type"].get(f"{strategy.value}:{locator_type}")
        return entry["failure_ratio"] if entry else 0.0

    def statistics(self) -> Dict[str, Any]:
        """Totals per status, overall success rate and per-strategy outcomes."""
        with self._lock:
            changes = self.repository.all()

        by_status = {status.value: 0 for status in ChangeStatus}
        by_pair: Dict[str, Dict[str, Any]] = {}
        succeeded = failed = 0

        for change in changes:
            by_status[change.status.value] += 1

            key = f"{change.strategy.value}:{change.new_locator.type}"
            pair = by_pair.setdefault(key, {
                "strategy": change.strategy.value,
                "locator_type": change.new_locator.type,
                "total": 0,
                "succeeded": 0,
                "failed": 0,
                "failure_ratio": 0.0,
            })
            pair["total"] += 1
            if change.success is True:
                pair["succeeded"] += 1
                succeeded += 1
            elif change.success is False:
                pair["failed"] += 1
                failed += 1

        for pair in by_pair.values():
            recorded = pair["succeeded"] + pair["failed"]
            pair["failure_ratio"] = pair["failed"] / recorded if recorded else 0.0

        recorded = succeeded + failed
        return {
            "total": len(changes),
            "by_status": by_status,
            "outcomes_recorded": recorded,
            "success_rate": succeeded / recorded if recorded else 0.0,
            "by_strategy_and_type": by_pair,
        }

    def _transition(self, change_id: str, action: str, expected: ChangeStatus,
                    apply, event_type: AuditEventType,
                    require_unrecorded: bool = False) -> LocatorChange:
        with self._lock:
            current = self.repository.get(change_id)
            if current is None:
                raise ChangeNotFoundError(change_id)

            if current.status != expected or (require_unrecorded and current.success is not None):
                state = current.status.value
                if current.success is not None:
                    state = f"{state} (outcome recorded)"
                self.logger.warning(
                    f"Rejected transition '{action}' for change {change_id} in state {state}",
                    extra={'change_id': change_id, 'element_path': current.element_path}
                )
                raise InvalidStateTransition(change_id, state, action)

            updated = apply(current, datetime.now())
            self.repository.replace(updated)

        self.logger.info(
            f"Locator change {change_id}: {expected.value} -> {updated.status.value}",
            extra={'change_id': change_id, 'element_path': updated.element_path}
        )
        self._audit(event_type, updated)
        return _copy(updated)

    def _audit(self, event_type: AuditEventType, change: LocatorChange) -> None:
        if self.audit_trail:
            self.audit_trail.log_change(event_type, change)
