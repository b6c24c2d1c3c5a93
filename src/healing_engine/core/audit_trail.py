"""
Audit trail for triage and self-healing operations.

Keeps a bounded history of triage verdicts, healing decisions and every
locator change transition, and optionally appends them to daily JSONL files.
"""

import json
import threading
import uuid
from collections import deque
from datetime import datetime
from dataclasses import dataclass, asdict
from typing import Deque, Dict, List, Optional, Any
from enum import Enum
from pathlib import Path
import logging

from .models import LocatorChange, TriageResult, HealingOutcome


class AuditEventType(Enum):
    """Types of audit events."""
    TRIAGE_COMPLETED = "triage_completed"
    HEALING_COMPLETED = "healing_completed"
    CHANGE_CREATED = "change_created"
    CHANGE_APPROVED = "change_approved"
    CHANGE_REJECTED = "change_rejected"
    CHANGE_OUTCOME_RECORDED = "change_outcome_recorded"
    ERROR_OCCURRED = "error_occurred"


@dataclass
class AuditEvent:
    """A single audit event record."""
    event_id: str
    event_type: AuditEventType
    timestamp: datetime
    component: str
    message: str
    details: Dict[str, Any]
    element_path: Optional[str] = None
    change_id: Optional[str] = None
    success: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert audit event to dictionary."""
        data = asdict(self)
        data['event_type'] = self.event_type.value
        data['timestamp'] = self.timestamp.isoformat()
        return data


class AuditTrail:
    """Audit trail manager for engine operations."""

    def __init__(self, storage_path: Optional[str] = None, max_recent_events: int = 1000):
        """
        Initialize audit trail.

        Args:
            storage_path: Directory for JSONL audit files; None keeps events in memory only
            max_recent_events: Size of the in-memory event buffer
        """
        self.storage_path = Path(storage_path) if storage_path else None
        if self.storage_path:
            self.storage_path.mkdir(parents=True, exist_ok=True)

        self.logger = logging.getLogger("healing.audit")

        self._lock = threading.Lock()
        self._recent_events: Deque[AuditEvent] = deque(maxlen=max_recent_events)

    def log_event(self, event_type: AuditEventType, component: str, message: str,
                  details: Optional[Dict[str, Any]] = None, element_path: Optional[str] = None,
                  change_id: Optional[str] = None, success: Optional[bool] = None) -> str:
        """
        Log an audit event.

        Returns:
            Event ID
        """
        event = AuditEvent(
            event_id=str(uuid.uuid4()),
            event_type=event_type,
            timestamp=datetime.now(),
            component=component,
            message=message,
            details=details or {},
            element_path=element_path,
            change_id=change_id,
            success=success
        )

        with self._lock:
            self._recent_events.append(event)

        self.logger.info(message, extra={
            'operation': event_type.value,
            'element_path': element_path,
            'change_id': change_id,
            'success': success,
            'metadata': event.details
        })

        if self.storage_path:
            self._save_event_to_file(event)

        return event.event_id

    def log_triage(self, test_name: str, result: TriageResult) -> str:
        """Log a triage verdict."""
        return self.log_event(
            event_type=AuditEventType.TRIAGE_COMPLETED,
            component="triage",
            message=f"Triaged {test_name} as {result.category.value} ({result.source.value})",
            details={
                "test_name": test_name,
                "category": result.category.value,
                "confidence": result.confidence,
                "bug_probability": result.bug_probability,
                "source": result.source.value
            }
        )

    def log_healing_completed(self, element_path: str, outcome: HealingOutcome) -> str:
        """Log how a healing request ended."""
        return self.log_event(
            event_type=AuditEventType.HEALING_COMPLETED,
            component="orchestrator",
            message=f"Healing for {element_path} ended {outcome.status.value}",
            element_path=element_path,
            change_id=outcome.change.id if outcome.change else None,
            success=outcome.applied,
            details=outcome.to_dict()
        )

    def log_change(self, event_type: AuditEventType, change: LocatorChange) -> str:
        """Log creation or a state transition of a locator change."""
        return self.log_event(
            event_type=event_type,
            component="registry",
            message=f"Locator change {change.id} for {change.element_path} is now {change.status.value}",
            element_path=change.element_path,
            change_id=change.id,
            success=change.success,
            details={
                "status": change.status.value,
                "old_locator": str(change.old_locator),
                "new_locator": str(change.new_locator),
                "strategy": change.strategy.value,
                "confidence": change.confidence
            }
        )

    def log_error(self, component: str, error_message: str,
                  element_path: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> str:
        """Log an error that was handled inside the engine."""
        return self.log_event(
            event_type=AuditEventType.ERROR_OCCURRED,
            component=component,
            message=f"Error in {component}: {error_message}",
            element_path=element_path,
            success=False,
            details=details or {}
        )

    def get_recent_events(self, limit: int = 100) -> List[AuditEvent]:
        """Return the most recent events, oldest first."""
        with self._lock:
            events = list(self._recent_events)
        return events[-limit:]

    def get_events_by_type(self, event_type: AuditEventType, limit: int = 100) -> List[AuditEvent]:
        with self._lock:
            events = [e for e in self._recent_events if e.event_type == event_type]
        return events[-limit:]

    def get_events_for_change(self, change_id: str) -> List[AuditEvent]:
        with self._lock:
            return [e for e in self._recent_events if e.change_id == change_id]

    def _save_event_to_file(self, event: AuditEvent):
        """Append event to the daily audit file."""
        date_str = event.timestamp.strftime("%Y-%m-%d")
        file_path = self.storage_path / f"audit_{date_str}.jsonl"
        try:
            with open(file_path, 'a', encoding='utf-8') as f:
                f.write(json.dumps(event.to_dict(), default=str) + '\n')
        except OSError as e:
            self.logger.error(f"Failed to save audit event to file: {e}")
