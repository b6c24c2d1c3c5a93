"""
Healing API endpoints.

REST endpoints for failure triage, locator healing, the approval workflow
for pending locator changes, and healing statistics.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, validator

from ..core.exceptions import (
    ChangeNotFoundError, ConfigurationError, ElementBusyError, HealingDisabledError,
    HealingEngineError, InvalidStateTransition, LocatorNotFoundError
)
from ..core.models import ElementRef, FailureContext, Locator, RunHistory
from ..services.engine import HealingEngine

logger = logging.getLogger(__name__)

# Global engine instance, built from settings on first use
_healing_engine: Optional[HealingEngine] = None

router = APIRouter(prefix="/healing", tags=["healing"])


# Pydantic models for API requests
class LocatorModel(BaseModel):
    type: str
    value: str = Field(..., min_length=1)


class RunHistoryModel(BaseModel):
    success_rate: float = Field(0.0, ge=0.0, le=1.0)
    total_runs: int = Field(0, ge=0)
    last_success: Optional[datetime] = None


class FailureRequest(BaseModel):
    test_name: str
    platform: str = "android"
    error_message: str
    stack_trace: str = ""
    failed_locator: Optional[LocatorModel] = None
    screenshot: Optional[str] = None
    recent_logs: List[str] = []
    test_history: Optional[RunHistoryModel] = None

    def to_context(self) -> FailureContext:
        history = self.test_history or RunHistoryModel()
        return FailureContext(
            test_name=self.test_name,
            platform=self.platform,
            error_message=self.error_message,
            stack_trace=self.stack_trace,
            failed_locator=Locator(self.failed_locator.type, self.failed_locator.value)
            if self.failed_locator else None,
            screenshot_ref=self.screenshot,
            recent_logs=tuple(self.recent_logs),
            test_history=RunHistory(history.success_rate, history.total_runs, history.last_success),
        )


class HealRequest(BaseModel):
    element_path: str
    element_kind: Optional[str] = None
    failure: FailureRequest

    @validator('element_path')
    def validate_element_path(cls, v):
        """Element paths look like ``loginPage.username``."""
        ElementRef.from_path(v)
        return v


class RejectRequest(BaseModel):
    reason: Optional[str] = None


class OutcomeRequest(BaseModel):
    success: bool


def get_healing_engine() -> HealingEngine:
    """Get or create the global healing engine instance."""
    global _healing_engine

    if _healing_engine is None:
        _healing_engine = HealingEngine.from_settings()
        logger.info("Healing engine initialized from settings")

    return _healing_engine


def _http_error(error: HealingEngineError) -> HTTPException:
    """Map engine errors onto HTTP status codes."""
    if isinstance(error, (ChangeNotFoundError, LocatorNotFoundError)):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, InvalidStateTransition):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, ElementBusyError):
        return HTTPException(status_code=423, detail=str(error), headers={"Retry-After": "1"})
    if isinstance(error, (HealingDisabledError, ConfigurationError)):
        return HTTPException(status_code=503, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


@router.post("/triage")
async def triage_failure(request: FailureRequest,
                         engine: HealingEngine = Depends(get_healing_engine)) -> Dict[str, Any]:
    """Classify a test failure."""
    result = await engine.classify_failure(request.to_context())
    return {"status": "success", "triage": result.to_dict()}


@router.post("/heal")
async def heal_locator(request: HealRequest,
                       engine: HealingEngine = Depends(get_healing_engine)) -> Dict[str, Any]:
    """Try to repair the locator of an element after a failure."""
    element = ElementRef.from_path(request.element_path, kind=request.element_kind)
    try:
        outcome = await engine.heal_locator(element, request.failure.to_context())
    except HealingEngineError as e:
        logger.warning(f"Healing {request.element_path} failed: {e}")
        raise _http_error(e)
    return {"status": "success", "outcome": outcome.to_dict()}


@router.get("/changes/pending")
async def list_pending_changes(engine: HealingEngine = Depends(get_healing_engine)) -> Dict[str, Any]:
    """List locator changes awaiting approval."""
    changes = engine.pending_changes()
    return {"status": "success", "total": len(changes), "changes": [c.to_dict() for c in changes]}


@router.post("/changes/{change_id}/approve")
async def approve_change(change_id: str,
                         engine: HealingEngine = Depends(get_healing_engine)) -> Dict[str, Any]:
    """Approve a pending change and apply it to the locator store."""
    try:
        change = await engine.approve_change(change_id)
    except HealingEngineError as e:
        raise _http_error(e)
    return {"status": "success", "change": change.to_dict()}


@router.post("/changes/{change_id}/reject")
async def reject_change(change_id: str, request: Optional[RejectRequest] = None,
                        engine: HealingEngine = Depends(get_healing_engine)) -> Dict[str, Any]:
    """Reject a pending change."""
    try:
        change = await engine.reject_change(change_id, request.reason if request else None)
    except HealingEngineError as e:
        raise _http_error(e)
    return {"status": "success", "change": change.to_dict()}


@router.post("/changes/{change_id}/outcome")
async def record_outcome(change_id: str, request: OutcomeRequest,
                         engine: HealingEngine = Depends(get_healing_engine)) -> Dict[str, Any]:
    """Record whether an auto-applied change fixed the test."""
    try:
        change = await engine.record_healing_outcome(change_id, request.success)
    except HealingEngineError as e:
        raise _http_error(e)
    return {"status": "success", "change": change.to_dict()}


@router.get("/statistics")
async def get_statistics(engine: HealingEngine = Depends(get_healing_engine)) -> Dict[str, Any]:
    """Change totals, success rate and per-strategy outcomes."""
    return {"status": "success", "statistics": engine.healing_statistics()}
