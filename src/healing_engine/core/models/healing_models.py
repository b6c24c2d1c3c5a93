"""Data models for the locator self-healing system."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Optional, Any, Tuple
from enum import Enum


class LocatorType:
    """Known locator types, as used in stored locator definitions."""
    ACCESSIBILITY_ID = "accessibility_id"
    ID = "id"
    RESOURCE_ID = "resource_id"
    XPATH = "xpath"
    CSS = "css"
    CLASS_NAME = "class_name"
    ANDROID_UIAUTOMATOR = "android_uiautomator"
    IOS_PREDICATE = "ios_predicate"
    IOS_CLASS_CHAIN = "ios_class_chain"
    TEXT = "text"

    # Spellings found in hand-written locator files
    ALIASES = {
        "accessibilityid": ACCESSIBILITY_ID,
        "accessibility-id": ACCESSIBILITY_ID,
        "accessibility id": ACCESSIBILITY_ID,
        "content-desc": ACCESSIBILITY_ID,
        "resource-id": RESOURCE_ID,
        "resourceid": RESOURCE_ID,
        "class": CLASS_NAME,
        "classname": CLASS_NAME,
        "androiduiautomator": ANDROID_UIAUTOMATOR,
        "-android uiautomator": ANDROID_UIAUTOMATOR,
        "iosnspredicate": IOS_PREDICATE,
        "-ios predicate string": IOS_PREDICATE,
        "ios_nspredicate": IOS_PREDICATE,
        "iosclasschain": IOS_CLASS_CHAIN,
        "-ios class chain": IOS_CLASS_CHAIN,
    }

    @classmethod
    def normalize(cls, value: str) -> str:
        """Map a locator type spelling onto its canonical name."""
        lowered = (value or "").strip().lower()
        return cls.ALIASES.get(lowered, lowered)


class HealingStrategy(Enum):
    """Locator repair strategies in pipeline priority order."""
    FALLBACK_CHAIN = "fallback_chain"
    AI_SUGGESTED = "ai_suggested"
    SIMILARITY_MATCH = "similarity_match"


class ChangeStatus(Enum):
    """Disposition of a proposed locator change."""
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    AUTO_APPLIED = "auto_applied"


class OutcomeStatus(Enum):
    """How a single healing request ended."""
    AUTO_APPLIED = "auto_applied"
    PENDING_APPROVAL = "pending_approval"
    EXHAUSTED = "exhausted"
    SUPERSEDED = "superseded"


class HealingPhase(Enum):
    """Phases a healing request moves through."""
    STARTED = "started"
    PIPELINE_RUNNING = "pipeline_running"
    SCORED = "scored"
    DECIDED = "decided"
    COMMITTED = "committed"
    PARKED = "parked"
    EXHAUSTED = "exhausted"
    SUPERSEDED = "superseded"


@dataclass(frozen=True)
class Locator:
    """A way of finding a UI element: a type and a value."""
    type: str
    value: str

    def __post_init__(self):
        object.__setattr__(self, "type", LocatorType.normalize(self.type))

    def __str__(self) -> str:
        return f"{self.type}={self.value}"

    @classmethod
    def parse(cls, text: str) -> 'Locator':
        """Parse ``type=value`` (or ``type:value``) notation."""
        positions = [text.find(sep) for sep in ("=", ":") if sep in text]
        if positions:
            split_at = min(positions)
            locator_type, value = text[:split_at].strip(), text[split_at + 1:].strip()
            if locator_type and " " not in locator_type and value:
                return cls(locator_type, value)
        raise ValueError(f"Cannot parse locator '{text}', expected 'type=value'")

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type, "value": self.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Locator':
        return cls(str(data["type"]), str(data["value"]))


@dataclass(frozen=True)
class Rect:
    """On-screen bounds of an element."""
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)


@dataclass(frozen=True)
class ElementSnapshot:
    """Last observed text, bounds and attributes of an element."""
    text: str = ""
    rect: Rect = field(default_factory=Rect)
    attributes: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "rect": {
                "x": self.rect.x,
                "y": self.rect.y,
                "width": self.rect.width,
                "height": self.rect.height,
            },
            "attributes": dict(self.attributes),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ElementSnapshot':
        return cls(
            text=data.get("text", ""),
            rect=Rect(**data.get("rect", {})),
            attributes=dict(data.get("attributes", {})),
        )


@dataclass(frozen=True)
class LiveElement:
    """An element currently present on screen, as reported by the driver."""
    locator: Locator
    text: str = ""
    rect: Rect = field(default_factory=Rect)
    attributes: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class RunHistory:
    """Recent run history of a test case."""
    success_rate: float = 0.0
    total_runs: int = 0
    last_success: Optional[datetime] = None


@dataclass(frozen=True)
class FailureContext:
    """Everything known about a single test failure."""
    test_name: str
    platform: str
    error_message: str
    stack_trace: str = ""
    failed_locator: Optional[Locator] = None
    screenshot_ref: Optional[str] = None
    recent_logs: Tuple[str, ...] = ()
    test_history: RunHistory = field(default_factory=RunHistory)

    def __post_init__(self):
        # Callers tend to hand in lists
        object.__setattr__(self, "recent_logs", tuple(self.recent_logs))


@dataclass(frozen=True)
class ElementRef:
    """Identifies an element inside a page object, e.g. ``loginPage.username``."""
    page: str
    element: str
    kind: Optional[str] = None

    @property
    def element_path(self) -> str:
        return f"{self.page}.{self.element}"

    @classmethod
    def from_path(cls, element_path: str, kind: Optional[str] = None) -> 'ElementRef':
        page, _, element = element_path.partition(".")
        if not page or not element:
            raise ValueError(f"Element path must look like 'page.element', got '{element_path}'")
        return cls(page=page, element=element, kind=kind)


@dataclass(frozen=True)
class HealingRecord:
    """One entry in an element's healing history."""
    timestamp: datetime
    old_locator: Locator
    new_locator: Locator
    strategy: HealingStrategy
    confidence: int
    change_id: Optional[str] = None
    reason: str = "Self-healing applied"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.timestamp.isoformat(),
            "oldLocator": self.old_locator.to_dict(),
            "newLocator": self.new_locator.to_dict(),
            "strategy": self.strategy.value,
            "confidence": self.confidence,
            "changeId": self.change_id,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HealingRecord':
        return cls(
            timestamp=datetime.fromisoformat(data["date"]),
            old_locator=Locator.from_dict(data["oldLocator"]),
            new_locator=Locator.from_dict(data["newLocator"]),
            strategy=HealingStrategy(data.get("strategy", HealingStrategy.FALLBACK_CHAIN.value)),
            confidence=int(data.get("confidence", 0)),
            change_id=data.get("changeId"),
            reason=data.get("reason", "Self-healing applied"),
        )


@dataclass
class LocatorDefinition:
    """Stored locators for one element. Stores hand out copies of these."""
    primary: Locator
    fallbacks: List[Locator] = field(default_factory=list)
    history: List[HealingRecord] = field(default_factory=list)
    last_known: Optional[ElementSnapshot] = None
    failed_healings: int = 0
    stability: float = 0.5
    version: int = 0

    def copy(self) -> 'LocatorDefinition':
        return replace(self, fallbacks=list(self.fallbacks), history=list(self.history))

    def promote(self, candidate: Locator, record: HealingRecord) -> 'LocatorDefinition':
        """Return a copy with ``candidate`` as primary and the old primary demoted.

        The old primary goes to the head of the fallbacks; the candidate is
        removed from the fallbacks so it is never listed twice.
        """
        fallbacks = [self.primary] + [
            locator for locator in self.fallbacks
            if locator != candidate and locator != self.primary
        ]
        return replace(
            self,
            primary=candidate,
            fallbacks=fallbacks,
            history=list(self.history) + [record],
            version=self.version + 1,
        )


@dataclass(frozen=True)
class HealingAttempt:
    """A candidate replacement produced by one pipeline stage."""
    strategy: HealingStrategy
    candidate: Locator
    raw_signal: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LocatorChange:
    """A proposed or applied locator replacement."""
    id: str
    element_path: str
    old_locator: Locator
    new_locator: Locator
    strategy: HealingStrategy
    confidence: int
    status: ChangeStatus
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    applied_at: Optional[datetime] = None
    success: Optional[bool] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert change to dictionary for API responses."""
        return {
            "id": self.id,
            "element_path": self.element_path,
            "old_locator": self.old_locator.to_dict(),
            "new_locator": self.new_locator.to_dict(),
            "strategy": self.strategy.value,
            "confidence": self.confidence,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "applied_at": self.applied_at.isoformat() if self.applied_at else None,
            "success": self.success,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class HealingOutcome:
    """Result of one healing request."""
    status: OutcomeStatus
    change: Optional[LocatorChange] = None
    score: Optional[int] = None
    attempt: Optional[HealingAttempt] = None
    message: str = ""

    @property
    def applied(self) -> bool:
        return self.status == OutcomeStatus.AUTO_APPLIED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "applied": self.applied,
            "status": self.status.value,
            "score": self.score,
            "strategy": self.attempt.strategy.value if self.attempt else None,
            "change": self.change.to_dict() if self.change else None,
            "message": self.message,
        }


@dataclass
class EngineConfiguration:
    """Configuration settings for triage and self-healing."""
    enabled: bool = True
    auto_apply_threshold: int = 85
    require_approval: bool = False

    # Oracle settings
    oracle_timeout: float = 30.0  # seconds
    oracle_retries: int = 1
    triage_min_confidence: int = 70

    # Pipeline settings
    similarity_threshold: float = 0.70

    # Orchestration settings
    lock_timeout: float = 10.0  # seconds
    reverify_before_commit: bool = True

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "enabled": self.enabled,
            "auto_apply_threshold": self.auto_apply_threshold,
            "require_approval": self.require_approval,
            "oracle_timeout": self.oracle_timeout,
            "oracle_retries": self.oracle_retries,
            "triage_min_confidence": self.triage_min_confidence,
            "similarity_threshold": self.similarity_threshold,
            "lock_timeout": self.lock_timeout,
            "reverify_before_commit": self.reverify_before_commit,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EngineConfiguration':
        """Create configuration from dictionary."""
        return cls(**data)
