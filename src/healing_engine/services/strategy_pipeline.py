"""
Locator repair strategies.

The pipeline tries, in fixed order, to find a working replacement for a
broken locator:

1. Fallback chain: the element's curated fallbacks, in stored order.
2. AI suggestion: the oracle's best locator for the screenshot (only when a
   screenshot is available).
3. Similarity match: the live element most similar to the last known
   snapshot of the element.

The first strategy that yields a locator the driver can resolve wins. The
pipeline performs no retries; when nothing resolves it returns ``NOT_FOUND``.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, Union

from ..core.exceptions import MalformedOracleResponseError, OracleUnavailableError
from ..core.models import (
    ElementSnapshot, HealingAttempt, HealingStrategy, LiveElement, Locator,
    LocatorSuggestionPayload, LocatorType, parse_oracle_payload
)
from .ai_oracle import OracleGateway
from .similarity_scorer import SimilarityScorer


logger = logging.getLogger("healing.pipeline")


class ElementLocator(Protocol):
    """Capability to query the application under test, backed by the driver."""

    async def resolve(self, locator: Locator) -> bool:
        ...

    async def similar_siblings(self, kind: str) -> List[LiveElement]:
        ...


class _NotFound:
    """Sentinel for "no strategy produced a working locator"."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NOT_FOUND"

    def __bool__(self) -> bool:
        return False


NOT_FOUND = _NotFound()

RepairResult = Union[HealingAttempt, _NotFound]


@dataclass(frozen=True)
class VisualContext:
    """Screenshot of the screen at failure time (URL, data URL or base64)."""
    image: str


@dataclass(frozen=True)
class PageContext:
    """What the pipeline knows about the element being repaired."""
    element_path: str
    kind: Optional[str] = None
    last_known: Optional[ElementSnapshot] = None
    error_message: str = ""

    def describe(self) -> str:
        parts = [self.element_path]
        if self.kind:
            parts.append(f"element kind: {self.kind}")
        if self.last_known and self.last_known.text:
            parts.append(f"last seen text: '{self.last_known.text}'")
        if self.error_message:
            parts.append(f"error: {self.error_message}")
        return "; ".join(parts)


# Words in ids that hint at the widget class behind them
_KIND_HINTS = (
    (("input", "field", "edit", "textbox", "password", "email", "username", "search"), "EditText"),
    (("button", "btn", "submit", "login", "signin", "sign_in"), "Button"),
    (("checkbox", "check"), "CheckBox"),
    (("switch", "toggle"), "Switch"),
    (("image", "img", "icon", "logo"), "ImageView"),
    (("label", "title", "text", "message", "error"), "TextView"),
)

_XPATH_TAG = re.compile(r"//([A-Za-z_][\w.\-]*)")
_CSS_TAG = re.compile(r"^\s*([A-Za-z][\w\-]*)")
_UIAUTOMATOR_CLASS = re.compile(r'className\("([^"]+)"\)')
_IOS_TYPE = re.compile(r"type\s*==\s*['\"]([^'\"]+)['\"]")


def infer_element_kind(locator: Locator) -> str:
    """Guess the widget class a locator points at; ``*`` when unknown."""
    value = locator.value

    if locator.type == LocatorType.XPATH:
        tags = [tag for tag in _XPATH_TAG.findall(value) if tag != "*"]
        if tags:
            return tags[-1].split(".")[-1]
    elif locator.type == LocatorType.CLASS_NAME:
        return value.split(".")[-1]
    elif locator.type == LocatorType.CSS:
        match = _CSS_TAG.match(value)
        if match:
            return match.group(1)
    elif locator.type == LocatorType.ANDROID_UIAUTOMATOR:
        match = _UIAUTOMATOR_CLASS.search(value)
        if match:
            return match.group(1).split(".")[-1]
    elif locator.type in (LocatorType.IOS_PREDICATE, LocatorType.IOS_CLASS_CHAIN):
        match = _IOS_TYPE.search(value)
        if match:
            return match.group(1)

    lowered = value.lower()
    for words, kind in _KIND_HINTS:
        if any(word in lowered for word in words):
            return kind
    return "*"


class StrategyPipeline:
    """Runs the repair strategies in priority order."""

    def __init__(self, element_locator: ElementLocator, oracle: OracleGateway,
                 similarity_scorer: Optional[SimilarityScorer] = None,
                 similarity_threshold: float = 0.70):
        self.element_locator = element_locator
        self.oracle = oracle
        self.similarity_scorer = similarity_scorer or SimilarityScorer()
        self.similarity_threshold = similarity_threshold

    async def repair(self, failed_locator: Locator, fallbacks: Sequence[Locator],
                     visual_context: Optional[VisualContext],
                     page_context: PageContext) -> RepairResult:
        """Find a working replacement for ``failed_locator``.

        Returns:
            The first successful HealingAttempt, or NOT_FOUND
        """
        attempt = await self.try_fallback_chain(failed_locator, fallbacks)
        if attempt:
            return attempt

        if visual_context is not None:
            attempt = await self.try_ai_suggestion(failed_locator, visual_context, page_context)
            if attempt:
                return attempt
        else:
            logger.debug(f"No screenshot for {page_context.element_path}, skipping AI suggestion")

        attempt = await self.try_similarity_match(failed_locator, page_context)
        if attempt:
            return attempt

        logger.warning(f"All healing strategies failed for {page_context.element_path}")
        return NOT_FOUND

    async def try_fallback_chain(self, failed_locator: Locator,
                                 fallbacks: Sequence[Locator]) -> RepairResult:
        """First fallback, in stored order, that resolves."""
        logger.info(f"Trying fallback chain ({len(fallbacks)} candidates)")

        for position, fallback in enumerate(fallbacks):
            if fallback == failed_locator:
                continue
            if await self.verify(fallback):
                logger.info(f"Fallback #{position} resolved: {fallback}")
                return HealingAttempt(
                    strategy=HealingStrategy.FALLBACK_CHAIN,
                    candidate=fallback,
                    raw_signal={"fallback_index": position, "fallbacks_tried": position + 1},
                )

        return NOT_FOUND

    async def try_ai_suggestion(self, failed_locator: Locator, visual_context: VisualContext,
                                page_context: PageContext) -> RepairResult:
        """Highest-confidence oracle suggestion, if it resolves."""
        logger.info("Requesting AI locator suggestion")

        try:
            response = await self.oracle.suggest_locator(
                failed_locator, visual_context.image, page_context.describe())
            payload = parse_oracle_payload(response, LocatorSuggestionPayload)
        except OracleUnavailableError as e:
            logger.warning(f"AI suggestion skipped, oracle unavailable: {e}")
            return NOT_FOUND
        except MalformedOracleResponseError as e:
            logger.warning(f"AI suggestion skipped, malformed oracle response: {e}")
            return NOT_FOUND

        best = payload.best()
        if best is None:
            logger.info("Oracle returned no locator suggestions")
            return NOT_FOUND

        candidate = Locator(best.type, best.value)
        if candidate == failed_locator:
            logger.info("Oracle suggested the locator that already failed")
            return NOT_FOUND

        if not await self.verify(candidate):
            logger.info(f"AI suggested locator {candidate} does not resolve")
            return NOT_FOUND

        return HealingAttempt(
            strategy=HealingStrategy.AI_SUGGESTED,
            candidate=candidate,
            raw_signal={
                "oracle_confidence": best.confidence,
                "reasoning": best.reasoning,
                "suggestions": len(payload.suggested_locators),
            },
        )

    async def try_similarity_match(self, failed_locator: Locator,
                                   page_context: PageContext) -> RepairResult:
        """Most similar live element of the same kind, above the threshold."""
        kind = page_context.kind or infer_element_kind(failed_locator)
        target = page_context.last_known or self._snapshot_from_locator(failed_locator)

        try:
            siblings = await self.element_locator.similar_siblings(kind)
        except Exception as e:
            # Driver errors end this stage only
            logger.warning(f"Could not enumerate '{kind}' elements: {e}")
            return NOT_FOUND

        candidates = [element for element in siblings if element.locator != failed_locator]
        logger.info(f"Scoring {len(candidates)} live '{kind}' elements for similarity")

        match = self.similarity_scorer.find_best_match(target, candidates, self.similarity_threshold)
        if match is None:
            return NOT_FOUND

        element, similarity = match
        if not await self.verify(element.locator):
            logger.info(f"Most similar element {element.locator} does not resolve")
            return NOT_FOUND

        return HealingAttempt(
            strategy=HealingStrategy.SIMILARITY_MATCH,
            candidate=element.locator,
            raw_signal={"similarity": round(similarity, 4), "kind": kind,
                        "candidates": len(candidates)},
        )

    async def verify(self, locator: Locator) -> bool:
        """Whether ``locator`` resolves right now; driver errors count as no."""
        try:
            return bool(await self.element_locator.resolve(locator))
        except Exception as e:
            logger.warning(f"Resolving {locator} failed: {e}")
            return False

    @staticmethod
    def _snapshot_from_locator(locator: Locator) -> ElementSnapshot:
        """Best-effort target when no snapshot of the element was ever stored."""
        attribute = {
            LocatorType.ACCESSIBILITY_ID: "content-desc",
            LocatorType.RESOURCE_ID: "resource-id",
            LocatorType.ID: "resource-id",
            LocatorType.TEXT: "text",
        }.get(locator.type)
        if attribute is None:
            return ElementSnapshot()
        text = locator.value if locator.type == LocatorType.TEXT else ""
        return ElementSnapshot(text=text, attributes={attribute: locator.value})
