"""
Failure Triage Classifier.

Decides why a test failed. The AI oracle is asked first; when it is
unavailable, answers with something that does not validate, or is not
confident enough, an ordered set of keyword rules over the error message and
stack trace decides instead.
"""

import asyncio
import logging
import re
import time
from typing import List, Optional, Sequence, Tuple

from ..core.audit_trail import AuditTrail
from ..core.exceptions import MalformedOracleResponseError, OracleUnavailableError
from ..core.logging_config import get_healing_logger
from ..core.models import (
    BUG_PROBABILITY_BY_CATEGORY, CATEGORY_DESCRIPTIONS, FailureCategory, FailureContext,
    TriagePayload, TriageResult, TriageSource, parse_oracle_payload
)
from .ai_oracle import OracleGateway
from .oracle_prompts import OraclePrompts


logger = logging.getLogger("healing.triage")


# Confidence assigned to every rule-based verdict
FALLBACK_CONFIDENCE = 50


def calculate_bug_probability(category: FailureCategory, confidence: int) -> int:
    """Probability (0-100) that a failure is a genuine product defect."""
    base = BUG_PROBABILITY_BY_CATEGORY.get(category, 50)
    adjustment = round((confidence - 50) / 50 * 20)
    return max(0, min(100, base + adjustment))


def confidence_level(confidence: int) -> str:
    if confidence >= 80:
        return "High"
    if confidence >= 50:
        return "Medium"
    return "Low"


def bug_likelihood(bug_probability: int) -> str:
    if bug_probability >= 70:
        return "Likely a bug"
    if bug_probability >= 30:
        return "Possibly a bug"
    return "Unlikely to be a bug"


def generate_summary(test_name: str, category: FailureCategory, confidence: int,
                     bug_probability: int) -> str:
    """Human-readable one-line summary of a verdict."""
    description = CATEGORY_DESCRIPTIONS.get(category, "Unknown Issue")
    return (
        f"{description} detected in {test_name} "
        f"({confidence_level(confidence)} confidence, {confidence}%). "
        f"{bug_likelihood(bug_probability)}."
    )


class TriageClassifier:
    """Classifies failures into root-cause categories."""

    # Ordered: the first rule with a matching pattern decides. Patterns are
    # anchored on word boundaries so identifiers like "await" do not match.
    FALLBACK_RULES: List[Tuple[FailureCategory, List[str], str, str]] = [
        (
            FailureCategory.FLAKY_LOCATOR,
            [
                r"\belement not found\b",
                r"\bno such element\b",
                r"\bnosuchelement",
                r"\bcould not find\b",
                r"\bunable to locate element\b",
            ],
            "Error message indicates element not found",
            "Element not found error detected",
        ),
        (
            FailureCategory.TIMING_ISSUE,
            [
                r"\btime(?:d)? ?out",
                r"\bwait(?:s|ed|ing)?\b",
            ],
            "Error message indicates timeout",
            "Timeout error detected",
        ),
        (
            FailureCategory.ENVIRONMENTAL_ISSUE,
            [
                r"\bnetwork\b",
                r"\bconnection\b",
                r"\beconnrefused\b",
            ],
            "Error message indicates network/connection issue",
            "Network error detected",
        ),
        (
            FailureCategory.ACTUAL_BUG,
            [
                r"\bassertion",
                r"\bexpected\b",
                r"\bactual\b",
            ],
            "Assertion failure likely indicates a bug",
            "Assertion failure detected",
        ),
        (
            FailureCategory.TEST_DATA_ISSUE,
            [
                r"\btest data\b",
                r"\bfixture",
                r"\binvalid credentials\b",
                r"\buser\b.*\bdoes not exist\b",
                r"\bduplicate (?:key|entry)\b",
            ],
            "Error message points at missing or invalid test data",
            "Test data problem detected",
        ),
    ]

    FALLBACK_ACTIONS = (
        "Review error message and stack trace",
        "Check recent code changes",
        "Verify test environment",
    )

    def __init__(self, oracle: OracleGateway, min_confidence: int = 70,
                 audit_trail: Optional[AuditTrail] = None):
        """
        Initialize the classifier.

        Args:
            oracle: Gateway to the AI oracle
            min_confidence: Oracle verdicts below this confidence are discarded
            audit_trail: Optional audit trail receiving every verdict and oracle error
        """
        self.oracle = oracle
        self.min_confidence = min_confidence
        self.audit_trail = audit_trail
        self._compiled_rules = [
            (category, [re.compile(p, re.IGNORECASE) for p in patterns], reasoning, evidence)
            for category, patterns, reasoning, evidence in self.FALLBACK_RULES
        ]

    async def classify(self, context: FailureContext) -> TriageResult:
        """Classify a single failure. Never raises for oracle problems."""
        log = get_healing_logger("triage", test_name=context.test_name)
        start_time = time.time()
        log.log_operation_start("classify", platform=context.platform)

        result = await self._classify_with_oracle(context)
        if result is None:
            result = self.classify_with_rules(context)

        log.log_operation_success(
            "classify", time.time() - start_time,
            category=result.category.value, confidence=result.confidence,
            source=result.source.value,
        )
        if self.audit_trail:
            self.audit_trail.log_triage(context.test_name, result)
        return result

    async def classify_batch(self, contexts: Sequence[FailureContext]) -> List[TriageResult]:
        """Classify several failures concurrently, results in input order."""
        logger.info(f"Starting batch failure analysis of {len(contexts)} failures")
        return list(await asyncio.gather(*(self.classify(context) for context in contexts)))

    def classify_with_rules(self, context: FailureContext) -> TriageResult:
        """Keyword-based verdict used when the oracle cannot be trusted.

        Every rule is tried against the error message before any rule looks
        at the stack trace, whose frames mention unrelated keywords.
        """
        logger.warning(f"Using fallback rule-based analysis for {context.test_name}")

        category = FailureCategory.UNKNOWN
        reasoning = "Fallback rule-based analysis"
        evidence: Tuple[str, ...] = ()

        for text in (context.error_message, context.stack_trace):
            match = self._match_rules(text)
            if match is not None:
                category, reasoning, rule_evidence = match
                evidence = (rule_evidence,)
                break

        return self._build_result(
            context, category, FALLBACK_CONFIDENCE, reasoning,
            evidence, self.FALLBACK_ACTIONS, None, TriageSource.RULES,
        )

    def _match_rules(self, text: str) -> Optional[Tuple[FailureCategory, str, str]]:
        if not text:
            return None
        for rule_category, patterns, rule_reasoning, rule_evidence in self._compiled_rules:
            if any(pattern.search(text) for pattern in patterns):
                return rule_category, rule_reasoning, rule_evidence
        return None

    async def _classify_with_oracle(self, context: FailureContext) -> Optional[TriageResult]:
        if not self.oracle.available:
            return None

        prompt = OraclePrompts.failure_analysis(context, has_screenshot=bool(context.screenshot_ref))
        try:
            response = await self.oracle.classify(prompt, context.screenshot_ref)
            payload = parse_oracle_payload(response, TriagePayload)
        except OracleUnavailableError as e:
            self._discard_oracle_verdict(context, f"Oracle unavailable for {context.test_name}: {e}")
            return None
        except MalformedOracleResponseError as e:
            self._discard_oracle_verdict(
                context, f"Discarding malformed oracle verdict for {context.test_name}: {e}")
            return None

        if payload.confidence < self.min_confidence:
            logger.info(
                f"Oracle confidence {payload.confidence} below {self.min_confidence} "
                f"for {context.test_name}, using rules"
            )
            return None

        return self._build_result(
            context, payload.category, payload.confidence, payload.reasoning,
            tuple(payload.evidence_points), tuple(payload.suggested_actions),
            payload.root_cause, TriageSource.ORACLE,
        )

    def _build_result(self, context: FailureContext, category: FailureCategory, confidence: int,
                      reasoning: str, evidence: Sequence[str], actions: Sequence[str],
                      root_cause: Optional[str], source: TriageSource) -> TriageResult:
        bug_probability = calculate_bug_probability(category, confidence)
        return TriageResult(
            category=category,
            confidence=confidence,
            bug_probability=bug_probability,
            reasoning=reasoning,
            evidence_points=tuple(evidence),
            suggested_actions=tuple(actions),
            root_cause=root_cause,
            source=source,
            summary=generate_summary(context.test_name, category, confidence, bug_probability),
        )

    def _discard_oracle_verdict(self, context: FailureContext, message: str) -> None:
        logger.warning(message)
        if self.audit_trail:
            self.audit_trail.log_error("triage", message, details={"test_name": context.test_name})
