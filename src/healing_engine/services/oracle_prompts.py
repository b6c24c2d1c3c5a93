"""
Prompt templates for the AI oracle.

Each template asks for a single JSON object whose shape matches the models in
``core.models.oracle_models``.
"""

from typing import Optional

from ..core.models import FailureContext, Locator


class OraclePrompts:
    """Prompt building blocks for failure triage and locator suggestion."""

    CATEGORY_GUIDE = """
Categorize the failure into ONE of the following categories:

1. ACTUAL_BUG - A genuine application defect or regression
2. FLAKY_LOCATOR - Element locator changed (ID, class, xpath changed in UI)
3. TIMING_ISSUE - Race condition, synchronization, or timeout problem
4. ENVIRONMENTAL_ISSUE - Infrastructure, network, or setup problem
5. TEST_DATA_ISSUE - Missing, stale or invalid test data
6. UNKNOWN - Not enough evidence for any of the above
"""

    TRIAGE_RESPONSE_FORMAT = """
Provide your response in the following JSON format:
{
  "category": "ACTUAL_BUG | FLAKY_LOCATOR | TIMING_ISSUE | ENVIRONMENTAL_ISSUE | TEST_DATA_ISSUE | UNKNOWN",
  "confidence": <integer 0-100>,
  "reasoning": "<detailed explanation>",
  "evidencePoints": ["<specific evidence 1>", "<specific evidence 2>"],
  "suggestedActions": ["<action 1>", "<action 2>"],
  "rootCause": "<likely root cause if identifiable>"
}

Be specific and provide confidence based on available evidence. Higher confidence
(80-100) for clear indicators, lower (30-60) for ambiguous cases.
"""

    LOCATOR_RESPONSE_FORMAT = """
Provide your response in JSON format:
{
  "suggestedLocators": [
    {
      "type": "accessibility_id | resource_id | id | xpath | css | class_name | android_uiautomator | ios_predicate",
      "value": "<locator value>",
      "confidence": <number 0-100>,
      "reasoning": "<why this locator is better>"
    }
  ],
  "elementDescription": "<what element you identified in the screenshot>",
  "additionalNotes": "<any other observations>"
}

Prioritize stability and uniqueness. Prefer:
1. Accessibility IDs
2. Resource IDs
3. Unique text
4. Relative XPath (short and stable)

Avoid fragile locators like absolute XPath or index-based selectors.
"""

    MAX_LOG_LINES = 20

    @classmethod
    def failure_analysis(cls, context: FailureContext, has_screenshot: bool = False) -> str:
        """Build the classification prompt for a failure."""
        history = context.test_history
        lines = [
            "You are an expert QA engineer analyzing a test failure. Your task is to "
            "categorize the failure and provide actionable insights.",
            "",
            "Test Information:",
            f"- Test Name: {context.test_name}",
            f"- Platform: {context.platform}",
            f"- Error Message: {context.error_message}",
            f"- Historical success rate: {history.success_rate:.0%} over {history.total_runs} runs",
        ]
        if history.last_success:
            lines.append(f"- Last success: {history.last_success.isoformat()}")
        if context.failed_locator:
            lines.append(f"- Locator Used: {context.failed_locator}")

        lines += ["", "Stack Trace:", context.stack_trace or "(none)"]

        if context.recent_logs:
            lines += ["", "Recent Logs:"]
            lines += list(context.recent_logs[-cls.MAX_LOG_LINES:])

        if has_screenshot:
            lines += ["", "Screenshot is attached showing the state when the failure occurred."]

        return "\n".join(lines) + "\n" + cls.CATEGORY_GUIDE + cls.TRIAGE_RESPONSE_FORMAT

    @classmethod
    def locator_suggestion(cls, failed_locator: Locator, page_context: str,
                           error: Optional[str] = None) -> str:
        """Build the locator suggestion prompt for a broken locator."""
        lines = [
            "You are an expert in mobile test automation. A test failed because an "
            "element locator no longer works.",
            "",
            "Failed Locator:",
            f"- Type: {failed_locator.type}",
            f"- Value: {failed_locator.value}",
            "",
            f"Error: {error or 'element not found'}",
            "",
            f"Page Context: {page_context}",
            "",
            "Screenshot is attached showing the current state of the UI.",
            "",
            "Please analyze the screenshot and suggest a better, more stable locator for this element.",
        ]
        return "\n".join(lines) + "\n" + cls.LOCATOR_RESPONSE_FORMAT
