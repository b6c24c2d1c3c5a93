"""Validated shapes of AI oracle responses.

Oracle answers are free text that should contain one JSON object. These
models are the contract: anything that does not validate is treated as a
failed oracle call by the caller.
"""

import json
import re
from typing import List, Optional, Type, TypeVar

from pydantic import BaseModel, Field, StrictStr, ValidationError, validator

from ..exceptions import MalformedOracleResponseError
from .triage_models import FailureCategory


class TriagePayload(BaseModel):
    """Expected answer to a failure classification prompt."""
    category: FailureCategory
    confidence: int = Field(ge=0, le=100, strict=True)
    reasoning: StrictStr
    evidence_points: List[StrictStr] = Field(alias="evidencePoints")
    suggested_actions: List[StrictStr] = Field(alias="suggestedActions")
    root_cause: Optional[StrictStr] = Field(default=None, alias="rootCause")

    @validator("category", pre=True)
    def parse_category(cls, v):
        """Accept ``FLAKY_LOCATOR`` as well as ``flaky_locator``."""
        if not isinstance(v, str):
            raise ValueError(f"category must be a string, got {type(v).__name__}")
        return FailureCategory.parse(v)


class LocatorSuggestion(BaseModel):
    """One ranked locator proposed by the oracle."""
    type: StrictStr
    value: StrictStr
    confidence: float = Field(ge=0, le=100)
    reasoning: str = ""

    @validator("value")
    def value_not_blank(cls, v):
        if not v.strip():
            raise ValueError("locator value must not be blank")
        return v


class LocatorSuggestionPayload(BaseModel):
    """Expected answer to a locator suggestion prompt."""
    suggested_locators: List[LocatorSuggestion] = Field(alias="suggestedLocators")
    element_description: str = Field(default="", alias="elementDescription")
    additional_notes: Optional[str] = Field(default=None, alias="additionalNotes")

    def best(self) -> Optional[LocatorSuggestion]:
        """Highest-confidence suggestion; the earliest one wins ties."""
        best = None
        for suggestion in self.suggested_locators:
            if best is None or suggestion.confidence > best.confidence:
                best = suggestion
        return best


PayloadT = TypeVar("PayloadT", bound=BaseModel)

_FENCED_JSON = re.compile(r"```json\s*([\s\S]*?)\s*```")
_FENCED_ANY = re.compile(r"```\s*([\s\S]*?)\s*```")


def extract_json_text(response: str) -> str:
    """Pull the JSON document out of an oracle answer, fenced or not."""
    match = _FENCED_JSON.search(response) or _FENCED_ANY.search(response)
    return (match.group(1) if match else response).strip()


def parse_oracle_payload(response: str, model: Type[PayloadT]) -> PayloadT:
    """Parse and strictly validate an oracle answer.

    Raises:
        MalformedOracleResponseError: If the answer is not valid JSON or does
            not match ``model``
    """
    if not isinstance(response, str) or not response.strip():
        raise MalformedOracleResponseError("Empty oracle response", raw_response=response)

    try:
        data = json.loads(extract_json_text(response))
    except json.JSONDecodeError as e:
        raise MalformedOracleResponseError(
            f"Oracle response is not valid JSON: {e}", raw_response=response) from e

    if not isinstance(data, dict):
        raise MalformedOracleResponseError(
            f"Oracle response must be a JSON object, got {type(data).__name__}",
            raw_response=response)

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise MalformedOracleResponseError(
            f"Oracle response failed {model.__name__} validation: {e.error_count()} error(s)",
            raw_response=response) from e
