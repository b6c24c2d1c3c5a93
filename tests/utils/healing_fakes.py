"""
Test doubles for the engine's external capabilities.

Provides scriptable stand-ins for the AI oracle and the driver-backed
element locator, plus helpers building oracle JSON answers.
"""

import asyncio
import json
from typing import Dict, Iterable, List, Optional

from healing_engine.core.exceptions import OracleUnavailableError
from healing_engine.core.models import LiveElement, Locator


USERNAME_PATH = "loginPage.username"
USERNAME_PRIMARY = Locator("accessibility_id", "username-input")
USERNAME_FALLBACK = Locator("xpath", "//EditText[@content-desc='Username']")


class FakeOracle:
    """Scriptable AI oracle.

    Each response may be a string, an exception instance to raise, or a
    callable returning either. The last response is repeated once the
    others are used up.
    """

    def __init__(self, classify_responses: Iterable = (), suggest_responses: Iterable = (),
                 delay: float = 0.0):
        self.classify_responses: List = list(classify_responses)
        self.suggest_responses: List = list(suggest_responses)
        self.delay = delay
        self.classify_calls: List[Dict] = []
        self.suggest_calls: List[Dict] = []

    async def classify(self, prompt: str, image: Optional[str] = None) -> str:
        self.classify_calls.append({"prompt": prompt, "image": image})
        return await self._answer(self.classify_responses)

    async def suggest_locator(self, failed_locator: Locator, image: str, page_context: str) -> str:
        self.suggest_calls.append({"failed_locator": failed_locator, "image": image,
                                   "page_context": page_context})
        return await self._answer(self.suggest_responses)

    async def _answer(self, responses: List):
        if self.delay:
            await asyncio.sleep(self.delay)
        if not responses:
            raise OracleUnavailableError("no scripted response")
        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if callable(response):
            response = response()
        if isinstance(response, BaseException):
            raise response
        return response


class FakeElementLocator:
    """Driver stand-in: a fixed set of resolvable locators and live elements."""

    def __init__(self, resolvable: Iterable[Locator] = (),
                 siblings: Optional[Dict[str, List[LiveElement]]] = None,
                 failing: Iterable[Locator] = (), delay: float = 0.0):
        self.resolvable = set(resolvable)
        self.siblings = siblings or {}
        self.failing = set(failing)
        self.delay = delay
        self.resolve_calls: List[Locator] = []
        self.sibling_calls: List[str] = []

    async def resolve(self, locator: Locator) -> bool:
        self.resolve_calls.append(locator)
        if self.delay:
            await asyncio.sleep(self.delay)
        if locator in self.failing:
            raise RuntimeError(f"driver crashed resolving {locator}")
        return locator in self.resolvable

    async def similar_siblings(self, kind: str) -> List[LiveElement]:
        self.sibling_calls.append(kind)
        return list(self.siblings.get(kind, []))


def triage_json(category: str = "FLAKY_LOCATOR", confidence: int = 92, **overrides) -> str:
    payload = {
        "category": category,
        "confidence": confidence,
        "reasoning": "The accessibility id of the username field changed in the last build",
        "evidencePoints": ["NoSuchElementError for username-input"],
        "suggestedActions": ["Update the locator"],
        "rootCause": "Renamed accessibility id",
    }
    payload.update(overrides)
    return json.dumps(payload)


def suggestion_json(*suggestions: Dict) -> str:
    return json.dumps({
        "suggestedLocators": list(suggestions),
        "elementDescription": "Username text field",
        "additionalNotes": None,
    })
