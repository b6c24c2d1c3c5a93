"""
AI oracle access for triage and locator suggestion.

The oracle is slow and unreliable. ``OracleGateway`` is the only way the
engine talks to it: every call gets a timeout and a single retry, and any
failure comes out as ``OracleUnavailableError`` so callers can fall back.
"""

import asyncio
import logging
import os
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from crewai.llm import LLM

from ..core.config import settings
from ..core.exceptions import OracleTimeoutError, OracleUnavailableError
from ..core.models import Locator
from .oracle_prompts import OraclePrompts


logger = logging.getLogger(__name__)


class AIOracle(Protocol):
    """Capability the engine consumes for AI-backed analysis.

    Both methods return the raw text answer; validation happens in the caller.
    """

    async def classify(self, prompt: str, image: Optional[str] = None) -> str:
        ...

    async def suggest_locator(self, failed_locator: Locator, image: str, page_context: str) -> str:
        ...


def get_llm(model_provider: str, model_name: str) -> LLM:
    """Get LLM instance based on provider and model name."""
    if model_provider == "local":
        return LLM(
            model=model_name,
            temperature=settings.ORACLE_TEMPERATURE,
            max_tokens=settings.ORACLE_MAX_TOKENS,
        )
    return LLM(
        api_key=os.getenv("GEMINI_API_KEY") or settings.GEMINI_API_KEY,
        model=model_name,
        temperature=settings.ORACLE_TEMPERATURE,
        max_tokens=settings.ORACLE_MAX_TOKENS,
    )


def image_content(image: str) -> Dict[str, Any]:
    """Message part for a screenshot given as URL, data URL or bare base64."""
    if image.startswith(("http://", "https://", "data:")):
        url = image
    else:
        url = f"data:image/png;base64,{image}"
    return {"type": "image_url", "image_url": {"url": url}}


class LLMOracle:
    """AI oracle backed by a multimodal chat model."""

    def __init__(self, model_provider: Optional[str] = None, model_name: Optional[str] = None,
                 llm: Optional[LLM] = None):
        """Initialize the oracle.

        Args:
            model_provider: "online" or "local", defaults to settings
            model_name: Model to use, defaults to the provider's model in settings
            llm: Ready-made LLM instance, mostly for tests
        """
        self.model_provider = model_provider or settings.MODEL_PROVIDER
        if model_name is None:
            model_name = settings.ONLINE_MODEL if self.model_provider == "online" else settings.LOCAL_MODEL
        self.model_name = model_name
        self._llm = llm or get_llm(self.model_provider, self.model_name)

        logger.info(f"LLM oracle initialized with {self.model_provider}/{self.model_name}")

    async def classify(self, prompt: str, image: Optional[str] = None) -> str:
        return await self._call(self._user_message(prompt, image))

    async def suggest_locator(self, failed_locator: Locator, image: str, page_context: str) -> str:
        prompt = OraclePrompts.locator_suggestion(failed_locator, page_context)
        return await self._call(self._user_message(prompt, image))

    def _user_message(self, text: str, image: Optional[str]) -> List[Dict[str, Any]]:
        content: List[Dict[str, Any]] = [{"type": "text", "text": text}]
        if image:
            content.append(image_content(image))
        return [{"role": "user", "content": content}]

    async def _call(self, messages: List[Dict[str, Any]]) -> str:
        # LLM.call blocks on network I/O
        response = await asyncio.to_thread(self._llm.call, messages)
        if not isinstance(response, str):
            raise OracleUnavailableError(f"Unexpected LLM response type {type(response).__name__}")
        return response


class OracleGateway:
    """Timeout and retry policy around an ``AIOracle``."""

    def __init__(self, oracle: Optional[AIOracle], timeout: float = 30.0, retries: int = 1):
        """
        Args:
            oracle: The oracle to call; None means no oracle is configured
            timeout: Seconds allowed per attempt
            retries: Extra attempts after the first failure
        """
        self.oracle = oracle
        self.timeout = timeout
        self.retries = retries

    @property
    def available(self) -> bool:
        return self.oracle is not None

    async def classify(self, prompt: str, image: Optional[str] = None) -> str:
        if self.oracle is None:
            raise OracleUnavailableError("No AI oracle configured")
        return await self._with_retry("classify", lambda: self.oracle.classify(prompt, image))

    async def suggest_locator(self, failed_locator: Locator, image: str, page_context: str) -> str:
        if self.oracle is None:
            raise OracleUnavailableError("No AI oracle configured")
        return await self._with_retry(
            "suggest_locator",
            lambda: self.oracle.suggest_locator(failed_locator, image, page_context))

    async def _with_retry(self, operation: str, call: Callable[[], Awaitable[str]]) -> str:
        attempts = 1 + max(0, self.retries)
        last_error: Optional[OracleUnavailableError] = None

        for attempt in range(attempts):
            start = time.time()
            try:
                response = await asyncio.wait_for(call(), timeout=self.timeout)
                logger.debug(f"Oracle {operation} answered in {time.time() - start:.2f}s")
                return response
            except asyncio.TimeoutError:
                last_error = OracleTimeoutError(
                    f"Oracle {operation} timed out after {self.timeout:.1f}s")
            except OracleUnavailableError as e:
                last_error = e
            except Exception as e:
                # Provider SDKs raise their own exception types
                last_error = OracleUnavailableError(f"Oracle {operation} failed: {e}")

            logger.warning(f"Oracle {operation} attempt {attempt + 1}/{attempts} failed: {last_error}")

        raise last_error
