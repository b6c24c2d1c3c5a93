"""
Pytest configuration and shared fixtures for the test suite.
"""

import sys
from pathlib import Path

import pytest

# Add the package source to Python path for testing
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from healing_engine.core.models import (  # noqa: E402
    ElementSnapshot, EngineConfiguration, FailureContext, LocatorDefinition, Rect, RunHistory
)
from healing_engine.services.locator_store import InMemoryLocatorStore  # noqa: E402
from tests.utils.healing_fakes import (  # noqa: E402
    USERNAME_FALLBACK, USERNAME_PATH, USERNAME_PRIMARY
)


@pytest.fixture
def username_definition():
    """Username field with one curated fallback and a stability of 0.85."""
    return LocatorDefinition(
        primary=USERNAME_PRIMARY,
        fallbacks=[USERNAME_FALLBACK],
        last_known=ElementSnapshot(
            text="Username",
            rect=Rect(x=40, y=300, width=600, height=80),
            attributes={"content-desc": "Username", "class": "android.widget.EditText"},
        ),
        stability=0.85,
    )


@pytest.fixture
def locator_store(username_definition):
    return InMemoryLocatorStore({USERNAME_PATH: username_definition})


@pytest.fixture
def engine_config():
    return EngineConfiguration(oracle_timeout=0.5, lock_timeout=0.5)


@pytest.fixture
def failure_context():
    """Username lookup failed on Android."""
    return FailureContext(
        test_name="Login with valid credentials",
        platform="android",
        error_message="NoSuchElementError: element not found",
        stack_trace="at LoginPage.enterUsername (LoginPage.ts:21)",
        failed_locator=USERNAME_PRIMARY,
        recent_logs=("Opening login screen", "Looking up username-input"),
        test_history=RunHistory(success_rate=0.0, total_runs=0),
    )
