"""
Tests for the HealingEngine facade.
"""

import json

import pytest

from healing_engine.core.config import settings
from healing_engine.core.exceptions import ConfigurationError
from healing_engine.core.models import (
    ChangeStatus, ElementRef, EngineConfiguration, FailureCategory, OutcomeStatus
)
from healing_engine.services.engine import HealingEngine
from healing_engine.services.locator_store import JsonFileLocatorStore
from tests.utils.healing_fakes import (
    FakeElementLocator, FakeOracle, USERNAME_FALLBACK, USERNAME_PATH, triage_json
)


pytestmark = pytest.mark.integration

USERNAME = ElementRef.from_path(USERNAME_PATH)


@pytest.fixture
def engine(locator_store, engine_config):
    return HealingEngine(
        oracle=FakeOracle(classify_responses=[triage_json("FLAKY_LOCATOR", 92)]),
        store=locator_store,
        element_locator=FakeElementLocator(resolvable=[USERNAME_FALLBACK]),
        config=engine_config,
    )


class TestHealingEngine:

    @pytest.mark.asyncio
    async def test_triage_then_heal(self, engine, locator_store, failure_context):
        triage = await engine.classify_failure(failure_context)
        assert triage.category == FailureCategory.FLAKY_LOCATOR
        assert triage.is_locator_failure

        outcome = await engine.heal_locator(USERNAME, failure_context)

        assert outcome.status == OutcomeStatus.AUTO_APPLIED
        assert locator_store.read(USERNAME_PATH).primary == USERNAME_FALLBACK
        assert engine.healing_statistics()["by_status"]["auto_applied"] == 1

    @pytest.mark.asyncio
    async def test_classify_failures(self, engine, failure_context):
        results = await engine.classify_failures([failure_context, failure_context])
        assert len(results) == 2

    @pytest.mark.asyncio
    async def test_change_workflow(self, locator_store, failure_context):
        engine = HealingEngine(
            oracle=None,
            store=locator_store,
            element_locator=FakeElementLocator(resolvable=[USERNAME_FALLBACK]),
            config=EngineConfiguration(require_approval=True),
        )

        outcome = await engine.heal_locator(USERNAME, failure_context)
        assert [c.id for c in engine.pending_changes()] == [outcome.change.id]

        rejected = await engine.reject_change(outcome.change.id, "not now")

        assert rejected.status == ChangeStatus.REJECTED
        assert engine.pending_changes() == []

    @pytest.mark.asyncio
    async def test_without_driver_only_triage_works(self, locator_store, failure_context):
        engine = HealingEngine(oracle=None, store=locator_store)

        triage = await engine.classify_failure(failure_context)
        assert triage.category == FailureCategory.FLAKY_LOCATOR

        with pytest.raises(ConfigurationError):
            await engine.heal_locator(USERNAME, failure_context)
        with pytest.raises(ConfigurationError):
            await engine.approve_change("change-1")
        with pytest.raises(ConfigurationError):
            await engine.record_healing_outcome("change-1", True)
        assert engine.healing_statistics()["total"] == 0

    def test_from_settings(self, tmp_path, monkeypatch):
        locators_file = tmp_path / "locators.json"
        locators_file.write_text(json.dumps({}), encoding="utf-8")
        monkeypatch.setattr(settings, "LOCATORS_FILE", str(locators_file))

        engine = HealingEngine.from_settings(oracle=FakeOracle(),
                                             config_path=str(tmp_path / "missing.yaml"))

        assert isinstance(engine.store, JsonFileLocatorStore)
        assert engine.store.file_path == locators_file
        assert engine.oracle.available
        assert engine.orchestrator is None
        assert engine.config.auto_apply_threshold == settings.SELF_HEALING_THRESHOLD
