"""
Tests for the in-memory and JSON file locator stores.
"""

import json
import os
from datetime import date, datetime

import pytest

from healing_engine.core.exceptions import LocatorNotFoundError
from healing_engine.core.models import HealingRecord, HealingStrategy, Locator
from healing_engine.services.locator_store import InMemoryLocatorStore, JsonFileLocatorStore
from tests.utils.healing_fakes import USERNAME_FALLBACK, USERNAME_PATH, USERNAME_PRIMARY


LOCATORS_DOCUMENT = {
    "loginPage": {
        "username": {
            "description": "Username text field",
            "primary": {"type": "accessibility_id", "value": "username-input"},
            "fallbacks": [
                {"type": "xpath", "value": "//EditText[@content-desc='Username']"},
                {"type": "id", "value": "com.example:id/username"},
            ],
            "metadata": {
                "lastVerified": "2024-01-15",
                "owner": "auth-team",
                "stability": 0.85,
                "lastKnown": {
                    "text": "Username",
                    "rect": {"x": 40, "y": 300, "width": 600, "height": 80},
                    "attributes": {"content-desc": "Username"},
                },
            },
        },
        "submit": {
            "primary": {"type": "accessibility_id", "value": "login-button"},
            "fallbacks": [],
        },
    }
}


def promotion(candidate, change_id="change-1"):
    def mutation(definition):
        record = HealingRecord(
            timestamp=datetime(2024, 2, 1, 10, 30),
            old_locator=definition.primary,
            new_locator=candidate,
            strategy=HealingStrategy.FALLBACK_CHAIN,
            confidence=89,
            change_id=change_id,
        )
        return definition.promote(candidate, record)
    return mutation


@pytest.fixture
def locators_file(tmp_path):
    path = tmp_path / "locators.json"
    path.write_text(json.dumps(LOCATORS_DOCUMENT), encoding="utf-8")
    return path


class TestInMemoryLocatorStore:

    def test_read_returns_copies(self, locator_store):
        definition = locator_store.read(USERNAME_PATH)
        definition.fallbacks.append(Locator("id", "tampered"))

        assert locator_store.read(USERNAME_PATH).fallbacks == [USERNAME_FALLBACK]

    def test_update_applies_mutation(self, locator_store):
        updated = locator_store.update(USERNAME_PATH, promotion(USERNAME_FALLBACK))

        assert updated.primary == USERNAME_FALLBACK
        stored = locator_store.read(USERNAME_PATH)
        assert stored.primary == USERNAME_FALLBACK
        assert stored.fallbacks == [USERNAME_PRIMARY]
        assert stored.version == 1

    def test_failing_mutation_leaves_definition_unchanged(self, locator_store):
        def broken(definition):
            definition.primary = USERNAME_FALLBACK
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            locator_store.update(USERNAME_PATH, broken)

        assert locator_store.read(USERNAME_PATH).primary == USERNAME_PRIMARY

    def test_unknown_path(self):
        store = InMemoryLocatorStore()

        with pytest.raises(LocatorNotFoundError):
            store.read(USERNAME_PATH)
        with pytest.raises(LocatorNotFoundError):
            store.update(USERNAME_PATH, lambda d: d)


class TestJsonFileLocatorStore:

    def test_reads_page_object_layout(self, locators_file):
        store = JsonFileLocatorStore(str(locators_file))

        definition = store.read(USERNAME_PATH)

        assert definition.primary == USERNAME_PRIMARY
        assert definition.fallbacks == [USERNAME_FALLBACK, Locator("id", "com.example:id/username")]
        assert definition.stability == 0.85
        assert definition.version == 0
        assert definition.failed_healings == 0
        assert definition.history == []
        assert definition.last_known.text == "Username"
        assert definition.last_known.rect.width == 600

    def test_defaults_for_bare_entries(self, locators_file):
        definition = JsonFileLocatorStore(str(locators_file)).read("loginPage.submit")

        assert definition.fallbacks == []
        assert definition.stability == 0.5
        assert definition.last_known is None

    def test_string_locators(self, tmp_path):
        path = tmp_path / "locators.json"
        path.write_text(json.dumps({"loginPage": {"username": {
            "primary": "accessibility_id=username-input",
            "fallbacks": ["xpath=//EditText[@text='a=b']", {"type": "id", "value": "user"}],
        }}}), encoding="utf-8")
        store = JsonFileLocatorStore(str(path))

        definition = store.read(USERNAME_PATH)

        assert definition.primary == USERNAME_PRIMARY
        assert definition.fallbacks == [Locator("xpath", "//EditText[@text='a=b']"), Locator("id", "user")]

    def test_unparseable_string_locator(self, tmp_path):
        path = tmp_path / "locators.json"
        path.write_text(json.dumps({"loginPage": {"username": {"primary": "username-input"}}}),
                        encoding="utf-8")

        with pytest.raises(ValueError):
            JsonFileLocatorStore(str(path)).read(USERNAME_PATH)

    def test_update_writes_promotion_and_history(self, locators_file):
        store = JsonFileLocatorStore(str(locators_file))

        store.update(USERNAME_PATH, promotion(USERNAME_FALLBACK))

        entry = json.loads(locators_file.read_text(encoding="utf-8"))["loginPage"]["username"]
        assert entry["primary"] == {"type": "xpath", "value": "//EditText[@content-desc='Username']"}
        assert entry["fallbacks"][0] == {"type": "accessibility_id", "value": "username-input"}
        assert len(entry["fallbacks"]) == 2
        metadata = entry["metadata"]
        assert metadata["version"] == 1
        assert metadata["lastVerified"] == date.today().isoformat()
        assert metadata["healingHistory"][0]["changeId"] == "change-1"
        assert metadata["healingHistory"][0]["oldLocator"]["value"] == "username-input"

        # And it reads back the same way
        definition = store.read(USERNAME_PATH)
        assert definition.primary == USERNAME_FALLBACK
        assert definition.history[0].change_id == "change-1"
        assert definition.history[0].strategy == HealingStrategy.FALLBACK_CHAIN

    def test_unknown_keys_are_preserved(self, locators_file):
        store = JsonFileLocatorStore(str(locators_file))

        store.update(USERNAME_PATH, promotion(USERNAME_FALLBACK))

        document = json.loads(locators_file.read_text(encoding="utf-8"))
        entry = document["loginPage"]["username"]
        assert entry["description"] == "Username text field"
        assert entry["metadata"]["owner"] == "auth-team"
        assert document["loginPage"]["submit"] == LOCATORS_DOCUMENT["loginPage"]["submit"]

    def test_counter_update_keeps_last_verified(self, locators_file):
        store = JsonFileLocatorStore(str(locators_file))

        def count_failure(definition):
            definition.failed_healings += 1
            return definition

        store.update(USERNAME_PATH, count_failure)

        metadata = json.loads(locators_file.read_text(encoding="utf-8"))["loginPage"]["username"]["metadata"]
        assert metadata["failedHealings"] == 1
        assert metadata["lastVerified"] == "2024-01-15"

    def test_write_leaves_no_temporary_files(self, locators_file):
        store = JsonFileLocatorStore(str(locators_file))

        store.update(USERNAME_PATH, promotion(USERNAME_FALLBACK))

        assert os.listdir(locators_file.parent) == ["locators.json"]

    def test_failed_replace_keeps_original_file(self, locators_file, monkeypatch):
        store = JsonFileLocatorStore(str(locators_file))
        original = locators_file.read_text(encoding="utf-8")

        def failing_replace(src, dst):
            raise OSError("read-only file system")

        monkeypatch.setattr("healing_engine.services.locator_store.os.replace", failing_replace)

        with pytest.raises(OSError):
            store.update(USERNAME_PATH, promotion(USERNAME_FALLBACK))

        assert locators_file.read_text(encoding="utf-8") == original
        assert os.listdir(locators_file.parent) == ["locators.json"]

    def test_missing_element_and_missing_file(self, tmp_path, locators_file):
        with pytest.raises(LocatorNotFoundError):
            JsonFileLocatorStore(str(locators_file)).read("loginPage.password")
        with pytest.raises(LocatorNotFoundError):
            JsonFileLocatorStore(str(tmp_path / "absent.json")).read(USERNAME_PATH)

    def test_malformed_element_path(self, locators_file):
        with pytest.raises(ValueError):
            JsonFileLocatorStore(str(locators_file)).read("username")
