"""
Locator storage.

A store maps element paths (``page.element``) to ``LocatorDefinition``s.
``read`` hands out copies; ``update`` applies a mutation atomically for one
key. Both are synchronous so a commit can run without yielding to the event
loop.
"""

import json
import logging
import os
import tempfile
import threading
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol

from ..core.exceptions import LocatorNotFoundError
from ..core.models import (
    ElementRef, ElementSnapshot, HealingRecord, Locator, LocatorDefinition
)


logger = logging.getLogger(__name__)

Mutation = Callable[[LocatorDefinition], LocatorDefinition]


class LocatorStore(Protocol):
    """Persistent locator definitions, keyed by element path."""

    def read(self, element_path: str) -> LocatorDefinition:
        ...

    def update(self, element_path: str, mutation: Mutation) -> LocatorDefinition:
        ...


class InMemoryLocatorStore:
    """Dictionary-backed store, mainly for tests and embedding."""

    def __init__(self, definitions: Optional[Dict[str, LocatorDefinition]] = None):
        self._lock = threading.Lock()
        self._definitions: Dict[str, LocatorDefinition] = {
            path: definition.copy() for path, definition in (definitions or {}).items()
        }

    def read(self, element_path: str) -> LocatorDefinition:
        with self._lock:
            definition = self._definitions.get(element_path)
            if definition is None:
                raise LocatorNotFoundError(element_path)
            return definition.copy()

    def update(self, element_path: str, mutation: Mutation) -> LocatorDefinition:
        with self._lock:
            current = self._definitions.get(element_path)
            if current is None:
                raise LocatorNotFoundError(element_path)
            updated = mutation(current.copy())
            self._definitions[element_path] = updated.copy()
            return updated.copy()


class JsonFileLocatorStore:
    """Store backed by a page-object ``locators.json`` file.

    File layout::

        {
          "loginPage": {
            "username": {
              "primary": {"type": "accessibility_id", "value": "username-input"},
              "fallbacks": [{"type": "xpath", "value": "//EditText[1]"}],
              "metadata": {"lastVerified": "2024-01-15", "healingHistory": []}
            }
          }
        }

    Writes go to a temporary file in the same directory which then replaces
    the original, so readers never see a half-written file.
    """

    def __init__(self, file_path: str):
        self.file_path = Path(file_path)
        self._lock = threading.Lock()

    def read(self, element_path: str) -> LocatorDefinition:
        ref = ElementRef.from_path(element_path)
        with self._lock:
            document = self._load()
            return self._definition_from(document, ref)

    def update(self, element_path: str, mutation: Mutation) -> LocatorDefinition:
        ref = ElementRef.from_path(element_path)
        with self._lock:
            document = self._load()
            current = self._definition_from(document, ref)
            updated = mutation(current.copy())

            entry = document[ref.page][ref.element]
            document[ref.page][ref.element] = self.definition_to_entry(updated, entry)
            self._write(document)

        logger.info(f"Updated {element_path} in {self.file_path} (version {updated.version})")
        return updated.copy()

    def _load(self) -> Dict[str, Any]:
        if not self.file_path.exists():
            return {}
        with open(self.file_path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write(self, document: Dict[str, Any]) -> None:
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.file_path.parent), prefix=f".{self.file_path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.file_path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _definition_from(self, document: Dict[str, Any], ref: ElementRef) -> LocatorDefinition:
        entry = document.get(ref.page, {}).get(ref.element)
        if entry is None:
            raise LocatorNotFoundError(ref.element_path)
        return self.entry_to_definition(entry)

    @staticmethod
    def entry_to_definition(entry: Dict[str, Any]) -> LocatorDefinition:
        metadata = entry.get("metadata", {})
        last_known = metadata.get("lastKnown")
        return LocatorDefinition(
            primary=_locator_from_entry(entry["primary"]),
            fallbacks=[_locator_from_entry(item) for item in entry.get("fallbacks", [])],
            history=[HealingRecord.from_dict(item) for item in metadata.get("healingHistory", [])],
            last_known=ElementSnapshot.from_dict(last_known) if last_known else None,
            failed_healings=int(metadata.get("failedHealings", 0)),
            stability=float(metadata.get("stability", 0.5)),
            version=int(metadata.get("version", 0)),
        )

    @staticmethod
    def definition_to_entry(definition: LocatorDefinition,
                            previous: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Serialize a definition, keeping unknown keys of the previous entry."""
        entry = dict(previous or {})
        metadata = dict(entry.get("metadata", {}))

        previous_version = int(metadata.get("version", 0))
        if definition.version != previous_version:
            metadata["lastVerified"] = date.today().isoformat()
        metadata.update({
            "healingHistory": [record.to_dict() for record in definition.history],
            "failedHealings": definition.failed_healings,
            "stability": definition.stability,
            "version": definition.version,
        })
        if definition.last_known is not None:
            metadata["lastKnown"] = definition.last_known.to_dict()

        entry["primary"] = definition.primary.to_dict()
        entry["fallbacks"] = [locator.to_dict() for locator in definition.fallbacks]
        entry["metadata"] = metadata
        return entry



def _locator_from_entry(item: Any) -> Locator:
    """Locators are stored as ``{"type", "value"}`` objects or ``"type=value"`` strings."""
    if isinstance(item, str):
        return Locator.parse(item)
    return Locator.from_dict(item)
