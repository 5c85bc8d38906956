"""
JSON-file element store.

Persists every record to a single JSON document using an atomic write, so
the command line can keep agents and tasks between invocations.
"""

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import TypeAdapter, ValidationError

from forge_orchestrator.models.elements import AnyElement
from forge_orchestrator.store.memory import MemoryStore
from forge_orchestrator.utils.io import atomic_write_text, shared_file_lock

logger = logging.getLogger(__name__)

_element_adapter: TypeAdapter = TypeAdapter(AnyElement)


class JsonStore(MemoryStore):
    """MemoryStore mirrored to ``path`` after every mutation."""

    FORMAT_VERSION = "1"

    def __init__(self, path: str | Path):
        super().__init__()
        self.path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return

        try:
            with open(self.path, encoding="utf-8") as f:
                with shared_file_lock(f):
                    data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read store file {self.path}: {e}")
            return

        for raw in data.get("elements", []):
            try:
                element = _element_adapter.validate_python(raw)
            except ValidationError as e:
                logger.warning(f"Skipping invalid record in {self.path}: {e}")
                continue
            self._elements[element.id] = element

        logger.debug(f"Loaded {len(self._elements)} records from {self.path}")

    def _persist(self) -> None:
        payload: dict[str, Any] = {
            "version": self.FORMAT_VERSION,
            "elements": [
                element.model_dump(mode="json") for element in self._elements.values()
            ],
        }
        atomic_write_text(self.path, json.dumps(payload, indent=2), perms=0o600)
