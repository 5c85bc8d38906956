"""In-memory element store."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, Optional

from forge_orchestrator.models.elements import Channel, Element, Entity
from forge_orchestrator.store.base import ElementNotFoundError, StoreError, VersionConflictError

logger = logging.getLogger(__name__)


class MemoryStore:
    """Process-local store keeping deep copies of every record.

    Records handed out are copies, so callers cannot mutate stored state
    without going through ``update``.
    """

    def __init__(self) -> None:
        self._elements: dict[str, Element] = {}
        self._lock = threading.RLock()

    def get(self, element_id: str) -> Optional[Element]:
        with self._lock:
            element = self._elements.get(element_id)
            return element.model_copy(deep=True) if element else None

    def list(self, type: Optional[str] = None, **filters: Any) -> list[Element]:
        with self._lock:
            elements = list(self._elements.values())

        results = []
        for element in elements:
            if type is not None and getattr(element, "type", None) != type:
                continue
            if all(getattr(element, key, None) == value for key, value in filters.items()):
                results.append(element.model_copy(deep=True))
        return results

    def create(self, element: Element) -> Element:
        with self._lock:
            if element.id in self._elements:
                raise StoreError(f"Element already exists: {element.id}")
            stored = element.model_copy(deep=True)
            self._elements[stored.id] = stored
            self._persist()
            logger.debug(f"Created {getattr(stored, 'type', 'element')} {stored.id}")
            return stored.model_copy(deep=True)

    def update(
        self,
        element_id: str,
        changes: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Element:
        with self._lock:
            current = self._elements.get(element_id)
            if current is None:
                raise ElementNotFoundError(element_id)
            if expected_version is not None and expected_version != current.version:
                raise VersionConflictError(element_id, expected_version, current.version)

            data = current.model_dump()
            data.update(changes)
            data["id"] = current.id
            data["version"] = current.version + 1
            data["updated_at"] = datetime.now()

            updated = type(current).model_validate(data)
            self._elements[element_id] = updated
            self._persist()
            return updated.model_copy(deep=True)

    def delete(self, element_id: str) -> None:
        with self._lock:
            if element_id not in self._elements:
                raise ElementNotFoundError(element_id)
            del self._elements[element_id]
            self._persist()
            logger.debug(f"Deleted element {element_id}")

    def lookup_entity_by_name(self, name: str) -> Optional[Entity]:
        for element in self.list(type="entity"):
            if isinstance(element, Entity) and element.name == name:
                return element
        return None

    def search_channels(
        self, pattern: str, channel_type: Optional[str] = None
    ) -> list[Channel]:
        """Case-insensitive substring search over channel names."""
        needle = pattern.lower()
        channels = []
        for element in self.list(type="channel"):
            if not isinstance(element, Channel):
                continue
            if channel_type is not None and element.channel_type != channel_type:
                continue
            if needle in element.name.lower():
                channels.append(element)
        return channels

    def __len__(self) -> int:
        with self._lock:
            return len(self._elements)

    def _persist(self) -> None:
        """Hook for durable subclasses; called with the lock held after each mutation."""
