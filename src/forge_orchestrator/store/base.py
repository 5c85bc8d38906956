"""Element store interface consumed by the orchestrator."""

from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from forge_orchestrator.models.elements import Channel, Element, Entity


class StoreError(Exception):
    """Base exception for store operations."""


class ElementNotFoundError(StoreError):
    """Raised when an update or delete targets a missing element."""

    def __init__(self, element_id: str):
        super().__init__(f"Element not found: {element_id}")
        self.element_id = element_id


class VersionConflictError(StoreError):
    """Raised when an update carries a stale optimistic version."""

    def __init__(self, element_id: str, expected: int, actual: int):
        super().__init__(
            f"Version conflict on {element_id}: expected {expected}, found {actual}"
        )
        self.element_id = element_id
        self.expected = expected
        self.actual = actual


@runtime_checkable
class Store(Protocol):
    """Typed record store.

    The store offers no multi-record transactions and does not enforce name
    uniqueness; callers check uniqueness themselves.
    """

    def get(self, element_id: str) -> Optional[Element]:
        ...

    def list(self, type: Optional[str] = None, **filters: Any) -> list[Element]:
        ...

    def create(self, element: Element) -> Element:
        ...

    def update(
        self,
        element_id: str,
        changes: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Element:
        ...

    def delete(self, element_id: str) -> None:
        ...

    def lookup_entity_by_name(self, name: str) -> Optional[Entity]:
        ...

    def search_channels(
        self, pattern: str, channel_type: Optional[str] = None
    ) -> list[Channel]:
        ...
