"""Element store interface and bundled implementations."""

from forge_orchestrator.store.base import (
    ElementNotFoundError,
    Store,
    StoreError,
    VersionConflictError,
)
from forge_orchestrator.store.json_store import JsonStore
from forge_orchestrator.store.memory import MemoryStore

__all__ = [
    "ElementNotFoundError",
    "JsonStore",
    "MemoryStore",
    "Store",
    "StoreError",
    "VersionConflictError",
]
