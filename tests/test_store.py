"""
Tests for the element stores.

Tests cover:
- Copy semantics and filtering of MemoryStore
- Optimistic versioning on update
- Name lookup and channel search
- JsonStore persistence across instances
"""

import json
import typing
from pathlib import Path

import pytest

from forge_orchestrator.models.elements import (
    Channel,
    ChannelType,
    Element,
    Entity,
    EntityType,
    Task,
    create_direct_channel,
)
from forge_orchestrator.store import (
    ElementNotFoundError,
    JsonStore,
    MemoryStore,
    Store,
    StoreError,
    VersionConflictError,
)


class TestMemoryStore:
    """Test suite for MemoryStore."""

    def test_satisfies_store_protocol(self, store: MemoryStore):
        assert isinstance(store, Store)

    @pytest.mark.parametrize("store_class", [Store, MemoryStore])
    def test_annotations_resolve(self, store_class):
        hints = typing.get_type_hints(store_class.search_channels)

        assert hints["return"] == list[Channel]
        assert typing.get_type_hints(store_class.list)["return"] == list[Element]

    def test_create_and_get(self, store: MemoryStore):
        task = store.create(Task(title="Fix login", created_by="el-op"))

        fetched = store.get(task.id)

        assert fetched == task
        assert store.get("el-missing") is None

    def test_returned_records_are_copies(self, store: MemoryStore):
        task = store.create(Task(title="Fix login", created_by="el-op"))

        task.metadata["leak"] = True
        fetched = store.get(task.id)
        fetched.tags.append("leak")

        assert store.get(task.id).metadata == {}
        assert store.get(task.id).tags == []

    def test_duplicate_id_rejected(self, store: MemoryStore):
        task = store.create(Task(title="One", created_by="el-op"))

        with pytest.raises(StoreError):
            store.create(Task(id=task.id, title="Two", created_by="el-op"))

    def test_list_filters_by_type_and_fields(self, store: MemoryStore):
        store.create(Task(title="Open", created_by="el-op"))
        store.create(Task(title="Done", status="closed", created_by="el-op"))
        store.create(Entity(name="alice", entity_type=EntityType.AGENT, created_by="el-op"))

        assert len(store.list()) == 3
        assert len(store.list(type="task")) == 2
        assert [t.title for t in store.list(type="task", status="closed")] == ["Done"]
        assert len(store) == 3

    def test_update_bumps_version(self, store: MemoryStore):
        task = store.create(Task(title="Fix login", created_by="el-op"))

        updated = store.update(task.id, {"status": "in_progress"}, expected_version=1)

        assert updated.status == "in_progress"
        assert updated.version == 2
        assert updated.updated_at >= task.updated_at
        assert isinstance(updated, Task)

    def test_update_with_stale_version(self, store: MemoryStore):
        task = store.create(Task(title="Fix login", created_by="el-op"))
        store.update(task.id, {"status": "in_progress"})

        with pytest.raises(VersionConflictError) as exc_info:
            store.update(task.id, {"status": "closed"}, expected_version=1)

        assert exc_info.value.actual == 2
        assert store.get(task.id).status == "in_progress"

    def test_update_missing(self, store: MemoryStore):
        with pytest.raises(ElementNotFoundError):
            store.update("el-missing", {"status": "closed"})

    def test_delete(self, store: MemoryStore):
        task = store.create(Task(title="Fix login", created_by="el-op"))

        store.delete(task.id)

        assert store.get(task.id) is None
        with pytest.raises(ElementNotFoundError):
            store.delete(task.id)

    def test_lookup_entity_by_name(self, store: MemoryStore):
        alice = store.create(Entity(name="alice", created_by="el-op"))

        assert store.lookup_entity_by_name("alice").id == alice.id
        assert store.lookup_entity_by_name("bob") is None

    def test_search_channels(self, store: MemoryStore):
        store.create(Channel(name="agent-el-1", created_by="el-op"))
        store.create(Channel(name="general", created_by="el-op"))
        store.create(create_direct_channel("el-a", "el-b", created_by="el-op"))

        assert [c.name for c in store.search_channels("AGENT-")] == ["agent-el-1"]
        direct = store.search_channels("el-", channel_type=ChannelType.DIRECT)
        assert [c.name for c in direct] == ["el-a:el-b"]


class TestJsonStore:
    """Test suite for JsonStore persistence."""

    @pytest.fixture
    def store_path(self, temp_directory: Path) -> Path:
        return temp_directory / ".stoneforge" / "store.json"

    def test_missing_file_starts_empty(self, store_path: Path):
        assert len(JsonStore(store_path)) == 0
        assert not store_path.exists()

    def test_records_survive_reload(self, store_path: Path):
        store = JsonStore(store_path)
        alice = store.create(
            Entity(
                name="alice",
                entity_type=EntityType.AGENT,
                created_by="el-op",
                metadata={"agent": {"agent_role": "director"}},
            )
        )
        task = store.create(Task(title="Fix login", created_by="el-op"))
        store.update(task.id, {"assignee": alice.id})

        reloaded = JsonStore(store_path)

        assert reloaded.get(alice.id) == alice
        reloaded_task = reloaded.get(task.id)
        assert isinstance(reloaded_task, Task)
        assert reloaded_task.assignee == alice.id
        assert reloaded_task.version == 2

    def test_delete_is_persisted(self, store_path: Path):
        store = JsonStore(store_path)
        task = store.create(Task(title="Gone soon", created_by="el-op"))
        store.delete(task.id)

        assert JsonStore(store_path).get(task.id) is None

    def test_file_format_and_mode(self, store_path: Path):
        store = JsonStore(store_path)
        store.create(Channel(name="general", created_by="el-op"))

        data = json.loads(store_path.read_text())

        assert data["version"] == "1"
        assert data["elements"][0]["type"] == "channel"
        assert store_path.stat().st_mode & 0o777 == 0o600

    def test_invalid_records_are_skipped(self, store_path: Path):
        store_path.parent.mkdir(parents=True)
        store_path.write_text(
            json.dumps(
                {
                    "version": "1",
                    "elements": [
                        {"type": "task", "id": "el-good", "title": "Ok", "created_by": "el-op"},
                        {"type": "unknown", "id": "el-bad"},
                    ],
                }
            )
        )

        store = JsonStore(store_path)

        assert store.get("el-good").title == "Ok"
        assert store.get("el-bad") is None

    def test_corrupt_file_starts_empty(self, store_path: Path):
        store_path.parent.mkdir(parents=True)
        store_path.write_text("{not json")

        assert len(JsonStore(store_path)) == 0
