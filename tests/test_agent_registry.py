"""
Tests for the AgentRegistry.

Tests cover:
- Registration of each role, including the agent's direct channel
- Name uniqueness
- Rollback when a registration step fails
- Filtering and role queries
- Session and metadata updates
- Channel lookup and deletion
"""

import pytest

from forge_orchestrator.core.agent_registry import (
    AGENT_CHANNEL_TAG,
    AgentNotFoundError,
    AgentRegistry,
    DuplicateNameError,
    NotAnAgentError,
    generate_agent_channel_name,
    get_agent_metadata,
    is_agent_entity,
    parse_agent_channel_name,
)
from forge_orchestrator.models.agent import (
    AgentFilter,
    AgentRole,
    CronTrigger,
    RegisterDirectorInput,
    RegisterStewardInput,
    RegisterWorkerInput,
    SessionStatus,
    StewardFocus,
    StewardMetadata,
    WorkerMetadata,
    WorkerMode,
)
from forge_orchestrator.models.elements import Channel, ChannelType, Entity, EntityType, Task
from forge_orchestrator.store import MemoryStore, StoreError


class ChannelFailingStore(MemoryStore):
    """Store that refuses to create channels."""

    def create(self, element):
        if isinstance(element, Channel):
            raise StoreError("channel write failed")
        return super().create(element)


class LinkFailingStore(MemoryStore):
    """Store whose updates always fail, so channel linking breaks."""

    def update(self, element_id, changes, expected_version=None):
        raise StoreError("update failed")


class TestChannelNames:
    def test_generate_and_parse(self):
        assert generate_agent_channel_name("alice") == "agent-alice"
        assert parse_agent_channel_name("agent-alice") == "alice"
        assert parse_agent_channel_name("general") is None
        assert parse_agent_channel_name("agent-") is None


class TestRegistration:
    """Test suite for agent registration."""

    def test_register_worker(self, registry: AgentRegistry, store: MemoryStore, operator: Entity):
        worker = registry.register_worker(
            RegisterWorkerInput(
                name="alice",
                created_by=operator.id,
                worker_mode=WorkerMode.PERSISTENT,
                tags=["frontend"],
                max_concurrent_tasks=2,
            )
        )

        meta = get_agent_metadata(worker)
        assert isinstance(meta, WorkerMetadata)
        assert meta.worker_mode == WorkerMode.PERSISTENT
        assert meta.session_status == SessionStatus.IDLE
        assert meta.max_concurrent_tasks == 2
        assert worker.tags == ["frontend"]
        assert worker.version == 2

        channel = store.get(meta.channel_id)
        assert isinstance(channel, Channel)
        assert channel.channel_type == ChannelType.DIRECT
        assert channel.members == sorted([operator.id, worker.id])
        assert AGENT_CHANNEL_TAG in channel.tags
        assert channel.metadata["agent_id"] == worker.id
        assert channel.metadata["agent_name"] == "alice"
        assert channel.metadata["display_name"] == "operator <-> alice"

    def test_register_director(self, registry: AgentRegistry, operator: Entity):
        director = registry.register_director(
            RegisterDirectorInput(name="boss", created_by=operator.id, provider="claude")
        )

        meta = get_agent_metadata(director)
        assert meta.agent_role == "director"
        assert meta.provider == "claude"
        assert registry.get_director().id == director.id

    def test_register_steward_keeps_playbook_only_for_custom(
        self, registry: AgentRegistry, operator: Entity
    ):
        merge = registry.register_steward(
            RegisterStewardInput(
                name="merger",
                created_by=operator.id,
                steward_focus=StewardFocus.MERGE,
                playbook="ignored",
                triggers=[CronTrigger(schedule="0 2 * * *")],
            )
        )
        custom = registry.register_steward(
            RegisterStewardInput(
                name="gardener",
                created_by=operator.id,
                steward_focus=StewardFocus.CUSTOM,
                playbook="Prune stale branches",
            )
        )

        merge_meta = get_agent_metadata(merge)
        assert isinstance(merge_meta, StewardMetadata)
        assert merge_meta.playbook is None
        assert merge_meta.triggers[0].schedule == "0 2 * * *"
        assert get_agent_metadata(custom).playbook == "Prune stale branches"

    def test_register_agent_from_dict(self, registry: AgentRegistry, operator: Entity):
        worker = registry.register_agent(
            {"role": "worker", "name": "carol", "created_by": operator.id}
        )

        assert get_agent_metadata(worker).worker_mode == WorkerMode.EPHEMERAL

    def test_unknown_creator_uses_default_display_name(
        self, registry: AgentRegistry, store: MemoryStore
    ):
        worker = registry.register_worker(RegisterWorkerInput(name="dave", created_by="el-ghost"))

        channel = registry.get_agent_channel(worker.id)
        assert channel.metadata["display_name"] == "operator <-> dave"

    def test_duplicate_name(self, registry: AgentRegistry, store: MemoryStore, operator: Entity):
        first = registry.register_worker(RegisterWorkerInput(name="alice", created_by=operator.id))

        with pytest.raises(DuplicateNameError) as exc_info:
            registry.register_steward(
                RegisterStewardInput(
                    name="alice", created_by=operator.id, steward_focus=StewardFocus.DOCS
                )
            )

        assert exc_info.value.existing_id == first.id
        assert len(registry.list_agents()) == 1
        assert len(store.list(type="channel")) == 1

    def test_human_with_same_name_does_not_hide_agents(
        self, registry: AgentRegistry, store: MemoryStore, operator: Entity
    ):
        store.create(Entity(name="alice", entity_type=EntityType.HUMAN, created_by="system"))
        first = registry.register_worker(RegisterWorkerInput(name="alice", created_by=operator.id))

        with pytest.raises(DuplicateNameError) as exc_info:
            registry.register_worker(RegisterWorkerInput(name="alice", created_by=operator.id))

        assert exc_info.value.existing_id == first.id
        assert [a.name for a in registry.list_agents()] == ["alice"]
        assert registry.get_agent_by_name("alice").id == first.id

    def test_channel_failure_removes_agent(self, operator: Entity):
        store = ChannelFailingStore()
        store.create(operator)
        registry = AgentRegistry(store)

        with pytest.raises(StoreError, match="channel write failed"):
            registry.register_worker(RegisterWorkerInput(name="alice", created_by=operator.id))

        assert registry.get_agent_by_name("alice") is None
        assert len(store) == 1

    def test_link_failure_removes_agent_and_channel(self, operator: Entity):
        store = LinkFailingStore()
        store.create(operator)
        registry = AgentRegistry(store)

        with pytest.raises(StoreError, match="update failed"):
            registry.register_worker(RegisterWorkerInput(name="alice", created_by=operator.id))

        assert store.list(type="channel") == []
        assert len(store) == 1


class TestQueries:
    """Test suite for agent queries and filters."""

    @pytest.fixture
    def agents(self, registry: AgentRegistry, operator: Entity) -> dict[str, Entity]:
        director = registry.register_director(
            RegisterDirectorInput(name="boss", created_by=operator.id)
        )
        return {
            "boss": director,
            "alice": registry.register_worker(
                RegisterWorkerInput(name="alice", created_by=operator.id, reports_to=director.id)
            ),
            "bob": registry.register_worker(
                RegisterWorkerInput(
                    name="bob", created_by=operator.id, worker_mode=WorkerMode.PERSISTENT
                )
            ),
            "docs": registry.register_steward(
                RegisterStewardInput(
                    name="docs", created_by=operator.id, steward_focus=StewardFocus.DOCS
                )
            ),
        }

    def test_non_agents_are_ignored(self, registry: AgentRegistry, store: MemoryStore, agents):
        store.create(Task(title="Not an agent", created_by="el-op"))

        names = sorted(agent.name for agent in registry.list_agents())

        assert names == ["alice", "bob", "boss", "docs"]
        assert registry.get_agent_by_name("operator") is None

    def test_get_agent(self, registry: AgentRegistry, operator: Entity, agents):
        assert registry.get_agent(agents["alice"].id).name == "alice"
        assert registry.get_agent(operator.id) is None
        assert registry.get_agent("el-missing") is None

    def test_filter_by_role(self, registry: AgentRegistry, agents):
        workers = registry.get_agents_by_role(AgentRole.WORKER)

        assert sorted(w.name for w in workers) == ["alice", "bob"]
        assert [s.name for s in registry.get_stewards()] == ["docs"]

    def test_filters_are_combined(self, registry: AgentRegistry, agents):
        result = registry.list_agents(
            AgentFilter(role=AgentRole.WORKER, worker_mode=WorkerMode.PERSISTENT)
        )
        assert [a.name for a in result] == ["bob"]

        result = registry.list_agents(AgentFilter(reports_to=agents["boss"].id))
        assert [a.name for a in result] == ["alice"]

        result = registry.list_agents(AgentFilter(steward_focus=StewardFocus.DOCS))
        assert [a.name for a in result] == ["docs"]

    def test_has_session_filter(self, registry: AgentRegistry, agents):
        registry.update_agent_session(agents["bob"].id, "sess-1", SessionStatus.RUNNING)

        with_session = registry.list_agents(AgentFilter(has_session=True))
        without = registry.list_agents(AgentFilter(has_session=False))

        assert [a.name for a in with_session] == ["bob"]
        assert "bob" not in [a.name for a in without]

    def test_available_workers(self, registry: AgentRegistry, agents):
        registry.update_agent_session(agents["alice"].id, "sess-1", "running")

        available = registry.get_available_workers()

        assert [w.name for w in available] == ["bob"]

    def test_no_director(self, registry: AgentRegistry):
        assert registry.get_director() is None


class TestUpdates:
    """Test suite for agent updates and deletion."""

    @pytest.fixture
    def worker(self, registry: AgentRegistry, operator: Entity) -> Entity:
        return registry.register_worker(RegisterWorkerInput(name="alice", created_by=operator.id))

    def test_update_session(self, registry: AgentRegistry, worker: Entity):
        updated = registry.update_agent_session(worker.id, "sess-9", SessionStatus.RUNNING)

        meta = get_agent_metadata(updated)
        assert meta.session_id == "sess-9"
        assert meta.session_status == SessionStatus.RUNNING
        assert meta.last_activity_at is not None
        assert meta.channel_id == get_agent_metadata(worker).channel_id

    def test_update_metadata_keeps_other_keys(
        self, registry: AgentRegistry, store: MemoryStore, worker: Entity
    ):
        store.update(worker.id, {"metadata": {**worker.metadata, "custom": {"x": 1}}})

        updated = registry.update_agent_metadata(worker.id, branch="agent/alice/t1")

        assert updated.metadata["custom"] == {"x": 1}
        assert get_agent_metadata(updated).branch == "agent/alice/t1"

    def test_update_metadata_of_non_agent(self, registry: AgentRegistry, operator: Entity):
        with pytest.raises(NotAnAgentError):
            registry.update_agent_metadata(operator.id, worktree="x")

        with pytest.raises(AgentNotFoundError):
            registry.update_agent_metadata("el-missing", worktree="x")

    def test_rename(self, registry: AgentRegistry, worker: Entity):
        renamed = registry.update_agent(worker.id, name="alicia")

        assert renamed.name == "alicia"
        assert registry.get_agent_by_name("alicia").id == worker.id

    def test_rename_to_taken_name(self, registry: AgentRegistry, operator: Entity, worker: Entity):
        bob = registry.register_worker(RegisterWorkerInput(name="bob", created_by=operator.id))

        with pytest.raises(DuplicateNameError) as exc_info:
            registry.update_agent(bob.id, name="alice")

        assert exc_info.value.existing_id == worker.id
        assert registry.get_agent(bob.id).name == "bob"

    def test_rename_to_own_name(self, registry: AgentRegistry, worker: Entity):
        assert registry.update_agent(worker.id, name="alice").name == "alice"

    def test_rename_to_human_name(self, registry: AgentRegistry, operator: Entity, worker: Entity):
        assert registry.update_agent(worker.id, name="operator").name == "operator"

    def test_delete_removes_channel(
        self, registry: AgentRegistry, store: MemoryStore, worker: Entity
    ):
        channel_id = get_agent_metadata(worker).channel_id

        registry.delete_agent(worker.id)

        assert store.get(worker.id) is None
        assert store.get(channel_id) is None
        assert not is_agent_entity(store.get(worker.id))

    def test_delete_with_missing_channel(
        self, registry: AgentRegistry, store: MemoryStore, worker: Entity
    ):
        store.delete(get_agent_metadata(worker).channel_id)

        registry.delete_agent(worker.id)

        assert store.get(worker.id) is None

    def test_delete_unknown(self, registry: AgentRegistry):
        with pytest.raises(AgentNotFoundError):
            registry.delete_agent("el-missing")


class TestAgentChannel:
    """Test suite for channel lookup."""

    def test_lookup_by_cached_id(self, registry: AgentRegistry, operator: Entity):
        worker = registry.register_worker(RegisterWorkerInput(name="alice", created_by=operator.id))

        channel = registry.get_agent_channel(worker.id)

        assert channel.id == registry.get_agent_channel_id(worker.id)

    def test_lookup_falls_back_to_name_search(
        self, registry: AgentRegistry, store: MemoryStore, operator: Entity
    ):
        worker = registry.register_worker(RegisterWorkerInput(name="alice", created_by=operator.id))
        channel_id = get_agent_metadata(worker).channel_id
        registry.update_agent_metadata(worker.id, channel_id=None)

        channel = registry.get_agent_channel(worker.id)

        assert channel.id == channel_id

    def test_unknown_agent(self, registry: AgentRegistry):
        assert registry.get_agent_channel("el-missing") is None
        assert registry.get_agent_channel_id("el-missing") is None
