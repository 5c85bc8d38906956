"""Tests for Pydantic models."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from forge_orchestrator.models.agent import (
    DirectorMetadata,
    EventTrigger,
    RegisterStewardInput,
    StewardMetadata,
    WorkerMetadata,
    WorkerMode,
    dump_agent_metadata,
    parse_agent_metadata,
)
from forge_orchestrator.models.elements import (
    ChannelType,
    Task,
    create_direct_channel,
    generate_direct_channel_name,
    generate_element_id,
)
from forge_orchestrator.models.worktree_info import (
    WorktreeInfo,
    WorktreeState,
    get_worktree_state_description,
    is_valid_state_transition,
)


class TestWorktreeState:
    """Test suite for the worktree lifecycle."""

    @pytest.mark.parametrize(
        "current, target",
        [
            (WorktreeState.CREATING, WorktreeState.ACTIVE),
            (WorktreeState.ACTIVE, WorktreeState.SUSPENDED),
            (WorktreeState.SUSPENDED, WorktreeState.ACTIVE),
            (WorktreeState.ACTIVE, WorktreeState.MERGING),
            (WorktreeState.MERGING, WorktreeState.ARCHIVED),
            (WorktreeState.MERGING, WorktreeState.ACTIVE),
            (WorktreeState.CLEANING, WorktreeState.ARCHIVED),
        ],
    )
    def test_allowed_transitions(self, current, target):
        assert is_valid_state_transition(current, target)

    @pytest.mark.parametrize(
        "current, target",
        [
            (WorktreeState.ACTIVE, WorktreeState.ACTIVE),
            (WorktreeState.SUSPENDED, WorktreeState.MERGING),
            (WorktreeState.CLEANING, WorktreeState.ACTIVE),
            (WorktreeState.CREATING, WorktreeState.SUSPENDED),
        ],
    )
    def test_rejected_transitions(self, current, target):
        assert not is_valid_state_transition(current, target)

    def test_archived_is_terminal(self):
        assert not any(is_valid_state_transition(WorktreeState.ARCHIVED, s) for s in WorktreeState)

    def test_descriptions(self):
        assert get_worktree_state_description(WorktreeState.SUSPENDED) == "Suspended (can be resumed)"
        assert get_worktree_state_description("bogus") == "Unknown"


class TestWorktreeInfo:
    def test_derived_fields(self):
        info = WorktreeInfo(
            path=Path("/repo/.stoneforge/.worktrees/alice-fix"),
            relative_path=".stoneforge/.worktrees/alice-fix",
            branch="HEAD",
            head="0123456789abcdef",
        )

        assert info.name == "alice-fix"
        assert info.is_detached
        assert info.short_head == "0123456"
        assert info.state == WorktreeState.ACTIVE


class TestAgentMetadata:
    """Test suite for the role-tagged agent metadata union."""

    def test_parse_by_role(self):
        assert isinstance(parse_agent_metadata({"agent_role": "director"}), DirectorMetadata)
        worker = parse_agent_metadata({"agent_role": "worker", "worker_mode": "persistent"})
        assert isinstance(worker, WorkerMetadata)
        assert worker.worker_mode == WorkerMode.PERSISTENT

    def test_parse_rejects_non_agent_values(self):
        assert parse_agent_metadata(None) is None
        assert parse_agent_metadata("worker") is None
        assert parse_agent_metadata({"agent_role": "janitor"}) is None
        assert parse_agent_metadata({"agent_role": "worker"}) is None

    def test_dump_round_trip(self):
        meta = StewardMetadata(
            steward_focus="custom",
            triggers=[EventTrigger(event="task_completed")],
            playbook="Tidy up",
        )

        dumped = dump_agent_metadata(meta)

        assert "session_id" not in dumped
        assert dumped["triggers"] == [{"type": "event", "event": "task_completed"}]
        assert parse_agent_metadata(dumped) == meta

    def test_register_input_requires_name(self):
        with pytest.raises(ValidationError):
            RegisterStewardInput(name="", created_by="el-op", steward_focus="docs")


class TestElements:
    def test_element_ids(self):
        element_id = generate_element_id()

        assert element_id.startswith("el-")
        assert len(element_id) == 11
        assert generate_element_id() != element_id

    def test_direct_channel_name_is_order_independent(self):
        assert generate_direct_channel_name("el-b", "el-a") == "el-a:el-b"
        assert generate_direct_channel_name("el-a", "el-b") == "el-a:el-b"

    def test_create_direct_channel(self):
        channel = create_direct_channel("el-b", "el-a", created_by="el-b", tags=["x"])

        assert channel.channel_type == ChannelType.DIRECT
        assert channel.members == ["el-a", "el-b"]
        assert "display_name" not in channel.metadata
        assert channel.tags == ["x"]

    def test_task_orchestrator_meta(self):
        assert Task(title="t", created_by="el-op").orchestrator_meta == {}
        task = Task(
            title="t", created_by="el-op", metadata={"orchestrator": {"branch": "agent/a/t1"}}
        )
        assert task.orchestrator_meta["branch"] == "agent/a/t1"
