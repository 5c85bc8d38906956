"""
Pydantic models for Forge Orchestrator.

This package contains data models for:
- Worktree information and lifecycle state
- Agent metadata and registration input
- Store records (entities, channels, tasks)
- Worker task lifecycle results
"""

from forge_orchestrator.models.agent import (
    AgentFilter,
    AgentRole,
    DirectorMetadata,
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
from forge_orchestrator.models.task import (
    CompleteTaskResult,
    DispatchResult,
    SessionRecord,
    StartWorkerOptions,
    StartWorkerResult,
    TaskCompletion,
    TaskContext,
)
from forge_orchestrator.models.worktree_info import (
    CreateWorktreeResult,
    WorktreeInfo,
    WorktreeState,
)

__all__ = [
    "AgentFilter",
    "AgentRole",
    "DirectorMetadata",
    "RegisterDirectorInput",
    "RegisterStewardInput",
    "RegisterWorkerInput",
    "SessionStatus",
    "StewardFocus",
    "StewardMetadata",
    "WorkerMetadata",
    "WorkerMode",
    "Channel",
    "ChannelType",
    "Entity",
    "EntityType",
    "Task",
    "CompleteTaskResult",
    "DispatchResult",
    "SessionRecord",
    "StartWorkerOptions",
    "StartWorkerResult",
    "TaskCompletion",
    "TaskContext",
    "CreateWorktreeResult",
    "WorktreeInfo",
    "WorktreeState",
]
