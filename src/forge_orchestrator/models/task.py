"""Pydantic models exchanged by the worker task service and its collaborators."""

from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

from forge_orchestrator.models.elements import Entity, Task
from forge_orchestrator.models.worktree_info import CreateWorktreeResult, WorktreeInfo


class SessionRecord(BaseModel):
    """An agent execution session as reported by the session manager."""

    id: str = Field(description="Session id")
    agent_id: str
    provider_session_id: Optional[str] = Field(
        default=None, description="Provider-side id used to resume the session"
    )
    status: str = Field(default="running")
    working_directory: Optional[str] = None
    worktree: Optional[str] = None
    started_at: datetime = Field(default_factory=datetime.now)


class DispatchResult(BaseModel):
    """Outcome of notifying an agent about a task."""

    task: Task
    agent: Entity
    channel_id: Optional[str] = None
    message_id: Optional[str] = None
    is_new_assignment: bool = True
    dispatched_at: datetime = Field(default_factory=datetime.now)


class TaskCompletion(BaseModel):
    """Outcome of the task-assignment status transition to completed."""

    task: Task
    extra: dict[str, Any] = Field(default_factory=dict)


class TaskContext(BaseModel):
    """Projection of a task used to brief a worker."""

    task_id: str
    title: str
    description: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    priority: Optional[int] = None
    complexity: Optional[int] = None
    branch: Optional[str] = None
    worktree_path: Optional[str] = None
    additional_instructions: Optional[str] = None


class StartWorkerOptions(BaseModel):
    """Options for starting a worker on a task."""

    branch: Optional[str] = Field(default=None, description="Pinned branch name")
    worktree_path: Optional[str] = Field(default=None, description="Pinned worktree path")
    base_branch: Optional[str] = None
    additional_prompt: Optional[str] = None
    performed_by: Optional[str] = None
    skip_worktree: bool = False
    working_directory: Optional[str] = Field(
        default=None, description="Used as the session root when the worktree is skipped"
    )
    priority: Optional[int] = None


class StartWorkerResult(BaseModel):
    """Result of starting a worker on a task."""

    task: Task
    agent: Entity
    dispatch: DispatchResult
    worktree: Optional[CreateWorktreeResult] = None
    session: SessionRecord
    task_context_prompt: str
    started_at: datetime

    @property
    def working_directory(self) -> Optional[Path]:
        if self.session.working_directory:
            return Path(self.session.working_directory)
        return None


class CompleteTaskResult(BaseModel):
    """Result of completing a task."""

    task: Task
    worktree: Optional[WorktreeInfo] = None
    ready_for_merge: bool = True
    completed_at: datetime
