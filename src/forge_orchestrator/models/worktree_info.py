"""Pydantic models for worktree information and lifecycle state."""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


class WorktreeState(str, Enum):
    """Lifecycle state of a managed worktree."""

    CREATING = "creating"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    MERGING = "merging"
    CLEANING = "cleaning"
    ARCHIVED = "archived"


WORKTREE_STATE_TRANSITIONS: dict[WorktreeState, tuple[WorktreeState, ...]] = {
    WorktreeState.CREATING: (WorktreeState.ACTIVE, WorktreeState.CLEANING),
    WorktreeState.ACTIVE: (
        WorktreeState.SUSPENDED,
        WorktreeState.MERGING,
        WorktreeState.CLEANING,
    ),
    WorktreeState.SUSPENDED: (WorktreeState.ACTIVE, WorktreeState.CLEANING),
    WorktreeState.MERGING: (
        WorktreeState.ARCHIVED,
        WorktreeState.CLEANING,
        WorktreeState.ACTIVE,
    ),
    WorktreeState.CLEANING: (WorktreeState.ARCHIVED,),
    WorktreeState.ARCHIVED: (),
}

_STATE_DESCRIPTIONS = {
    WorktreeState.CREATING: "Being created",
    WorktreeState.ACTIVE: "Active and in use",
    WorktreeState.SUSPENDED: "Suspended (can be resumed)",
    WorktreeState.MERGING: "Branch being merged",
    WorktreeState.CLEANING: "Being cleaned up",
    WorktreeState.ARCHIVED: "Archived (removed)",
}


def is_valid_state_transition(current: WorktreeState, target: WorktreeState) -> bool:
    """Check whether moving from ``current`` to ``target`` is allowed."""
    return target in WORKTREE_STATE_TRANSITIONS[WorktreeState(current)]


def get_worktree_state_description(state: WorktreeState | str) -> str:
    """Get a human-readable description of a worktree state."""
    try:
        return _STATE_DESCRIPTIONS[WorktreeState(state)]
    except ValueError:
        return "Unknown"


class WorktreeInfo(BaseModel):
    """Information about a git worktree."""

    path: Path = Field(description="Absolute path to the worktree directory")
    relative_path: str = Field(
        description="Path relative to the workspace root"
    )
    branch: str = Field(description="Branch checked out in this worktree")
    head: str = Field(default="", description="HEAD commit id")
    is_main: bool = Field(default=False, description="Whether this is the main worktree")
    state: WorktreeState = Field(
        default=WorktreeState.ACTIVE, description="Lifecycle state"
    )
    agent_name: Optional[str] = Field(
        default=None, description="Agent the worktree was allocated for"
    )
    task_id: Optional[str] = Field(
        default=None, description="Task the worktree was allocated for"
    )
    created_at: Optional[datetime] = Field(
        default=None, description="When the worktree was created"
    )

    @property
    def name(self) -> str:
        """Get the worktree directory name."""
        return self.path.name

    @property
    def is_detached(self) -> bool:
        return self.branch == "HEAD"

    @property
    def short_head(self) -> str:
        return self.head[:7]


class CreateWorktreeResult(BaseModel):
    """Result of creating a new worktree."""

    worktree: WorktreeInfo
    branch: str = Field(description="Branch created or checked out")
    path: Path = Field(description="Absolute path to the worktree")
    branch_created: bool = Field(
        default=False, description="Whether a new branch was created"
    )
