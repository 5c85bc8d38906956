"""
Pydantic models for orchestrated agents.

Agent metadata is stored on an entity record under the ``agent`` key and is
a tagged union keyed by ``agent_role``:

- DirectorMetadata: the single coordinating agent of a workspace
- WorkerMetadata: ephemeral or persistent task workers
- StewardMetadata: support agents (merge, docs, custom playbooks)
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError


AGENT_META_KEY = "agent"


class AgentRole(str, Enum):
    """Roles an agent can play in the orchestration system."""

    DIRECTOR = "director"
    WORKER = "worker"
    STEWARD = "steward"


class WorkerMode(str, Enum):
    """Lifetime of a worker agent."""

    EPHEMERAL = "ephemeral"
    PERSISTENT = "persistent"


class StewardFocus(str, Enum):
    """Specialty area of a steward agent."""

    MERGE = "merge"
    DOCS = "docs"
    CUSTOM = "custom"


class SessionStatus(str, Enum):
    """Status of an agent's execution session."""

    IDLE = "idle"
    RUNNING = "running"
    SUSPENDED = "suspended"
    TERMINATED = "terminated"


class CronTrigger(BaseModel):
    """Activates a steward on a schedule."""

    type: Literal["cron"] = "cron"
    schedule: str = Field(description="Cron expression, e.g. '0 2 * * *'")


class EventTrigger(BaseModel):
    """Activates a steward when a matching event occurs."""

    type: Literal["event"] = "event"
    event: str = Field(description="Event name, e.g. 'task_completed'")
    condition: Optional[str] = Field(
        default=None, description="Optional condition expression"
    )


StewardTrigger = Annotated[Union[CronTrigger, EventTrigger], Field(discriminator="type")]


class BaseAgentMetadata(BaseModel):
    """Fields shared by every agent role."""

    channel_id: Optional[str] = Field(
        default=None, description="Direct channel used to message the agent"
    )
    session_id: Optional[str] = Field(
        default=None, description="Provider session id for resumption"
    )
    worktree: Optional[str] = Field(default=None, description="Current worktree path")
    session_status: Optional[SessionStatus] = Field(default=None)
    last_activity_at: Optional[datetime] = Field(default=None)
    max_concurrent_tasks: Optional[int] = Field(
        default=None, description="Task capacity, enforced by task assignment"
    )
    role_definition_ref: Optional[str] = Field(default=None)
    provider: Optional[str] = Field(default=None, description="Agent provider, e.g. 'claude'")
    model: Optional[str] = Field(default=None)


class DirectorMetadata(BaseAgentMetadata):
    agent_role: Literal["director"] = "director"


class WorkerMetadata(BaseAgentMetadata):
    agent_role: Literal["worker"] = "worker"
    worker_mode: WorkerMode
    branch: Optional[str] = Field(default=None, description="Branch currently worked on")


class StewardMetadata(BaseAgentMetadata):
    agent_role: Literal["steward"] = "steward"
    steward_focus: StewardFocus
    triggers: list[StewardTrigger] = Field(default_factory=list)
    playbook: Optional[str] = Field(
        default=None, description="Playbook text, only kept for custom stewards"
    )
    last_executed_at: Optional[datetime] = Field(default=None)
    next_scheduled_at: Optional[datetime] = Field(default=None)


AgentMetadata = Annotated[
    Union[DirectorMetadata, WorkerMetadata, StewardMetadata],
    Field(discriminator="agent_role"),
]

_agent_metadata_adapter: TypeAdapter = TypeAdapter(AgentMetadata)


def parse_agent_metadata(raw: Any) -> Optional[BaseAgentMetadata]:
    """Validate a raw metadata value, returning None when it is not agent metadata."""
    if not isinstance(raw, dict):
        return None
    try:
        return _agent_metadata_adapter.validate_python(raw)
    except ValidationError:
        return None


def dump_agent_metadata(metadata: BaseAgentMetadata) -> dict[str, Any]:
    """Serialize agent metadata for storage in a record's metadata bag."""
    return metadata.model_dump(mode="json", exclude_none=True)


class RegisterAgentBase(BaseModel):
    """Fields accepted by every registration call."""

    name: str = Field(min_length=1, description="Unique display name")
    created_by: str = Field(description="Entity id of the creator")
    tags: list[str] = Field(default_factory=list)
    max_concurrent_tasks: Optional[int] = None
    role_definition_ref: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None


class RegisterDirectorInput(RegisterAgentBase):
    role: Literal["director"] = "director"


class RegisterWorkerInput(RegisterAgentBase):
    role: Literal["worker"] = "worker"
    worker_mode: WorkerMode = WorkerMode.EPHEMERAL
    reports_to: Optional[str] = None


class RegisterStewardInput(RegisterAgentBase):
    role: Literal["steward"] = "steward"
    steward_focus: StewardFocus
    triggers: list[StewardTrigger] = Field(default_factory=list)
    playbook: Optional[str] = None
    reports_to: Optional[str] = None


RegisterAgentInput = Annotated[
    Union[RegisterDirectorInput, RegisterWorkerInput, RegisterStewardInput],
    Field(discriminator="role"),
]


class AgentFilter(BaseModel):
    """AND-combined predicates for listing agents."""

    role: Optional[AgentRole] = None
    worker_mode: Optional[WorkerMode] = None
    steward_focus: Optional[StewardFocus] = None
    session_status: Optional[SessionStatus] = None
    reports_to: Optional[str] = None
    has_session: Optional[bool] = None
