"""Pydantic models for records held by the element store.

The store is a generic typed-record service: every record has an id, a
``type`` discriminator, a free-form ``metadata`` bag and an optimistic
``version``. The orchestrator keeps its own facts inside that bag under the
``agent`` key (agent entities) and the ``orchestrator`` key (tasks).
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field


ORCHESTRATOR_META_KEY = "orchestrator"


def generate_element_id() -> str:
    """Generate a short, collision-resistant element id (``el-xxxxxxxx``)."""
    return f"el-{uuid.uuid4().hex[:8]}"


class EntityType(str, Enum):
    """Kinds of entities the store can hold."""

    AGENT = "agent"
    HUMAN = "human"
    SYSTEM = "system"


class ChannelType(str, Enum):
    DIRECT = "direct"
    GROUP = "group"


class Element(BaseModel):
    """Fields common to every stored record."""

    id: str = Field(default_factory=generate_element_id)
    created_by: str = Field(description="Entity id of the creator")
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    version: int = Field(default=1, ge=1, description="Optimistic concurrency version")
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class Entity(Element):
    """A named actor: a human operator, a system account or an agent."""

    type: Literal["entity"] = "entity"
    name: str
    entity_type: EntityType = EntityType.HUMAN
    reports_to: Optional[str] = None


class Channel(Element):
    """A messaging channel between entities."""

    type: Literal["channel"] = "channel"
    name: str
    channel_type: ChannelType = ChannelType.GROUP
    members: list[str] = Field(default_factory=list)


class Task(Element):
    """A unit of work that can be assigned to a worker."""

    type: Literal["task"] = "task"
    title: str
    status: str = "open"
    priority: Optional[int] = None
    complexity: Optional[int] = None
    assignee: Optional[str] = None

    @property
    def orchestrator_meta(self) -> dict[str, Any]:
        """Get the ``{branch, worktree, session_id, ...}`` orchestration binding."""
        meta = self.metadata.get(ORCHESTRATOR_META_KEY)
        return meta if isinstance(meta, dict) else {}


AnyElement = Annotated[Union[Entity, Channel, Task], Field(discriminator="type")]


def generate_direct_channel_name(entity_a: str, entity_b: str) -> str:
    """Deterministic direct-channel name from the sorted pair of entity ids."""
    first, second = sorted([entity_a, entity_b])
    return f"{first}:{second}"


def create_direct_channel(
    entity_a: str,
    entity_b: str,
    created_by: str,
    entity_a_name: Optional[str] = None,
    entity_b_name: Optional[str] = None,
    tags: Optional[list[str]] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> Channel:
    """Build (but do not persist) a direct channel between two entities."""
    channel_metadata = dict(metadata or {})
    if entity_a_name and entity_b_name:
        channel_metadata.setdefault("display_name", f"{entity_a_name} <-> {entity_b_name}")

    return Channel(
        name=generate_direct_channel_name(entity_a, entity_b),
        channel_type=ChannelType.DIRECT,
        members=sorted({entity_a, entity_b}),
        created_by=created_by,
        tags=list(tags or []),
        metadata=channel_metadata,
    )
