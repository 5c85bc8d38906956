"""Agent registration and lookup on top of the element store.

Agents are entities with ``entity_type="agent"`` whose metadata carries a
role-specific record under the ``agent`` key. Every agent gets a direct
channel with the entity that created it; the two are written together or
not at all.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from pydantic import TypeAdapter

from forge_orchestrator.core.saga import Saga
from forge_orchestrator.models.agent import (
    AGENT_META_KEY,
    AgentFilter,
    AgentRole,
    BaseAgentMetadata,
    DirectorMetadata,
    RegisterAgentInput,
    RegisterDirectorInput,
    RegisterStewardInput,
    RegisterWorkerInput,
    SessionStatus,
    StewardFocus,
    StewardMetadata,
    WorkerMetadata,
    dump_agent_metadata,
    parse_agent_metadata,
)
from forge_orchestrator.models.elements import (
    Channel,
    ChannelType,
    Entity,
    EntityType,
    create_direct_channel,
    generate_direct_channel_name,
)
from forge_orchestrator.store.base import Store

logger = logging.getLogger(__name__)

AGENT_CHANNEL_PREFIX = "agent-"
AGENT_CHANNEL_TAG = "agent-channel"
DEFAULT_CREATOR_NAME = "operator"

_register_input_adapter: TypeAdapter = TypeAdapter(RegisterAgentInput)


class AgentRegistryError(Exception):
    """Base exception for agent registry operations."""


class DuplicateNameError(AgentRegistryError):
    """Raised when registering an agent under a name that is taken."""

    def __init__(self, name: str, existing_id: str):
        super().__init__(f"Agent name already in use: {name} (existing: {existing_id})")
        self.name = name
        self.existing_id = existing_id


class AgentNotFoundError(AgentRegistryError):
    """Raised when an operation targets an agent that does not exist."""

    def __init__(self, agent_id: str):
        super().__init__(f"Agent not found: {agent_id}")
        self.agent_id = agent_id


class NotAnAgentError(AgentRegistryError):
    """Raised when a record exists but carries no valid agent metadata."""

    def __init__(self, entity_id: str):
        super().__init__(f"Entity is not an agent: {entity_id}")
        self.entity_id = entity_id


def generate_agent_channel_name(agent_name: str) -> str:
    return f"{AGENT_CHANNEL_PREFIX}{agent_name}"


def parse_agent_channel_name(channel_name: str) -> Optional[str]:
    """Recover the agent name from an ``agent-<name>`` channel name."""
    if not channel_name.startswith(AGENT_CHANNEL_PREFIX):
        return None
    return channel_name[len(AGENT_CHANNEL_PREFIX):] or None


def get_agent_metadata(entity: Any) -> Optional[BaseAgentMetadata]:
    """Agent metadata of an entity, or None when it is not an agent."""
    if not isinstance(entity, Entity):
        return None
    return parse_agent_metadata(entity.metadata.get(AGENT_META_KEY))


def is_agent_entity(entity: Any) -> bool:
    return get_agent_metadata(entity) is not None


class AgentRegistry:
    """Registers and queries director, worker and steward agents.

    Example:
        >>> registry = AgentRegistry(MemoryStore())
        >>> worker = registry.register_worker(
        ...     RegisterWorkerInput(name="alice", created_by="el-0000")
        ... )
        >>> registry.get_agent_channel(worker.id).name
    """

    def __init__(self, store: Store):
        self.store = store

    # Registration

    def register_agent(self, data: RegisterAgentInput | dict[str, Any]) -> Entity:
        """Register an agent of any role, dispatching on ``role``."""
        if isinstance(data, dict):
            data = _register_input_adapter.validate_python(data)

        if isinstance(data, RegisterDirectorInput):
            return self.register_director(data)
        if isinstance(data, RegisterWorkerInput):
            return self.register_worker(data)
        if isinstance(data, RegisterStewardInput):
            return self.register_steward(data)
        raise ValueError(f"Unknown agent role: {getattr(data, 'role', data)}")

    def register_director(self, data: RegisterDirectorInput) -> Entity:
        self._check_name_available(data.name)
        metadata = DirectorMetadata(
            session_status=SessionStatus.IDLE,
            max_concurrent_tasks=data.max_concurrent_tasks,
            role_definition_ref=data.role_definition_ref,
            provider=data.provider,
            model=data.model,
        )
        return self._register(data.name, data.created_by, data.tags, metadata)

    def register_worker(self, data: RegisterWorkerInput) -> Entity:
        self._check_name_available(data.name)
        metadata = WorkerMetadata(
            worker_mode=data.worker_mode,
            session_status=SessionStatus.IDLE,
            max_concurrent_tasks=data.max_concurrent_tasks,
            role_definition_ref=data.role_definition_ref,
            provider=data.provider,
            model=data.model,
        )
        return self._register(
            data.name, data.created_by, data.tags, metadata, reports_to=data.reports_to
        )

    def register_steward(self, data: RegisterStewardInput) -> Entity:
        self._check_name_available(data.name)
        metadata = StewardMetadata(
            steward_focus=data.steward_focus,
            triggers=data.triggers,
            playbook=data.playbook if data.steward_focus == StewardFocus.CUSTOM else None,
            session_status=SessionStatus.IDLE,
            max_concurrent_tasks=data.max_concurrent_tasks,
            role_definition_ref=data.role_definition_ref,
            provider=data.provider,
            model=data.model,
        )
        return self._register(
            data.name, data.created_by, data.tags, metadata, reports_to=data.reports_to
        )

    def _check_name_available(self, name: str) -> None:
        existing = self.get_agent_by_name(name)
        if existing is not None:
            raise DuplicateNameError(name, existing.id)

    def _register(
        self,
        name: str,
        created_by: str,
        tags: list[str],
        metadata: BaseAgentMetadata,
        reports_to: Optional[str] = None,
    ) -> Entity:
        """
        Create the agent entity and its channel, then link them.

        A failure after the entity is written deletes whatever was created
        before it; the original error propagates.
        """
        entity = Entity(
            name=name,
            entity_type=EntityType.AGENT,
            created_by=created_by,
            tags=list(tags),
            reports_to=reports_to,
            metadata={AGENT_META_KEY: dump_agent_metadata(metadata)},
        )
        saved = self.store.create(entity)

        with Saga(f"register agent {name}") as saga:
            saga.add_compensation("delete agent", lambda: self.store.delete(saved.id))

            channel = self._create_agent_channel(name, saved.id, created_by)
            saga.add_compensation("delete channel", lambda: self.store.delete(channel.id))

            agent = self.update_agent_metadata(saved.id, channel_id=channel.id)

        logger.info(f"Registered {metadata.agent_role} agent {name} ({agent.id})")
        return agent

    def _create_agent_channel(self, agent_name: str, agent_id: str, created_by: str) -> Channel:
        creator = self.store.get(created_by)
        creator_name = getattr(creator, "name", None) or DEFAULT_CREATOR_NAME

        channel = create_direct_channel(
            entity_a=created_by,
            entity_b=agent_id,
            created_by=created_by,
            entity_a_name=creator_name,
            entity_b_name=agent_name,
            tags=[AGENT_CHANNEL_TAG],
            metadata={
                "agent_id": agent_id,
                "agent_name": agent_name,
                "purpose": "Agent direct messaging channel",
            },
        )
        return self.store.create(channel)

    # Queries

    def get_agent(self, agent_id: str) -> Optional[Entity]:
        element = self.store.get(agent_id)
        if not is_agent_entity(element):
            return None
        return element

    def get_agent_by_name(self, name: str) -> Optional[Entity]:
        """First agent named ``name``; humans and system entities are skipped."""
        for entity in self.store.list(type="entity", name=name):
            if is_agent_entity(entity):
                return entity
        return None

    def list_agents(self, filter: Optional[AgentFilter] = None) -> list[Entity]:
        """
        List agents, optionally narrowed by a filter.

        Args:
            filter: Predicates that must all hold.

        Returns:
            Agent entities in store order.
        """
        agents = [
            entity
            for entity in self.store.list(type="entity", entity_type=EntityType.AGENT)
            if is_agent_entity(entity)
        ]
        if filter is None:
            return agents
        return [agent for agent in agents if self._matches(agent, filter)]

    def _matches(self, agent: Entity, filter: AgentFilter) -> bool:
        meta = get_agent_metadata(agent)
        if meta is None:
            return False

        if filter.role is not None and meta.agent_role != filter.role:
            return False
        if filter.worker_mode is not None and (
            not isinstance(meta, WorkerMetadata) or meta.worker_mode != filter.worker_mode
        ):
            return False
        if filter.steward_focus is not None and (
            not isinstance(meta, StewardMetadata)
            or meta.steward_focus != filter.steward_focus
        ):
            return False
        if filter.session_status is not None and meta.session_status != filter.session_status:
            return False
        if filter.reports_to is not None and agent.reports_to != filter.reports_to:
            return False
        if filter.has_session is not None and (meta.session_id is not None) != filter.has_session:
            return False
        return True

    def get_agents_by_role(self, role: AgentRole | str) -> list[Entity]:
        return self.list_agents(AgentFilter(role=role))

    def get_available_workers(self) -> list[Entity]:
        """Workers that are idle or have never started a session."""
        return [
            worker
            for worker in self.get_agents_by_role(AgentRole.WORKER)
            if get_agent_metadata(worker).session_status in (None, SessionStatus.IDLE)
        ]

    def get_stewards(self) -> list[Entity]:
        return self.get_agents_by_role(AgentRole.STEWARD)

    def get_director(self) -> Optional[Entity]:
        directors = self.get_agents_by_role(AgentRole.DIRECTOR)
        return directors[0] if directors else None

    # Updates

    def update_agent_session(
        self,
        agent_id: str,
        session_id: Optional[str],
        status: SessionStatus | str,
    ) -> Entity:
        """Record the agent's current session and stamp its activity time."""
        return self.update_agent_metadata(
            agent_id,
            session_id=session_id,
            session_status=SessionStatus(status),
            last_activity_at=datetime.now(),
        )

    def update_agent_metadata(self, agent_id: str, **updates: Any) -> Entity:
        """
        Merge fields into an agent's metadata.

        Raises:
            AgentNotFoundError: If no record has this id.
            NotAnAgentError: If the record carries no agent metadata.
        """
        agent, meta = self._require_agent(agent_id)

        merged = type(meta).model_validate({**meta.model_dump(), **updates})
        metadata = {**agent.metadata, AGENT_META_KEY: dump_agent_metadata(merged)}
        return self.store.update(agent_id, {"metadata": metadata})

    def update_agent(self, agent_id: str, name: Optional[str] = None) -> Entity:
        """
        Update an agent's record fields.

        Raises:
            DuplicateNameError: If another agent already uses ``name``.
        """
        self._require_agent(agent_id)

        changes: dict[str, Any] = {}
        if name is not None:
            existing = self.get_agent_by_name(name)
            if existing is not None and existing.id != agent_id:
                raise DuplicateNameError(name, existing.id)
            changes["name"] = name
        return self.store.update(agent_id, changes)

    def delete_agent(self, agent_id: str) -> None:
        """Delete an agent and, best effort, its channel first."""
        agent = self.get_agent(agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id)

        channel_id = get_agent_metadata(agent).channel_id
        if channel_id:
            try:
                self.store.delete(channel_id)
            except Exception as e:
                logger.warning(f"Failed to delete channel {channel_id} of agent {agent_id}: {e}")

        self.store.delete(agent_id)
        logger.info(f"Deleted agent {agent.name} ({agent_id})")

    def _require_agent(self, agent_id: str) -> tuple[Entity, BaseAgentMetadata]:
        element = self.store.get(agent_id)
        if element is None:
            raise AgentNotFoundError(agent_id)
        meta = get_agent_metadata(element)
        if meta is None:
            raise NotAnAgentError(agent_id)
        return element, meta

    # Channels

    def get_agent_channel(self, agent_id: str) -> Optional[Channel]:
        """
        Get the direct channel of an agent.

        Uses the channel id cached in the agent's metadata, falling back to a
        search for the deterministic direct-channel name.
        """
        channel_id = self.get_agent_channel_id(agent_id)
        if channel_id:
            channel = self.store.get(channel_id)
            if isinstance(channel, Channel):
                return channel

        agent = self.get_agent(agent_id)
        if agent is None:
            return None

        name = generate_direct_channel_name(agent.created_by, agent_id)
        for channel in self.store.search_channels(name, channel_type=ChannelType.DIRECT):
            if channel.name == name:
                return channel
        return None

    def get_agent_channel_id(self, agent_id: str) -> Optional[str]:
        agent = self.get_agent(agent_id)
        if agent is None:
            return None
        return get_agent_metadata(agent).channel_id
