"""Worker task lifecycle: start a worker on a task, complete it, clean up.

The service composes the worktree manager with collaborators that live
outside this package (task assignment, dispatch, session management); it
depends on them only through the protocols below.
"""

import logging
from datetime import datetime
from typing import Any, Optional, Protocol

from forge_orchestrator.core.agent_registry import (
    AgentNotFoundError,
    AgentRegistry,
    get_agent_metadata,
)
from forge_orchestrator.core.worktree import WorktreeManager
from forge_orchestrator.models.agent import AgentRole
from forge_orchestrator.models.elements import Task
from forge_orchestrator.models.task import (
    CompleteTaskResult,
    DispatchResult,
    SessionRecord,
    StartWorkerOptions,
    StartWorkerResult,
    TaskCompletion,
    TaskContext,
)
from forge_orchestrator.models.worktree_info import CreateWorktreeResult, WorktreeInfo
from forge_orchestrator.store.base import Store

logger = logging.getLogger(__name__)

DEFAULT_CLOSE_COMMAND = "sf task close"


class TaskServiceError(Exception):
    """Base exception for worker task operations."""


class NotAWorkerError(TaskServiceError):
    """Raised when a task is started on an agent that is not a worker."""

    def __init__(self, agent_id: str, role: Optional[str] = None):
        super().__init__(f"Agent {agent_id} is not a worker (role: {role})")
        self.agent_id = agent_id
        self.role = role


class TaskNotFoundError(TaskServiceError):
    """Raised when a task id does not resolve to a task record."""

    def __init__(self, task_id: str):
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class TaskAssignmentService(Protocol):
    def update_session_id(self, task_id: str, session_id: str) -> Any:
        ...

    def complete_task(
        self,
        task_id: str,
        summary: Optional[str] = None,
        commit_hash: Optional[str] = None,
    ) -> TaskCompletion:
        ...


class DispatchService(Protocol):
    def dispatch(
        self,
        task_id: str,
        agent_id: str,
        *,
        branch: Optional[str] = None,
        worktree: Optional[str] = None,
        priority: Optional[int] = None,
        mark_as_started: bool = False,
        dispatched_by: Optional[str] = None,
    ) -> DispatchResult:
        ...


class SessionManager(Protocol):
    def start_session(
        self,
        agent_id: str,
        *,
        working_directory: Optional[str] = None,
        worktree: Optional[str] = None,
        initial_prompt: Optional[str] = None,
        interactive: bool = True,
    ) -> SessionRecord:
        ...


class WorkerTaskService:
    """Runs the task lifecycle for worker agents."""

    def __init__(
        self,
        store: Store,
        task_assignment: TaskAssignmentService,
        agent_registry: AgentRegistry,
        dispatch_service: DispatchService,
        session_manager: SessionManager,
        worktree_manager: Optional[WorktreeManager] = None,
        close_command: str = DEFAULT_CLOSE_COMMAND,
    ):
        self.store = store
        self.task_assignment = task_assignment
        self.agent_registry = agent_registry
        self.dispatch_service = dispatch_service
        self.session_manager = session_manager
        self.worktree_manager = worktree_manager
        self.close_command = close_command

    def start_worker_on_task(
        self,
        task_id: str,
        agent_id: str,
        options: Optional[StartWorkerOptions] = None,
    ) -> StartWorkerResult:
        """
        Start a worker on a task in its own worktree.

        Creates the worktree, dispatches the task, builds the briefing
        prompt and starts a headless session in the worktree.

        Args:
            task_id: Task to work on.
            agent_id: Worker agent to start.
            options: Branch, path and session overrides.

        Returns:
            StartWorkerResult describing what was started.

        Raises:
            AgentNotFoundError: If the agent does not exist.
            NotAWorkerError: If the agent is not a worker.
            TaskNotFoundError: If the task does not exist.
            WorktreeError: If worktree creation fails.
        """
        options = options or StartWorkerOptions()
        started_at = datetime.now()

        agent = self.agent_registry.get_agent(agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id)
        meta = get_agent_metadata(agent)
        if meta.agent_role != AgentRole.WORKER:
            raise NotAWorkerError(agent_id, meta.agent_role)

        task = self._get_task(task_id)

        worktree_result: Optional[CreateWorktreeResult] = None
        working_directory = options.working_directory
        branch = options.branch
        worktree_path = options.worktree_path

        if self.worktree_manager is not None and not options.skip_worktree:
            worktree_result = self.worktree_manager.create_worktree(
                agent.name or f"agent-{agent_id[:8]}",
                task_id,
                task.title,
                custom_branch=options.branch,
                custom_path=options.worktree_path,
                base_branch=options.base_branch,
            )
            working_directory = str(worktree_result.path)
            branch = worktree_result.branch
            worktree_path = str(worktree_result.path)

        dispatch = self.dispatch_service.dispatch(
            task_id,
            agent_id,
            branch=branch,
            worktree=worktree_path,
            priority=options.priority,
            mark_as_started=True,
            dispatched_by=options.performed_by,
        )

        prompt = self.build_task_context_prompt(task_id, agent_id, options.additional_prompt)

        session = self.session_manager.start_session(
            agent_id,
            working_directory=working_directory,
            worktree=worktree_path,
            initial_prompt=prompt,
            interactive=False,
        )
        self.task_assignment.update_session_id(task_id, session.id)

        logger.info(f"Started worker {agent.name} on task {task_id} (session {session.id})")

        return StartWorkerResult(
            task=dispatch.task,
            agent=agent,
            dispatch=dispatch,
            worktree=worktree_result,
            session=session,
            task_context_prompt=prompt,
            started_at=started_at,
        )

    def complete_task(
        self,
        task_id: str,
        summary: Optional[str] = None,
        commit_hash: Optional[str] = None,
    ) -> CompleteTaskResult:
        """
        Mark a task completed and report the worktree it was done in.

        Raises:
            TaskNotFoundError: If the task does not exist.
        """
        completed_at = datetime.now()
        self._get_task(task_id)

        completion = self.task_assignment.complete_task(
            task_id, summary=summary, commit_hash=commit_hash
        )

        worktree: Optional[WorktreeInfo] = None
        worktree_path = completion.task.orchestrator_meta.get("worktree")
        if self.worktree_manager is not None and worktree_path:
            worktree = self.worktree_manager.get_worktree(worktree_path)

        return CompleteTaskResult(
            task=completion.task,
            worktree=worktree,
            ready_for_merge=True,
            completed_at=completed_at,
        )

    def get_task_context(self, task_id: str) -> TaskContext:
        task = self._get_task(task_id)
        orchestrator = task.orchestrator_meta

        return TaskContext(
            task_id=task_id,
            title=task.title,
            description=task.metadata.get("description"),
            tags=list(task.tags),
            priority=task.priority,
            complexity=task.complexity,
            branch=orchestrator.get("branch"),
            worktree_path=orchestrator.get("worktree"),
        )

    def build_task_context_prompt(
        self,
        task_id: str,
        worker_id: str,
        additional_instructions: Optional[str] = None,
    ) -> str:
        """Render the markdown briefing handed to a worker's session."""
        context = self.get_task_context(task_id)

        lines = [
            "# Task Assignment",
            "",
            f"**Worker ID:** {worker_id}",
            f"**Task ID:** {context.task_id}",
            f"**Title:** {context.title}",
        ]

        if context.description:
            lines.extend(["", "## Description", "", context.description])
        if context.priority:
            lines.append(f"**Priority:** {context.priority}")
        if context.complexity:
            lines.append(f"**Complexity:** {context.complexity}")
        if context.tags:
            lines.append(f"**Tags:** {', '.join(context.tags)}")

        if context.branch:
            lines.extend(["", "## Git Information", "", f"**Branch:** {context.branch}"])
            if context.worktree_path:
                lines.append(f"**Working Directory:** {context.worktree_path}")

        lines.extend(
            [
                "",
                "## Instructions",
                "",
                "1. Work on this task in the current working directory.",
                "2. Make commits as you progress (use clear commit messages).",
                "3. When complete, close the task from the command line:",
                f"   `{self.close_command} {context.task_id}`",
                "4. The Merge Steward will then review and merge your changes.",
            ]
        )

        extra = additional_instructions or context.additional_instructions
        if extra:
            lines.extend(["", "## Additional Instructions", "", extra])

        return "\n".join(lines)

    def cleanup_task(self, task_id: str, delete_branch: bool = False) -> bool:
        """
        Remove the worktree recorded for a task.

        Never raises.

        Returns:
            False if the task is missing or removal failed, True otherwise.
        """
        task = self.store.get(task_id)
        if not isinstance(task, Task):
            return False

        worktree_path = task.orchestrator_meta.get("worktree")
        if not worktree_path:
            return True
        if self.worktree_manager is None:
            logger.debug(f"No worktree manager, leaving {worktree_path} for task {task_id}")
            return True

        try:
            self.worktree_manager.remove_worktree(
                worktree_path, force=False, delete_branch=delete_branch
            )
        except Exception as e:
            logger.warning(f"Failed to clean up worktree {worktree_path} of task {task_id}: {e}")
            return False
        return True

    def _get_task(self, task_id: str) -> Task:
        task = self.store.get(task_id)
        if not isinstance(task, Task):
            raise TaskNotFoundError(task_id)
        return task
