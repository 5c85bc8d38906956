"""
Core modules for Forge Orchestrator.

This package contains the core business logic for:
- Worktree management
- Dependency installation
- Agent registration
- Worker task lifecycle
- Reconciliation of orphaned resources
"""

from forge_orchestrator.core.agent_registry import (
    AgentNotFoundError,
    AgentRegistry,
    DuplicateNameError,
    NotAnAgentError,
)
from forge_orchestrator.core.environment import DependencyInstaller, DependencyInstallError
from forge_orchestrator.core.reconcile import ReconcileReport, ReconcileService
from forge_orchestrator.core.saga import Saga
from forge_orchestrator.core.worker_task import (
    NotAWorkerError,
    TaskNotFoundError,
    WorkerTaskService,
)
from forge_orchestrator.core.worktree import (
    GitRepositoryNotFoundError,
    NotInitializedError,
    WorktreeError,
    WorktreeErrorCode,
    WorktreeManager,
)

__all__ = [
    "AgentNotFoundError",
    "AgentRegistry",
    "DuplicateNameError",
    "NotAnAgentError",
    "DependencyInstaller",
    "DependencyInstallError",
    "ReconcileReport",
    "ReconcileService",
    "Saga",
    "NotAWorkerError",
    "TaskNotFoundError",
    "WorkerTaskService",
    "GitRepositoryNotFoundError",
    "NotInitializedError",
    "WorktreeError",
    "WorktreeErrorCode",
    "WorktreeManager",
]
