"""
Reconciliation of git worktrees against store records.

Worktree lifecycle state is not persisted, so a crash between creating a
worktree and recording it on a task (or between rollback steps) can leave
resources nothing points to. This module finds:

- managed worktrees that no task or agent references
- agent channels whose agent no longer exists
- agents whose cached channel id does not resolve

and, outside dry-run mode, removes or relinks them.
"""

import logging
import os
from datetime import datetime
from typing import Optional

from git import Repo
from git.exc import GitError
from pydantic import BaseModel, Field

from forge_orchestrator.core.agent_registry import (
    AGENT_CHANNEL_TAG,
    AgentRegistry,
    get_agent_metadata,
)
from forge_orchestrator.core.worktree import WorktreeManager
from forge_orchestrator.models.elements import Channel, Entity, Task
from forge_orchestrator.models.worktree_info import WorktreeInfo
from forge_orchestrator.store.base import Store

logger = logging.getLogger(__name__)


class ReconcileReport(BaseModel):
    """Report generated by a reconciliation run."""

    timestamp: datetime = Field(default_factory=datetime.now)
    dry_run: bool = True
    worktrees_scanned: int = 0
    orphaned_worktrees: list[str] = Field(default_factory=list)
    orphaned_channels: list[str] = Field(default_factory=list)
    agents_missing_channel: list[str] = Field(default_factory=list)
    worktrees_removed: int = 0
    channels_deleted: int = 0
    agents_relinked: int = 0
    skipped: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not (
            self.orphaned_worktrees or self.orphaned_channels or self.agents_missing_channel
        )


class ReconcileService:
    """Finds and repairs resources left behind by interrupted operations."""

    def __init__(
        self,
        worktree_manager: Optional[WorktreeManager],
        store: Store,
        protect_uncommitted: bool = True,
    ):
        self.worktree_manager = worktree_manager
        self.store = store
        self.registry = AgentRegistry(store)
        self.protect_uncommitted = protect_uncommitted

    def find_orphaned_worktrees(self) -> list[WorktreeInfo]:
        """Managed worktrees that no task and no agent references."""
        if self.worktree_manager is None:
            return []

        referenced = set()
        for task in self.store.list(type="task"):
            if isinstance(task, Task) and task.orchestrator_meta.get("worktree"):
                referenced.add(self._real(task.orchestrator_meta["worktree"]))
        for agent in self.registry.list_agents():
            worktree = get_agent_metadata(agent).worktree
            if worktree:
                referenced.add(self._real(worktree))

        prefix = f"{self.worktree_manager.worktree_dir}/"
        return [
            wt
            for wt in self.worktree_manager.list_worktrees()
            if wt.relative_path.startswith(prefix)
            and os.path.realpath(wt.path) not in referenced
        ]

    def find_orphaned_channels(self) -> list[Channel]:
        """Agent channels whose agent record is gone."""
        orphans = []
        for channel in self.store.list(type="channel"):
            if not isinstance(channel, Channel) or AGENT_CHANNEL_TAG not in channel.tags:
                continue
            agent_id = channel.metadata.get("agent_id")
            if agent_id and self.registry.get_agent(agent_id) is None:
                orphans.append(channel)
        return orphans

    def find_agents_missing_channel(self) -> list[Entity]:
        missing = []
        for agent in self.registry.list_agents():
            channel_id = get_agent_metadata(agent).channel_id
            if not channel_id or not isinstance(self.store.get(channel_id), Channel):
                missing.append(agent)
        return missing

    def scan(self) -> ReconcileReport:
        return self.reconcile(dry_run=True)

    def reconcile(self, dry_run: bool = True, force: bool = False) -> ReconcileReport:
        """
        Report and optionally repair orphaned resources.

        Args:
            dry_run: If True, only report.
            force: Remove orphaned worktrees even with uncommitted changes.

        Returns:
            ReconcileReport; per-item failures are collected in ``errors``.
        """
        report = ReconcileReport(dry_run=dry_run)

        if self.worktree_manager is not None:
            report.worktrees_scanned = len(self.worktree_manager.list_worktrees())

        for worktree in self.find_orphaned_worktrees():
            report.orphaned_worktrees.append(worktree.relative_path)
            if dry_run:
                continue
            if self.protect_uncommitted and not force and self._is_dirty(worktree):
                report.skipped.append(f"{worktree.relative_path} (has uncommitted changes)")
                continue
            try:
                self.worktree_manager.remove_worktree(worktree.path, force=True)
                report.worktrees_removed += 1
            except Exception as e:
                report.errors.append(f"Failed to remove {worktree.relative_path}: {e}")

        for channel in self.find_orphaned_channels():
            report.orphaned_channels.append(channel.id)
            if dry_run:
                continue
            try:
                self.store.delete(channel.id)
                report.channels_deleted += 1
            except Exception as e:
                report.errors.append(f"Failed to delete channel {channel.id}: {e}")

        for agent in self.find_agents_missing_channel():
            report.agents_missing_channel.append(agent.id)
            if dry_run:
                continue
            channel = self.registry.get_agent_channel(agent.id)
            if channel is None:
                report.skipped.append(f"{agent.name} (no channel to relink)")
                continue
            try:
                self.registry.update_agent_metadata(agent.id, channel_id=channel.id)
                report.agents_relinked += 1
            except Exception as e:
                report.errors.append(f"Failed to relink channel of {agent.name}: {e}")

        logger.info(
            f"Reconcile ({'dry run' if dry_run else 'apply'}): "
            f"{len(report.orphaned_worktrees)} worktrees, "
            f"{len(report.orphaned_channels)} channels, "
            f"{len(report.agents_missing_channel)} agents without channel"
        )
        return report

    def _real(self, path: str) -> str:
        return os.path.realpath(self.worktree_manager.resolve_path(path))

    def _is_dirty(self, worktree: WorktreeInfo) -> bool:
        try:
            return Repo(worktree.path).is_dirty(untracked_files=True)
        except GitError as e:
            logger.warning(f"Could not inspect {worktree.relative_path}: {e}")
            return True
