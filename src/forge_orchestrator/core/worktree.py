"""Git worktree management for agent workspaces.

Every worker agent gets its own checkout under the workspace's worktree
directory (``.stoneforge/.worktrees`` by default) on a dedicated
``agent/<name>/<task>-<slug>`` branch. The manager wraps ``git worktree``
through GitPython and tracks an in-memory lifecycle state per worktree.
"""

import logging
import os
import re
import threading
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from git import Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from forge_orchestrator.core.environment import DependencyInstallError, DependencyInstaller
from forge_orchestrator.models.worktree_info import (
    CreateWorktreeResult,
    WorktreeInfo,
    WorktreeState,
    is_valid_state_transition,
)

logger = logging.getLogger(__name__)

DEFAULT_WORKTREE_DIR = ".stoneforge/.worktrees"
DEFAULT_GIT_TIMEOUT = 30
MAX_SLUG_LENGTH = 30
COMMON_DEFAULT_BRANCHES = ("main", "master", "develop")


class GitRepositoryNotFoundError(Exception):
    """Raised when the workspace root is not a git repository."""

    def __init__(self, path: str | Path):
        super().__init__(
            f"Git repository not found at {path}. "
            f"Run 'git init' in the workspace first."
        )
        self.path = Path(path)


class NotInitializedError(Exception):
    """Raised when the manager is used before init_workspace()."""

    def __init__(self) -> None:
        super().__init__("WorktreeManager not initialized. Call init_workspace() first.")


class WorktreeErrorCode(str, Enum):
    WORKTREE_EXISTS = "WORKTREE_EXISTS"
    WORKTREE_NOT_FOUND = "WORKTREE_NOT_FOUND"
    CANNOT_REMOVE_MAIN = "CANNOT_REMOVE_MAIN"
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"
    BRANCH_DELETE_FAILED = "BRANCH_DELETE_FAILED"
    DEPENDENCY_INSTALL_FAILED = "DEPENDENCY_INSTALL_FAILED"
    LIST_FAILED = "LIST_FAILED"
    REMOVE_FAILED = "REMOVE_FAILED"
    WORKTREE_INFO_FAILED = "WORKTREE_INFO_FAILED"
    BRANCH_QUERY_FAILED = "BRANCH_QUERY_FAILED"


class WorktreeError(Exception):
    """Worktree operation failure carrying a machine-readable code."""

    def __init__(
        self,
        message: str,
        code: WorktreeErrorCode,
        details: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = WorktreeErrorCode(code)
        self.details = details

    def __str__(self) -> str:
        return self.message


def slugify(title: str) -> str:
    """
    Turn a task title into a branch- and path-safe slug.

    Args:
        title: Free-form task title.

    Returns:
        Lowercase slug of at most 30 characters.
    """
    slug = title.lower()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug[:MAX_SLUG_LENGTH].strip("-")


def safe_agent_name(agent_name: str) -> str:
    return re.sub(r"[^a-z0-9-]", "-", agent_name.lower())


def generate_branch_name(agent_name: str, task_id: str, slug: Optional[str] = None) -> str:
    """
    Build the branch name for an agent's task.

    Args:
        agent_name: Agent display name.
        task_id: Task identifier.
        slug: Optional slug of the task title.

    Returns:
        ``agent/{agent}/{task}-{slug}``, or ``agent/{agent}/{task}`` without a slug.
    """
    base = f"agent/{safe_agent_name(agent_name)}/{task_id.lower()}"
    if slug:
        return f"{base}-{slug[:MAX_SLUG_LENGTH]}"
    return base


def generate_worktree_path(
    agent_name: str,
    slug: Optional[str] = None,
    worktree_dir: str = DEFAULT_WORKTREE_DIR,
) -> str:
    """Build a worktree path relative to the workspace root."""
    name = safe_agent_name(agent_name)
    if slug:
        return f"{worktree_dir}/{name}-{slug}"
    return f"{worktree_dir}/{name}"


class WorktreeManager:
    """Manages agent worktrees for one workspace repository.

    Lifecycle state is kept in memory only; worktrees this manager has not
    seen are reported as ``active``.
    """

    def __init__(
        self,
        workspace_root: str | Path,
        worktree_dir: str = DEFAULT_WORKTREE_DIR,
        default_base_branch: Optional[str] = None,
        git_timeout: int = DEFAULT_GIT_TIMEOUT,
        install_timeout: int = 300,
        installer: Optional[DependencyInstaller] = None,
    ):
        """
        Initialize the WorktreeManager.

        Args:
            workspace_root: Root of the workspace git repository.
            worktree_dir: Directory for agent worktrees, relative to the root.
            default_base_branch: Base branch for new worktrees. Detected when omitted.
            git_timeout: Seconds before a git command is killed.
            install_timeout: Seconds before a dependency install is killed.
            installer: Dependency installer override.
        """
        self._workspace_root = Path(workspace_root).absolute()
        self.worktree_dir = worktree_dir.strip("/")
        self.default_base_branch = default_base_branch
        self.git_timeout = git_timeout
        self.installer = installer or DependencyInstaller(timeout=install_timeout)

        self._repo: Optional[Repo] = None
        self._initialized = False
        self._default_branch: Optional[str] = None
        self._real_root: Optional[Path] = None
        self._states: dict[str, WorktreeState] = {}
        # One lock per worktree path ever touched; entries are kept so a waiter
        # never ends up holding a lock that a newer caller has replaced.
        self._path_locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @property
    def workspace_root(self) -> Path:
        return self._workspace_root

    @property
    def repo(self) -> Repo:
        if self._repo is None:
            raise NotInitializedError()
        return self._repo

    def is_initialized(self) -> bool:
        return self._initialized

    def init_workspace(self) -> None:
        """
        Prepare the workspace for agent worktrees.

        Creates the worktree directory, ignores it in .gitignore, caches the
        default branch and prunes stale worktree registrations.

        Raises:
            GitRepositoryNotFoundError: If the root is not a git repository.
        """
        root = self._workspace_root
        if not (root / ".git").exists():
            raise GitRepositoryNotFoundError(root)

        try:
            self._repo = Repo(root)
            self._git("rev-parse", "--git-dir")
        except (InvalidGitRepositoryError, NoSuchPathError, GitCommandError) as e:
            self._repo = None
            raise GitRepositoryNotFoundError(root) from e

        (root / self.worktree_dir).mkdir(parents=True, exist_ok=True)
        self._ensure_gitignore()

        self._default_branch = self._detect_default_branch()
        self._git("worktree", "prune")
        self._real_root = Path(os.path.realpath(root))

        self._initialized = True
        logger.info(
            f"Initialized workspace {root} (default branch: {self._default_branch})"
        )

    def create_worktree(
        self,
        agent_name: str,
        task_id: str,
        task_title: Optional[str] = None,
        *,
        custom_branch: Optional[str] = None,
        custom_path: Optional[str] = None,
        base_branch: Optional[str] = None,
        track_remote: bool = True,
        install_dependencies: bool = False,
    ) -> CreateWorktreeResult:
        """
        Create an isolated worktree for an agent's task.

        A directory left at the target path by a crash or task reset is
        force-removed once before creating.

        Args:
            agent_name: Agent the worktree is for.
            task_id: Task the worktree is for.
            task_title: Title used for the branch and directory slug.
            custom_branch: Branch name overriding the generated one.
            custom_path: Relative path overriding the generated one.
            base_branch: Branch to start from. Defaults to the default branch.
            track_remote: Set upstream to origin/<base> on a new branch.
            install_dependencies: Install packages after checkout.

        Returns:
            CreateWorktreeResult for the new worktree.

        Raises:
            WorktreeError: If the path is occupied, git fails or the install fails.
        """
        self._ensure_initialized()

        slug = slugify(task_title) if task_title else None
        branch = custom_branch or generate_branch_name(agent_name, task_id, slug)
        relative_path = custom_path or generate_worktree_path(agent_name, slug, self.worktree_dir)
        full_path = self.resolve_path(relative_path)
        key = self._state_key(full_path)

        with self._lock_for(key):
            if full_path.exists():
                logger.info(f"Removing stale worktree at {relative_path}")
                try:
                    self.remove_worktree(relative_path, force=True)
                except Exception as e:
                    raise WorktreeError(
                        f"Worktree already exists at {relative_path} and could not be removed",
                        WorktreeErrorCode.WORKTREE_EXISTS,
                        str(e),
                    ) from e

            self._states[key] = WorktreeState.CREATING
            branch_created = False

            try:
                base = base_branch or self.get_default_branch()
                start_point = self._resolve_start_point(base)
                self._git("worktree", "prune")

                if self.branch_exists(branch):
                    self._git("worktree", "add", str(full_path), branch)
                else:
                    self._git("worktree", "add", "-b", branch, str(full_path), start_point)
                    branch_created = True
                    if track_remote:
                        self._set_upstream(branch, base)

                if install_dependencies:
                    self.install_dependencies(full_path)

                self._states[key] = WorktreeState.ACTIVE
                worktree = self.get_worktree(relative_path)
                if worktree is None:
                    raise WorktreeError(
                        "Failed to get worktree info after creation",
                        WorktreeErrorCode.WORKTREE_INFO_FAILED,
                    )
            except Exception:
                self._discard_partial(key, full_path)
                raise

        worktree = worktree.model_copy(
            update={
                "agent_name": agent_name,
                "task_id": task_id,
                "created_at": datetime.now(),
                "state": WorktreeState.ACTIVE,
            }
        )
        logger.info(f"Created worktree {relative_path} on branch {branch}")

        return CreateWorktreeResult(
            worktree=worktree,
            branch=branch,
            path=full_path,
            branch_created=branch_created,
        )

    def create_read_only_worktree(self, agent_name: str, purpose: str) -> CreateWorktreeResult:
        """
        Create a detached worktree on the default branch for read-only work.

        No branch is created and an occupied path is an error.

        Raises:
            WorktreeError: WORKTREE_EXISTS if the path is occupied, or a git failure.
        """
        self._ensure_initialized()

        relative_path = f"{self.worktree_dir}/{safe_agent_name(agent_name)}-{purpose}"
        full_path = self.resolve_path(relative_path)
        key = self._state_key(full_path)

        with self._lock_for(key):
            if full_path.exists():
                raise WorktreeError(
                    f"Worktree already exists at {relative_path}",
                    WorktreeErrorCode.WORKTREE_EXISTS,
                )

            self._states[key] = WorktreeState.CREATING
            try:
                start_point = self._resolve_start_point(self.get_default_branch())
                self._git("worktree", "prune")
                self._git("worktree", "add", "--detach", str(full_path), start_point)

                self._states[key] = WorktreeState.ACTIVE
                worktree = self.get_worktree(relative_path)
                if worktree is None:
                    raise WorktreeError(
                        "Failed to get worktree info after creation",
                        WorktreeErrorCode.WORKTREE_INFO_FAILED,
                    )
            except Exception:
                self._discard_partial(key, full_path)
                raise

        worktree = worktree.model_copy(
            update={
                "agent_name": agent_name,
                "created_at": datetime.now(),
                "state": WorktreeState.ACTIVE,
            }
        )
        return CreateWorktreeResult(
            worktree=worktree,
            branch=f"(detached-{purpose})",
            path=full_path,
            branch_created=False,
        )

    def remove_worktree(
        self,
        worktree_path: str | Path,
        *,
        force: bool = False,
        delete_branch: bool = False,
        force_branch_delete: bool = False,
        delete_remote_branch: bool = False,
    ) -> None:
        """
        Remove a worktree and optionally its branch.

        Args:
            worktree_path: Absolute path or path relative to the workspace root.
            force: Remove even with uncommitted changes.
            delete_branch: Delete the worktree's branch afterwards.
            force_branch_delete: Delete the branch even if unmerged.
            delete_remote_branch: Also delete the branch on origin (best effort).

        Raises:
            WorktreeError: WORKTREE_NOT_FOUND, CANNOT_REMOVE_MAIN,
                BRANCH_DELETE_FAILED or REMOVE_FAILED.
        """
        self._ensure_initialized()

        full_path = self.resolve_path(worktree_path)
        key = self._state_key(full_path)

        with self._lock_for(key):
            worktree = self.get_worktree(worktree_path)
            if worktree is None:
                raise WorktreeError(
                    f"Worktree not found: {worktree_path}",
                    WorktreeErrorCode.WORKTREE_NOT_FOUND,
                )
            if worktree.is_main:
                raise WorktreeError(
                    "Cannot remove the main worktree",
                    WorktreeErrorCode.CANNOT_REMOVE_MAIN,
                )

            self._states[key] = WorktreeState.CLEANING

            try:
                args = ["remove"]
                if force:
                    args.append("--force")
                args.append(str(full_path))
                self._git("worktree", *args)
            except GitCommandError as e:
                raise WorktreeError(
                    f"Failed to remove worktree: {worktree_path}",
                    WorktreeErrorCode.REMOVE_FAILED,
                    _command_output(e),
                ) from e

            if delete_branch and worktree.branch and not worktree.is_detached:
                self._delete_branch(worktree.branch, force_branch_delete, delete_remote_branch)

            self._states[key] = WorktreeState.ARCHIVED

        logger.info(f"Removed worktree {worktree.relative_path}")

    def _delete_branch(self, branch: str, force: bool, delete_remote: bool) -> None:
        if delete_remote:
            try:
                self._git("push", "origin", "--delete", branch)
            except GitCommandError as e:
                logger.warning(f"Failed to delete remote branch origin/{branch}: {e.stderr}")

        try:
            self._git("branch", "-D" if force else "-d", branch)
        except GitCommandError as e:
            if not force:
                raise WorktreeError(
                    f"Failed to delete branch {branch}. Use force_branch_delete to force deletion.",
                    WorktreeErrorCode.BRANCH_DELETE_FAILED,
                    _command_output(e),
                ) from e
            logger.warning(f"Failed to force-delete branch {branch}: {e.stderr}")

    def suspend_worktree(self, worktree_path: str | Path) -> None:
        """Mark a worktree suspended so it can be resumed later."""
        self._transition(worktree_path, WorktreeState.SUSPENDED, "suspend")

    def resume_worktree(self, worktree_path: str | Path) -> None:
        """Return a suspended worktree to active."""
        self._transition(
            worktree_path,
            WorktreeState.ACTIVE,
            "resume",
            required=WorktreeState.SUSPENDED,
        )

    def start_merge(self, worktree_path: str | Path) -> None:
        self._transition(
            worktree_path, WorktreeState.MERGING, "merge", required=WorktreeState.ACTIVE
        )

    def finish_merge(self, worktree_path: str | Path) -> None:
        self._transition(
            worktree_path,
            WorktreeState.ARCHIVED,
            "finish merge of",
            required=WorktreeState.MERGING,
        )

    def abort_merge(self, worktree_path: str | Path) -> None:
        self._transition(
            worktree_path,
            WorktreeState.ACTIVE,
            "abort merge of",
            required=WorktreeState.MERGING,
        )

    def get_state(self, worktree_path: str | Path) -> WorktreeState:
        self._ensure_initialized()
        return self._states.get(self._state_key(self.resolve_path(worktree_path)), WorktreeState.ACTIVE)

    def _transition(
        self,
        worktree_path: str | Path,
        target: WorktreeState,
        verb: str,
        required: Optional[WorktreeState] = None,
    ) -> None:
        self._ensure_initialized()

        worktree = self.get_worktree(worktree_path)
        if worktree is None:
            raise WorktreeError(
                f"Worktree not found: {worktree_path}",
                WorktreeErrorCode.WORKTREE_NOT_FOUND,
            )
        if worktree.is_main:
            raise WorktreeError(
                f"Cannot {verb} the main worktree",
                WorktreeErrorCode.INVALID_STATE_TRANSITION,
            )

        key = self._state_key(self.resolve_path(worktree_path))
        current = self._states.get(key, WorktreeState.ACTIVE)
        if (required is not None and current != required) or not is_valid_state_transition(
            current, target
        ):
            raise WorktreeError(
                f"Cannot {verb} worktree in state: {current.value}",
                WorktreeErrorCode.INVALID_STATE_TRANSITION,
            )

        self._states[key] = target
        logger.debug(f"Worktree {key}: {current.value} -> {target.value}")

    def list_worktrees(self, include_main: bool = False) -> list[WorktreeInfo]:
        """
        List worktrees registered with git.

        Args:
            include_main: Include the main checkout, always first.

        Raises:
            WorktreeError: LIST_FAILED when git cannot list worktrees.
        """
        self._ensure_initialized()

        try:
            output = self._git("worktree", "list", "--porcelain")
        except GitCommandError as e:
            raise WorktreeError(
                "Failed to list worktrees",
                WorktreeErrorCode.LIST_FAILED,
                _command_output(e),
            ) from e

        worktrees = self._parse_worktree_list(output)
        if include_main:
            return worktrees
        return [wt for wt in worktrees if not wt.is_main]

    def get_worktree(self, worktree_path: str | Path) -> Optional[WorktreeInfo]:
        self._ensure_initialized()

        target = os.path.realpath(self.resolve_path(worktree_path))
        for worktree in self.list_worktrees(include_main=True):
            if os.path.realpath(worktree.path) == target:
                return worktree
        return None

    def worktree_exists(self, worktree_path: str | Path) -> bool:
        return self.get_worktree(worktree_path) is not None

    def get_worktree_path(self, agent_name: str, task_title: Optional[str] = None) -> Path:
        """Absolute path a worktree for this agent and title would get."""
        slug = slugify(task_title) if task_title else None
        return self._workspace_root / generate_worktree_path(agent_name, slug, self.worktree_dir)

    def get_worktrees_for_agent(self, agent_name: str) -> list[WorktreeInfo]:
        """Worktrees whose directory belongs to ``agent_name``."""
        self._ensure_initialized()

        pattern = re.compile(
            rf"^{re.escape(self.worktree_dir)}/{re.escape(safe_agent_name(agent_name))}($|-)"
        )
        return [wt for wt in self.list_worktrees() if pattern.match(wt.relative_path)]

    def get_current_branch(self) -> str:
        self._ensure_initialized()
        try:
            return self._git("rev-parse", "--abbrev-ref", "HEAD").strip()
        except GitCommandError as e:
            raise WorktreeError(
                "Failed to get current branch",
                WorktreeErrorCode.BRANCH_QUERY_FAILED,
                _command_output(e),
            ) from e

    def get_default_branch(self) -> str:
        if self._default_branch is None:
            self._default_branch = self._detect_default_branch()
        return self._default_branch

    def branch_exists(self, branch: str) -> bool:
        try:
            self._git("rev-parse", "--verify", f"refs/heads/{branch}")
            return True
        except GitCommandError:
            return False

    def install_dependencies(self, worktree_path: str | Path) -> None:
        """
        Install packages in a worktree.

        Raises:
            WorktreeError: DEPENDENCY_INSTALL_FAILED with captured output.
        """
        try:
            self.installer.install(self.resolve_path(worktree_path))
        except DependencyInstallError as e:
            raise WorktreeError(
                f"Failed to install dependencies in worktree: {worktree_path}",
                WorktreeErrorCode.DEPENDENCY_INSTALL_FAILED,
                e.details,
            ) from e

    def _git(self, *args: str) -> str:
        return self.repo.git.execute(
            ["git", *args], kill_after_timeout=self.git_timeout
        )

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError()

    def resolve_path(self, worktree_path: str | Path) -> Path:
        path = Path(worktree_path)
        if path.is_absolute():
            return path
        return self._workspace_root / path

    def _relative_path(self, full_path: str | Path) -> str:
        root = self._real_root or self._workspace_root
        return Path(os.path.relpath(os.path.realpath(full_path), root)).as_posix()

    def _state_key(self, full_path: Path) -> str:
        return self._relative_path(full_path)

    def _lock_for(self, key: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._path_locks.get(key)
            if lock is None:
                lock = self._path_locks[key] = threading.RLock()
            return lock

    def _resolve_start_point(self, base: str) -> str:
        try:
            self._git("fetch", "origin", base)
        except GitCommandError as e:
            logger.debug(f"Fetch of origin/{base} failed: {e.stderr}")

        try:
            self._git("rev-parse", "--verify", f"origin/{base}")
            return f"origin/{base}"
        except GitCommandError:
            return base

    def _set_upstream(self, branch: str, base: str) -> None:
        try:
            self._git("branch", "--set-upstream-to", f"origin/{base}", branch)
        except GitCommandError as e:
            logger.debug(f"Could not set upstream of {branch} to origin/{base}: {e.stderr}")

    def _discard_partial(self, key: str, full_path: Path) -> None:
        self._states.pop(key, None)
        if not full_path.exists():
            return
        try:
            self._git("worktree", "remove", "--force", str(full_path))
        except GitCommandError as e:
            logger.warning(f"Failed to clean up partial worktree {full_path}: {e.stderr}")

    def _detect_default_branch(self) -> str:
        if self.default_base_branch:
            return self.default_base_branch

        try:
            output = self._git("remote", "show", "origin")
            match = re.search(r"HEAD branch: (.+)", output)
            if match and match.group(1).strip() != "(unknown)":
                return match.group(1).strip()
        except GitCommandError:
            pass

        for branch in COMMON_DEFAULT_BRANCHES:
            if self.branch_exists(branch):
                return branch

        try:
            return self._git("rev-parse", "--abbrev-ref", "HEAD").strip()
        except GitCommandError as e:
            raise WorktreeError(
                "Failed to get current branch",
                WorktreeErrorCode.BRANCH_QUERY_FAILED,
                _command_output(e),
            ) from e

    def _ensure_gitignore(self) -> None:
        gitignore = self._workspace_root / ".gitignore"
        pattern = f"/{self.worktree_dir}/"

        content = gitignore.read_text(encoding="utf-8") if gitignore.exists() else ""
        if pattern in content.splitlines():
            return

        if content and not content.endswith("\n"):
            content += "\n"
        gitignore.write_text(f"{content}{pattern}\n", encoding="utf-8")
        logger.debug(f"Added {pattern} to {gitignore}")

    def _parse_worktree_list(self, output: str) -> list[WorktreeInfo]:
        """
        Parse ``git worktree list --porcelain`` output.

        Entries are separated by blank lines. The first entry is the main
        worktree.
        """
        entries: list[dict[str, Any]] = []
        current: dict[str, Any] = {}

        for line in output.splitlines():
            line = line.strip()
            if line.startswith("worktree "):
                if current:
                    entries.append(current)
                current = {"path": line[len("worktree "):]}
            elif not line:
                if current:
                    entries.append(current)
                    current = {}
            elif line.startswith("HEAD "):
                current["head"] = line[len("HEAD "):]
            elif line.startswith("branch "):
                current["branch"] = line[len("branch "):].removeprefix("refs/heads/")
            elif line == "bare":
                current["bare"] = True
            elif line == "detached":
                current["detached"] = True

        if current:
            entries.append(current)

        return [
            self._parse_worktree_entry(entry, is_main=index == 0 or entry.get("bare", False))
            for index, entry in enumerate(entries)
        ]

    def _parse_worktree_entry(self, entry: dict[str, Any], is_main: bool) -> WorktreeInfo:
        path = Path(entry["path"])
        relative_path = self._relative_path(path)
        branch = entry.get("branch") or "HEAD"

        agent_name = None
        task_id = None
        match = re.match(rf"^{re.escape(self.worktree_dir)}/([^-]+)-", relative_path)
        if match:
            agent_name = match.group(1)
            branch_match = re.match(r"^agent/[^/]+/([^-]+)", branch)
            if branch_match:
                task_id = branch_match.group(1)

        return WorktreeInfo(
            path=path,
            relative_path=relative_path,
            branch=branch,
            head=entry.get("head", ""),
            is_main=is_main,
            state=self._states.get(relative_path, WorktreeState.ACTIVE),
            agent_name=agent_name,
            task_id=task_id,
        )


def _command_output(error: GitCommandError) -> str:
    output = (error.stderr or error.stdout or "").strip()
    return output or str(error)
