"""
Pytest configuration and shared fixtures for Forge Orchestrator tests.
"""

import subprocess
import tempfile
from pathlib import Path
from typing import Generator

import pytest

from forge_orchestrator.core.agent_registry import AgentRegistry
from forge_orchestrator.core.worktree import WorktreeManager
from forge_orchestrator.models.elements import Entity, EntityType
from forge_orchestrator.store.memory import MemoryStore


def git(repo: Path, *args: str) -> subprocess.CompletedProcess:
    """Run a git command in ``repo`` and fail the test on error."""
    return subprocess.run(
        ["git", *args],
        cwd=repo,
        capture_output=True,
        text=True,
        check=True,
    )


@pytest.fixture
def temp_directory() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir).resolve()


@pytest.fixture
def git_repo(temp_directory: Path) -> Path:
    """Create a temporary git repository on branch ``main`` with one commit."""
    repo_path = temp_directory / "test-repo"
    repo_path.mkdir()

    git(repo_path, "init")
    git(repo_path, "symbolic-ref", "HEAD", "refs/heads/main")
    git(repo_path, "config", "user.email", "test@example.com")
    git(repo_path, "config", "user.name", "Test User")
    git(repo_path, "config", "commit.gpgsign", "false")

    (repo_path / "README.md").write_text("# Test Repository\n")
    git(repo_path, "add", ".")
    git(repo_path, "commit", "-m", "Initial commit")

    return repo_path


@pytest.fixture
def git_repo_with_origin(git_repo: Path, temp_directory: Path) -> Path:
    """The git_repo fixture with a bare ``origin`` remote tracking main."""
    origin = temp_directory / "origin.git"
    subprocess.run(
        ["git", "init", "--bare", str(origin)], capture_output=True, check=True
    )
    git(origin, "symbolic-ref", "HEAD", "refs/heads/main")

    git(git_repo, "remote", "add", "origin", str(origin))
    git(git_repo, "push", "-u", "origin", "main")

    return git_repo


@pytest.fixture
def manager(git_repo_with_origin: Path) -> WorktreeManager:
    """An initialized WorktreeManager for a repository with a remote."""
    wt_manager = WorktreeManager(git_repo_with_origin)
    wt_manager.init_workspace()
    return wt_manager


@pytest.fixture
def local_manager(git_repo: Path) -> WorktreeManager:
    """An initialized WorktreeManager for a repository without remotes."""
    wt_manager = WorktreeManager(git_repo)
    wt_manager.init_workspace()
    return wt_manager


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def operator(store: MemoryStore) -> Entity:
    """The human operator that registers agents."""
    return store.create(
        Entity(name="operator", entity_type=EntityType.HUMAN, created_by="system")
    )


@pytest.fixture
def registry(store: MemoryStore) -> AgentRegistry:
    return AgentRegistry(store)
