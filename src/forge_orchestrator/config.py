"""
Configuration management for forge-orchestrator.

Loads configuration from .forgerc files in the following priority:
1. Path specified via --config flag
2. .forgerc in current directory
3. .forgerc.toml in current directory
4. ~/.config/forge-orchestrator/config.toml
5. ~/.forgerc
"""

import logging
from pathlib import Path
from typing import Optional

import toml
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class WorktreeConfig(BaseModel):
    """Configuration for worktree operations."""

    worktree_dir: str = Field(
        default=".stoneforge/.worktrees",
        description="Directory holding agent worktrees (relative to the workspace root)",
    )
    default_base_branch: Optional[str] = Field(
        default=None,
        description="Base branch for new worktrees; detected from the remote when unset",
    )
    track_remote: bool = Field(
        default=True,
        description="Set upstream to origin/<base> on newly created branches",
    )
    install_dependencies: bool = Field(
        default=False,
        description="Install dependencies in new worktrees",
    )
    git_timeout: int = Field(
        default=30,
        ge=1,
        description="Seconds before a git command is killed",
    )
    install_timeout: int = Field(
        default=300,
        ge=1,
        description="Seconds before a dependency install is killed",
    )


class StoreConfig(BaseModel):
    """Configuration for the element store used by the CLI."""

    path: str = Field(
        default=".stoneforge/store.json",
        description="JSON store file (relative to the workspace root)",
    )


class SessionConfig(BaseModel):
    """Defaults for agent sessions."""

    provider: str = Field(
        default="claude",
        description="Agent provider recorded on newly registered agents",
    )
    model: Optional[str] = Field(default=None, description="Provider model override")


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO", description="Log level for the CLI")


class Config(BaseModel):
    """Main configuration model for forge-orchestrator."""

    worktree: WorktreeConfig = Field(default_factory=WorktreeConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def get_search_paths(config_path: Optional[str] = None) -> list[Path]:
    paths = [
        Path.cwd() / ".forgerc",
        Path.cwd() / ".forgerc.toml",
        Path.home() / ".config" / "forge-orchestrator" / "config.toml",
        Path.home() / ".forgerc",
    ]
    if config_path:
        paths.insert(0, Path(config_path))
    return paths


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Load configuration from file or use defaults.

    Args:
        config_path: Optional explicit path to config file.

    Returns:
        Config from the first readable file, or defaults.
    """
    for path in get_search_paths(config_path):
        if not path.exists():
            continue
        try:
            data = toml.load(path)
            return Config(**data)
        except (toml.TomlDecodeError, ValidationError, OSError) as e:
            logger.warning(f"Ignoring invalid config file {path}: {e}")
            continue

    return Config()


def save_config(config: Config, path: Path) -> None:
    """
    Save configuration to a TOML file.

    Args:
        config: Configuration to save.
        path: Path to save the config file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        toml.dump(config.model_dump(mode="json", exclude_none=True), f)
