"""
Forge Orchestrator - git worktree and agent orchestration for parallel AI work.

This package isolates AI coding agents in per-task git worktrees, registers
director, worker and steward agents with their messaging channels, and runs
the worker task lifecycle on top of an element store.
"""

__version__ = "0.1.0"

from forge_orchestrator.config import Config, load_config

__all__ = [
    "__version__",
    "Config",
    "load_config",
]
