"""Dependency installation for newly created worktrees.

Worktrees start without installed packages. This module detects the
JavaScript package manager from the lockfile in the checkout and installs
dependencies, preferring a lockfile-strict install and falling back to a
plain install when the lockfile is out of sync with package.json.
"""

import logging
import os
import subprocess
from enum import Enum
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_INSTALL_TIMEOUT = 300


class PackageManager(str, Enum):
    """Package managers recognised by their lockfiles."""

    PNPM = "pnpm"
    BUN = "bun"
    YARN = "yarn"
    NPM = "npm"


# Checked in order; the first lockfile present wins.
LOCKFILES: list[tuple[str, PackageManager]] = [
    ("pnpm-lock.yaml", PackageManager.PNPM),
    ("bun.lockb", PackageManager.BUN),
    ("bun.lock", PackageManager.BUN),
    ("yarn.lock", PackageManager.YARN),
    ("package-lock.json", PackageManager.NPM),
]

STRICT_INSTALL_ARGS: dict[PackageManager, list[str]] = {
    PackageManager.PNPM: ["install", "--frozen-lockfile"],
    PackageManager.BUN: ["install", "--frozen-lockfile"],
    PackageManager.YARN: ["install", "--frozen-lockfile"],
    PackageManager.NPM: ["ci"],
}


class DependencyInstallError(Exception):
    """Raised when both the strict and the plain install fail."""

    def __init__(self, message: str, stdout: str = "", stderr: str = ""):
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr

    @property
    def details(self) -> str:
        parts = [str(self)]
        if self.stderr:
            parts.append(f"stderr: {self.stderr}")
        if self.stdout:
            parts.append(f"stdout: {self.stdout}")
        return "\n".join(parts)


class DependencyInstaller:
    """Installs JavaScript dependencies inside a worktree.

    Example:
        >>> installer = DependencyInstaller(timeout=300)
        >>> installer.install("/repo/.stoneforge/.worktrees/alice-fix-login")
    """

    def __init__(self, timeout: int = DEFAULT_INSTALL_TIMEOUT) -> None:
        self.timeout = timeout

    def detect(self, worktree_path: str | Path) -> tuple[Optional[PackageManager], bool]:
        """Detect the package manager for a checkout.

        Args:
            worktree_path: Directory to inspect.

        Returns:
            ``(manager, has_lockfile)``. ``manager`` is None when there is no
            package.json; without a lockfile pnpm is assumed.
        """
        root = Path(worktree_path)
        if not (root / "package.json").exists():
            return None, False

        for lockfile, manager in LOCKFILES:
            if (root / lockfile).exists():
                return manager, True

        return PackageManager.PNPM, False

    def install(self, worktree_path: str | Path) -> Optional[subprocess.CompletedProcess]:
        """Install dependencies in ``worktree_path``.

        Args:
            worktree_path: Path to the worktree directory.

        Returns:
            CompletedProcess of the install that succeeded, or None when the
            checkout has no package.json.

        Raises:
            DependencyInstallError: If the fallback install fails too.
        """
        worktree_path = Path(worktree_path)
        manager, has_lockfile = self.detect(worktree_path)

        if manager is None:
            logger.debug(f"No package.json in {worktree_path}, skipping install")
            return None

        command = manager.value
        strict_args = STRICT_INSTALL_ARGS[manager] if has_lockfile else ["install"]

        logger.info(f"Installing dependencies with {command} {' '.join(strict_args)}")
        try:
            return self._run([command, *strict_args], worktree_path)
        except DependencyInstallError as e:
            logger.warning(
                f"Strict install failed in {worktree_path}, retrying with plain install: {e}"
            )

        try:
            return self._run([command, "install"], worktree_path)
        except DependencyInstallError as e:
            raise DependencyInstallError(
                f"Failed to install dependencies in worktree: {worktree_path}",
                stdout=e.stdout,
                stderr=e.stderr or str(e),
            ) from e

    def _run(self, cmd: list[str], cwd: Path) -> subprocess.CompletedProcess:
        try:
            result = subprocess.run(
                cmd,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=self._get_install_environment(),
            )
        except subprocess.TimeoutExpired as e:
            raise DependencyInstallError(
                f"{' '.join(cmd)} timed out after {self.timeout} seconds"
            ) from e
        except OSError as e:
            raise DependencyInstallError(f"Failed to run {cmd[0]}: {e}") from e

        if result.returncode != 0:
            raise DependencyInstallError(
                f"{' '.join(cmd)} exited with code {result.returncode}",
                stdout=result.stdout or "",
                stderr=result.stderr or "",
            )

        return result

    def _get_install_environment(self) -> dict[str, str]:
        env = os.environ.copy()
        # Keep package managers from prompting.
        env["CI"] = "true"
        return env


__all__ = [
    "DependencyInstallError",
    "DependencyInstaller",
    "LOCKFILES",
    "PackageManager",
    "STRICT_INSTALL_ARGS",
]
