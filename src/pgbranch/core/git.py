"""Git integration: current branch lookup and hook installation."""

import logging
import os
import stat
import subprocess
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pgbranch.errors import ConfigError

logger = logging.getLogger(__name__)

HOOK_MARKER = "# pgbranch auto-generated hook"
MAIN_BRANCH_CANDIDATES = ("main", "master", "develop")


class VcsEvent(str, Enum):
    """Git hooks pgbranch reacts to."""

    POST_CHECKOUT = "post-checkout"
    POST_MERGE = "post-merge"


POST_CHECKOUT_SCRIPT = f"""#!/bin/sh
{HOOK_MARKER}
# Switches the database branch when a Git branch is checked out.
# $1=previous HEAD, $2=new HEAD, $3=checkout type (1=branch, 0=file)
if [ "$3" = "0" ]; then
    exit 0
fi

if command -v pgbranch >/dev/null 2>&1; then
    pgbranch git-hook post-checkout
else
    echo "pgbranch not found in PATH, skipping database branch switch"
fi
"""

POST_MERGE_SCRIPT = f"""#!/bin/sh
{HOOK_MARKER}
# Keeps the database branch in sync after a merge or pull.
if command -v pgbranch >/dev/null 2>&1; then
    pgbranch git-hook post-merge
else
    echo "pgbranch not found in PATH, skipping database branch switch"
fi
"""

HOOK_SCRIPTS = {
    VcsEvent.POST_CHECKOUT: POST_CHECKOUT_SCRIPT,
    VcsEvent.POST_MERGE: POST_MERGE_SCRIPT,
}


class GitRepository:
    """Thin wrapper around the ``git`` executable."""

    def __init__(self, path: Path):
        """Open the repository containing ``path``.

        Raises:
            ConfigError: If ``path`` is not inside a Git repository
        """
        self.path = Path(path)
        if not self.path.is_dir():
            raise ConfigError(f"Not a directory: {self.path}")
        try:
            self.root = Path(self._run(["rev-parse", "--show-toplevel"]).strip())
        except subprocess.CalledProcessError as e:
            raise ConfigError(
                f"Not a Git repository: {self.path} ({(e.stderr or '').strip()})"
            ) from e

    def _run(self, args: List[str], check: bool = True) -> str:
        """Run a git command and return its stdout."""
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=self.path,
                capture_output=True,
                text=True,
                check=check,
            )
        except FileNotFoundError as e:
            raise ConfigError("git executable not found in PATH") from e
        return result.stdout

    def _succeeds(self, args: List[str]) -> bool:
        try:
            subprocess.run(
                ["git", *args], cwd=self.path, capture_output=True, text=True, check=True
            )
        except FileNotFoundError as e:
            raise ConfigError("git executable not found in PATH") from e
        except subprocess.CalledProcessError:
            return False
        return True

    def current_branch(self) -> Optional[str]:
        """Name of the checked-out branch, or None on a detached HEAD."""
        output = self._run(["symbolic-ref", "--quiet", "--short", "HEAD"], check=False)
        return output.strip() or None

    def branch_exists(self, name: str) -> bool:
        return self._succeeds(["show-ref", "--verify", "--quiet", f"refs/heads/{name}"])

    def list_branches(self) -> List[str]:
        output = self._run(["for-each-ref", "--format=%(refname:short)", "refs/heads"])
        return [line.strip() for line in output.splitlines() if line.strip()]

    def detect_main_branch(self) -> Optional[str]:
        """First of main/master/develop that exists, else the current branch."""
        for candidate in MAIN_BRANCH_CANDIDATES:
            if self.branch_exists(candidate):
                return candidate
        return self.current_branch()

    def hooks_dir(self) -> Path:
        """Hooks directory, honoring core.hooksPath."""
        hooks = Path(self._run(["rev-parse", "--git-path", "hooks"]).strip())
        if not hooks.is_absolute():
            hooks = self.path / hooks
        return hooks

    def install_hooks(self) -> List[Path]:
        """Write the post-checkout and post-merge hooks.

        Existing hooks not written by pgbranch are left alone.

        Returns:
            Paths of the hooks written
        """
        hooks_dir = self.hooks_dir()
        hooks_dir.mkdir(parents=True, exist_ok=True)

        written = []
        for event, script in HOOK_SCRIPTS.items():
            hook_path = hooks_dir / event.value
            if hook_path.exists() and not self.is_pgbranch_hook(hook_path):
                logger.warning(
                    f"Existing {event.value} hook at {hook_path} was not written by "
                    f"pgbranch, leaving it untouched"
                )
                continue

            hook_path.write_text(script, encoding="utf-8")
            mode = hook_path.stat().st_mode
            os.chmod(hook_path, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
            written.append(hook_path)

        return written

    def uninstall_hooks(self) -> List[Path]:
        """Remove hooks written by pgbranch. Returns the removed paths."""
        hooks_dir = self.hooks_dir()
        removed = []
        for event in HOOK_SCRIPTS:
            hook_path = hooks_dir / event.value
            if self.is_pgbranch_hook(hook_path):
                hook_path.unlink()
                removed.append(hook_path)
        return removed

    def hooks_installed(self) -> bool:
        hooks_dir = self.hooks_dir()
        return any(self.is_pgbranch_hook(hooks_dir / event.value) for event in HOOK_SCRIPTS)

    @staticmethod
    def is_pgbranch_hook(hook_path: Path) -> bool:
        if not hook_path.is_file():
            return False
        try:
            return HOOK_MARKER in hook_path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return False
