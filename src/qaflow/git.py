"""Version-control collaborator used by the ticket lifecycle.

Services take a ``GitOperations`` instance so tests can substitute a fake.
"""

from __future__ import annotations

import subprocess
from dataclasses import dataclass


@dataclass
class GitResult:
    success: bool
    output: str = ""
    error: str = ""


class GitOperations:
    """Runs git with argument lists in a given working directory."""

    def __init__(self, timeout: int = 30) -> None:
        self.timeout = timeout

    def run(self, args: list[str], cwd: str) -> GitResult:
        try:
            result = subprocess.run(
                ["git", *args], cwd=cwd,
                capture_output=True, text=True, timeout=self.timeout
            )
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            return GitResult(False, error=str(e))
        if result.returncode != 0:
            return GitResult(False, error=result.stderr.strip() or f"git exited {result.returncode}")
        return GitResult(True, output=result.stdout.strip())

    def is_repository(self, cwd: str) -> bool:
        return self.run(["rev-parse", "--git-dir"], cwd).success

    def branch_exists(self, branch: str, cwd: str) -> bool:
        return self.run(["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"], cwd).success

    def checkout(self, branch: str, cwd: str) -> GitResult:
        return self.run(["checkout", branch], cwd)

    def create_branch(self, branch: str, cwd: str) -> GitResult:
        return self.run(["checkout", "-b", branch], cwd)

    def commit_subject(self, commit: str, cwd: str) -> str | None:
        result = self.run(["log", "-1", "--format=%s", commit], cwd)
        return result.output if result.success else None


def find_base_branch(git: GitOperations, cwd: str) -> str:
    """Return ``main`` or ``master``, whichever exists. Defaults to ``main``."""
    for candidate in ("main", "master"):
        if git.branch_exists(candidate, cwd):
            return candidate
    return "main"
