"""Shared fixtures: a throwaway database, a project directory and a fake git."""

import os
import tempfile

import pytest

from qaflow import lifecycle
from qaflow.git import GitResult
from qaflow.models import Project, Ticket, TicketStatus
from qaflow.storage.sqlite_store import SQLiteStorage


class FakeGit:
    """Records git calls instead of running them."""

    def __init__(self, repo: bool = True, branches=("main",)):
        self.repo = repo
        self.branches = set(branches)
        self.current = "main"
        self.calls: list[tuple] = []
        self.fail_create = False
        self.subjects: dict[str, str] = {}

    def is_repository(self, cwd: str) -> bool:
        return self.repo

    def branch_exists(self, branch: str, cwd: str) -> bool:
        return branch in self.branches

    def checkout(self, branch: str, cwd: str) -> GitResult:
        self.calls.append(("checkout", branch))
        if branch not in self.branches:
            return GitResult(False, error=f"pathspec '{branch}' did not match")
        self.current = branch
        return GitResult(True)

    def create_branch(self, branch: str, cwd: str) -> GitResult:
        self.calls.append(("create_branch", branch))
        if self.fail_create:
            return GitResult(False, error="cannot lock ref")
        self.branches.add(branch)
        self.current = branch
        return GitResult(True)

    def commit_subject(self, commit: str, cwd: str) -> str | None:
        return self.subjects.get(commit)


@pytest.fixture
def store():
    """Create a temporary storage for testing."""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    s = SQLiteStorage(path)
    yield s
    s.close()
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(path + suffix):
            os.unlink(path + suffix)


@pytest.fixture
def project_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield os.path.realpath(tmpdir)


@pytest.fixture
def project(store: SQLiteStorage, project_dir: str) -> Project:
    return lifecycle.create_project(store, "demo-app", project_dir)


@pytest.fixture
def ticket(store: SQLiteStorage, project: Project) -> Ticket:
    return lifecycle.create_ticket(store, project.id, "Add login form", priority="high",
                                   status=TicketStatus.READY)


@pytest.fixture
def git() -> FakeGit:
    return FakeGit()

