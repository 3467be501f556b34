"""Ticket status lifecycle: start work, complete work, link commits.

backlog -> ready -> in_progress -> ai_review -> human_review -> done

Status is the canonical record and is committed first. The workflow-state
projection, the PRD annotation and the next-ticket suggestion follow and
never undo or block the status change.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Any

import structlog

from qaflow import audit
from qaflow.errors import (
    ConcurrencyDegradation, GitError, NotFoundError, PreconditionError, ValidationError,
)
from qaflow.git import GitOperations, find_base_branch
from qaflow.models import (
    CommentAuthor, CommentType, LinkedCommit, Priority, Project, Ticket, TicketStatus,
    WorkflowPhase,
)
from qaflow.prd import PrdUpdate, mark_story_passed
from qaflow.storage.interface import Storage
from qaflow.utils import branch_name_for


logger = structlog.get_logger(__name__)

_COMMIT_HASH_RE = re.compile(r"^[0-9a-fA-F]{4,40}$")


@dataclass
class StartWorkResult:
    ticket_id: str
    branch_name: str
    branch_created: bool
    already_in_progress: bool = False
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "ticketId": self.ticket_id,
            "branchName": self.branch_name,
            "branchCreated": self.branch_created,
            "alreadyInProgress": self.already_in_progress,
            "status": TicketStatus.IN_PROGRESS,
            "nextSteps": [
                "Create a session and move it to 'implementing' before editing code",
                "Commit with a message referencing the ticket",
                "Call complete_ticket_work when the implementation is done",
            ],
        }
        if self.warnings:
            d["warnings"] = self.warnings
        return d


@dataclass
class CompleteWorkResult:
    ticket_id: str
    status: str
    already_completed: bool = False
    workflow_state_updated: bool = False
    prd: PrdUpdate | None = None
    suggested_next: Ticket | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "ticketId": self.ticket_id,
            "status": self.status,
            "alreadyCompleted": self.already_completed,
        }
        if self.already_completed:
            return d
        d["workflowStateUpdated"] = self.workflow_state_updated
        d["prdUpdated"] = bool(self.prd and self.prd.success)
        if self.prd:
            d["prd"] = self.prd.to_dict()
        d["suggestedNextTicket"] = (
            {"id": self.suggested_next.id, "title": self.suggested_next.title,
             "priority": self.suggested_next.priority}
            if self.suggested_next else None
        )
        d["nextSteps"] = [
            "Run the review agents and submit each finding with submit_review_finding",
            "Fix critical and major findings, then mark them fixed",
            "Call check_review_complete, then generate_demo_script",
        ]
        if self.warnings:
            d["warnings"] = self.warnings
        return d


@dataclass
class LinkCommitResult:
    ticket_id: str
    commit: LinkedCommit
    linked: bool
    total: int

    def to_dict(self) -> dict:
        return {
            "ticketId": self.ticket_id,
            "commit": self.commit.to_dict(),
            "linked": self.linked,
            "duplicate": not self.linked,
            "totalCommits": self.total,
        }


def require_ticket(store: Storage, ticket_id: str) -> Ticket:
    ticket = store.get_ticket(ticket_id)
    if ticket is None:
        raise NotFoundError("ticket", ticket_id)
    return ticket


def require_project(store: Storage, project_id: str) -> Project:
    project = store.get_project(project_id)
    if project is None:
        raise NotFoundError("project", project_id)
    return project


# --- Minimal project/ticket creation ---

def create_project(store: Storage, name: str, path: str) -> Project:
    project = Project(name=name, path=os.path.abspath(path))
    err = project.validate()
    if err:
        raise ValidationError(err)
    if store.get_project_by_path(project.path) is not None:
        raise ValidationError(f"A project is already registered at {project.path}")
    return store.create_project(project)


def create_ticket(store: Storage, project_id: str, title: str, description: str = "",
                  priority: str | None = None, status: str = TicketStatus.BACKLOG) -> Ticket:
    """Create a ticket at the bottom of its status column."""
    require_project(store, project_id)
    if status not in (TicketStatus.BACKLOG, TicketStatus.READY):
        raise ValidationError(f"New tickets start in backlog or ready, not {status}")
    if not Priority.is_valid(priority):
        raise ValidationError(f"Invalid priority: {priority}")
    column = store.list_tickets(project_id, status)
    position = max((t.position for t in column), default=0.0) + 1
    ticket = Ticket(
        title=title.strip(), description=description, status=status,
        priority=priority, position=position, project_id=project_id,
    )
    err = ticket.validate()
    if err:
        raise ValidationError(err)
    return store.create_ticket(ticket)


# --- Lifecycle transitions ---

def start_work(store: Storage, ticket_id: str, git: GitOperations | None = None) -> StartWorkResult:
    """Move a ticket to in_progress on its feature branch.

    Calling it again on an in_progress ticket is a no-op that reports the
    same branch with ``branch_created=False``.
    """
    ticket = require_ticket(store, ticket_id)
    branch_name = branch_name_for(ticket.id, ticket.title)

    if ticket.status == TicketStatus.IN_PROGRESS:
        return StartWorkResult(ticket.id, ticket.branch_name or branch_name,
                               branch_created=False, already_in_progress=True)
    if ticket.status == TicketStatus.DONE:
        raise PreconditionError(f"Ticket {ticket.id} is already done",
                                details={"status": ticket.status})

    project = require_project(store, ticket.project_id)
    if not os.path.isdir(project.path):
        raise NotFoundError("path", project.path,
                            f"Project path does not exist: {project.path}")
    git = git or GitOperations()
    if not git.is_repository(project.path):
        raise PreconditionError(
            f"Not a git repository: {project.path}. Initialize git first.",
            details={"path": project.path},
        )

    warnings: list[str] = []
    branch_created = False
    if git.branch_exists(branch_name, project.path):
        result = git.checkout(branch_name, project.path)
        if not result.success:
            warnings.append(f"Failed to checkout branch {branch_name}: {result.error}")
    else:
        git.checkout(find_base_branch(git, project.path), project.path)
        result = git.create_branch(branch_name, project.path)
        if not result.success:
            raise GitError(f"Failed to create branch {branch_name}: {result.error}",
                           details={"command": f"git checkout -b {branch_name}"})
        branch_created = True

    store.update_ticket(ticket.id, {"status": TicketStatus.IN_PROGRESS, "branch_name": branch_name})
    logger.info("ticket_work_started", ticket_id=ticket.id, branch=branch_name,
                previous_status=ticket.status)

    audit.add_comment_once(store, ticket.id, f"Starting work on: {ticket.title}",
                           CommentAuthor.RALPH, CommentType.COMMENT)

    try:
        store.ensure_workflow_state(ticket.id, WorkflowPhase.IMPLEMENTATION)
        store.update_workflow_state(ticket.id, {"current_phase": WorkflowPhase.IMPLEMENTATION})
    except ConcurrencyDegradation as e:
        logger.warning("workflow_state_update_failed", ticket_id=ticket.id, error=e.message)
        warnings.append(e.message)

    return StartWorkResult(ticket.id, branch_name, branch_created, warnings=warnings)


def complete_work(store: Storage, ticket_id: str, summary: str | None = None) -> CompleteWorkResult:
    """Hand a ticket to AI review.

    A ticket already in ai_review, human_review or done is left untouched so
    a retried call cannot append a second work summary.
    """
    ticket = require_ticket(store, ticket_id)
    if ticket.status in TicketStatus.REVIEWED:
        return CompleteWorkResult(ticket.id, ticket.status, already_completed=True)

    store.update_ticket(ticket.id, {"status": TicketStatus.AI_REVIEW})
    content = f"## Work Summary\n\n{summary}" if summary else f"Completed work on: {ticket.title}"
    audit.add_comment(store, ticket.id, content, CommentAuthor.RALPH, CommentType.WORK_SUMMARY)
    logger.info("ticket_work_completed", ticket_id=ticket.id)

    result = CompleteWorkResult(ticket.id, TicketStatus.AI_REVIEW)
    result.workflow_state_updated = _enter_ai_review(store, ticket.id, result.warnings)

    project = store.get_project(ticket.project_id)
    if project is not None:
        result.prd = mark_story_passed(project.path, ticket.id)
    result.suggested_next = store.suggest_next_ticket(ticket.project_id, ticket.id)
    return result


def _enter_ai_review(store: Storage, ticket_id: str, warnings: list[str]) -> bool:
    try:
        if store.get_workflow_state(ticket_id) is None:
            store.ensure_workflow_state(ticket_id, WorkflowPhase.AI_REVIEW, review_iteration=1)
        else:
            store.increment_workflow_counter(ticket_id, "review_iteration")
            store.update_workflow_state(ticket_id, {"current_phase": WorkflowPhase.AI_REVIEW})
    except ConcurrencyDegradation as e:
        logger.warning("workflow_state_update_failed", ticket_id=ticket_id, error=e.message)
        warnings.append(e.message)
        return False
    return True


def link_commit(store: Storage, ticket_id: str, commit_hash: str,
                message: str | None = None, git: GitOperations | None = None) -> LinkCommitResult:
    """Record a commit against a ticket. Abbreviated duplicates are skipped."""
    commit_hash = (commit_hash or "").strip()
    if not _COMMIT_HASH_RE.match(commit_hash):
        raise ValidationError(f"Invalid commit hash: {commit_hash!r}")

    ticket = require_ticket(store, ticket_id)
    for existing in ticket.linked_commits:
        if existing.matches(commit_hash):
            return LinkCommitResult(ticket.id, existing, linked=False,
                                    total=len(ticket.linked_commits))

    if message is None:
        project = store.get_project(ticket.project_id)
        if project is not None and os.path.isdir(project.path):
            message = (git or GitOperations()).commit_subject(commit_hash, project.path)

    commit = LinkedCommit(hash=commit_hash, message=message or "")
    commits = ticket.linked_commits + [commit]
    store.update_ticket(ticket.id, {"linked_commits": commits})
    logger.info("commit_linked", ticket_id=ticket.id, commit=commit_hash)
    return LinkCommitResult(ticket.id, commit, linked=True, total=len(commits))
