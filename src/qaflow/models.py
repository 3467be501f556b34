"""Core data models for tickets, review findings, demos and agent sessions."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


# --- Ticket status constants ---

class TicketStatus:
    BACKLOG = "backlog"
    READY = "ready"
    IN_PROGRESS = "in_progress"
    AI_REVIEW = "ai_review"
    HUMAN_REVIEW = "human_review"
    DONE = "done"

    ORDER = [BACKLOG, READY, IN_PROGRESS, AI_REVIEW, HUMAN_REVIEW, DONE]
    VALID = set(ORDER)

    # Statuses in which completeWork has already happened.
    REVIEWED = {AI_REVIEW, HUMAN_REVIEW, DONE}

    @classmethod
    def is_valid(cls, s: str) -> bool:
        return s in cls.VALID


# --- Priority constants ---

class Priority:
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    VALID = {HIGH, MEDIUM, LOW}

    @classmethod
    def is_valid(cls, p: str | None) -> bool:
        return p is None or p in cls.VALID


# --- Audit comment constants ---

class CommentType:
    COMMENT = "comment"
    WORK_SUMMARY = "work_summary"
    TEST_REPORT = "test_report"
    PROGRESS = "progress"

    VALID = {COMMENT, WORK_SUMMARY, TEST_REPORT, PROGRESS}

    @classmethod
    def is_valid(cls, t: str) -> bool:
        return t in cls.VALID


class CommentAuthor:
    CLAUDE = "claude"
    RALPH = "ralph"
    USER = "user"
    OPENCODE = "opencode"
    CURSOR = "cursor"
    VSCODE = "vscode"

    VALID = {CLAUDE, RALPH, USER, OPENCODE, CURSOR, VSCODE}

    @classmethod
    def is_valid(cls, a: str) -> bool:
        return a in cls.VALID


# --- Workflow / review constants ---

class WorkflowPhase:
    IMPLEMENTATION = "implementation"
    AI_REVIEW = "ai_review"
    HUMAN_REVIEW = "human_review"
    DONE = "done"


class FindingSeverity:
    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"
    SUGGESTION = "suggestion"

    VALID = {CRITICAL, MAJOR, MINOR, SUGGESTION}
    BLOCKING = {CRITICAL, MAJOR}

    @classmethod
    def is_valid(cls, s: str) -> bool:
        return s in cls.VALID


class FindingStatus:
    OPEN = "open"
    FIXED = "fixed"
    WONT_FIX = "wont_fix"
    DUPLICATE = "duplicate"

    VALID = {OPEN, FIXED, WONT_FIX, DUPLICATE}
    RESOLVED = {FIXED, WONT_FIX, DUPLICATE}

    @classmethod
    def is_valid(cls, s: str) -> bool:
        return s in cls.VALID


class FindingAgent:
    CODE_REVIEWER = "code-reviewer"
    SILENT_FAILURE_HUNTER = "silent-failure-hunter"
    CODE_SIMPLIFIER = "code-simplifier"

    VALID = {CODE_REVIEWER, SILENT_FAILURE_HUNTER, CODE_SIMPLIFIER}

    @classmethod
    def is_valid(cls, a: str) -> bool:
        return a in cls.VALID


class DemoStepType:
    MANUAL = "manual"
    VISUAL = "visual"
    AUTOMATED = "automated"

    VALID = {MANUAL, VISUAL, AUTOMATED}

    @classmethod
    def is_valid(cls, t: str) -> bool:
        return t in cls.VALID


class DemoStepStatus:
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"

    VALID = {PENDING, PASSED, FAILED, SKIPPED}

    @classmethod
    def is_valid(cls, s: str) -> bool:
        return s in cls.VALID


# --- Session constants ---

class SessionState:
    IDLE = "idle"
    ANALYZING = "analyzing"
    IMPLEMENTING = "implementing"
    TESTING = "testing"
    COMMITTING = "committing"
    REVIEWING = "reviewing"
    DONE = "done"

    VALID = {IDLE, ANALYZING, IMPLEMENTING, TESTING, COMMITTING, REVIEWING, DONE}

    # States in which the agent may mutate code.
    WRITABLE = (IMPLEMENTING, TESTING, COMMITTING)

    @classmethod
    def is_valid(cls, s: str) -> bool:
        return s in cls.VALID

    @classmethod
    def all(cls) -> list[str]:
        return [cls.IDLE, cls.ANALYZING, cls.IMPLEMENTING, cls.TESTING,
                cls.COMMITTING, cls.REVIEWING, cls.DONE]


class SessionOutcome:
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"

    VALID = {SUCCESS, FAILURE, TIMEOUT, CANCELLED}

    @classmethod
    def is_valid(cls, o: str) -> bool:
        return o in cls.VALID


class SessionEventType:
    THINKING = "thinking"
    TOOL_START = "tool_start"
    TOOL_END = "tool_end"
    FILE_CHANGE = "file_change"
    PROGRESS = "progress"
    STATE_CHANGE = "state_change"
    ERROR = "error"

    VALID = {THINKING, TOOL_START, TOOL_END, FILE_CHANGE, PROGRESS, STATE_CHANGE, ERROR}

    @classmethod
    def is_valid(cls, t: str) -> bool:
        return t in cls.VALID


# --- Helper: ISO-8601 timestamp handling ---

def parse_timestamp(s: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp string to an aware datetime."""
    if not s:
        return None
    s = s.strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        raise ValueError(f"Cannot parse timestamp: {s}") from None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(dt: datetime | None) -> str | None:
    """Format datetime as fixed-width UTC ISO-8601 with a Z suffix.

    Stored timestamps are ordered and compared as strings, so every value
    carries microseconds and the UTC offset.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    s = dt.astimezone(timezone.utc).isoformat(timespec="microseconds")
    return s[:-6] + "Z"


def now_utc() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)


# --- Dataclasses ---

@dataclass
class Project:
    id: str = ""
    name: str = ""
    path: str = ""
    created_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "createdAt": format_timestamp(self.created_at),
        }

    def validate(self) -> str | None:
        if not self.name:
            return "name is required"
        if not self.path:
            return "path is required"
        return None


@dataclass
class LinkedCommit:
    hash: str
    message: str = ""
    linked_at: datetime = field(default_factory=now_utc)

    def matches(self, other_hash: str) -> bool:
        """Abbreviated and full hashes of the same commit count as equal."""
        return self.hash.startswith(other_hash) or other_hash.startswith(self.hash)

    def to_dict(self) -> dict:
        return {
            "hash": self.hash,
            "message": self.message,
            "linkedAt": format_timestamp(self.linked_at),
        }

    @classmethod
    def from_dict(cls, d: dict) -> LinkedCommit:
        return cls(
            hash=d["hash"],
            message=d.get("message", ""),
            linked_at=parse_timestamp(d.get("linkedAt")) or now_utc(),
        )


@dataclass
class Ticket:
    """A unit of work moving through the QA lifecycle."""

    id: str = ""
    title: str = ""
    description: str = ""
    status: str = TicketStatus.BACKLOG
    priority: str | None = None
    position: float = 0.0
    project_id: str = ""
    epic_id: str | None = None
    branch_name: str | None = None
    linked_commits: list[LinkedCommit] = field(default_factory=list)
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)
    completed_at: datetime | None = None

    def validate(self) -> str | None:
        """Validate ticket fields. Returns error message or None if valid."""
        if not self.title:
            return "title is required"
        if len(self.title) > 500:
            return f"title must be 500 characters or less (got {len(self.title)})"
        if not TicketStatus.is_valid(self.status):
            return f"invalid status: {self.status}"
        if not Priority.is_valid(self.priority):
            return f"invalid priority: {self.priority}"
        if not self.project_id:
            return "project_id is required"
        if self.status == TicketStatus.DONE and self.completed_at is None:
            return "done tickets must have completed_at timestamp"
        if self.status != TicketStatus.DONE and self.completed_at is not None:
            return "only done tickets can have completed_at timestamp"
        return None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "priority": self.priority,
            "position": self.position,
            "projectId": self.project_id,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
            "completedAt": format_timestamp(self.completed_at),
        }
        if self.description:
            d["description"] = self.description
        if self.epic_id:
            d["epicId"] = self.epic_id
        if self.branch_name:
            d["branchName"] = self.branch_name
        if self.linked_commits:
            d["linkedCommits"] = [c.to_dict() for c in self.linked_commits]
        return d


@dataclass
class TicketComment:
    id: str = ""
    ticket_id: str = ""
    content: str = ""
    author: str = CommentAuthor.RALPH
    type: str = CommentType.COMMENT
    created_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ticketId": self.ticket_id,
            "content": self.content,
            "author": self.author,
            "type": self.type,
            "createdAt": format_timestamp(self.created_at),
        }


@dataclass
class WorkflowState:
    """Per-ticket review bookkeeping. A projection, never the source of truth."""

    id: str = ""
    ticket_id: str = ""
    current_phase: str = WorkflowPhase.IMPLEMENTATION
    review_iteration: int = 0
    findings_count: int = 0
    findings_fixed: int = 0
    demo_generated: bool = False
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict:
        return {
            "ticketId": self.ticket_id,
            "currentPhase": self.current_phase,
            "reviewIteration": self.review_iteration,
            "findingsCount": self.findings_count,
            "findingsFixed": self.findings_fixed,
            "demoGenerated": self.demo_generated,
            "updatedAt": format_timestamp(self.updated_at),
        }


@dataclass
class ReviewFinding:
    id: str = ""
    ticket_id: str = ""
    iteration: int = 1
    agent: str = FindingAgent.CODE_REVIEWER
    severity: str = FindingSeverity.MINOR
    category: str = ""
    description: str = ""
    file_path: str | None = None
    line_number: int | None = None
    suggested_fix: str | None = None
    status: str = FindingStatus.OPEN
    fixed_at: datetime | None = None
    created_at: datetime = field(default_factory=now_utc)

    @property
    def is_blocking(self) -> bool:
        return self.status == FindingStatus.OPEN and self.severity in FindingSeverity.BLOCKING

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "id": self.id,
            "ticketId": self.ticket_id,
            "iteration": self.iteration,
            "agent": self.agent,
            "severity": self.severity,
            "category": self.category,
            "description": self.description,
            "status": self.status,
            "createdAt": format_timestamp(self.created_at),
        }
        if self.file_path:
            d["filePath"] = self.file_path
        if self.line_number is not None:
            d["lineNumber"] = self.line_number
        if self.suggested_fix:
            d["suggestedFix"] = self.suggested_fix
        if self.fixed_at:
            d["fixedAt"] = format_timestamp(self.fixed_at)
        return d


@dataclass
class DemoStep:
    order: int
    description: str
    expected_outcome: str
    type: str = DemoStepType.MANUAL
    status: str = DemoStepStatus.PENDING
    notes: str | None = None

    def validate(self) -> str | None:
        if self.order < 1:
            return f"step order must be positive (got {self.order})"
        if not self.description:
            return "step description is required"
        if not self.expected_outcome:
            return "step expectedOutcome is required"
        if not DemoStepType.is_valid(self.type):
            return f"invalid step type: {self.type}"
        if not DemoStepStatus.is_valid(self.status):
            return f"invalid step status: {self.status}"
        return None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "order": self.order,
            "description": self.description,
            "expectedOutcome": self.expected_outcome,
            "type": self.type,
            "status": self.status,
        }
        if self.notes:
            d["notes"] = self.notes
        return d

    @classmethod
    def from_dict(cls, d: dict) -> DemoStep:
        return cls(
            order=int(d["order"]),
            description=d.get("description", ""),
            expected_outcome=d.get("expectedOutcome", ""),
            type=d.get("type", DemoStepType.MANUAL),
            status=d.get("status", DemoStepStatus.PENDING),
            notes=d.get("notes"),
        )


@dataclass
class DemoScript:
    id: str = ""
    ticket_id: str = ""
    steps: list[DemoStep] = field(default_factory=list)
    generated_at: datetime = field(default_factory=now_utc)
    completed_at: datetime | None = None
    feedback: str | None = None
    passed: bool | None = None

    def step(self, order: int) -> DemoStep | None:
        for s in self.steps:
            if s.order == order:
                return s
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ticketId": self.ticket_id,
            "steps": [s.to_dict() for s in self.steps],
            "generatedAt": format_timestamp(self.generated_at),
            "completedAt": format_timestamp(self.completed_at),
            "feedback": self.feedback,
            "passed": self.passed,
        }


@dataclass
class StateHistoryEntry:
    state: str
    timestamp: datetime = field(default_factory=now_utc)
    metadata: dict | None = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "state": self.state,
            "timestamp": format_timestamp(self.timestamp),
        }
        if self.metadata:
            d["metadata"] = self.metadata
        return d

    @classmethod
    def from_dict(cls, d: dict) -> StateHistoryEntry:
        return cls(
            state=d["state"],
            timestamp=parse_timestamp(d.get("timestamp")) or now_utc(),
            metadata=d.get("metadata"),
        )


@dataclass
class RalphSession:
    """A tracked unit of autonomous-agent work bound to one ticket.

    ``state_history`` is append-only; ``current_state`` is always derived
    from its last entry.
    """

    id: str = ""
    ticket_id: str = ""
    project_id: str | None = None
    state_history: list[StateHistoryEntry] = field(default_factory=list)
    outcome: str | None = None
    error_message: str | None = None
    started_at: datetime = field(default_factory=now_utc)
    completed_at: datetime | None = None

    @property
    def current_state(self) -> str:
        if not self.state_history:
            return SessionState.IDLE
        return self.state_history[-1].state

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    @property
    def updated_at(self) -> datetime:
        if not self.state_history:
            return self.started_at
        return self.state_history[-1].timestamp

    def history_json(self) -> str:
        return json.dumps([e.to_dict() for e in self.state_history])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ticketId": self.ticket_id,
            "projectId": self.project_id,
            "currentState": self.current_state,
            "stateHistory": [e.to_dict() for e in self.state_history],
            "outcome": self.outcome,
            "errorMessage": self.error_message,
            "startedAt": format_timestamp(self.started_at),
            "completedAt": format_timestamp(self.completed_at),
        }

    def mirror_payload(self) -> dict:
        """The MirrorStateFile body read by the write-gate hook."""
        return {
            "sessionId": self.id,
            "ticketId": self.ticket_id,
            "currentState": self.current_state,
            "stateHistory": [e.state for e in self.state_history],
            "startedAt": format_timestamp(self.started_at),
            "updatedAt": format_timestamp(self.updated_at),
        }


@dataclass
class SessionEvent:
    id: str = ""
    session_id: str = ""
    type: str = SessionEventType.PROGRESS
    data: dict | None = None
    created_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "type": self.type,
            "data": self.data,
            "createdAt": format_timestamp(self.created_at),
        }
