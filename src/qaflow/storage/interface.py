"""Storage interface (abstract base) for qaflow."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from qaflow.models import (
    DemoScript, Project, RalphSession, ReviewFinding, SessionEvent, Ticket,
    TicketComment, WorkflowState,
)


class Storage(ABC):
    """Abstract base class defining all storage operations.

    Every mutating method commits on its own. Projection writes on the
    workflow-state row raise ConcurrencyDegradation instead of sqlite errors.
    """

    @abstractmethod
    def path(self) -> str:
        """Return the database file path."""

    @abstractmethod
    def close(self) -> None:
        """Close the storage connection."""

    # --- Projects ---

    @abstractmethod
    def create_project(self, project: Project) -> Project:
        """Create a project. Assigns an id when empty."""

    @abstractmethod
    def get_project(self, project_id: str) -> Project | None:
        """Get a project by ID. Returns None if not found."""

    @abstractmethod
    def get_project_by_path(self, path: str) -> Project | None:
        """Get the project registered at an absolute path."""

    @abstractmethod
    def list_projects(self) -> list[Project]:
        """List all projects by name."""

    # --- Tickets ---

    @abstractmethod
    def create_ticket(self, ticket: Ticket) -> Ticket:
        """Create a ticket. Assigns an id when empty."""

    @abstractmethod
    def get_ticket(self, ticket_id: str) -> Ticket | None:
        """Get a ticket by ID. Returns None if not found."""

    @abstractmethod
    def update_ticket(self, ticket_id: str, updates: dict[str, Any]) -> None:
        """Update a ticket with partial field updates."""

    @abstractmethod
    def delete_ticket(self, ticket_id: str) -> None:
        """Delete a ticket and, by cascade, everything attached to it."""

    @abstractmethod
    def list_tickets(self, project_id: str | None = None,
                     status: str | None = None) -> list[Ticket]:
        """List tickets ordered by status column position."""

    @abstractmethod
    def suggest_next_ticket(self, project_id: str, exclude_id: str) -> Ticket | None:
        """Highest-priority, lowest-position ticket not yet completed or in review."""

    @abstractmethod
    def resolve_ticket_id(self, partial: str) -> str | None:
        """Resolve a partial ticket ID to a full ID."""

    # --- Comments ---

    @abstractmethod
    def add_comment(self, comment: TicketComment) -> TicketComment:
        """Append an audit comment."""

    @abstractmethod
    def get_comments(self, ticket_id: str) -> list[TicketComment]:
        """List comments for a ticket, oldest first."""

    @abstractmethod
    def has_comment(self, ticket_id: str, comment_type: str, content: str) -> bool:
        """Whether an identical comment was already appended."""

    # --- Workflow state (projection) ---

    @abstractmethod
    def get_workflow_state(self, ticket_id: str) -> WorkflowState | None:
        """Get the workflow-state row for a ticket, if any."""

    @abstractmethod
    def ensure_workflow_state(self, ticket_id: str, phase: str,
                              review_iteration: int = 0) -> WorkflowState:
        """Return the workflow-state row, creating it when absent."""

    @abstractmethod
    def update_workflow_state(self, ticket_id: str, updates: dict[str, Any]) -> None:
        """Set columns on an existing workflow-state row."""

    @abstractmethod
    def increment_workflow_counter(self, ticket_id: str, column: str, by: int = 1) -> None:
        """Increment one counter column on an existing workflow-state row."""

    # --- Review findings ---

    @abstractmethod
    def create_finding(self, finding: ReviewFinding) -> ReviewFinding:
        """Create a review finding."""

    @abstractmethod
    def get_finding(self, finding_id: str) -> ReviewFinding | None:
        """Get a review finding by ID."""

    @abstractmethod
    def update_finding(self, finding_id: str, updates: dict[str, Any]) -> None:
        """Update a review finding."""

    @abstractmethod
    def list_findings(self, ticket_id: str, status: str | None = None,
                      severity: str | None = None,
                      agent: str | None = None) -> list[ReviewFinding]:
        """List findings for a ticket, newest first."""

    # --- Demo scripts ---

    @abstractmethod
    def save_demo(self, demo: DemoScript) -> DemoScript:
        """Store the demo script for a ticket, replacing any earlier one."""

    @abstractmethod
    def get_demo(self, ticket_id: str) -> DemoScript | None:
        """Get the demo script for a ticket."""

    @abstractmethod
    def update_demo(self, ticket_id: str, updates: dict[str, Any]) -> None:
        """Update a demo script."""

    # --- Sessions ---

    @abstractmethod
    def create_session(self, session: RalphSession) -> RalphSession:
        """Create an agent session."""

    @abstractmethod
    def get_session(self, session_id: str) -> RalphSession | None:
        """Get a session by ID."""

    @abstractmethod
    def get_active_session(self, ticket_id: str) -> RalphSession | None:
        """Most recent non-completed session for a ticket."""

    @abstractmethod
    def get_latest_session(self, ticket_id: str) -> RalphSession | None:
        """Most recent session for a ticket, completed or not."""

    @abstractmethod
    def list_sessions(self, ticket_id: str | None = None, limit: int = 10) -> list[RalphSession]:
        """List sessions, newest first."""

    @abstractmethod
    def save_session(self, session: RalphSession) -> None:
        """Persist history, outcome and completion of a session."""

    @abstractmethod
    def resolve_session_id(self, partial: str) -> str | None:
        """Resolve a partial session ID to a full ID."""

    # --- Session events ---

    @abstractmethod
    def add_event(self, event: SessionEvent) -> SessionEvent:
        """Record a session event."""

    @abstractmethod
    def get_events(self, session_id: str, since: str | None = None,
                   limit: int = 50) -> list[SessionEvent]:
        """List events for a session, oldest first."""

    @abstractmethod
    def clear_events(self, session_id: str) -> int:
        """Delete events for a session. Returns the number removed."""

    # --- Config ---

    @abstractmethod
    def get_config(self, key: str) -> str | None:
        """Get a config value."""

    @abstractmethod
    def set_config(self, key: str, value: str) -> None:
        """Set a config value."""
