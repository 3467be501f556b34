"""Agent session state machine.

Any of the seven states may follow any other; only membership is checked.
Each change is appended to the session's history and the current state is
the last entry. The session row is committed before the mirror file is
rewritten; a mirror failure is logged and reported, never rolled back.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from typing import Any

import structlog

from qaflow.channel import MirrorStateChannel
from qaflow.config import QaflowConfig
from qaflow.errors import NotFoundError, PreconditionError, ValidationError
from qaflow.lifecycle import require_ticket
from qaflow.models import (
    RalphSession, SessionEvent, SessionEventType, SessionOutcome, SessionState,
    StateHistoryEntry, format_timestamp, now_utc, parse_timestamp,
)
from qaflow.storage.interface import Storage


logger = structlog.get_logger(__name__)


@dataclass
class SessionResult:
    session: RalphSession
    created: bool = False
    state_file_written: bool = False
    state_file_removed: bool = False
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "session": self.session.to_dict(),
            "created": self.created,
            "stateFileWritten": self.state_file_written,
        }
        if self.session.is_completed:
            d["stateFileRemoved"] = self.state_file_removed
        if self.warnings:
            d["warnings"] = self.warnings
        return d


class SessionManager:
    """Owns RalphSession records and their per-project mirror files."""

    def __init__(self, store: Storage, config: QaflowConfig | None = None) -> None:
        self.store = store
        self.config = config or QaflowConfig()

    # --- Helpers ---

    def _require_session(self, session_id: str) -> RalphSession:
        session = self.store.get_session(session_id)
        if session is None:
            raise NotFoundError("session", session_id)
        return session

    def _require_open(self, session: RalphSession) -> None:
        if session.is_completed:
            raise PreconditionError(
                f"Session {session.id} is already completed "
                f"(outcome: {session.outcome}); it cannot change further",
                details={"sessionId": session.id, "outcome": session.outcome},
            )

    def _mirror(self, session: RalphSession) -> MirrorStateChannel | None:
        if not session.project_id:
            return None
        project = self.store.get_project(session.project_id)
        if project is None:
            return None
        return MirrorStateChannel(self.config.mirror_path(project.path))

    def _write_mirror(self, session: RalphSession, result: SessionResult) -> None:
        channel = self._mirror(session)
        if channel is None:
            result.warnings.append("No project path for session; state file not written")
            return
        try:
            channel.write(session.mirror_payload())
        except OSError as e:
            logger.warning("mirror_write_failed", session_id=session.id, path=channel.path,
                           error=str(e))
            result.warnings.append(f"Could not write state file {channel.path}: {e}")
            return
        result.state_file_written = True

    def _record_state_change(self, session: RalphSession, entry: StateHistoryEntry,
                             result: SessionResult) -> None:
        previous = session.state_history[-2].state if len(session.state_history) > 1 else None
        data: dict[str, Any] = {"state": entry.state, "previousState": previous}
        if entry.metadata:
            data["metadata"] = entry.metadata
        try:
            self.store.add_event(SessionEvent(
                session_id=session.id, type=SessionEventType.STATE_CHANGE, data=data,
            ))
        except sqlite3.Error as e:
            logger.warning("session_event_failed", session_id=session.id, error=str(e))
            result.warnings.append(f"Could not record state_change event: {e}")

    # --- Operations ---

    def create_session(self, ticket_id: str) -> SessionResult:
        """Start a session for a ticket, or return the one already running."""
        ticket = require_ticket(self.store, ticket_id)
        existing = self.store.get_active_session(ticket.id)
        if existing is not None:
            return SessionResult(existing, created=False)

        session = self.store.create_session(RalphSession(
            ticket_id=ticket.id,
            project_id=ticket.project_id,
            state_history=[StateHistoryEntry(SessionState.IDLE)],
        ))
        logger.info("session_created", session_id=session.id, ticket_id=ticket.id)
        result = SessionResult(session, created=True)
        self._write_mirror(session, result)
        return result

    def update_state(self, session_id: str, state: str,
                     metadata: dict | None = None) -> SessionResult:
        if not SessionState.is_valid(state):
            raise ValidationError(
                f"Invalid state: {state}. Valid states: {', '.join(SessionState.all())}"
            )
        session = self._require_session(session_id)
        self._require_open(session)

        entry = StateHistoryEntry(state, now_utc(), metadata or None)
        session.state_history.append(entry)
        self.store.save_session(session)
        logger.info("session_state_changed", session_id=session.id, state=state)

        result = SessionResult(session)
        self._record_state_change(session, entry, result)
        self._write_mirror(session, result)
        return result

    def complete_session(self, session_id: str, outcome: str,
                         error_message: str | None = None) -> SessionResult:
        if not SessionOutcome.is_valid(outcome):
            raise ValidationError(f"Invalid outcome: {outcome}")
        session = self._require_session(session_id)
        self._require_open(session)

        now = now_utc()
        entry = StateHistoryEntry(SessionState.DONE, now,
                                  {"outcome": outcome, "errorMessage": error_message})
        session.state_history.append(entry)
        session.outcome = outcome
        session.error_message = error_message
        session.completed_at = now
        self.store.save_session(session)
        logger.info("session_completed", session_id=session.id, outcome=outcome)

        result = SessionResult(session)
        self._record_state_change(session, entry, result)
        channel = self._mirror(session)
        if channel is not None:
            try:
                result.state_file_removed = channel.clear()
            except OSError as e:
                logger.warning("mirror_clear_failed", session_id=session.id, path=channel.path,
                               error=str(e))
                result.warnings.append(f"Could not remove state file {channel.path}: {e}")
        return result

    def get_state(self, session_id: str | None = None,
                  ticket_id: str | None = None) -> RalphSession:
        """Look up a session by id, or the latest session of a ticket."""
        if session_id:
            return self._require_session(session_id)
        if ticket_id:
            require_ticket(self.store, ticket_id)
            session = self.store.get_latest_session(ticket_id)
            if session is None:
                raise NotFoundError("session", ticket_id, f"No session for ticket: {ticket_id}")
            return session
        raise ValidationError("Either sessionId or ticketId is required")

    def list_sessions(self, ticket_id: str | None = None, limit: int = 10) -> list[RalphSession]:
        if limit < 1:
            raise ValidationError(f"limit must be positive (got {limit})")
        return self.store.list_sessions(ticket_id, limit)

    # --- Events ---

    def emit_event(self, session_id: str, event_type: str,
                   data: dict | None = None) -> SessionEvent:
        if not SessionEventType.is_valid(event_type):
            raise ValidationError(f"Invalid event type: {event_type}")
        self._require_session(session_id)
        return self.store.add_event(SessionEvent(session_id=session_id, type=event_type, data=data))

    def get_events(self, session_id: str, since: str | None = None,
                   limit: int = 50) -> list[SessionEvent]:
        self._require_session(session_id)
        if since:
            try:
                since = format_timestamp(parse_timestamp(since))
            except ValueError as e:
                raise ValidationError(f"Invalid since timestamp: {since}") from e
        return self.store.get_events(session_id, since, limit)

    def clear_events(self, session_id: str) -> int:
        self._require_session(session_id)
        return self.store.clear_events(session_id)


def describe(session: RalphSession) -> str:
    """One-line summary for CLI output."""
    status = f"completed ({session.outcome})" if session.is_completed else "active"
    return (f"{session.id[:8]} {session.current_state:<12} {status:<20} "
            f"started {format_timestamp(session.started_at)}")
