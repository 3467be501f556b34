"""SQLite storage implementation for qaflow."""

from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime
from typing import Any

from qaflow.errors import ConcurrencyDegradation, CorruptArtifact
from qaflow.models import (
    DemoScript, DemoStep, LinkedCommit, Project, RalphSession, ReviewFinding,
    SessionEvent, StateHistoryEntry, Ticket, TicketComment, TicketStatus,
    WorkflowState, format_timestamp, now_utc, parse_timestamp,
)
from qaflow.storage.interface import Storage
from qaflow.storage.schema import SCHEMA


def new_id() -> str:
    return str(uuid.uuid4())


def _db_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, bool):
        return int(value)
    return value


class SQLiteStorage(Storage):
    """SQLite-based storage backend."""

    _TICKET_COLUMNS = {
        "title", "description", "status", "priority", "position", "epic_id",
        "branch_name", "linked_commits", "completed_at",
    }
    _WORKFLOW_COLUMNS = {
        "current_phase", "review_iteration", "findings_count", "findings_fixed",
        "demo_generated",
    }
    _WORKFLOW_COUNTERS = {"review_iteration", "findings_count", "findings_fixed"}
    _FINDING_COLUMNS = {"status", "fixed_at"}
    _DEMO_COLUMNS = {"steps", "completed_at", "feedback", "passed"}

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.executescript(SCHEMA)
        self._conn.commit()

    def path(self) -> str:
        return self._db_path

    def close(self) -> None:
        self._conn.close()

    # --- Helpers ---

    def _update(self, table: str, key_col: str, key: str,
                updates: dict[str, Any], allowed: set[str],
                touch: bool = True) -> int:
        unknown = set(updates) - allowed
        if unknown:
            raise ValueError(f"Cannot update {table} columns: {', '.join(sorted(unknown))}")
        set_clauses = [f"{col} = ?" for col in updates]
        params = [_db_value(v) for v in updates.values()]
        if touch:
            set_clauses.append("updated_at = ?")
            params.append(format_timestamp(now_utc()))
        params.append(key)
        cur = self._conn.execute(
            f"UPDATE {table} SET {', '.join(set_clauses)} WHERE {key_col} = ?", params
        )
        self._conn.commit()
        return cur.rowcount

    def _row_to_project(self, row: sqlite3.Row) -> Project:
        return Project(
            id=row["id"],
            name=row["name"],
            path=row["path"],
            created_at=parse_timestamp(row["created_at"]) or now_utc(),
        )

    def _row_to_ticket(self, row: sqlite3.Row) -> Ticket:
        try:
            commits = [LinkedCommit.from_dict(c) for c in json.loads(row["linked_commits"] or "[]")]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise CorruptArtifact(f"tickets.{row['id']}.linked_commits", str(e)) from e
        return Ticket(
            id=row["id"],
            title=row["title"],
            description=row["description"] or "",
            status=row["status"],
            priority=row["priority"],
            position=row["position"],
            project_id=row["project_id"],
            epic_id=row["epic_id"],
            branch_name=row["branch_name"],
            linked_commits=commits,
            created_at=parse_timestamp(row["created_at"]) or now_utc(),
            updated_at=parse_timestamp(row["updated_at"]) or now_utc(),
            completed_at=parse_timestamp(row["completed_at"]),
        )

    def _row_to_comment(self, row: sqlite3.Row) -> TicketComment:
        return TicketComment(
            id=row["id"],
            ticket_id=row["ticket_id"],
            content=row["content"],
            author=row["author"],
            type=row["type"],
            created_at=parse_timestamp(row["created_at"]) or now_utc(),
        )

    def _row_to_workflow(self, row: sqlite3.Row) -> WorkflowState:
        return WorkflowState(
            id=row["id"],
            ticket_id=row["ticket_id"],
            current_phase=row["current_phase"],
            review_iteration=row["review_iteration"],
            findings_count=row["findings_count"],
            findings_fixed=row["findings_fixed"],
            demo_generated=bool(row["demo_generated"]),
            created_at=parse_timestamp(row["created_at"]) or now_utc(),
            updated_at=parse_timestamp(row["updated_at"]) or now_utc(),
        )

    def _row_to_finding(self, row: sqlite3.Row) -> ReviewFinding:
        return ReviewFinding(
            id=row["id"],
            ticket_id=row["ticket_id"],
            iteration=row["iteration"],
            agent=row["agent"],
            severity=row["severity"],
            category=row["category"],
            description=row["description"],
            file_path=row["file_path"],
            line_number=row["line_number"],
            suggested_fix=row["suggested_fix"],
            status=row["status"],
            fixed_at=parse_timestamp(row["fixed_at"]),
            created_at=parse_timestamp(row["created_at"]) or now_utc(),
        )

    def _row_to_demo(self, row: sqlite3.Row) -> DemoScript:
        try:
            steps = [DemoStep.from_dict(s) for s in json.loads(row["steps"])]
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise CorruptArtifact(f"demo_scripts.{row['id']}.steps", str(e)) from e
        passed = row["passed"]
        return DemoScript(
            id=row["id"],
            ticket_id=row["ticket_id"],
            steps=steps,
            generated_at=parse_timestamp(row["generated_at"]) or now_utc(),
            completed_at=parse_timestamp(row["completed_at"]),
            feedback=row["feedback"],
            passed=None if passed is None else bool(passed),
        )

    def _row_to_session(self, row: sqlite3.Row) -> RalphSession:
        try:
            history = [StateHistoryEntry.from_dict(e) for e in json.loads(row["state_history"])]
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise CorruptArtifact(f"ralph_sessions.{row['id']}.state_history", str(e)) from e
        return RalphSession(
            id=row["id"],
            ticket_id=row["ticket_id"],
            project_id=row["project_id"],
            state_history=history,
            outcome=row["outcome"],
            error_message=row["error_message"],
            started_at=parse_timestamp(row["started_at"]) or now_utc(),
            completed_at=parse_timestamp(row["completed_at"]),
        )

    def _row_to_event(self, row: sqlite3.Row) -> SessionEvent:
        data = None
        if row["data"]:
            try:
                data = json.loads(row["data"])
            except json.JSONDecodeError as e:
                raise CorruptArtifact(f"ralph_events.{row['id']}.data", str(e)) from e
        return SessionEvent(
            id=row["id"],
            session_id=row["session_id"],
            type=row["type"],
            data=data,
            created_at=parse_timestamp(row["created_at"]) or now_utc(),
        )

    # --- Projects ---

    def create_project(self, project: Project) -> Project:
        if not project.id:
            project.id = new_id()
        self._conn.execute(
            "INSERT INTO projects (id, name, path, created_at) VALUES (?, ?, ?, ?)",
            (project.id, project.name, project.path, format_timestamp(project.created_at))
        )
        self._conn.commit()
        return project

    def get_project(self, project_id: str) -> Project | None:
        row = self._conn.execute(
            "SELECT * FROM projects WHERE id = ?", (project_id,)
        ).fetchone()
        return self._row_to_project(row) if row else None

    def get_project_by_path(self, path: str) -> Project | None:
        row = self._conn.execute(
            "SELECT * FROM projects WHERE path = ?", (path,)
        ).fetchone()
        return self._row_to_project(row) if row else None

    def list_projects(self) -> list[Project]:
        rows = self._conn.execute("SELECT * FROM projects ORDER BY name").fetchall()
        return [self._row_to_project(r) for r in rows]

    # --- Tickets ---

    def create_ticket(self, ticket: Ticket) -> Ticket:
        if not ticket.id:
            ticket.id = new_id()
        self._conn.execute(
            """INSERT INTO tickets (
                id, title, description, status, priority, position, project_id,
                epic_id, branch_name, linked_commits, created_at, updated_at, completed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                ticket.id, ticket.title, ticket.description, ticket.status,
                ticket.priority, ticket.position, ticket.project_id, ticket.epic_id,
                ticket.branch_name,
                json.dumps([c.to_dict() for c in ticket.linked_commits]),
                format_timestamp(ticket.created_at), format_timestamp(ticket.updated_at),
                format_timestamp(ticket.completed_at),
            )
        )
        self._conn.commit()
        return ticket

    def get_ticket(self, ticket_id: str) -> Ticket | None:
        row = self._conn.execute(
            "SELECT * FROM tickets WHERE id = ?", (ticket_id,)
        ).fetchone()
        return self._row_to_ticket(row) if row else None

    def update_ticket(self, ticket_id: str, updates: dict[str, Any]) -> None:
        if "linked_commits" in updates:
            updates = dict(updates)
            updates["linked_commits"] = json.dumps(
                [c.to_dict() for c in updates["linked_commits"]]
            )
        if self._update("tickets", "id", ticket_id, updates, self._TICKET_COLUMNS) == 0:
            raise ValueError(f"Ticket not found: {ticket_id}")

    def delete_ticket(self, ticket_id: str) -> None:
        self._conn.execute("DELETE FROM tickets WHERE id = ?", (ticket_id,))
        self._conn.commit()

    def list_tickets(self, project_id: str | None = None,
                     status: str | None = None) -> list[Ticket]:
        where = ["1=1"]
        params: list[Any] = []
        if project_id:
            where.append("project_id = ?")
            params.append(project_id)
        if status:
            where.append("status = ?")
            params.append(status)
        rows = self._conn.execute(
            f"SELECT * FROM tickets WHERE {' AND '.join(where)} "
            "ORDER BY status, position, created_at",
            params
        ).fetchall()
        return [self._row_to_ticket(r) for r in rows]

    def suggest_next_ticket(self, project_id: str, exclude_id: str) -> Ticket | None:
        placeholders = ", ".join("?" for _ in TicketStatus.REVIEWED)
        row = self._conn.execute(
            f"""SELECT * FROM tickets
                WHERE project_id = ? AND id != ? AND status NOT IN ({placeholders})
                ORDER BY CASE priority
                    WHEN 'high' THEN 0 WHEN 'medium' THEN 1 WHEN 'low' THEN 2 ELSE 1
                END, position
                LIMIT 1""",
            (project_id, exclude_id, *sorted(TicketStatus.REVIEWED))
        ).fetchone()
        return self._row_to_ticket(row) if row else None

    def resolve_ticket_id(self, partial: str) -> str | None:
        row = self._conn.execute(
            "SELECT id FROM tickets WHERE id = ?", (partial,)
        ).fetchone()
        if row:
            return row["id"]
        rows = self._conn.execute(
            "SELECT id FROM tickets WHERE id LIKE ?", (f"{partial}%",)
        ).fetchall()
        if len(rows) == 1:
            return rows[0]["id"]
        return None

    # --- Comments ---

    def add_comment(self, comment: TicketComment) -> TicketComment:
        if not comment.id:
            comment.id = new_id()
        self._conn.execute(
            "INSERT INTO ticket_comments (id, ticket_id, content, author, type, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (comment.id, comment.ticket_id, comment.content, comment.author,
             comment.type, format_timestamp(comment.created_at))
        )
        self._conn.commit()
        return comment

    def get_comments(self, ticket_id: str) -> list[TicketComment]:
        rows = self._conn.execute(
            "SELECT * FROM ticket_comments WHERE ticket_id = ? ORDER BY created_at ASC, rowid ASC",
            (ticket_id,)
        ).fetchall()
        return [self._row_to_comment(r) for r in rows]

    def has_comment(self, ticket_id: str, comment_type: str, content: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM ticket_comments WHERE ticket_id = ? AND type = ? AND content = ? LIMIT 1",
            (ticket_id, comment_type, content)
        ).fetchone()
        return row is not None

    # --- Workflow state ---

    def get_workflow_state(self, ticket_id: str) -> WorkflowState | None:
        row = self._conn.execute(
            "SELECT * FROM ticket_workflow_state WHERE ticket_id = ?", (ticket_id,)
        ).fetchone()
        return self._row_to_workflow(row) if row else None

    def ensure_workflow_state(self, ticket_id: str, phase: str,
                              review_iteration: int = 0) -> WorkflowState:
        try:
            existing = self.get_workflow_state(ticket_id)
            if existing is not None:
                return existing
            now = format_timestamp(now_utc())
            self._conn.execute(
                "INSERT INTO ticket_workflow_state "
                "(id, ticket_id, current_phase, review_iteration, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (new_id(), ticket_id, phase, review_iteration, now, now)
            )
            self._conn.commit()
        except sqlite3.Error as e:
            self._conn.rollback()
            raise ConcurrencyDegradation(
                f"Could not create workflow state for {ticket_id}: {e}",
                details={"ticketId": ticket_id},
            ) from e
        state = self.get_workflow_state(ticket_id)
        assert state is not None
        return state

    def update_workflow_state(self, ticket_id: str, updates: dict[str, Any]) -> None:
        try:
            count = self._update("ticket_workflow_state", "ticket_id", ticket_id,
                                 updates, self._WORKFLOW_COLUMNS)
        except sqlite3.Error as e:
            self._conn.rollback()
            raise ConcurrencyDegradation(
                f"Could not update workflow state for {ticket_id}: {e}",
                details={"ticketId": ticket_id},
            ) from e
        if count == 0:
            raise ConcurrencyDegradation(
                f"No workflow state for ticket {ticket_id}",
                details={"ticketId": ticket_id},
            )

    def increment_workflow_counter(self, ticket_id: str, column: str, by: int = 1) -> None:
        if column not in self._WORKFLOW_COUNTERS:
            raise ValueError(f"Not a workflow counter: {column}")
        try:
            cur = self._conn.execute(
                f"UPDATE ticket_workflow_state SET {column} = {column} + ?, updated_at = ? "
                "WHERE ticket_id = ?",
                (by, format_timestamp(now_utc()), ticket_id)
            )
            self._conn.commit()
        except sqlite3.Error as e:
            self._conn.rollback()
            raise ConcurrencyDegradation(
                f"Could not increment {column} for {ticket_id}: {e}",
                details={"ticketId": ticket_id, "column": column},
            ) from e
        if cur.rowcount == 0:
            raise ConcurrencyDegradation(
                f"No workflow state for ticket {ticket_id}",
                details={"ticketId": ticket_id, "column": column},
            )

    # --- Review findings ---

    def create_finding(self, finding: ReviewFinding) -> ReviewFinding:
        if not finding.id:
            finding.id = new_id()
        self._conn.execute(
            """INSERT INTO review_findings (
                id, ticket_id, iteration, agent, severity, category, description,
                file_path, line_number, suggested_fix, status, fixed_at, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                finding.id, finding.ticket_id, finding.iteration, finding.agent,
                finding.severity, finding.category, finding.description,
                finding.file_path, finding.line_number, finding.suggested_fix,
                finding.status, format_timestamp(finding.fixed_at),
                format_timestamp(finding.created_at),
            )
        )
        self._conn.commit()
        return finding

    def get_finding(self, finding_id: str) -> ReviewFinding | None:
        row = self._conn.execute(
            "SELECT * FROM review_findings WHERE id = ?", (finding_id,)
        ).fetchone()
        return self._row_to_finding(row) if row else None

    def update_finding(self, finding_id: str, updates: dict[str, Any]) -> None:
        if self._update("review_findings", "id", finding_id, updates,
                        self._FINDING_COLUMNS, touch=False) == 0:
            raise ValueError(f"Finding not found: {finding_id}")

    def list_findings(self, ticket_id: str, status: str | None = None,
                      severity: str | None = None,
                      agent: str | None = None) -> list[ReviewFinding]:
        where = ["ticket_id = ?"]
        params: list[Any] = [ticket_id]
        for col, value in (("status", status), ("severity", severity), ("agent", agent)):
            if value:
                where.append(f"{col} = ?")
                params.append(value)
        rows = self._conn.execute(
            f"SELECT * FROM review_findings WHERE {' AND '.join(where)} "
            "ORDER BY created_at DESC, rowid DESC",
            params
        ).fetchall()
        return [self._row_to_finding(r) for r in rows]

    # --- Demo scripts ---

    def save_demo(self, demo: DemoScript) -> DemoScript:
        if not demo.id:
            demo.id = new_id()
        self._conn.execute("DELETE FROM demo_scripts WHERE ticket_id = ?", (demo.ticket_id,))
        self._conn.execute(
            "INSERT INTO demo_scripts (id, ticket_id, steps, generated_at, completed_at, feedback, passed) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                demo.id, demo.ticket_id, json.dumps([s.to_dict() for s in demo.steps]),
                format_timestamp(demo.generated_at), format_timestamp(demo.completed_at),
                demo.feedback, None if demo.passed is None else int(demo.passed),
            )
        )
        self._conn.commit()
        return demo

    def get_demo(self, ticket_id: str) -> DemoScript | None:
        row = self._conn.execute(
            "SELECT * FROM demo_scripts WHERE ticket_id = ?", (ticket_id,)
        ).fetchone()
        return self._row_to_demo(row) if row else None

    def update_demo(self, ticket_id: str, updates: dict[str, Any]) -> None:
        if "steps" in updates:
            updates = dict(updates)
            updates["steps"] = json.dumps([s.to_dict() for s in updates["steps"]])
        if self._update("demo_scripts", "ticket_id", ticket_id, updates,
                        self._DEMO_COLUMNS, touch=False) == 0:
            raise ValueError(f"No demo script for ticket: {ticket_id}")

    # --- Sessions ---

    def create_session(self, session: RalphSession) -> RalphSession:
        if not session.id:
            session.id = new_id()
        self._conn.execute(
            """INSERT INTO ralph_sessions (
                id, ticket_id, project_id, current_state, state_history,
                outcome, error_message, started_at, completed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                session.id, session.ticket_id, session.project_id,
                session.current_state, session.history_json(), session.outcome,
                session.error_message, format_timestamp(session.started_at),
                format_timestamp(session.completed_at),
            )
        )
        self._conn.commit()
        return session

    def get_session(self, session_id: str) -> RalphSession | None:
        row = self._conn.execute(
            "SELECT * FROM ralph_sessions WHERE id = ?", (session_id,)
        ).fetchone()
        return self._row_to_session(row) if row else None

    def get_active_session(self, ticket_id: str) -> RalphSession | None:
        row = self._conn.execute(
            "SELECT * FROM ralph_sessions WHERE ticket_id = ? AND completed_at IS NULL "
            "ORDER BY started_at DESC LIMIT 1",
            (ticket_id,)
        ).fetchone()
        return self._row_to_session(row) if row else None

    def get_latest_session(self, ticket_id: str) -> RalphSession | None:
        row = self._conn.execute(
            "SELECT * FROM ralph_sessions WHERE ticket_id = ? "
            "ORDER BY started_at DESC, rowid DESC LIMIT 1",
            (ticket_id,)
        ).fetchone()
        return self._row_to_session(row) if row else None

    def list_sessions(self, ticket_id: str | None = None, limit: int = 10) -> list[RalphSession]:
        if ticket_id:
            rows = self._conn.execute(
                "SELECT * FROM ralph_sessions WHERE ticket_id = ? "
                "ORDER BY started_at DESC, rowid DESC LIMIT ?",
                (ticket_id, limit)
            ).fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM ralph_sessions ORDER BY started_at DESC, rowid DESC LIMIT ?",
                (limit,)
            ).fetchall()
        return [self._row_to_session(r) for r in rows]

    def resolve_session_id(self, partial: str) -> str | None:
        row = self._conn.execute(
            "SELECT id FROM ralph_sessions WHERE id = ?", (partial,)
        ).fetchone()
        if row:
            return row["id"]
        rows = self._conn.execute(
            "SELECT id FROM ralph_sessions WHERE id LIKE ?", (f"{partial}%",)
        ).fetchall()
        if len(rows) == 1:
            return rows[0]["id"]
        return None

    def save_session(self, session: RalphSession) -> None:
        self._conn.execute(
            """UPDATE ralph_sessions SET current_state = ?, state_history = ?,
                outcome = ?, error_message = ?, completed_at = ?
               WHERE id = ?""",
            (
                session.current_state, session.history_json(), session.outcome,
                session.error_message, format_timestamp(session.completed_at), session.id,
            )
        )
        self._conn.commit()

    # --- Session events ---

    def add_event(self, event: SessionEvent) -> SessionEvent:
        if not event.id:
            event.id = new_id()
        self._conn.execute(
            "INSERT INTO ralph_events (id, session_id, type, data, created_at) VALUES (?, ?, ?, ?, ?)",
            (event.id, event.session_id, event.type,
             json.dumps(event.data) if event.data is not None else None,
             format_timestamp(event.created_at))
        )
        self._conn.commit()
        return event

    def get_events(self, session_id: str, since: str | None = None,
                   limit: int = 50) -> list[SessionEvent]:
        if since:
            # created_at is fixed-width UTC; bring the bound to the same shape
            rows = self._conn.execute(
                "SELECT * FROM ralph_events WHERE session_id = ? AND created_at > ? "
                "ORDER BY created_at ASC, rowid ASC LIMIT ?",
                (session_id, format_timestamp(parse_timestamp(since)), limit)
            ).fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM ralph_events WHERE session_id = ? "
                "ORDER BY created_at ASC, rowid ASC LIMIT ?",
                (session_id, limit)
            ).fetchall()
        return [self._row_to_event(r) for r in rows]

    def clear_events(self, session_id: str) -> int:
        cur = self._conn.execute("DELETE FROM ralph_events WHERE session_id = ?", (session_id,))
        self._conn.commit()
        return cur.rowcount

    # --- Config ---

    def get_config(self, key: str) -> str | None:
        row = self._conn.execute(
            "SELECT value FROM config WHERE key = ?", (key,)
        ).fetchone()
        return row["value"] if row else None

    def set_config(self, key: str, value: str) -> None:
        self._conn.execute(
            "INSERT INTO config (key, value) VALUES (?, ?) "
            "ON CONFLICT (key) DO UPDATE SET value = excluded.value",
            (key, value)
        )
        self._conn.commit()


def open_storage(db_path: str) -> SQLiteStorage:
    """Open or create a SQLite storage at the given path."""
    return SQLiteStorage(db_path)
