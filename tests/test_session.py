"""Tests for the agent session state machine and its mirror file."""

import json
import os

import pytest

from qaflow.config import QaflowConfig
from qaflow.errors import NotFoundError, PreconditionError, ValidationError
from qaflow.models import SessionEvent, SessionState, format_timestamp, parse_timestamp
from qaflow.session import SessionManager


@pytest.fixture
def manager(store):
    return SessionManager(store, QaflowConfig())


def _mirror(project_dir):
    path = os.path.join(project_dir, ".claude", "ralph-state.json")
    if not os.path.exists(path):
        return None
    with open(path) as f:
        return json.load(f)


class TestCreate:
    def test_starts_idle_and_writes_mirror(self, manager, ticket, project_dir):
        result = manager.create_session(ticket.id)
        assert result.created
        assert result.state_file_written
        assert result.session.current_state == SessionState.IDLE
        mirror = _mirror(project_dir)
        assert mirror["sessionId"] == result.session.id
        assert mirror["currentState"] == "idle"
        assert mirror["stateHistory"] == ["idle"]

    def test_returns_active_session(self, manager, ticket):
        first = manager.create_session(ticket.id)
        second = manager.create_session(ticket.id)
        assert not second.created
        assert second.session.id == first.session.id

    def test_unknown_ticket(self, manager):
        with pytest.raises(NotFoundError):
            manager.create_session("missing")

    def test_state_dir_from_config(self, store, ticket, project_dir):
        mgr = SessionManager(store, QaflowConfig(state_dir=".agent"))
        mgr.create_session(ticket.id)
        assert os.path.exists(os.path.join(project_dir, ".agent", "ralph-state.json"))


class TestUpdateState:
    def test_any_order_is_allowed(self, manager, ticket, project_dir):
        sid = manager.create_session(ticket.id).session.id
        for state in ("testing", "analyzing", "implementing", "idle", "reviewing"):
            result = manager.update_state(sid, state)
            assert result.session.current_state == state
        assert _mirror(project_dir)["currentState"] == "reviewing"
        history = [e.state for e in manager.get_state(sid).state_history]
        assert history == ["idle", "testing", "analyzing", "implementing", "idle", "reviewing"]

    def test_records_state_change_event(self, manager, ticket, store):
        sid = manager.create_session(ticket.id).session.id
        manager.update_state(sid, "implementing", {"reason": "plan approved"})
        events = store.get_events(sid)
        assert events[-1].type == "state_change"
        assert events[-1].data == {"state": "implementing", "previousState": "idle",
                                   "metadata": {"reason": "plan approved"}}

    def test_invalid_state(self, manager, ticket):
        sid = manager.create_session(ticket.id).session.id
        with pytest.raises(ValidationError) as exc:
            manager.update_state(sid, "coding")
        assert "implementing" in exc.value.message
        assert manager.get_state(sid).current_state == "idle"

    def test_unknown_session(self, manager):
        with pytest.raises(NotFoundError):
            manager.update_state("missing", "implementing")

    def test_mirror_failure_is_a_warning(self, manager, ticket, monkeypatch):
        sid = manager.create_session(ticket.id).session.id

        def fail(self, value):
            raise OSError("read-only file system")
        monkeypatch.setattr("qaflow.channel.MirrorStateChannel.write", fail)

        result = manager.update_state(sid, "implementing")
        assert not result.state_file_written
        assert "read-only file system" in result.warnings[0]
        assert manager.get_state(sid).current_state == "implementing"


class TestComplete:
    def test_appends_done_and_removes_mirror(self, manager, ticket, project_dir):
        sid = manager.create_session(ticket.id).session.id
        manager.update_state(sid, "implementing")
        result = manager.complete_session(sid, "failure", "tests red")
        session = result.session
        assert session.current_state == SessionState.DONE
        assert session.outcome == "failure"
        assert session.state_history[-1].metadata == {"outcome": "failure",
                                                      "errorMessage": "tests red"}
        assert result.state_file_removed
        assert _mirror(project_dir) is None

    def test_completed_session_is_frozen(self, manager, ticket):
        sid = manager.create_session(ticket.id).session.id
        manager.complete_session(sid, "success")
        with pytest.raises(PreconditionError):
            manager.update_state(sid, "implementing")
        with pytest.raises(PreconditionError):
            manager.complete_session(sid, "success")

    def test_new_session_after_completion(self, manager, ticket):
        first = manager.create_session(ticket.id).session.id
        manager.complete_session(first, "cancelled")
        second = manager.create_session(ticket.id)
        assert second.created
        assert second.session.id != first

    def test_invalid_outcome(self, manager, ticket):
        sid = manager.create_session(ticket.id).session.id
        with pytest.raises(ValidationError):
            manager.complete_session(sid, "meh")


class TestQueries:
    def test_get_state_by_ticket(self, manager, ticket):
        sid = manager.create_session(ticket.id).session.id
        assert manager.get_state(ticket_id=ticket.id).id == sid

    def test_get_state_needs_an_id(self, manager):
        with pytest.raises(ValidationError):
            manager.get_state()

    def test_list_sessions(self, manager, ticket):
        first = manager.create_session(ticket.id).session.id
        manager.complete_session(first, "success")
        second = manager.create_session(ticket.id).session.id
        sessions = manager.list_sessions(ticket.id)
        assert {s.id for s in sessions} == {first, second}
        assert len(manager.list_sessions(ticket.id, limit=1)) == 1


class TestEvents:
    def test_emit_and_read(self, manager, ticket):
        sid = manager.create_session(ticket.id).session.id
        manager.emit_event(sid, "tool_start", {"tool": "Edit"})
        manager.emit_event(sid, "tool_end", {"tool": "Edit"})
        events = manager.get_events(sid)
        assert [e.type for e in events] == ["tool_start", "tool_end"]

    def test_since_filter(self, manager, ticket):
        sid = manager.create_session(ticket.id).session.id
        first = manager.emit_event(sid, "progress", {"step": 1})
        manager.emit_event(sid, "progress", {"step": 2})
        later = manager.get_events(sid, since=format_timestamp(first.created_at))
        assert all(e.created_at > first.created_at for e in later)

    def test_since_accepts_whole_seconds(self, manager, store, ticket):
        sid = manager.create_session(ticket.id).session.id
        store.add_event(SessionEvent(session_id=sid, type="progress",
                                     created_at=parse_timestamp("2099-10-19T10:00:00.500000Z")))
        events = manager.get_events(sid, since="2099-10-19T10:00:00Z")
        assert len(events) == 1

    def test_invalid_type_and_since(self, manager, ticket):
        sid = manager.create_session(ticket.id).session.id
        with pytest.raises(ValidationError):
            manager.emit_event(sid, "shouting")
        with pytest.raises(ValidationError):
            manager.get_events(sid, since="last tuesday")

    def test_clear(self, manager, ticket):
        sid = manager.create_session(ticket.id).session.id
        manager.emit_event(sid, "thinking")
        assert manager.clear_events(sid) == 1
        assert manager.get_events(sid) == []
