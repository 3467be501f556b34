"""Tests for data models and small helpers."""

from datetime import datetime, timedelta, timezone

import pytest

from qaflow.models import (
    DemoStep, LinkedCommit, RalphSession, ReviewFinding, SessionState, StateHistoryEntry,
    Ticket, TicketStatus, format_timestamp, parse_timestamp,
)
from qaflow.utils import branch_name_for, parse_duration, slugify


def test_ticket_validate_empty_title():
    ticket = Ticket(title="", project_id="p1")
    assert "title is required" in ticket.validate()


def test_ticket_validate_priority():
    ticket = Ticket(title="t", project_id="p1", priority="urgent")
    assert "invalid priority" in ticket.validate()


def test_ticket_validate_done_without_completed_at():
    ticket = Ticket(title="t", project_id="p1", status=TicketStatus.DONE)
    assert "completed_at" in ticket.validate()


def test_ticket_validate_valid():
    assert Ticket(title="t", project_id="p1", priority="low").validate() is None


def test_ticket_to_dict_omits_empty_fields():
    ticket = Ticket(id="t1", title="Title", project_id="p1")
    d = ticket.to_dict()
    assert d["projectId"] == "p1"
    assert "description" not in d
    assert "branchName" not in d
    assert "linkedCommits" not in d


def test_linked_commit_matches_abbreviation():
    commit = LinkedCommit(hash="abc1234def5678")
    assert commit.matches("abc1234")
    assert LinkedCommit(hash="abc1").matches("abc1234def")
    assert not commit.matches("abd")


def test_timestamp_roundtrip():
    dt = datetime(2026, 1, 15, 10, 30, 0, tzinfo=timezone.utc)
    s = format_timestamp(dt)
    assert s == "2026-01-15T10:30:00.000000Z"
    assert parse_timestamp(s) == dt


def test_format_timestamp_is_fixed_width_utc():
    whole = format_timestamp(datetime(2026, 10, 19, 10, 0, 0, tzinfo=timezone.utc))
    half = format_timestamp(datetime(2026, 10, 19, 10, 0, 0, 500000, tzinfo=timezone.utc))
    assert len(whole) == len(half)
    assert whole < half
    plus_two = timezone(timedelta(hours=2))
    assert format_timestamp(datetime(2026, 10, 19, 12, 0, tzinfo=plus_two)) == whole


def test_parse_timestamp_naive_is_utc():
    assert parse_timestamp("2026-01-15T10:30:00").tzinfo == timezone.utc


def test_parse_timestamp_rejects_garbage():
    with pytest.raises(ValueError):
        parse_timestamp("yesterday")


def test_finding_is_blocking():
    assert ReviewFinding(severity="critical").is_blocking
    assert ReviewFinding(severity="major").is_blocking
    assert not ReviewFinding(severity="minor").is_blocking
    assert not ReviewFinding(severity="major", status="fixed").is_blocking


def test_demo_step_validate():
    assert DemoStep(1, "Open page", "Form shows").validate() is None
    assert "order" in DemoStep(0, "Open page", "Form shows").validate()
    assert "type" in DemoStep(1, "a", "b", type="scripted").validate()


def test_demo_step_from_dict():
    step = DemoStep.from_dict({"order": 2, "description": "d", "expectedOutcome": "e"})
    assert step.expected_outcome == "e"
    assert step.type == "manual"
    assert step.status == "pending"


class TestRalphSession:
    def test_current_state_is_last_history_entry(self):
        session = RalphSession(state_history=[
            StateHistoryEntry(SessionState.IDLE),
            StateHistoryEntry(SessionState.ANALYZING),
        ])
        assert session.current_state == SessionState.ANALYZING

    def test_empty_history_is_idle(self):
        assert RalphSession().current_state == SessionState.IDLE

    def test_mirror_payload(self):
        start = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
        session = RalphSession(id="s1", ticket_id="t1", started_at=start, state_history=[
            StateHistoryEntry(SessionState.IDLE, start),
            StateHistoryEntry(SessionState.IMPLEMENTING, start + timedelta(minutes=5)),
        ])
        payload = session.mirror_payload()
        assert payload == {
            "sessionId": "s1",
            "ticketId": "t1",
            "currentState": "implementing",
            "stateHistory": ["idle", "implementing"],
            "startedAt": "2026-03-01T09:00:00.000000Z",
            "updatedAt": "2026-03-01T09:05:00.000000Z",
        }


class TestUtils:
    def test_parse_duration(self):
        assert parse_duration("30m") == timedelta(minutes=30)
        assert parse_duration("1h30m") == timedelta(minutes=90)
        assert parse_duration("2d") == timedelta(days=2)
        assert parse_duration("") is None
        assert parse_duration("soon") is None
        assert parse_duration("0m") is None

    def test_slugify(self):
        assert slugify("Add Login Form!") == "add-login-form"
        assert slugify("  --weird__title--  ") == "weird-title"
        assert len(slugify("x" * 80)) == 50

    def test_branch_name(self):
        assert branch_name_for("0123456789abcdef", "Fix the bug") == "feature/01234567-fix-the-bug"
