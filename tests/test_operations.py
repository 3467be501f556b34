"""Tests for the named operation layer, including a full ticket walkthrough."""

import os
from typing import get_args

import pytest

from qaflow import operations
from qaflow.channel import MirrorStateChannel, ReviewMarkerChannel
from qaflow.config import QaflowConfig
from qaflow.hooks import push_gate, record_review_result, write_gate
from qaflow.models import (
    CommentAuthor, CommentType, DemoStepStatus, DemoStepType, FindingAgent, FindingSeverity,
    FindingStatus, SessionEventType, SessionOutcome, SessionState,
)
from qaflow.operations import REGISTRY, OperationContext, call


@pytest.fixture
def ctx(store, git):
    return OperationContext(store, QaflowConfig(), git=git)


def test_registry_names():
    assert set(REGISTRY) == {
        "start_ticket_work", "complete_ticket_work", "link_commit_to_ticket",
        "add_ticket_comment", "get_ticket_comments",
        "submit_review_finding", "mark_finding_fixed", "get_review_findings",
        "check_review_complete", "generate_demo_script",
        "get_demo_script", "update_demo_step", "submit_demo_feedback",
        "create_ralph_session", "update_session_state", "complete_ralph_session",
        "get_session_state", "list_ralph_sessions",
        "emit_ralph_event", "get_ralph_events", "clear_ralph_events",
    }


class TestValidation:
    def test_unknown_operation(self, ctx):
        payload = call(ctx, "delete_everything", {})
        assert payload["error"] is True
        assert payload["code"] == "VALIDATION_ERROR"

    def test_missing_required(self, ctx):
        payload = call(ctx, "start_ticket_work", {})
        assert payload["message"] == "ticketId is required"

    def test_unknown_parameter(self, ctx, ticket):
        payload = call(ctx, "start_ticket_work", {"ticketId": ticket.id, "force": True})
        assert payload["error"] is True
        assert "force" in payload["message"]

    def test_enum(self, ctx, ticket):
        payload = call(ctx, "submit_review_finding", {
            "ticketId": ticket.id, "agent": "code-reviewer", "severity": "huge",
            "category": "c", "description": "d",
        })
        assert "severity must be one of" in payload["message"]

    def test_int_rejects_bool(self, ctx, ticket):
        payload = call(ctx, "list_ralph_sessions", {"limit": True})
        assert payload["message"] == "limit must be int"

    def test_nested_step_fields(self, ctx, ticket):
        payload = call(ctx, "generate_demo_script", {
            "ticketId": ticket.id,
            "steps": [{"order": 1, "description": "d"}],
        })
        assert payload["message"] == "steps[0].expectedOutcome is required"

    def test_nested_unknown_key(self, ctx, ticket):
        payload = call(ctx, "generate_demo_script", {
            "ticketId": ticket.id,
            "steps": [{"order": 1, "description": "d", "expectedOutcome": "e", "colour": "red"}],
        })
        assert payload["message"] == "Unknown parameter(s) for generate_demo_script: steps[0].colour"

    def test_snake_case_names_are_unknown(self, ctx, ticket):
        payload = call(ctx, "start_ticket_work", {"ticket_id": ticket.id})
        assert payload["code"] == "VALIDATION_ERROR"
        assert "ticket_id" in payload["message"]

    @pytest.mark.parametrize("params, message", [
        ({"ticketId": ""}, "ticketId must not be empty"),
        ({"ticketId": 7}, "ticketId must be str"),
    ])
    def test_string_params(self, ctx, params, message):
        assert call(ctx, "start_ticket_work", params)["message"] == message

    def test_limit_lower_bound(self, ctx):
        assert call(ctx, "get_ralph_events", {"sessionId": "s", "limit": 0})["message"] \
            == "limit must be >= 1"

    def test_params_must_be_object(self, ctx):
        assert call(ctx, "start_ticket_work", ["x"])["message"] == "params must be an object"

    @pytest.mark.parametrize("alias, values", [
        (operations.CommentAuthorName, CommentAuthor.VALID),
        (operations.CommentTypeName, CommentType.VALID),
        (operations.FindingAgentName, FindingAgent.VALID),
        (operations.SeverityName, FindingSeverity.VALID),
        (operations.FindingStatusName, FindingStatus.VALID),
        (operations.ResolutionName, FindingStatus.RESOLVED),
        (operations.StepTypeName, DemoStepType.VALID),
        (operations.StepStatusName, DemoStepStatus.VALID),
        (operations.SessionStateName, SessionState.VALID),
        (operations.OutcomeName, SessionOutcome.VALID),
        (operations.EventTypeName, SessionEventType.VALID),
    ])
    def test_enum_sets_match_models(self, alias, values):
        assert set(get_args(alias)) == values

    def test_service_errors_become_payloads(self, ctx):
        payload = call(ctx, "get_session_state", {"sessionId": "nope"})
        assert payload["error"] is True
        assert payload["code"] == "NOT_FOUND"
        assert payload["details"] == {"entity": "session", "id": "nope"}


def test_comments(ctx, ticket):
    call(ctx, "add_ticket_comment", {"ticketId": ticket.id, "content": "note"})
    payload = call(ctx, "get_ticket_comments", {"ticketId": ticket.id})
    assert payload["error"] is False
    assert payload["count"] == 1
    assert payload["comments"][0]["author"] == "claude"


def test_full_walkthrough(ctx, store, ticket, project_dir):
    """Ready ticket to done, with the hooks consulted along the way."""
    config = ctx.config
    mirror = MirrorStateChannel(config.mirror_path(project_dir))
    marker = ReviewMarkerChannel(config.marker_path(project_dir))
    tid = ticket.id

    started = call(ctx, "start_ticket_work", {"ticketId": tid})
    assert started["error"] is False
    assert started["branchCreated"] is True

    session = call(ctx, "create_ralph_session", {"ticketId": tid})
    sid = session["session"]["id"]
    assert session["stateFileWritten"] is True
    assert not write_gate(mirror, "Edit").allowed

    call(ctx, "update_session_state", {"sessionId": sid, "state": "implementing"})
    assert write_gate(mirror, "Edit").allowed

    linked = call(ctx, "link_commit_to_ticket", {"ticketId": tid, "commitHash": "a1b2c3d",
                                                 "message": "Add login form"})
    assert linked["linked"] is True

    completed = call(ctx, "complete_ticket_work", {"ticketId": tid, "summary": "Form built"})
    assert completed["status"] == "ai_review"
    assert completed["workflowStateUpdated"] is True
    comments = call(ctx, "get_ticket_comments", {"ticketId": tid})["comments"]
    assert [c["type"] for c in comments] == ["comment", "work_summary"]
    assert store.get_workflow_state(tid).findings_count == 0

    call(ctx, "update_session_state", {"sessionId": sid, "state": "reviewing"})
    assert not write_gate(mirror, "Edit").allowed

    finding = call(ctx, "submit_review_finding", {
        "ticketId": tid, "agent": "silent-failure-hunter", "severity": "critical",
        "category": "error-handling", "description": "Login errors are swallowed",
    })
    fid = finding["finding"]["id"]
    assert store.get_workflow_state(tid).findings_count == 1

    check = call(ctx, "check_review_complete", {"ticketId": tid})
    assert check["complete"] is False
    assert not record_review_result(marker, check).created
    assert not push_gate(marker, config.marker_max_age, "git push").allowed

    blocked = call(ctx, "generate_demo_script", {
        "ticketId": tid, "steps": [{"order": 1, "description": "Log in",
                                    "expectedOutcome": "Dashboard"}],
    })
    assert blocked["code"] == "PRECONDITION_FAILED"

    call(ctx, "mark_finding_fixed", {"findingId": fid})
    assert store.get_workflow_state(tid).findings_fixed == 1
    check = call(ctx, "check_review_complete", {"ticketId": tid})
    assert check["complete"] is True
    assert record_review_result(marker, check).created
    assert push_gate(marker, config.marker_max_age, "git push").allowed

    demo = call(ctx, "generate_demo_script", {
        "ticketId": tid, "steps": [{"order": 1, "description": "Log in",
                                    "expectedOutcome": "Dashboard"}],
    })
    assert demo["status"] == "human_review"
    assert store.get_workflow_state(tid).demo_generated is True

    call(ctx, "update_demo_step", {"ticketId": tid, "order": 1, "status": "passed"})
    feedback = call(ctx, "submit_demo_feedback", {"ticketId": tid, "passed": True,
                                                  "feedback": "Works"})
    assert feedback["status"] == "done"
    assert store.get_ticket(tid).completed_at is not None

    done = call(ctx, "complete_ralph_session", {"sessionId": sid, "outcome": "success"})
    assert done["stateFileRemoved"] is True
    assert write_gate(mirror, "Edit").allowed
    assert not os.path.exists(mirror.path)

    events = call(ctx, "get_ralph_events", {"sessionId": sid})
    assert [e["data"]["state"] for e in events["events"]] == [
        "implementing", "reviewing", "done",
    ]
    assert store.get_ticket(tid).status == "done"
