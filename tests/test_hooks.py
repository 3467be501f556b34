"""Tests for file channels and the enforcement hooks."""

import json
import os
import tempfile
from datetime import timedelta

import pytest

from qaflow.channel import MirrorStateChannel, ReviewMarkerChannel
from qaflow.errors import EnforcementDenial
from qaflow.hooks import (
    HookInput, extract_review_payload, is_push_command, is_review_complete, push_gate,
    record_review_result, write_gate,
)
from qaflow.models import now_utc


@pytest.fixture
def state_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield os.path.join(tmpdir, ".claude")


@pytest.fixture
def mirror(state_dir):
    return MirrorStateChannel(os.path.join(state_dir, "ralph-state.json"))


@pytest.fixture
def marker(state_dir):
    return ReviewMarkerChannel(os.path.join(state_dir, ".review-completed"))


def _write_raw(path, text):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as f:
        f.write(text)


def _mirror_state(mirror, state, session_id="sess-1"):
    mirror.write({"sessionId": session_id, "ticketId": "t1", "currentState": state,
                  "stateHistory": ["idle", state]})


class TestChannels:
    def test_absent(self, mirror):
        assert mirror.read().is_absent

    def test_write_then_read(self, mirror):
        _mirror_state(mirror, "testing")
        read = mirror.read()
        assert read.is_present
        assert read.value["currentState"] == "testing"

    def test_not_json_is_corrupt(self, mirror):
        _write_raw(mirror.path, "{not json")
        read = mirror.read()
        assert read.is_corrupt
        assert read.error.path == mirror.path

    def test_missing_keys_is_corrupt(self, mirror):
        _write_raw(mirror.path, json.dumps({"ticketId": "t1"}))
        assert mirror.read().is_corrupt

    def test_clear(self, mirror):
        _mirror_state(mirror, "idle")
        assert mirror.clear()
        assert not mirror.clear()
        assert mirror.read().is_absent

    def test_write_leaves_no_temp_files(self, mirror):
        _mirror_state(mirror, "idle")
        _mirror_state(mirror, "testing")
        assert os.listdir(os.path.dirname(mirror.path)) == ["ralph-state.json"]

    def test_marker_roundtrip(self, marker):
        stamp = marker.touch()
        read = marker.read()
        assert read.is_present
        assert abs((read.value - stamp).total_seconds()) < 1

    def test_marker_garbage_is_corrupt(self, marker):
        _write_raw(marker.path, "sometime")
        assert marker.read().is_corrupt


class TestWriteGate:
    def test_no_mirror_allows(self, mirror):
        assert write_gate(mirror, "Edit").allowed

    @pytest.mark.parametrize("state", ["implementing", "testing", "committing"])
    def test_writable_states_allow(self, mirror, state):
        _mirror_state(mirror, state)
        assert write_gate(mirror, "Write").allowed

    @pytest.mark.parametrize("state", ["idle", "analyzing", "reviewing", "done"])
    def test_other_states_deny(self, mirror, state):
        _mirror_state(mirror, state, "sess-42")
        decision = write_gate(mirror, "Edit")
        assert not decision.allowed
        assert f"'{state}'" in decision.reason
        assert "sess-42" in decision.reason
        assert "implementing" in decision.reason
        assert decision.to_dict()["permissionDecision"] == "deny"

    def test_corrupt_mirror_denies_with_remediation(self, mirror):
        _write_raw(mirror.path, "")
        decision = write_gate(mirror, "Edit")
        assert not decision.allowed
        assert f"rm {mirror.path}" in decision.reason

    def test_non_write_tool_is_not_gated(self, mirror):
        _mirror_state(mirror, "idle")
        assert write_gate(mirror, "Read").allowed

    def test_enforce_raises(self, mirror):
        _mirror_state(mirror, "analyzing")
        with pytest.raises(EnforcementDenial):
            write_gate(mirror, "Edit").enforce()


class TestPushGate:
    def test_push_commands(self):
        assert is_push_command("git push origin main")
        assert is_push_command("  gh pr create --fill")
        assert not is_push_command("git status")
        assert not is_push_command("echo git push")

    def test_unrelated_command_allows(self, marker):
        assert push_gate(marker, timedelta(minutes=30), "ls -la").allowed

    def test_missing_marker_denies(self, marker):
        decision = push_gate(marker, timedelta(minutes=30), "git push")
        assert not decision.allowed
        assert decision.reason.startswith("CODE REVIEW REQUIRED")

    def test_fresh_marker_allows(self, marker):
        marker.touch()
        assert push_gate(marker, timedelta(minutes=30), "git push").allowed

    def test_stale_marker_denies(self, marker):
        marker.touch()
        later = now_utc() + timedelta(minutes=45)
        decision = push_gate(marker, timedelta(minutes=30), "git push", now=later)
        assert not decision.allowed
        assert "45 minutes old (> 30 minutes)" in decision.reason

    def test_corrupt_marker_denies(self, marker):
        _write_raw(marker.path, "not a time")
        assert not push_gate(marker, timedelta(minutes=30), "gh pr create").allowed

    def test_future_marker_denies(self, marker):
        _write_raw(marker.path, "2099-01-01T00:00:00Z")
        decision = push_gate(marker, timedelta(minutes=30), "git push")
        assert not decision.allowed
        assert "dated in the future" in decision.reason

    def test_small_clock_skew_allows(self, marker):
        marker.touch()
        earlier = now_utc() - timedelta(seconds=20)
        assert push_gate(marker, timedelta(minutes=30), "git push", now=earlier).allowed


class TestParseChain:
    def test_direct_dict(self):
        attempt = extract_review_payload({"complete": True})
        assert attempt.source == "direct"
        assert attempt.payload == {"complete": True}

    def test_direct_json_string(self):
        assert extract_review_payload('{"openCritical": 0}').source == "direct"

    def test_content_blocks(self):
        output = {"content": [{"type": "text", "text": json.dumps({"complete": True})}]}
        attempt = extract_review_payload(output)
        assert attempt.source == "blocks"
        assert attempt.payload == {"complete": True}

    def test_embedded_in_prose(self):
        output = 'Result:\n{"complete": false, "openMajor": 2}\nFix them.'
        attempt = extract_review_payload(output)
        assert attempt.source == "substring"
        assert attempt.payload["openMajor"] == 2

    def test_embedded_in_block_prose(self):
        output = {"content": [{"type": "text", "text": 'ok: {"complete": true} done'}]}
        assert extract_review_payload(output).source == "substring"

    @pytest.mark.parametrize("output", [None, "", "no json here", 42, {"content": []}])
    def test_nothing_parses(self, output):
        assert not extract_review_payload(output).ok


class TestReviewComplete:
    @pytest.mark.parametrize("payload", [
        {"complete": True},
        {"canProceedToHumanReview": True},
        {"openCritical": 0, "openMajor": 0},
    ])
    def test_positive(self, payload):
        assert is_review_complete(payload)

    @pytest.mark.parametrize("payload", [
        {},
        {"complete": False},
        {"complete": "true"},
        {"openCritical": 0},
        {"openCritical": 0, "openMajor": 1},
        {"openCritical": False, "openMajor": False},
        {"openCritical": "0", "openMajor": "0"},
    ])
    def test_negative(self, payload):
        assert not is_review_complete(payload)


class TestRecordReviewResult:
    def test_creates_marker_on_complete(self, marker):
        result = record_review_result(marker, {"complete": True, "openCritical": 0})
        assert result.created
        assert marker.read().is_present

    def test_no_marker_when_incomplete(self, marker):
        result = record_review_result(marker, {"complete": False, "message": "Open major: 1."})
        assert not result.created
        assert "Open major: 1." in result.message
        assert marker.read().is_absent

    def test_no_marker_when_unparsable(self, marker):
        result = record_review_result(marker, "the tool crashed")
        assert not result.created
        assert result.source == "none"
        assert marker.read().is_absent


class TestHookInput:
    def test_claude_shape(self):
        hi = HookInput.from_dict({"tool_name": "Bash", "tool_input": {"command": "git push"},
                                  "cwd": "/repo"})
        assert hi.tool_name == "Bash"
        assert hi.command == "git push"
        assert hi.cwd == "/repo"

    def test_copilot_shape_with_string_args(self):
        hi = HookInput.from_dict({"toolName": "edit", "toolArgs": '{"path": "a.py"}'})
        assert hi.tool_name == "edit"
        assert hi.tool_input == {"path": "a.py"}
        assert hi.cwd == os.getcwd()
