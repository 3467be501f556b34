"""Enforcement hooks run by the host before an agent's tool calls.

write_gate  - blocks code edits unless the session mirror says the agent is
              implementing, testing or committing. No mirror file means no
              governed session, so edits are allowed. An unreadable mirror
              file is denied.
push_gate   - blocks ``git push`` / ``gh pr create`` unless a fresh review
              marker exists. A marker dated in the future counts as corrupt.
record_review_result - the only producer of the review marker. It creates
              the marker only when the completeness check output positively
              confirms that no critical or major finding is open.
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

import structlog

from qaflow.channel import MirrorStateChannel, ReviewMarkerChannel
from qaflow.errors import EnforcementDenial
from qaflow.models import SessionState, now_utc


logger = structlog.get_logger(__name__)

WRITE_TOOLS = frozenset({
    "Write", "Edit", "MultiEdit", "NotebookEdit",
    "edit", "create", "write",
})
SHELL_TOOLS = frozenset({"Bash", "bash", "shell"})
PUSH_COMMAND_RE = re.compile(r"^\s*(git\s+push|gh\s+pr\s+create)\b")
# Tolerated difference between the marker writer's clock and ours.
MARKER_CLOCK_SKEW = timedelta(minutes=1)

ALLOW = "allow"
DENY = "deny"


@dataclass
class HookDecision:
    allowed: bool
    reason: str = ""

    def to_dict(self) -> dict:
        d: dict[str, Any] = {"permissionDecision": ALLOW if self.allowed else DENY}
        if self.reason:
            d["reason"] = self.reason
        return d

    def enforce(self) -> None:
        if not self.allowed:
            raise EnforcementDenial(self.reason)


@dataclass
class HookInput:
    """Tool-call payload handed to a hook on stdin."""
    tool_name: str = ""
    tool_input: dict = field(default_factory=dict)
    tool_response: Any = None
    cwd: str = ""

    @classmethod
    def from_dict(cls, d: dict) -> HookInput:
        tool_input = d.get("tool_input", d.get("toolArgs")) or {}
        if isinstance(tool_input, str):
            try:
                tool_input = json.loads(tool_input)
            except json.JSONDecodeError:
                tool_input = {"command": tool_input}
        if not isinstance(tool_input, dict):
            tool_input = {}
        return cls(
            tool_name=d.get("tool_name") or d.get("toolName") or "",
            tool_input=tool_input,
            tool_response=d.get("tool_response", d.get("toolResult")),
            cwd=d.get("cwd") or os.getcwd(),
        )

    @property
    def command(self) -> str:
        command = self.tool_input.get("command", "")
        return command if isinstance(command, str) else ""


# --- Write gate ---

def _write_denial(state: str, session_id: str) -> str:
    return (
        f"STATE ENFORCEMENT: You are in '{state}' state but tried to write/edit code.\n\n"
        "To write code, call update_session_state first:\n"
        f'  sessionId: "{session_id}", state: "implementing"\n'
        f"  (CLI: qf session update-state {session_id} implementing)\n\n"
        f"Valid states for writing code: {', '.join(SessionState.WRITABLE)}."
    )


def _corrupt_mirror_denial(path: str, reason: str) -> str:
    return (
        f"STATE ENFORCEMENT: The session state file {path} is unreadable ({reason}).\n\n"
        "If a session is active, rewrite the file by calling update_session_state with "
        'its sessionId and state: "implementing".\n'
        f"If no session is active, delete the stale file:\n  rm {path}"
    )


def write_gate(mirror: MirrorStateChannel, tool_name: str | None = None) -> HookDecision:
    """Decide whether a code-mutating tool call may run."""
    if tool_name is not None and tool_name not in WRITE_TOOLS:
        return HookDecision(True)

    read = mirror.read()
    if read.is_absent:
        return HookDecision(True)
    if read.is_corrupt:
        assert read.error is not None
        logger.warning("mirror_state_corrupt", path=mirror.path, reason=read.error.reason)
        return HookDecision(False, _corrupt_mirror_denial(mirror.path, read.error.reason))

    state = read.value["currentState"]
    if state in SessionState.WRITABLE:
        return HookDecision(True)
    return HookDecision(False, _write_denial(state, read.value["sessionId"]))


# --- Push gate ---

def is_push_command(command: str) -> bool:
    return bool(PUSH_COMMAND_RE.match(command))


def _push_denial(detail: str) -> str:
    return (
        f"CODE REVIEW REQUIRED: {detail}\n\n"
        "Run the review agents, fix every critical and major finding, then call "
        "check_review_complete for the ticket. A passing check records a fresh review marker.\n"
        "  (CLI: qf review check <ticket-id> --mark)"
    )


def push_gate(marker: ReviewMarkerChannel, max_age: timedelta,
              command: str | None = None, now: datetime | None = None) -> HookDecision:
    """Decide whether a push or pull-request command may run."""
    if command is not None and not is_push_command(command):
        return HookDecision(True)

    read = marker.read()
    if read.is_absent:
        return HookDecision(False, _push_denial(f"No review marker found at {marker.path}."))
    if read.is_corrupt:
        assert read.error is not None
        logger.warning("review_marker_corrupt", path=marker.path, reason=read.error.reason)
        return HookDecision(False, _push_denial(
            f"The review marker at {marker.path} is unreadable ({read.error.reason})."
        ))

    age = (now or now_utc()) - read.value
    if age < -MARKER_CLOCK_SKEW:
        logger.warning("review_marker_future", path=marker.path, marker=read.value.isoformat())
        return HookDecision(False, _push_denial(
            f"The review marker at {marker.path} is dated in the future ({read.value.isoformat()})."
        ))
    if age > max_age:
        minutes = int(age.total_seconds() // 60)
        limit = int(max_age.total_seconds() // 60)
        return HookDecision(False, _push_denial(
            f"The review marker is {minutes} minutes old (> {limit} minutes)."
        ))
    return HookDecision(True)


# --- Review marker producer ---

STATUS_KEYS = ("complete", "canProceedToHumanReview", "openCritical", "openMajor")


@dataclass
class ParseAttempt:
    """Result of extracting a structured payload from check output."""
    source: str
    payload: dict | None = None

    @property
    def ok(self) -> bool:
        return self.payload is not None


def _loads_object(text: str) -> dict | None:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None
    return value if isinstance(value, dict) else None


def _as_object(output: Any) -> dict | None:
    if isinstance(output, dict):
        return output
    if isinstance(output, str):
        return _loads_object(output.strip())
    return None


def _is_block_wrapper(obj: dict) -> bool:
    return isinstance(obj.get("content"), list) and not any(k in obj for k in STATUS_KEYS)


def _block_texts(obj: dict) -> list[str]:
    return [b["text"] for b in obj["content"]
            if isinstance(b, dict) and isinstance(b.get("text"), str)]


def _parse_direct(output: Any) -> dict | None:
    obj = _as_object(output)
    if obj is None or _is_block_wrapper(obj):
        return None
    return obj


def _parse_blocks(output: Any) -> dict | None:
    obj = _as_object(output)
    if obj is None or not _is_block_wrapper(obj):
        return None
    for text in _block_texts(obj):
        parsed = _loads_object(text.strip())
        if parsed is not None:
            return parsed
    return None


def _parse_substring(output: Any) -> dict | None:
    if isinstance(output, str):
        text = output
    else:
        obj = _as_object(output)
        if obj is None or not _is_block_wrapper(obj):
            return None
        text = "\n".join(_block_texts(obj))
    start, end = text.find("{"), text.rfind("}")
    if start < 0 or end <= start:
        return None
    return _loads_object(text[start:end + 1])


PARSERS: tuple[tuple[str, Callable[[Any], dict | None]], ...] = (
    ("direct", _parse_direct),
    ("blocks", _parse_blocks),
    ("substring", _parse_substring),
)


def extract_review_payload(output: Any) -> ParseAttempt:
    """Try each parser in order and stop at the first that yields an object."""
    for source, parser in PARSERS:
        payload = parser(output)
        if payload is not None:
            return ParseAttempt(source, payload)
    return ParseAttempt("none")


def _is_count(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_review_complete(payload: dict) -> bool:
    if payload.get("complete") is True:
        return True
    if payload.get("canProceedToHumanReview") is True:
        return True
    critical, major = payload.get("openCritical"), payload.get("openMajor")
    return _is_count(critical) and _is_count(major) and critical == 0 and major == 0


@dataclass
class MarkerResult:
    created: bool
    message: str
    source: str = "none"

    def to_dict(self) -> dict:
        return {"markerCreated": self.created, "message": self.message, "parsedFrom": self.source}


def record_review_result(marker: ReviewMarkerChannel, output: Any) -> MarkerResult:
    """Create the review marker iff the check output confirms a complete review."""
    attempt = extract_review_payload(output)
    if not attempt.ok:
        logger.warning("review_result_unparsable", path=marker.path)
        return MarkerResult(False, "Could not extract a review result; review marker not created.")
    assert attempt.payload is not None
    if not is_review_complete(attempt.payload):
        message = attempt.payload.get("message") or "Review is not complete"
        return MarkerResult(False, f"{message} Review marker not created.", attempt.source)

    try:
        stamp = marker.touch()
    except OSError as e:
        logger.warning("review_marker_write_failed", path=marker.path, error=str(e))
        return MarkerResult(False, f"Could not write review marker {marker.path}: {e}",
                            attempt.source)
    logger.info("review_marker_created", path=marker.path, source=attempt.source)
    return MarkerResult(True, f"Review marker written at {stamp.isoformat()}", attempt.source)
