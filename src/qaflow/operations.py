"""Named remote operations with pydantic request models.

``call`` validates the parameters against the operation's model before the
handler runs, so invalid input never reaches a mutation. Every call returns
a payload dict: the handler's result on success, or an error payload with
``"error": True``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Any, Callable, Literal

import pydantic
import structlog
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr
from pydantic.alias_generators import to_camel

from qaflow import audit, demo, lifecycle, review
from qaflow.config import QaflowConfig
from qaflow.errors import QaflowError, ValidationError
from qaflow.git import GitOperations
from qaflow.models import CommentAuthor, CommentType, DemoStep, FindingStatus
from qaflow.session import SessionManager
from qaflow.storage.interface import Storage


logger = structlog.get_logger(__name__)

CommentAuthorName = Literal["claude", "ralph", "user", "opencode", "cursor", "vscode"]
CommentTypeName = Literal["comment", "work_summary", "test_report", "progress"]
FindingAgentName = Literal["code-reviewer", "silent-failure-hunter", "code-simplifier"]
SeverityName = Literal["critical", "major", "minor", "suggestion"]
FindingStatusName = Literal["open", "fixed", "wont_fix", "duplicate"]
ResolutionName = Literal["fixed", "wont_fix", "duplicate"]
StepTypeName = Literal["manual", "visual", "automated"]
StepStatusName = Literal["pending", "passed", "failed", "skipped"]
SessionStateName = Literal["idle", "analyzing", "implementing", "testing",
                           "committing", "reviewing", "done"]
OutcomeName = Literal["success", "failure", "timeout", "cancelled"]
EventTypeName = Literal["thinking", "tool_start", "tool_end", "file_change",
                        "progress", "state_change", "error"]

RequiredStr = Annotated[StrictStr, Field(min_length=1)]


class OperationParams(BaseModel):
    """Base for request models. Wire names are camelCase; unknown keys are rejected."""

    model_config = ConfigDict(frozen=True, extra="forbid", alias_generator=to_camel)


class DemoStepIn(OperationParams):
    order: StrictInt
    description: RequiredStr
    expected_outcome: RequiredStr
    type: StepTypeName = "manual"


class StepResultIn(OperationParams):
    order: StrictInt
    status: StepStatusName
    notes: StrictStr | None = None


# Messages for pydantic error types, keyed by error["type"].
_TYPE_NAMES = {
    "int_type": "int",
    "bool_type": "bool",
    "string_type": "str",
    "dict_type": "object",
    "list_type": "list",
    "model_type": "object",
    "model_attributes_type": "object",
}


def _location(loc: tuple[int | str, ...]) -> str:
    out = ""
    for part in loc:
        if isinstance(part, int):
            out += f"[{part}]"
        else:
            out += f".{part}" if out else part
    return out


def describe_errors(name: str, exc: pydantic.ValidationError) -> str:
    """Turn a pydantic error into the one-line message returned to callers."""
    errors = exc.errors()
    unknown = [_location(e["loc"]) for e in errors if e["type"] == "extra_forbidden"]
    if unknown:
        return f"Unknown parameter(s) for {name}: {', '.join(sorted(unknown))}"
    err = errors[0]
    where = _location(err["loc"])
    kind = err["type"]
    if kind == "missing":
        return f"{where} is required"
    if kind in _TYPE_NAMES:
        return f"{where} must be {_TYPE_NAMES[kind]}"
    if kind == "literal_error":
        return f"{where} must be one of: {err['ctx']['expected']}"
    if kind == "string_too_short":
        return f"{where} must not be empty"
    if kind == "greater_than_equal":
        return f"{where} must be >= {err['ctx']['ge']}"
    return f"{where}: {err['msg']}"


@dataclass
class Operation:
    name: str
    description: str
    handler: Callable[[OperationContext, Any], Any]
    params: type[OperationParams]

    @property
    def param_names(self) -> list[str]:
        return sorted(f.alias or n for n, f in self.params.model_fields.items())


@dataclass
class OperationContext:
    store: Storage
    config: QaflowConfig = field(default_factory=QaflowConfig)
    git: GitOperations | None = None

    @property
    def sessions(self) -> SessionManager:
        return SessionManager(self.store, self.config)


REGISTRY: dict[str, Operation] = {}


def operation(name: str, description: str, params: type[OperationParams]):
    def register(fn: Callable[[OperationContext, Any], Any]):
        REGISTRY[name] = Operation(name, description, fn, params)
        return fn
    return register


def call(ctx: OperationContext, name: str, params: dict | None = None) -> dict:
    """Run a named operation and return its payload."""
    op = REGISTRY.get(name)
    if op is None:
        return ValidationError(f"Unknown operation: {name}").to_payload()
    params = params or {}
    if not isinstance(params, dict):
        return ValidationError("params must be an object").to_payload()
    try:
        request = op.params.model_validate(params)
    except pydantic.ValidationError as e:
        return ValidationError(describe_errors(name, e)).to_payload()
    try:
        result = op.handler(ctx, request)
    except QaflowError as e:
        logger.info("operation_failed", operation=name, code=e.code, error=e.message)
        return e.to_payload()
    payload = {"error": False}
    payload.update(result)
    return payload


# --- Ticket lifecycle ---

class TicketParams(OperationParams):
    ticket_id: RequiredStr


class CompleteTicketParams(TicketParams):
    summary: StrictStr | None = None


class LinkCommitParams(TicketParams):
    commit_hash: RequiredStr
    message: StrictStr | None = None


@operation("start_ticket_work", "Create or check out the ticket branch and move it to in_progress",
           TicketParams)
def _start_ticket_work(ctx: OperationContext, p: TicketParams) -> dict:
    return lifecycle.start_work(ctx.store, p.ticket_id, git=ctx.git).to_dict()


@operation("complete_ticket_work", "Move a ticket to ai_review with a work summary",
           CompleteTicketParams)
def _complete_ticket_work(ctx: OperationContext, p: CompleteTicketParams) -> dict:
    return lifecycle.complete_work(ctx.store, p.ticket_id, p.summary).to_dict()


@operation("link_commit_to_ticket", "Link a git commit to a ticket", LinkCommitParams)
def _link_commit(ctx: OperationContext, p: LinkCommitParams) -> dict:
    return lifecycle.link_commit(ctx.store, p.ticket_id, p.commit_hash, p.message,
                                 git=ctx.git).to_dict()


# --- Audit log ---

class AddCommentParams(TicketParams):
    content: RequiredStr
    author: CommentAuthorName = CommentAuthor.CLAUDE
    type: CommentTypeName = CommentType.COMMENT


@operation("add_ticket_comment", "Append a comment to a ticket", AddCommentParams)
def _add_comment(ctx: OperationContext, p: AddCommentParams) -> dict:
    comment = audit.add_comment(ctx.store, p.ticket_id, p.content, p.author, p.type)
    return {"comment": comment.to_dict()}


@operation("get_ticket_comments", "List a ticket's comments, oldest first", TicketParams)
def _get_comments(ctx: OperationContext, p: TicketParams) -> dict:
    comments = audit.list_comments(ctx.store, p.ticket_id)
    return {"comments": [c.to_dict() for c in comments], "count": len(comments)}


# --- Review gate ---

class SubmitFindingParams(TicketParams):
    agent: FindingAgentName
    severity: SeverityName
    category: RequiredStr
    description: RequiredStr
    file_path: StrictStr | None = None
    line_number: StrictInt | None = None
    suggested_fix: StrictStr | None = None


class MarkFixedParams(OperationParams):
    finding_id: RequiredStr
    status: ResolutionName = FindingStatus.FIXED


class GetFindingsParams(TicketParams):
    status: FindingStatusName | None = None
    severity: SeverityName | None = None
    agent: FindingAgentName | None = None


class GenerateDemoParams(TicketParams):
    steps: list[DemoStepIn]


@operation("submit_review_finding", "File a review finding on a ticket in ai_review",
           SubmitFindingParams)
def _submit_finding(ctx: OperationContext, p: SubmitFindingParams) -> dict:
    return review.submit_finding(
        ctx.store, p.ticket_id, p.agent, p.severity, p.category, p.description,
        file_path=p.file_path, line_number=p.line_number, suggested_fix=p.suggested_fix,
    ).to_dict()


@operation("mark_finding_fixed", "Resolve a review finding", MarkFixedParams)
def _mark_fixed(ctx: OperationContext, p: MarkFixedParams) -> dict:
    return review.mark_fixed(ctx.store, p.finding_id, p.status).to_dict()


@operation("get_review_findings", "List findings for a ticket, newest first", GetFindingsParams)
def _get_findings(ctx: OperationContext, p: GetFindingsParams) -> dict:
    findings = review.get_findings(ctx.store, p.ticket_id, p.status, p.severity, p.agent)
    return {"findings": [f.to_dict() for f in findings], "count": len(findings)}


@operation("check_review_complete", "Report whether any critical or major finding is open",
           TicketParams)
def _check_complete(ctx: OperationContext, p: TicketParams) -> dict:
    return review.check_complete(ctx.store, p.ticket_id).to_dict()


@operation("generate_demo_script", "Create the demo script and move the ticket to human_review",
           GenerateDemoParams)
def _generate_demo(ctx: OperationContext, p: GenerateDemoParams) -> dict:
    steps = [DemoStep(order=s.order, description=s.description,
                      expected_outcome=s.expected_outcome, type=s.type) for s in p.steps]
    return review.generate_demo_script(ctx.store, p.ticket_id, steps).to_dict()


# --- Demo feedback gate ---

class UpdateDemoStepParams(TicketParams):
    order: StrictInt
    status: StepStatusName
    notes: StrictStr | None = None


class DemoFeedbackParams(TicketParams):
    passed: StrictBool
    feedback: RequiredStr
    step_results: list[StepResultIn] | None = None


@operation("get_demo_script", "Fetch a ticket's demo script", TicketParams)
def _get_demo(ctx: OperationContext, p: TicketParams) -> dict:
    return {"demo": demo.get_demo(ctx.store, p.ticket_id).to_dict()}


@operation("update_demo_step", "Record the outcome of one demo step", UpdateDemoStepParams)
def _update_demo_step(ctx: OperationContext, p: UpdateDemoStepParams) -> dict:
    script = demo.update_demo_step(ctx.store, p.ticket_id, p.order, p.status, p.notes)
    return {"demo": script.to_dict()}


@operation("submit_demo_feedback", "Approve or reject a demo", DemoFeedbackParams)
def _submit_feedback(ctx: OperationContext, p: DemoFeedbackParams) -> dict:
    results = [demo.StepResult(r.order, r.status, r.notes) for r in p.step_results or []]
    return demo.submit_feedback(ctx.store, p.ticket_id, p.passed, p.feedback,
                                results).to_dict()


# --- Sessions ---

class SessionParams(OperationParams):
    session_id: RequiredStr


class UpdateStateParams(SessionParams):
    state: SessionStateName
    metadata: dict[str, Any] | None = None


class CompleteSessionParams(SessionParams):
    outcome: OutcomeName
    error_message: StrictStr | None = None


class GetStateParams(OperationParams):
    session_id: StrictStr | None = None
    ticket_id: StrictStr | None = None


class ListSessionsParams(OperationParams):
    ticket_id: StrictStr | None = None
    limit: StrictInt = Field(10, ge=1)


class EmitEventParams(SessionParams):
    type: EventTypeName
    data: dict[str, Any] | None = None


class GetEventsParams(SessionParams):
    since: StrictStr | None = None
    limit: StrictInt = Field(50, ge=1)


@operation("create_ralph_session", "Start (or resume) the agent session for a ticket",
           TicketParams)
def _create_session(ctx: OperationContext, p: TicketParams) -> dict:
    return ctx.sessions.create_session(p.ticket_id).to_dict()


@operation("update_session_state", "Move a session to another state", UpdateStateParams)
def _update_state(ctx: OperationContext, p: UpdateStateParams) -> dict:
    return ctx.sessions.update_state(p.session_id, p.state, p.metadata).to_dict()


@operation("complete_ralph_session", "Finish a session with an outcome", CompleteSessionParams)
def _complete_session(ctx: OperationContext, p: CompleteSessionParams) -> dict:
    return ctx.sessions.complete_session(p.session_id, p.outcome, p.error_message).to_dict()


@operation("get_session_state", "Fetch a session by id, or the latest for a ticket",
           GetStateParams)
def _get_state(ctx: OperationContext, p: GetStateParams) -> dict:
    session = ctx.sessions.get_state(p.session_id, p.ticket_id)
    return {"session": session.to_dict()}


@operation("list_ralph_sessions", "List sessions, newest first", ListSessionsParams)
def _list_sessions(ctx: OperationContext, p: ListSessionsParams) -> dict:
    sessions = ctx.sessions.list_sessions(p.ticket_id, p.limit)
    return {"sessions": [s.to_dict() for s in sessions], "count": len(sessions)}


@operation("emit_ralph_event", "Record a progress event for a session", EmitEventParams)
def _emit_event(ctx: OperationContext, p: EmitEventParams) -> dict:
    event = ctx.sessions.emit_event(p.session_id, p.type, p.data)
    return {"event": event.to_dict()}


@operation("get_ralph_events", "List a session's events, oldest first", GetEventsParams)
def _get_events(ctx: OperationContext, p: GetEventsParams) -> dict:
    events = ctx.sessions.get_events(p.session_id, p.since, p.limit)
    return {"events": [e.to_dict() for e in events], "count": len(events)}


@operation("clear_ralph_events", "Delete a session's events", SessionParams)
def _clear_events(ctx: OperationContext, p: SessionParams) -> dict:
    return {"cleared": ctx.sessions.clear_events(p.session_id)}
