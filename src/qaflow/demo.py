"""Demo scripts and the human feedback gate in front of done."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog

from qaflow import audit
from qaflow.errors import (
    ConcurrencyDegradation, NotFoundError, PreconditionError, ValidationError,
)
from qaflow.lifecycle import require_ticket
from qaflow.models import (
    CommentAuthor, CommentType, DemoScript, DemoStepStatus, TicketStatus, WorkflowPhase,
    now_utc,
)
from qaflow.storage.interface import Storage


logger = structlog.get_logger(__name__)


@dataclass
class StepResult:
    order: int
    status: str
    notes: str | None = None


@dataclass
class FeedbackResult:
    ticket_id: str
    passed: bool
    status: str
    workflow_state_updated: bool
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "ticketId": self.ticket_id,
            "passed": self.passed,
            "status": self.status,
            "workflowStateUpdated": self.workflow_state_updated,
        }
        if not self.passed:
            d["message"] = ("Demo rejected. The ticket stays in human_review until it is "
                            "requeued for more work.")
        if self.warnings:
            d["warnings"] = self.warnings
        return d


def get_demo(store: Storage, ticket_id: str) -> DemoScript:
    require_ticket(store, ticket_id)
    demo = store.get_demo(ticket_id)
    if demo is None:
        raise NotFoundError("demo", ticket_id, f"No demo script for ticket: {ticket_id}")
    return demo


def _apply_step(demo: DemoScript, result: StepResult) -> None:
    if not DemoStepStatus.is_valid(result.status):
        raise ValidationError(f"Invalid step status: {result.status}")
    step = demo.step(result.order)
    if step is None:
        raise ValidationError(f"Demo has no step {result.order}")
    step.status = result.status
    if result.notes is not None:
        step.notes = result.notes


def update_demo_step(store: Storage, ticket_id: str, order: int, status: str,
                     notes: str | None = None) -> DemoScript:
    """Record the outcome of a single demo step while the human walks through it."""
    demo = get_demo(store, ticket_id)
    if demo.completed_at is not None:
        raise PreconditionError(f"Demo for ticket {ticket_id} is already signed off")
    _apply_step(demo, StepResult(order, status, notes))
    store.update_demo(ticket_id, {"steps": demo.steps})
    return demo


def submit_feedback(store: Storage, ticket_id: str, passed: bool, feedback: str,
                    step_results: list[StepResult] | None = None) -> FeedbackResult:
    """Sign off or reject a demo.

    A pass moves the ticket to done. A rejection records the feedback and
    leaves the ticket in human_review; nothing requeues it automatically.
    """
    if not feedback or not feedback.strip():
        raise ValidationError("feedback is required")
    ticket = require_ticket(store, ticket_id)
    if ticket.status != TicketStatus.HUMAN_REVIEW:
        raise PreconditionError(
            f"Ticket must be in human_review to submit feedback (current status: {ticket.status})",
            details={"ticketId": ticket.id, "status": ticket.status},
        )
    demo = store.get_demo(ticket.id)
    if demo is None:
        raise PreconditionError(f"No demo script for ticket {ticket.id}. Generate one first.")
    for result in step_results or []:
        _apply_step(demo, result)

    warnings: list[str] = []
    if passed:
        now = now_utc()
        store.update_demo(ticket.id, {
            "steps": demo.steps, "completed_at": now, "feedback": feedback, "passed": True,
        })
        store.update_ticket(ticket.id, {"status": TicketStatus.DONE, "completed_at": now})
        projection = {"current_phase": WorkflowPhase.DONE}
        audit.add_comment(store, ticket.id, f"Demo approved. Ticket complete.\n\n{feedback}",
                          CommentAuthor.USER, CommentType.PROGRESS)
        status = TicketStatus.DONE
    else:
        store.update_demo(ticket.id, {"steps": demo.steps, "feedback": feedback, "passed": False})
        projection = {"demo_generated": False}
        status = TicketStatus.HUMAN_REVIEW
    logger.info("demo_feedback_submitted", ticket_id=ticket.id, passed=passed)

    try:
        store.update_workflow_state(ticket.id, projection)
    except ConcurrencyDegradation as e:
        logger.warning("workflow_state_update_failed", ticket_id=ticket.id, error=e.message)
        warnings.append(e.message)
    return FeedbackResult(ticket.id, passed, status, not warnings, warnings)
