"""Review findings and the gate in front of demo generation.

Findings may only be filed while a ticket is in ai_review. A demo script can
be generated once no critical or major finding is still open; minor findings
and suggestions never block.
"""

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
    CommentAuthor, CommentType, DemoScript, DemoStep, FindingAgent, FindingSeverity,
    FindingStatus, ReviewFinding, TicketStatus, WorkflowPhase, now_utc,
)
from qaflow.storage.interface import Storage


logger = structlog.get_logger(__name__)


@dataclass
class FindingResult:
    finding: ReviewFinding
    workflow_state_updated: bool
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "finding": self.finding.to_dict(),
            "workflowStateUpdated": self.workflow_state_updated,
        }
        if self.warnings:
            d["warnings"] = self.warnings
        return d


@dataclass
class ReviewStatus:
    """Output of the review-completeness check."""
    open_critical: int
    open_major: int
    open_minor: int
    total_findings: int
    fixed_findings: int

    @property
    def complete(self) -> bool:
        return self.open_critical == 0 and self.open_major == 0

    @property
    def message(self) -> str:
        if self.complete:
            return ("Review complete. All critical and major findings are resolved. "
                    f"Total: {self.total_findings}, Fixed: {self.fixed_findings}.")
        return (f"Cannot proceed. Open critical: {self.open_critical}, "
                f"Open major: {self.open_major}. Fix these first.")

    def to_dict(self) -> dict:
        return {
            "complete": self.complete,
            "canProceedToHumanReview": self.complete,
            "openCritical": self.open_critical,
            "openMajor": self.open_major,
            "openMinor": self.open_minor,
            "totalFindings": self.total_findings,
            "fixedFindings": self.fixed_findings,
            "message": self.message,
        }


@dataclass
class DemoResult:
    demo: DemoScript
    workflow_state_updated: bool
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "demo": self.demo.to_dict(),
            "status": TicketStatus.HUMAN_REVIEW,
            "workflowStateUpdated": self.workflow_state_updated,
        }
        if self.warnings:
            d["warnings"] = self.warnings
        return d


def _require_ai_review(ticket_id: str, status: str, action: str) -> None:
    if status != TicketStatus.AI_REVIEW:
        raise PreconditionError(
            f"Ticket must be in ai_review to {action} (current status: {status})",
            details={"ticketId": ticket_id, "status": status},
        )


def submit_finding(store: Storage, ticket_id: str, agent: str, severity: str,
                   category: str, description: str, file_path: str | None = None,
                   line_number: int | None = None,
                   suggested_fix: str | None = None) -> FindingResult:
    """File an open finding against the current review iteration."""
    if not FindingAgent.is_valid(agent):
        raise ValidationError(f"Invalid review agent: {agent}")
    if not FindingSeverity.is_valid(severity):
        raise ValidationError(f"Invalid severity: {severity}")
    if not category or not description:
        raise ValidationError("category and description are required")
    if line_number is not None and line_number < 1:
        raise ValidationError(f"lineNumber must be positive (got {line_number})")

    ticket = require_ticket(store, ticket_id)
    _require_ai_review(ticket.id, ticket.status, "submit findings")

    warnings: list[str] = []
    iteration = 1
    try:
        iteration = store.ensure_workflow_state(
            ticket.id, WorkflowPhase.AI_REVIEW, review_iteration=1
        ).review_iteration or 1
    except ConcurrencyDegradation as e:
        logger.warning("workflow_state_update_failed", ticket_id=ticket.id, error=e.message)
        warnings.append(e.message)

    finding = store.create_finding(ReviewFinding(
        ticket_id=ticket.id, iteration=iteration, agent=agent, severity=severity,
        category=category, description=description, file_path=file_path,
        line_number=line_number, suggested_fix=suggested_fix,
    ))
    logger.info("finding_submitted", ticket_id=ticket.id, finding_id=finding.id,
                severity=severity, agent=agent)

    updated = not warnings
    if updated:
        try:
            store.increment_workflow_counter(ticket.id, "findings_count")
        except ConcurrencyDegradation as e:
            logger.warning("workflow_state_update_failed", ticket_id=ticket.id, error=e.message)
            warnings.append(e.message)
            updated = False
    return FindingResult(finding, updated, warnings)


def mark_fixed(store: Storage, finding_id: str,
               status: str = FindingStatus.FIXED) -> FindingResult:
    """Resolve a finding. The counter bump on workflow state is best-effort."""
    if status not in FindingStatus.RESOLVED:
        raise ValidationError(f"Invalid resolution status: {status}")
    finding = store.get_finding(finding_id)
    if finding is None:
        raise NotFoundError("finding", finding_id)
    if finding.status != FindingStatus.OPEN:
        raise PreconditionError(f"Finding {finding_id} is already {finding.status}",
                                details={"status": finding.status})

    fixed_at = now_utc()
    store.update_finding(finding.id, {"status": status, "fixed_at": fixed_at})
    finding.status = status
    finding.fixed_at = fixed_at
    logger.info("finding_resolved", finding_id=finding.id, status=status)

    warnings: list[str] = []
    try:
        store.increment_workflow_counter(finding.ticket_id, "findings_fixed")
    except ConcurrencyDegradation as e:
        logger.warning("workflow_state_update_failed", ticket_id=finding.ticket_id, error=e.message)
        warnings.append(e.message)
    return FindingResult(finding, not warnings, warnings)


def get_findings(store: Storage, ticket_id: str, status: str | None = None,
                 severity: str | None = None, agent: str | None = None) -> list[ReviewFinding]:
    if status and not FindingStatus.is_valid(status):
        raise ValidationError(f"Invalid status filter: {status}")
    if severity and not FindingSeverity.is_valid(severity):
        raise ValidationError(f"Invalid severity filter: {severity}")
    require_ticket(store, ticket_id)
    return store.list_findings(ticket_id, status=status, severity=severity, agent=agent)


def check_complete(store: Storage, ticket_id: str) -> ReviewStatus:
    require_ticket(store, ticket_id)
    findings = store.list_findings(ticket_id)
    blocking = [f for f in findings if f.is_blocking]
    return ReviewStatus(
        open_critical=sum(1 for f in blocking if f.severity == FindingSeverity.CRITICAL),
        open_major=sum(1 for f in blocking if f.severity == FindingSeverity.MAJOR),
        open_minor=sum(1 for f in findings
                       if f.status == FindingStatus.OPEN and f.severity == FindingSeverity.MINOR),
        total_findings=len(findings),
        fixed_findings=sum(1 for f in findings if f.status == FindingStatus.FIXED),
    )


def generate_demo_script(store: Storage, ticket_id: str,
                         steps: list[DemoStep]) -> DemoResult:
    """Create the demo script and hand the ticket to human review."""
    if not steps:
        raise ValidationError("At least one demo step is required")
    for step in steps:
        err = step.validate()
        if err:
            raise ValidationError(err)
    orders = [s.order for s in steps]
    if len(set(orders)) != len(orders):
        raise ValidationError("Demo step orders must be unique")

    ticket = require_ticket(store, ticket_id)
    _require_ai_review(ticket.id, ticket.status, "generate a demo")
    status = check_complete(store, ticket.id)
    if not status.complete:
        raise PreconditionError(status.message, details={
            "openCritical": status.open_critical,
            "openMajor": status.open_major,
        })

    demo = store.save_demo(DemoScript(
        ticket_id=ticket.id, steps=sorted(steps, key=lambda s: s.order),
    ))
    store.update_ticket(ticket.id, {"status": TicketStatus.HUMAN_REVIEW})
    logger.info("demo_generated", ticket_id=ticket.id, steps=len(steps))

    warnings: list[str] = []
    try:
        store.ensure_workflow_state(ticket.id, WorkflowPhase.HUMAN_REVIEW, review_iteration=1)
        store.update_workflow_state(ticket.id, {
            "demo_generated": True,
            "current_phase": WorkflowPhase.HUMAN_REVIEW,
        })
    except ConcurrencyDegradation as e:
        logger.warning("workflow_state_update_failed", ticket_id=ticket.id, error=e.message)
        warnings.append(e.message)

    noun = "step" if len(steps) == 1 else "steps"
    audit.add_comment(store, ticket.id,
                      f"Demo script generated with {len(steps)} {noun}. Ready for human review.",
                      CommentAuthor.RALPH, CommentType.PROGRESS)
    return DemoResult(demo, not warnings, warnings)
