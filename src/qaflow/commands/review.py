"""qf review - findings, the completeness check and demo generation."""

from __future__ import annotations

import json
import sys

import click

from qaflow import lifecycle
from qaflow import review as review_ops
from qaflow.channel import ReviewMarkerChannel
from qaflow.cli import QaflowContext, pass_ctx
from qaflow.errors import QaflowError, ValidationError
from qaflow.hooks import record_review_result
from qaflow.models import (
    DemoStep, DemoStepType, FindingAgent, FindingSeverity, FindingStatus,
)
from qaflow.utils import truncate


SEVERITY_SYMBOLS = {
    FindingSeverity.CRITICAL: "!!",
    FindingSeverity.MAJOR: "! ",
    FindingSeverity.MINOR: "- ",
    FindingSeverity.SUGGESTION: "~ ",
}


def _parse_steps(steps_file: str | None, step_specs: tuple[str, ...]) -> list[DemoStep]:
    """Build demo steps from a JSON file or repeated DESCRIPTION::EXPECTED options."""
    if steps_file:
        with open(steps_file) as f:
            try:
                raw = json.load(f)
            except json.JSONDecodeError as e:
                raise ValidationError(f"Invalid steps file {steps_file}: {e}") from e
        if not isinstance(raw, list):
            raise ValidationError("Steps file must contain a JSON array")
        steps = []
        for i, item in enumerate(raw, 1):
            if not isinstance(item, dict):
                raise ValidationError(f"Step {i} must be an object")
            item.setdefault("order", i)
            try:
                steps.append(DemoStep.from_dict(item))
            except (TypeError, ValueError) as e:
                raise ValidationError(f"Step {i} has an invalid order: {e}") from e
        return steps

    steps = []
    for i, entry in enumerate(step_specs, 1):
        description, sep, expected = entry.partition("::")
        if not sep:
            raise ValidationError(f"Step must look like 'DESCRIPTION::EXPECTED': {entry}")
        steps.append(DemoStep(order=i, description=description.strip(),
                              expected_outcome=expected.strip(), type=DemoStepType.MANUAL))
    return steps


@click.group("review")
def review() -> None:
    """AI review findings and the review gate."""


@review.command("finding")
@click.argument("ticket_id")
@click.option("--agent", "-a", required=True, type=click.Choice(sorted(FindingAgent.VALID)))
@click.option("--severity", "-s", required=True, type=click.Choice(sorted(FindingSeverity.VALID)))
@click.option("--category", "-c", required=True, help="Finding category, e.g. error-handling")
@click.option("--description", "-d", required=True, help="What is wrong")
@click.option("--file", "file_path", default=None, help="File the finding refers to")
@click.option("--line", "line_number", type=int, default=None, help="Line number in the file")
@click.option("--fix", "suggested_fix", default=None, help="Suggested fix")
@pass_ctx
def review_finding(ctx: QaflowContext, ticket_id: str, agent: str, severity: str, category: str,
                   description: str, file_path: str | None, line_number: int | None,
                   suggested_fix: str | None) -> None:
    """Submit a review finding for a ticket in ai_review."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    full_id = ctx.resolve_ticket_id(ticket_id)
    try:
        result = review_ops.submit_finding(ctx.store, full_id, agent, severity, category,
                                           description, file_path, line_number, suggested_fix)
    except QaflowError as e:
        ctx.fail(e)

    if ctx.json_output:
        ctx.output(result.to_dict())
        return
    ctx.warn(result.warnings)
    if ctx.quiet:
        click.echo(result.finding.id)
    else:
        click.echo(f"Recorded {severity} finding {result.finding.id}")


@review.command("fix")
@click.argument("finding_id")
@click.option("--status", type=click.Choice(sorted(FindingStatus.RESOLVED)),
              default=FindingStatus.FIXED, help="Resolution")
@pass_ctx
def review_fix(ctx: QaflowContext, finding_id: str, status: str) -> None:
    """Resolve a finding."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    try:
        result = review_ops.mark_fixed(ctx.store, finding_id, status)
    except QaflowError as e:
        ctx.fail(e)

    if ctx.json_output:
        ctx.output(result.to_dict())
        return
    ctx.warn(result.warnings)
    if not ctx.quiet:
        click.echo(f"Finding {finding_id} marked {status}")


@review.command("findings")
@click.argument("ticket_id")
@click.option("--status", type=click.Choice(sorted(FindingStatus.VALID)), default=None)
@click.option("--severity", type=click.Choice(sorted(FindingSeverity.VALID)), default=None)
@click.option("--agent", type=click.Choice(sorted(FindingAgent.VALID)), default=None)
@pass_ctx
def review_findings(ctx: QaflowContext, ticket_id: str, status: str | None,
                    severity: str | None, agent: str | None) -> None:
    """List findings for a ticket, newest first."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    full_id = ctx.resolve_ticket_id(ticket_id)
    try:
        findings = review_ops.get_findings(ctx.store, full_id, status, severity, agent)
    except QaflowError as e:
        ctx.fail(e)

    if ctx.json_output:
        ctx.output([f.to_dict() for f in findings])
        return
    if not findings:
        click.echo("No findings")
        return
    for f in findings:
        where = f" {f.file_path}:{f.line_number or ''}" if f.file_path else ""
        click.echo(f"{SEVERITY_SYMBOLS.get(f.severity, '  ')} {f.id[:8]} [{f.status}] "
                   f"{f.agent}/{f.category}{where}  {truncate(f.description, 60)}")


@review.command("check")
@click.argument("ticket_id")
@click.option("--mark", is_flag=True, help="Write the review marker when the review is complete")
@pass_ctx
def review_check(ctx: QaflowContext, ticket_id: str, mark: bool) -> None:
    """Report whether critical and major findings are resolved."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    full_id = ctx.resolve_ticket_id(ticket_id)
    try:
        status = review_ops.check_complete(ctx.store, full_id)
        project = lifecycle.require_project(ctx.store,
                                            lifecycle.require_ticket(ctx.store, full_id).project_id)
    except QaflowError as e:
        ctx.fail(e)

    data = status.to_dict()
    if mark:
        marker = ReviewMarkerChannel(ctx.config.marker_path(project.path))
        data["marker"] = record_review_result(marker, status.to_dict()).to_dict()

    if ctx.json_output:
        ctx.output(data)
    else:
        click.echo(status.message)
        if status.open_minor and not ctx.quiet:
            click.echo(f"  {status.open_minor} open minor finding(s) do not block")
        if mark:
            click.echo(data["marker"]["message"])
    if not status.complete:
        sys.exit(1)


@review.command("demo")
@click.argument("ticket_id")
@click.option("--steps-file", type=click.Path(exists=True, dir_okay=False),
              help="JSON array of steps: order, description, expectedOutcome, type")
@click.option("--step", "step_specs", multiple=True, help="DESCRIPTION::EXPECTED (repeatable)")
@pass_ctx
def review_demo(ctx: QaflowContext, ticket_id: str, steps_file: str | None,
                step_specs: tuple[str, ...]) -> None:
    """Generate the demo script and move the ticket to human_review."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    full_id = ctx.resolve_ticket_id(ticket_id)
    try:
        steps = _parse_steps(steps_file, step_specs)
        result = review_ops.generate_demo_script(ctx.store, full_id, steps)
    except QaflowError as e:
        ctx.fail(e)

    if ctx.json_output:
        ctx.output(result.to_dict())
        return
    ctx.warn(result.warnings)
    click.echo(f"Demo script with {len(result.demo.steps)} step(s) generated; "
               f"{full_id} moved to human_review")
