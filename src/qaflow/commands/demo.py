"""qf demo - walk through a demo script and sign it off."""

from __future__ import annotations

import click

from qaflow import demo as demo_ops
from qaflow.cli import QaflowContext, pass_ctx
from qaflow.errors import QaflowError
from qaflow.models import DemoStepStatus

STEP_SYMBOLS = {
    DemoStepStatus.PENDING: "[ ]",
    DemoStepStatus.PASSED: "[x]",
    DemoStepStatus.FAILED: "[!]",
    DemoStepStatus.SKIPPED: "[-]",
}


@click.group("demo")
def demo() -> None:
    """Human review of demo scripts."""


@demo.command("show")
@click.argument("ticket_id")
@pass_ctx
def demo_show(ctx: QaflowContext, ticket_id: str) -> None:
    """Show the demo script for a ticket."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    full_id = ctx.resolve_ticket_id(ticket_id)
    try:
        script = demo_ops.get_demo(ctx.store, full_id)
    except QaflowError as e:
        ctx.fail(e)

    if ctx.json_output:
        ctx.output(script.to_dict())
        return
    click.echo(f"Demo for {full_id}")
    for step in script.steps:
        click.echo(f"  {STEP_SYMBOLS.get(step.status, '[?]')} {step.order}. "
                   f"({step.type}) {step.description}")
        click.echo(f"        expect: {step.expected_outcome}")
        if step.notes:
            click.echo(f"        notes:  {step.notes}")
    if script.feedback:
        verdict = "passed" if script.passed else "rejected"
        click.echo(f"\nFeedback ({verdict}): {script.feedback}")


@demo.command("step")
@click.argument("ticket_id")
@click.argument("order", type=int)
@click.argument("status", type=click.Choice(sorted(DemoStepStatus.VALID)))
@click.option("--notes", "-n", default=None, help="Notes on the step outcome")
@pass_ctx
def demo_step(ctx: QaflowContext, ticket_id: str, order: int, status: str,
              notes: str | None) -> None:
    """Record the outcome of one demo step."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    full_id = ctx.resolve_ticket_id(ticket_id)
    try:
        script = demo_ops.update_demo_step(ctx.store, full_id, order, status, notes)
    except QaflowError as e:
        ctx.fail(e)

    if ctx.json_output:
        ctx.output(script.to_dict())
    elif not ctx.quiet:
        click.echo(f"Step {order} marked {status}")


@demo.command("feedback")
@click.argument("ticket_id")
@click.option("--pass/--fail", "passed", default=None, required=True, help="Approve or reject the demo")
@click.option("--feedback", "-m", required=True, help="Reviewer feedback")
@pass_ctx
def demo_feedback(ctx: QaflowContext, ticket_id: str, passed: bool, feedback: str) -> None:
    """Approve (ticket -> done) or reject the demo."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    full_id = ctx.resolve_ticket_id(ticket_id)
    try:
        result = demo_ops.submit_feedback(ctx.store, full_id, passed, feedback)
    except QaflowError as e:
        ctx.fail(e)

    if ctx.json_output:
        ctx.output(result.to_dict())
        return
    ctx.warn(result.warnings)
    if passed:
        click.echo(f"Demo approved; {full_id} is done")
    else:
        click.echo(f"Demo rejected; {full_id} stays in human_review")
