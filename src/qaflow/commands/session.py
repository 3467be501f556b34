"""qf session - agent session state and events."""

from __future__ import annotations

import json

import click

from qaflow.cli import QaflowContext, pass_ctx
from qaflow.errors import QaflowError, ValidationError
from qaflow.models import SessionEventType, SessionOutcome, SessionState, format_timestamp
from qaflow.session import SessionManager, SessionResult, describe


def _json_option(value: str | None, name: str) -> dict | None:
    if value is None:
        return None
    try:
        data = json.loads(value)
    except json.JSONDecodeError as e:
        raise ValidationError(f"--{name} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValidationError(f"--{name} must be a JSON object")
    return data


def _report(ctx: QaflowContext, result: SessionResult, message: str) -> None:
    if ctx.json_output:
        ctx.output(result.to_dict())
        return
    ctx.warn(result.warnings)
    if ctx.quiet:
        click.echo(result.session.id)
    else:
        click.echo(message)


@click.group("session")
def session() -> None:
    """Agent sessions and their state machine."""


@session.command("create")
@click.argument("ticket_id")
@pass_ctx
def session_create(ctx: QaflowContext, ticket_id: str) -> None:
    """Start a session for a ticket (returns the active one if it exists)."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    full_id = ctx.resolve_ticket_id(ticket_id)
    try:
        result = SessionManager(ctx.store, ctx.config).create_session(full_id)
    except QaflowError as e:
        ctx.fail(e)

    verb = "Created" if result.created else "Resuming"
    _report(ctx, result, f"{verb} session {result.session.id} ({result.session.current_state})")


@session.command("update-state")
@click.argument("session_id")
@click.argument("state", type=click.Choice(SessionState.all()))
@click.option("--metadata", default=None, help="JSON object stored with the history entry")
@pass_ctx
def session_update_state(ctx: QaflowContext, session_id: str, state: str,
                         metadata: str | None) -> None:
    """Move a session to STATE."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    full_id = ctx.resolve_session_id(session_id)
    try:
        result = SessionManager(ctx.store, ctx.config).update_state(
            full_id, state, _json_option(metadata, "metadata"))
    except QaflowError as e:
        ctx.fail(e)

    _report(ctx, result, f"Session {full_id[:8]} is now {state}")


@session.command("complete")
@click.argument("session_id")
@click.argument("outcome", type=click.Choice(sorted(SessionOutcome.VALID)))
@click.option("--error", "error_message", default=None, help="Error message for failed sessions")
@pass_ctx
def session_complete(ctx: QaflowContext, session_id: str, outcome: str,
                     error_message: str | None) -> None:
    """Finish a session with OUTCOME and remove its state file."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    full_id = ctx.resolve_session_id(session_id)
    try:
        result = SessionManager(ctx.store, ctx.config).complete_session(
            full_id, outcome, error_message)
    except QaflowError as e:
        ctx.fail(e)

    _report(ctx, result, f"Session {full_id[:8]} completed ({outcome})")


@session.command("show")
@click.argument("ref", required=False)
@click.option("--ticket", "ticket_ref", default=None, help="Show the latest session of a ticket")
@pass_ctx
def session_show(ctx: QaflowContext, ref: str | None, ticket_ref: str | None) -> None:
    """Show a session and its state history."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    session_id = ctx.resolve_session_id(ref) if ref else None
    ticket_id = ctx.resolve_ticket_id(ticket_ref) if ticket_ref else None
    try:
        found = SessionManager(ctx.store, ctx.config).get_state(session_id, ticket_id)
    except QaflowError as e:
        ctx.fail(e)

    if ctx.json_output:
        ctx.output(found.to_dict())
        return
    click.echo(f"Session {found.id}")
    click.echo(f"  Ticket: {found.ticket_id}")
    click.echo(f"  State:  {found.current_state}")
    if found.is_completed:
        click.echo(f"  Outcome: {found.outcome}")
        if found.error_message:
            click.echo(f"  Error:   {found.error_message}")
    click.echo("  History:")
    for entry in found.state_history:
        click.echo(f"    {format_timestamp(entry.timestamp)}  {entry.state}")


@session.command("list")
@click.option("--ticket", "ticket_ref", default=None, help="Only sessions of this ticket")
@click.option("--limit", "-n", type=int, default=10)
@pass_ctx
def session_list(ctx: QaflowContext, ticket_ref: str | None, limit: int) -> None:
    """List sessions, newest first."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    ticket_id = ctx.resolve_ticket_id(ticket_ref) if ticket_ref else None
    try:
        sessions = SessionManager(ctx.store, ctx.config).list_sessions(ticket_id, limit)
    except QaflowError as e:
        ctx.fail(e)

    if ctx.json_output:
        ctx.output([s.to_dict() for s in sessions])
        return
    if not sessions:
        click.echo("No sessions")
        return
    for s in sessions:
        click.echo(describe(s))


@session.command("emit")
@click.argument("session_id")
@click.argument("event_type", type=click.Choice(sorted(SessionEventType.VALID)))
@click.option("--data", default=None, help="JSON object payload")
@pass_ctx
def session_emit(ctx: QaflowContext, session_id: str, event_type: str, data: str | None) -> None:
    """Record an event for a session."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    full_id = ctx.resolve_session_id(session_id)
    try:
        event = SessionManager(ctx.store, ctx.config).emit_event(
            full_id, event_type, _json_option(data, "data"))
    except QaflowError as e:
        ctx.fail(e)

    if ctx.json_output:
        ctx.output(event.to_dict())
    elif not ctx.quiet:
        click.echo(f"Recorded {event_type} event {event.id}")


@session.command("events")
@click.argument("session_id")
@click.option("--since", default=None, help="Only events after this ISO timestamp")
@click.option("--limit", "-n", type=int, default=50)
@pass_ctx
def session_events(ctx: QaflowContext, session_id: str, since: str | None, limit: int) -> None:
    """List events for a session, oldest first."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    full_id = ctx.resolve_session_id(session_id)
    try:
        events = SessionManager(ctx.store, ctx.config).get_events(full_id, since, limit)
    except QaflowError as e:
        ctx.fail(e)

    if ctx.json_output:
        ctx.output([e.to_dict() for e in events])
        return
    if not events:
        click.echo("No events")
        return
    for e in events:
        payload = json.dumps(e.data) if e.data else ""
        click.echo(f"  {format_timestamp(e.created_at)}  {e.type:<12} {payload}")


@session.command("clear-events")
@click.argument("session_id")
@pass_ctx
def session_clear_events(ctx: QaflowContext, session_id: str) -> None:
    """Delete every event of a session."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    full_id = ctx.resolve_session_id(session_id)
    try:
        cleared = SessionManager(ctx.store, ctx.config).clear_events(full_id)
    except QaflowError as e:
        ctx.fail(e)

    if ctx.json_output:
        ctx.output({"cleared": cleared})
    elif not ctx.quiet:
        click.echo(f"Cleared {cleared} event(s)")
