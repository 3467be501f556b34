"""qf ticket - create tickets and drive them through the lifecycle."""

from __future__ import annotations

import os
import sys

import click

from qaflow import audit, lifecycle
from qaflow.cli import QaflowContext, pass_ctx
from qaflow.errors import QaflowError
from qaflow.models import CommentAuthor, CommentType, Project, TicketStatus
from qaflow.utils import format_ticket_row, format_time_ago


def _resolve_project(ctx: QaflowContext, ref: str | None) -> Project:
    """Match a project by id prefix or name, or by the current directory."""
    assert ctx.store is not None
    projects = ctx.store.list_projects()
    if ref:
        matches = [p for p in projects if p.name == ref or p.id.startswith(ref)]
    else:
        cwd = os.path.abspath(os.getcwd())
        matches = [p for p in projects
                   if cwd == p.path or cwd.startswith(p.path.rstrip(os.sep) + os.sep)]
    if len(matches) != 1:
        what = f"'{ref}'" if ref else "the current directory"
        click.echo(f"Error: no unique project matches {what}", err=True)
        sys.exit(1)
    return matches[0]


@click.group("ticket")
def ticket() -> None:
    """Create tickets and move them through the QA lifecycle."""


@ticket.command("create")
@click.option("--title", "-t", required=True, help="Ticket title")
@click.option("--description", "-d", default="", help="Ticket description")
@click.option("--priority", "-p", type=click.Choice(["high", "medium", "low"]), default=None)
@click.option("--project", "project_ref", default=None, help="Project id or name")
@click.option("--ready", is_flag=True, help="Create directly in the ready column")
@pass_ctx
def ticket_create(ctx: QaflowContext, title: str, description: str, priority: str | None,
                  project_ref: str | None, ready: bool) -> None:
    """Create a ticket."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    proj = _resolve_project(ctx, project_ref)
    status = TicketStatus.READY if ready else TicketStatus.BACKLOG
    try:
        created = lifecycle.create_ticket(ctx.store, proj.id, title, description, priority, status)
    except QaflowError as e:
        ctx.fail(e)

    if ctx.json_output:
        ctx.output(created.to_dict())
    elif ctx.quiet:
        click.echo(created.id)
    else:
        click.echo(f"Created ticket {created.id}: {created.title}")


@ticket.command("list")
@click.option("--project", "project_ref", default=None, help="Project id or name")
@click.option("--status", "-s", type=click.Choice(TicketStatus.ORDER), default=None)
@pass_ctx
def ticket_list(ctx: QaflowContext, project_ref: str | None, status: str | None) -> None:
    """List tickets."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    project_id = _resolve_project(ctx, project_ref).id if project_ref else None
    tickets = ctx.store.list_tickets(project_id, status)

    if ctx.json_output:
        ctx.output([t.to_dict() for t in tickets])
        return
    if not tickets:
        click.echo("No tickets found")
        return
    for t in tickets:
        click.echo(format_ticket_row(t))
    click.echo(f"\n{len(tickets)} ticket(s)")


@ticket.command("show")
@click.argument("ticket_id")
@pass_ctx
def ticket_show(ctx: QaflowContext, ticket_id: str) -> None:
    """Show a ticket with its workflow state and comments."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    full_id = ctx.resolve_ticket_id(ticket_id)
    t = lifecycle.require_ticket(ctx.store, full_id)
    workflow = ctx.store.get_workflow_state(full_id)
    comments = ctx.store.get_comments(full_id)

    if ctx.json_output:
        data = t.to_dict()
        data["workflow"] = workflow.to_dict() if workflow else None
        data["comments"] = [c.to_dict() for c in comments]
        ctx.output(data)
        return

    click.echo(f"{t.id}: {t.title}")
    click.echo(f"  Status:   {t.status}")
    click.echo(f"  Priority: {t.priority or '-'}")
    if t.branch_name:
        click.echo(f"  Branch:   {t.branch_name}")
    if t.completed_at:
        click.echo(f"  Done:     {format_time_ago(t.completed_at)}")
    if workflow:
        click.echo(f"  Phase:    {workflow.current_phase} (iteration {workflow.review_iteration}, "
                   f"findings {workflow.findings_fixed}/{workflow.findings_count} fixed)")
    if t.linked_commits:
        click.echo("  Commits:")
        for c in t.linked_commits:
            click.echo(f"    {c.hash[:10]} {c.message}")
    if t.description:
        click.echo(f"\n{t.description}")
    if comments:
        click.echo(f"\nComments ({len(comments)}):")
        for c in comments:
            click.echo(f"  [{format_time_ago(c.created_at)}] {c.author} ({c.type}): {c.content}")


@ticket.command("start")
@click.argument("ticket_id")
@pass_ctx
def ticket_start(ctx: QaflowContext, ticket_id: str) -> None:
    """Start work: check out the feature branch and move to in_progress."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    full_id = ctx.resolve_ticket_id(ticket_id)
    try:
        result = lifecycle.start_work(ctx.store, full_id)
    except QaflowError as e:
        ctx.fail(e)

    if ctx.json_output:
        ctx.output(result.to_dict())
        return
    ctx.warn(result.warnings)
    if result.already_in_progress:
        click.echo(f"Already in progress on {result.branch_name}")
    elif result.branch_created:
        click.echo(f"Started {full_id} on new branch {result.branch_name}")
    else:
        click.echo(f"Started {full_id} on existing branch {result.branch_name}")


@ticket.command("complete")
@click.argument("ticket_id")
@click.option("--summary", "-m", default=None, help="Work summary")
@pass_ctx
def ticket_complete(ctx: QaflowContext, ticket_id: str, summary: str | None) -> None:
    """Complete work and hand the ticket to AI review."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    full_id = ctx.resolve_ticket_id(ticket_id)
    try:
        result = lifecycle.complete_work(ctx.store, full_id, summary)
    except QaflowError as e:
        ctx.fail(e)

    if ctx.json_output:
        ctx.output(result.to_dict())
        return
    if result.already_completed:
        click.echo(f"Already past implementation ({result.status}); nothing to do")
        return
    ctx.warn(result.warnings)
    click.echo(f"Moved {full_id} to ai_review")
    if result.prd and not ctx.quiet:
        click.echo(f"  PRD: {result.prd.message}")
    if result.suggested_next:
        click.echo(f"\nSuggested next: {result.suggested_next.id[:8]} {result.suggested_next.title}")


@ticket.command("link-commit")
@click.argument("ticket_id")
@click.argument("commit_hash")
@click.option("--message", "-m", default=None, help="Commit subject (read from git when omitted)")
@pass_ctx
def ticket_link_commit(ctx: QaflowContext, ticket_id: str, commit_hash: str,
                       message: str | None) -> None:
    """Link a commit to a ticket."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    full_id = ctx.resolve_ticket_id(ticket_id)
    try:
        result = lifecycle.link_commit(ctx.store, full_id, commit_hash, message)
    except QaflowError as e:
        ctx.fail(e)

    if ctx.json_output:
        ctx.output(result.to_dict())
    elif result.linked:
        click.echo(f"Linked {commit_hash} to {full_id}")
    else:
        click.echo(f"Commit {result.commit.hash} already linked to {full_id}")


@ticket.command("comments")
@click.argument("ticket_id")
@pass_ctx
def ticket_comments(ctx: QaflowContext, ticket_id: str) -> None:
    """List comments for a ticket."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    full_id = ctx.resolve_ticket_id(ticket_id)
    comment_list = ctx.store.get_comments(full_id)

    if ctx.json_output:
        ctx.output([c.to_dict() for c in comment_list])
        return
    if not comment_list:
        click.echo(f"No comments on {full_id}")
        return
    for c in comment_list:
        click.echo(f"  [{format_time_ago(c.created_at)}] {c.author} ({c.type}): {c.content}")


@ticket.command("comment")
@click.argument("ticket_id")
@click.argument("text")
@click.option("--author", type=click.Choice(sorted(CommentAuthor.VALID)), default=CommentAuthor.USER)
@click.option("--type", "comment_type", type=click.Choice(sorted(CommentType.VALID)),
              default=CommentType.COMMENT)
@pass_ctx
def ticket_comment(ctx: QaflowContext, ticket_id: str, text: str, author: str,
                   comment_type: str) -> None:
    """Add a comment to a ticket."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    full_id = ctx.resolve_ticket_id(ticket_id)
    try:
        comment = audit.add_comment(ctx.store, full_id, text, author, comment_type)
    except QaflowError as e:
        ctx.fail(e)

    if ctx.json_output:
        ctx.output(comment.to_dict())
    elif not ctx.quiet:
        click.echo(f"Added comment to {full_id}")
