"""qf project - register the workspaces tickets belong to."""

from __future__ import annotations

import click

from qaflow import lifecycle
from qaflow.cli import QaflowContext, pass_ctx
from qaflow.errors import QaflowError


@click.group("project")
def project() -> None:
    """Manage projects."""


@project.command("add")
@click.argument("name")
@click.argument("path", default=".", type=click.Path(exists=True, file_okay=False))
@pass_ctx
def project_add(ctx: QaflowContext, name: str, path: str) -> None:
    """Register a project directory."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    try:
        created = lifecycle.create_project(ctx.store, name, path)
    except QaflowError as e:
        ctx.fail(e)

    if ctx.json_output:
        ctx.output(created.to_dict())
    elif not ctx.quiet:
        click.echo(f"Added project {created.name} ({created.id}) at {created.path}")


@project.command("list")
@pass_ctx
def project_list(ctx: QaflowContext) -> None:
    """List projects."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    projects = ctx.store.list_projects()

    if ctx.json_output:
        ctx.output([p.to_dict() for p in projects])
        return
    if not projects:
        click.echo("No projects registered")
        return
    for p in projects:
        click.echo(f"  {p.id[:8]}  {p.name:<20} {p.path}")
