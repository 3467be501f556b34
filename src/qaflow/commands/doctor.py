"""qf doctor - health checks."""

from __future__ import annotations

import os

import click

from qaflow.channel import MirrorStateChannel, ReviewMarkerChannel
from qaflow.cli import QaflowContext, pass_ctx
from qaflow.config import get_db_path
from qaflow.models import Project, now_utc


def _check_mirror(ctx: QaflowContext, project: Project) -> int:
    assert ctx.store is not None
    mirror = MirrorStateChannel(ctx.config.mirror_path(project.path))
    read = mirror.read()
    if read.is_absent:
        click.echo("    [OK] no session state file (edits not gated)")
        return 0
    if read.is_corrupt:
        assert read.error is not None
        click.echo(f"    [ERROR] state file unreadable: {read.error.reason}")
        click.echo(f"      remove it with: rm {mirror.path}")
        return 1
    session = ctx.store.get_session(read.value["sessionId"])
    if session is None or session.is_completed:
        click.echo(f"    [WARN] state file refers to an inactive session "
                   f"{read.value['sessionId'][:8]} ({read.value['currentState']})")
        click.echo(f"      remove it with: rm {mirror.path}")
        return 1
    click.echo(f"    [OK] session {session.id[:8]} in state {read.value['currentState']}")
    return 0


def _check_marker(ctx: QaflowContext, project: Project) -> int:
    marker = ReviewMarkerChannel(ctx.config.marker_path(project.path))
    read = marker.read()
    if read.is_absent:
        click.echo("    [INFO] no review marker (push is gated)")
        return 0
    if read.is_corrupt:
        assert read.error is not None
        click.echo(f"    [ERROR] review marker unreadable: {read.error.reason}")
        return 1
    age = now_utc() - read.value
    minutes = int(age.total_seconds() // 60)
    if age > ctx.config.marker_max_age:
        click.echo(f"    [INFO] review marker is stale ({minutes} min old)")
    else:
        click.echo(f"    [OK] review marker is fresh ({minutes} min old)")
    return 0


@click.command("doctor")
@pass_ctx
def doctor(ctx: QaflowContext) -> None:
    """Run health checks on the qaflow workspace."""
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.qaflow_dir is not None

    issues_found = 0

    click.echo("qaflow doctor")
    click.echo("─" * 40)

    click.echo(f"  .qaflow/ directory: {ctx.qaflow_dir}")
    click.echo("    [OK] exists")

    db_path = get_db_path(ctx.qaflow_dir, ctx.config)
    click.echo(f"  Database: {db_path}")
    version = ctx.store.get_config("schema_version")
    click.echo(f"    Schema version: {version or 'unknown'}")

    click.echo(f"  Hook state dir: {ctx.config.state_dir}")
    click.echo(f"  Review marker max age: {ctx.config.review_marker_max_age}")

    projects = ctx.store.list_projects()
    if not projects:
        click.echo("\n  [INFO] no projects registered (qf project add NAME PATH)")
    for project in projects:
        click.echo(f"\n  Project {project.name}: {project.path}")
        if not os.path.isdir(project.path):
            click.echo("    [ERROR] path does not exist")
            issues_found += 1
            continue
        if not os.path.isdir(os.path.join(project.path, ".git")):
            click.echo("    [WARN] not a git repository (start_ticket_work will fail)")
            issues_found += 1
        issues_found += _check_mirror(ctx, project)
        issues_found += _check_marker(ctx, project)

    click.echo()
    if issues_found:
        click.echo(f"Found {issues_found} issue(s)")
    else:
        click.echo("All checks passed!")
