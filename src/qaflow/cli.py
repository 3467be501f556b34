"""Click CLI root and global flags for qaflow (qf)."""

from __future__ import annotations

import json
import os
import sys
from typing import NoReturn

import click
import structlog

from qaflow import __version__
from qaflow.config import QaflowConfig, find_qaflow_dir, get_db_path
from qaflow.errors import CorruptArtifact, QaflowError
from qaflow.log import configure_logging
from qaflow.operations import OperationContext
from qaflow.storage.sqlite_store import SQLiteStorage


logger = structlog.get_logger(__name__)


class QaflowContext:
    """Shared context for all commands."""

    def __init__(self) -> None:
        self.qaflow_dir: str | None = None
        self.store: SQLiteStorage | None = None
        self.config: QaflowConfig = QaflowConfig()
        self.json_output: bool = False
        self.verbose: bool = False
        self.quiet: bool = False

    def ensure_initialized(self) -> None:
        """Ensure the .qaflow directory and storage are available."""
        if self.store is not None:
            return
        self.qaflow_dir = find_qaflow_dir()
        if self.qaflow_dir is None:
            click.echo("Error: not in a qaflow workspace (no .qaflow/ directory found)", err=True)
            click.echo("Run 'qf init' to create one", err=True)
            sys.exit(1)
        try:
            self.config = QaflowConfig.load(self.qaflow_dir)
        except CorruptArtifact as e:
            self.fail(e)
        if not self.json_output:
            self.json_output = self.config.json_output
        self.store = SQLiteStorage(get_db_path(self.qaflow_dir, self.config))

    def operations(self) -> OperationContext:
        self.ensure_initialized()
        assert self.store is not None
        return OperationContext(self.store, self.config)

    def resolve_ticket_id(self, partial: str) -> str:
        """Resolve a partial ticket ID or exit with error."""
        assert self.store is not None
        full_id = self.store.resolve_ticket_id(partial)
        if full_id is None:
            click.echo(f"Error: ticket not found or ambiguous: {partial}", err=True)
            sys.exit(1)
        return full_id

    def resolve_session_id(self, partial: str) -> str:
        assert self.store is not None
        full_id = self.store.resolve_session_id(partial)
        if full_id is None:
            click.echo(f"Error: session not found or ambiguous: {partial}", err=True)
            sys.exit(1)
        return full_id

    def output(self, data: dict | list) -> None:
        """Output data as JSON."""
        click.echo(json.dumps(data, indent=2, default=str))

    def fail(self, err: QaflowError) -> NoReturn:
        """Report a typed error and exit non-zero."""
        if self.json_output:
            self.output(err.to_payload())
        else:
            click.echo(f"Error: {err.message}", err=True)
        sys.exit(1)

    def warn(self, warnings: list[str]) -> None:
        if self.quiet:
            return
        for w in warnings:
            click.echo(f"Warning: {w}", err=True)


pass_ctx = click.make_pass_decorator(QaflowContext, ensure=True)


@click.group(invoke_without_command=True)
@click.option("--db", envvar="QF_DB", help="Path to database file")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output (debug logging)")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.version_option(__version__, prog_name="qf")
@click.pass_context
def cli(ctx: click.Context, db: str | None, json_output: bool,
        verbose: bool, quiet: bool) -> None:
    """qf - ticket QA workflow and agent enforcement hooks"""
    qctx = ctx.ensure_object(QaflowContext)
    qctx.verbose = verbose
    qctx.quiet = quiet
    if json_output:
        qctx.json_output = True
    if db:
        os.environ["QF_DB"] = db

    config_error: CorruptArtifact | None = None
    try:
        config = QaflowConfig.load(find_qaflow_dir())
    except CorruptArtifact as e:
        # commands that need the config report the error themselves
        config, config_error = QaflowConfig(), e
    configure_logging("DEBUG" if verbose else config.log_level, config.log_json)
    if config_error is not None:
        logger.warning("config_unreadable", path=config_error.path, reason=config_error.reason)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# --- Register all command groups ---

from qaflow.commands.init_cmd import init_cmd
from qaflow.commands.project import project
from qaflow.commands.ticket import ticket
from qaflow.commands.review import review
from qaflow.commands.demo import demo
from qaflow.commands.session import session
from qaflow.commands.hook import hook
from qaflow.commands.call import call_cmd
from qaflow.commands.doctor import doctor

cli.add_command(init_cmd, "init")
cli.add_command(project, "project")
cli.add_command(ticket, "ticket")
cli.add_command(review, "review")
cli.add_command(demo, "demo")
cli.add_command(session, "session")
cli.add_command(hook, "hook")
cli.add_command(call_cmd, "call")
cli.add_command(doctor, "doctor")


def main() -> None:
    cli(auto_envvar_prefix="QF")
