"""qf init - initialize a new .qaflow/ directory."""

from __future__ import annotations

import os

import click

from qaflow.cli import QaflowContext, pass_ctx
from qaflow.config import DEFAULT_DB_NAME, QAFLOW_DIR, QaflowConfig
from qaflow.storage.sqlite_store import SQLiteStorage

SCHEMA_VERSION = "1"


@click.command("init")
@click.option("--state-dir", default=None, help="Directory (inside each project) for hook state files")
@click.option("--marker-max-age", default=None, help="Review marker freshness window, e.g. 30m")
@pass_ctx
def init_cmd(ctx: QaflowContext, state_dir: str | None, marker_max_age: str | None) -> None:
    """Initialize a qaflow workspace in the current directory."""
    qaflow_dir = os.path.join(os.getcwd(), QAFLOW_DIR)

    if os.path.exists(qaflow_dir):
        click.echo(f"qaflow already initialized at {qaflow_dir}")
        return

    os.makedirs(qaflow_dir, exist_ok=True)

    config = QaflowConfig()
    if state_dir:
        config.state_dir = state_dir
    if marker_max_age:
        config.review_marker_max_age = marker_max_age
    config.save(qaflow_dir)

    with open(os.path.join(qaflow_dir, ".gitignore"), "w") as f:
        f.write("# qaflow local files (not shared via git)\n")
        f.write("*.db\n")
        f.write("*.db-wal\n")
        f.write("*.db-shm\n")

    store = SQLiteStorage(os.path.join(qaflow_dir, DEFAULT_DB_NAME))
    store.set_config("schema_version", SCHEMA_VERSION)
    store.close()

    click.echo(f"Initialized qaflow in {qaflow_dir}")
    click.echo(f"  Database: {DEFAULT_DB_NAME}")
    click.echo(f"  Hook state dir: {config.state_dir}")
