"""qf call - invoke a named operation with JSON parameters."""

from __future__ import annotations

import json
import sys

import click

from qaflow.cli import QaflowContext, pass_ctx
from qaflow.errors import ValidationError
from qaflow.operations import REGISTRY, call


@click.command("call")
@click.argument("name", required=False)
@click.option("--params", "-p", default=None, help="JSON object of parameters ('-' reads stdin)")
@click.option("--list", "list_ops", is_flag=True, help="List available operations")
@pass_ctx
def call_cmd(ctx: QaflowContext, name: str | None, params: str | None, list_ops: bool) -> None:
    """Run operation NAME and print its JSON payload.

    Exits 1 when the payload is an error.
    """
    if list_ops or not name:
        if ctx.json_output:
            ctx.output([{"name": op.name, "description": op.description,
                         "params": op.param_names} for op in REGISTRY.values()])
            return
        for op in REGISTRY.values():
            click.echo(f"  {op.name:<26} {op.description}")
        return

    if params == "-":
        params = sys.stdin.read()
    try:
        parsed = json.loads(params) if params else {}
    except json.JSONDecodeError as e:
        ctx.output(ValidationError(f"--params is not valid JSON: {e}").to_payload())
        sys.exit(1)

    payload = call(ctx.operations(), name, parsed)
    ctx.output(payload)
    if payload.get("error"):
        sys.exit(1)
