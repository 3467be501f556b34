"""qf hook - enforcement hooks invoked by the agent host around tool calls.

Each hook reads the host's JSON tool-call payload from stdin. A denial is
printed to stderr with exit status 2, which hosts treat as "block this tool
call". With --json the decision object is printed to stdout instead and the
exit status is 0.
"""

from __future__ import annotations

import json
import sys

import click
import structlog

from qaflow.channel import MirrorStateChannel, ReviewMarkerChannel
from qaflow.cli import QaflowContext, pass_ctx
from qaflow.config import QaflowConfig, find_qaflow_dir
from qaflow.errors import CorruptArtifact, EnforcementDenial
from qaflow.hooks import (
    SHELL_TOOLS, HookDecision, HookInput, MarkerResult, is_push_command, push_gate,
    record_review_result, write_gate,
)


logger = structlog.get_logger(__name__)

DENY_EXIT_CODE = 2


def _read_stdin() -> str:
    return sys.stdin.read() if not sys.stdin.isatty() else ""


def _parse_input(raw: str) -> HookInput:
    if not raw.strip():
        return HookInput.from_dict({})
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("hook_input_unparsable", error=str(e))
        return HookInput.from_dict({})
    return HookInput.from_dict(data if isinstance(data, dict) else {})


def _read_input() -> HookInput:
    return _parse_input(_read_stdin())


def _project_config(project_dir: str) -> QaflowConfig:
    return QaflowConfig.load(find_qaflow_dir(project_dir))


def _config_denial(err: CorruptArtifact) -> HookDecision:
    logger.warning("config_unreadable", path=err.path, reason=err.reason)
    return HookDecision(False, (
        f"QAFLOW CONFIG UNREADABLE: {err.path} ({err.reason}).\n\n"
        "Fix or remove the config file; gated tool calls stay blocked until it loads."
    ))


def _emit(ctx: QaflowContext, decision: HookDecision) -> None:
    if ctx.json_output:
        ctx.output(decision.to_dict())
        return
    try:
        decision.enforce()
    except EnforcementDenial as e:
        click.echo(e.message, err=True)
        sys.exit(DENY_EXIT_CODE)


@click.group("hook")
def hook() -> None:
    """Enforcement hooks (read the tool-call payload on stdin)."""


@hook.command("write-gate")
@click.option("--project-dir", default=None, help="Project root (default: payload cwd)")
@pass_ctx
def hook_write_gate(ctx: QaflowContext, project_dir: str | None) -> None:
    """Block code edits unless the session is in a writable state."""
    hook_input = _read_input()
    project_dir = project_dir or hook_input.cwd
    try:
        config = _project_config(project_dir)
    except CorruptArtifact as e:
        _emit(ctx, _config_denial(e))
        return
    mirror = MirrorStateChannel(config.mirror_path(project_dir))
    # A payload without a tool name is gated as if it were a write.
    decision = write_gate(mirror, hook_input.tool_name or None)
    _emit(ctx, decision)


@hook.command("push-gate")
@click.option("--project-dir", default=None, help="Project root (default: payload cwd)")
@pass_ctx
def hook_push_gate(ctx: QaflowContext, project_dir: str | None) -> None:
    """Block git push and gh pr create without a fresh review marker."""
    hook_input = _read_input()
    if hook_input.tool_name and hook_input.tool_name not in SHELL_TOOLS:
        _emit(ctx, HookDecision(True))
        return
    if hook_input.command is not None and not is_push_command(hook_input.command):
        _emit(ctx, HookDecision(True))
        return
    project_dir = project_dir or hook_input.cwd
    try:
        config = _project_config(project_dir)
    except CorruptArtifact as e:
        _emit(ctx, _config_denial(e))
        return
    marker = ReviewMarkerChannel(config.marker_path(project_dir))
    decision = push_gate(marker, config.marker_max_age, hook_input.command)
    _emit(ctx, decision)


@hook.command("review-marker")
@click.option("--project-dir", default=None, help="Project root (default: payload cwd)")
@pass_ctx
def hook_review_marker(ctx: QaflowContext, project_dir: str | None) -> None:
    """Write the review marker after a passing completeness check.

    Reads the check's tool response from the host payload, or takes stdin as
    the raw check output when it is not a host payload. The marker is created
    only when that output confirms no critical or major finding is open.
    """
    raw = _read_stdin()
    hook_input = _parse_input(raw)
    output = hook_input.tool_response
    if output is None and not hook_input.tool_name:
        output = raw
    project_dir = project_dir or hook_input.cwd
    try:
        config = _project_config(project_dir)
    except CorruptArtifact as e:
        logger.warning("config_unreadable", path=e.path, reason=e.reason)
        result = MarkerResult(False, f"Config file {e.path} is unreadable ({e.reason}); "
                                     "review marker not created.")
    else:
        marker = ReviewMarkerChannel(config.marker_path(project_dir))
        result = record_review_result(marker, output)

    if ctx.json_output:
        ctx.output(result.to_dict())
    elif result.created:
        if not ctx.quiet:
            click.echo(result.message)
    else:
        click.echo(result.message, err=True)
