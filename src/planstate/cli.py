"""CLI commands for creating plans and recording their execution state."""

from __future__ import annotations

import functools
import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import typer
import yaml

from .config import (
    DEFAULT_CONFIG_NAME,
    backup_retention,
    copy_config_template,
    load_config,
    logging_level,
    write_config,
)
from .engine import PlanEngine
from .errors import PlanStateError, PlanValidationError
from .planning.bootstrap import load_plan_document
from .state.progress import PlanProgress

APP_HELP = "Plan state engine CLI: track plans, phases and tasks on disk."

app = typer.Typer(help=APP_HELP)


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


def _handle_errors(func: Callable[..., None]) -> Callable[..., None]:
    """Render engine errors as ``Error [CODE]: message`` and exit with status 1."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> None:
        try:
            func(*args, **kwargs)
        except PlanStateError as error:
            typer.echo(f"Error [{error.code}]: {error.message}", err=True)
            issues = getattr(error, "issues", None) or []
            for issue in issues:
                typer.echo(f"  - [{issue.get('code')}] {issue.get('message')}", err=True)
            raise typer.Exit(code=1) from error

    return wrapper


def _engine(ctx: typer.Context) -> PlanEngine:
    return ctx.obj["engine"]


@app.callback()
def main(
    ctx: typer.Context,
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the planstate configuration file.",
    ),
    plans_dir: Optional[str] = typer.Option(
        None,
        "--plans-dir",
        help="Directory holding plan folders; overrides the configuration.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Load configuration and build the engine shared by every command."""
    config_path = Path(config)
    try:
        config_data = load_config(config_path)
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging_level(config_data),
            format="%(levelname)s %(name)s: %(message)s",
        )
        if plans_dir:
            engine = PlanEngine.for_directory(Path(plans_dir).resolve(), backup_keep=backup_retention(config_data))
        else:
            engine = PlanEngine.from_config(config_data, config_path)
    except PlanValidationError as error:
        typer.echo(f"Error [{error.code}]: {error.message}", err=True)
        raise typer.Exit(code=1) from error
    ctx.obj = {
        "config": config_data,
        "config_path": config_path,
        "engine": engine,
    }


def _load_operations(path: Path) -> List[Dict[str, Any]]:
    try:
        text = path.read_text(encoding="utf-8")
        payload = json.loads(text) if path.suffix == ".json" else yaml.safe_load(text)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as error:
        raise typer.BadParameter(f"Unable to read operations from {path}: {error}") from error
    if isinstance(payload, dict):
        payload = payload.get("operations")
    if not isinstance(payload, list):
        raise typer.BadParameter("Operations file must contain a list of operations.")
    return payload


def _render_progress(progress: PlanProgress) -> None:
    typer.echo(f"Plan: {progress.plan_id} [{progress.status}] goal='{progress.goal}'")
    typer.echo(
        f"Tasks: {progress.completed_tasks}/{progress.total_tasks} completed "
        f"({progress.percent_complete}% effective, {progress.actual_work_percent}% actual work)"
    )
    typer.echo(
        f"  in_progress {progress.in_progress_tasks} | pending {progress.pending_tasks} | "
        f"failed {progress.failed_tasks} | blocked {progress.blocked_tasks} | skipped {progress.skipped_tasks}"
    )
    typer.echo(
        f"Phases: {progress.completed_phases}/{progress.total_phases} completed, "
        f"{progress.skipped_phases} skipped ({progress.phase_percent_complete}%)"
    )
    if progress.current_phase is not None:
        typer.echo(f"Current phase: {progress.current_phase.id} ({progress.current_phase.name})")
    if progress.current_task is not None:
        task = progress.current_task
        typer.echo(f"Current task: {task.task_id} [{task.status}] {task.description}".rstrip())
    for phase in progress.phases:
        typer.echo(f"- {phase.id} [{phase.status}] {phase.completed_count}/{phase.task_count} ({phase.percent_complete}%)")
        reason = progress.skip_reasons.get(phase.id)
        if reason:
            typer.echo(f"    skipped: {reason}")


@app.command("init")
@_handle_errors
def init_plan(
    ctx: typer.Context,
    plan_file: Path = typer.Argument(..., help="Plan document (YAML or JSON)."),
    as_json: bool = typer.Option(False, "--json", help="Print the created execution state as JSON."),
) -> None:
    """Validate a plan document and create its plan directory."""
    document = load_plan_document(plan_file)
    creation = _engine(ctx).init_plan(document)
    if as_json:
        _echo_json(creation.to_dict())
        return
    typer.echo(f"Created plan {creation.plan_id} at {creation.plan_dir.as_posix()}")
    typer.echo(f"Phases: {len(creation.orchestration.phases)} | Tasks: {len(creation.state.task_statuses)}")
    for warning in creation.report.warnings:
        typer.echo(f"Warning [{warning.code}]: {warning.message}")


@app.command("set-status")
@_handle_errors
def set_status(
    ctx: typer.Context,
    plan: str = typer.Argument(..., help="Plan identifier."),
    task: str = typer.Argument(..., help="Task identifier."),
    status: str = typer.Argument(..., help="pending, in_progress, completed, failed or blocked."),
    result: Optional[str] = typer.Option(None, "--result", help="Result payload to store with the task."),
    force: bool = typer.Option(False, "--force", help="Bypass the transition table."),
) -> None:
    """Record a new status for a task."""
    update = _engine(ctx).set_status(plan, task, status, result=result, force=force)
    typer.echo(
        f"{update.task_id}: {update.old_status} -> {update.new_status} "
        f"(phase {update.phase_id} is {update.phase_status}, plan is {update.plan_status})"
    )


@app.command()
@_handle_errors
def progress(
    ctx: typer.Context,
    plan: str = typer.Argument(..., help="Plan identifier."),
    as_json: bool = typer.Option(False, "--json", help="Print progress as JSON."),
) -> None:
    """Show counts, percentages and the current position of a plan."""
    summary = _engine(ctx).get_progress(plan)
    if as_json:
        _echo_json(summary.to_dict())
    else:
        _render_progress(summary)


@app.command("can-mutate")
@_handle_errors
def can_mutate(
    ctx: typer.Context,
    plan: str = typer.Argument(..., help="Plan identifier."),
    operations_file: Path = typer.Argument(..., help="YAML or JSON list of proposed operations."),
) -> None:
    """Partition proposed edits into allowed and blocked for the plan's current state."""
    operations = _load_operations(operations_file)
    try:
        validation = _engine(ctx).can_mutate(plan, operations)
    except ValueError as error:
        raise typer.BadParameter(f"Invalid operation: {error}") from error
    _echo_json(validation.to_dict())


@app.command("can-delete")
@_handle_errors
def can_delete(
    ctx: typer.Context,
    plan: str = typer.Argument(..., help="Plan identifier."),
    phase: Optional[str] = typer.Option(None, "--phase", help="Phase to delete, or the owner of --task."),
    task: Optional[str] = typer.Option(None, "--task", help="Task to delete."),
    force: bool = typer.Option(False, "--force", help="Allow discarding completed work."),
) -> None:
    """Check whether a phase or task can be deleted safely."""
    engine = _engine(ctx)
    if task:
        check = engine.can_delete_task(plan, task, phase_id=phase, force=force)
    elif phase:
        check = engine.can_delete_phase(plan, phase, force=force)
    else:
        raise typer.BadParameter("Pass --phase or --task.")
    _echo_json(check.to_dict())
    if not check.can_proceed:
        raise typer.Exit(code=1)


@app.command()
@_handle_errors
def reset(
    ctx: typer.Context,
    plan: str = typer.Argument(..., help="Plan identifier."),
    history: bool = typer.Option(True, "--history/--no-history", help="Archive the current run before resetting."),
) -> None:
    """Reset every task and phase of a plan to pending."""
    state = _engine(ctx).reset_all(plan, preserve_history=history)
    typer.echo(f"Reset {len(state.task_statuses)} task(s) in plan {plan}")
    if history:
        typer.echo(f"Execution history entries: {len(state.execution_history)}")


@app.command("skip-phase")
@_handle_errors
def skip_phase(
    ctx: typer.Context,
    plan: str = typer.Argument(..., help="Plan identifier."),
    phase: str = typer.Argument(..., help="Phase identifier."),
    reason: Optional[str] = typer.Option(None, "--reason", help="Why the phase is skipped."),
) -> None:
    """Mark a phase as skipped."""
    _engine(ctx).skip_phase(plan, phase, reason=reason)
    typer.echo(f"Skipped phase {phase} of plan {plan}")


@app.command()
@_handle_errors
def complete(
    ctx: typer.Context,
    plan: str = typer.Argument(..., help="Plan identifier."),
    summary: Optional[str] = typer.Option(None, "--summary", help="Completion summary."),
) -> None:
    """Record that a plan is complete."""
    state = _engine(ctx).complete_plan(plan, summary=summary)
    typer.echo(f"Plan {plan} completed at {state.completed_at.isoformat() if state.completed_at else 'unknown'}")


@app.command()
@_handle_errors
def validate(
    ctx: typer.Context,
    plan: str = typer.Argument(..., help="Plan identifier."),
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON."),
) -> None:
    """Check a persisted plan's structure and dependencies."""
    report = _engine(ctx).validate(plan)
    if as_json:
        _echo_json(report.to_dict())
    else:
        typer.echo(report.format())
    if not report.valid:
        raise typer.Exit(code=1)


@app.command("list")
@_handle_errors
def list_plans(ctx: typer.Context) -> None:
    """List the plans under the plans directory."""
    plans = _engine(ctx).list_plans()
    if not plans:
        typer.echo("No plans found.")
        return
    for plan_id in plans:
        typer.echo(plan_id)


@app.command()
@_handle_errors
def sync(
    ctx: typer.Context,
    plan: str = typer.Argument(..., help="Plan identifier."),
) -> None:
    """Rewrite phase files and orchestration from the execution state."""
    report = _engine(ctx).sync(plan)
    typer.echo(
        f"Synced plan {plan}: {report.tasks_fixed} task(s) and {report.phases_fixed} phase(s) fixed"
    )


@app.command()
@_handle_errors
def backup(
    ctx: typer.Context,
    plan: str = typer.Argument(..., help="Plan identifier."),
) -> None:
    """Create a timestamped backup of a plan directory."""
    path = _engine(ctx).backup(plan)
    typer.echo(path.as_posix())


@app.command()
@_handle_errors
def backups(
    ctx: typer.Context,
    plan: str = typer.Argument(..., help="Plan identifier."),
) -> None:
    """List backups of a plan, newest first."""
    entries = _engine(ctx).list_backups(plan)
    if not entries:
        typer.echo("No backups found.")
        return
    for info in entries:
        typer.echo(f"{info.name}  {info.modified_at.isoformat()}")


@app.command()
@_handle_errors
def restore(
    ctx: typer.Context,
    plan: str = typer.Argument(..., help="Plan identifier."),
    backup_name: str = typer.Argument(..., help="Backup name as shown by 'backups'."),
) -> None:
    """Restore a plan directory from one of its backups."""
    path = _engine(ctx).restore(plan, backup_name)
    typer.echo(f"Restored {path.as_posix()} from {backup_name}")


@app.command("init-config")
def init_config(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration file."),
) -> None:
    """Write the default configuration file."""
    config_path: Path = ctx.obj["config_path"]
    if config_path.exists() and not force:
        typer.echo(f"Configuration already exists at {config_path}; use --force to overwrite.")
        raise typer.Exit(code=1)
    write_config(config_path, copy_config_template())
    typer.echo(f"Wrote {config_path}")


if __name__ == "__main__":
    app()
