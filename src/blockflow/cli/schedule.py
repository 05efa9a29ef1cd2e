"""
CLI: ``blockflow schedule`` - schedule CRUD commands.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import typer

from blockflow.cli.utils import fail, fail_from, get_store, output_record, output_rows

app = typer.Typer(no_args_is_help=True)

STORE_OPTION = typer.Option(None, "--store", "-s", help="Store path (default: from settings)")


def _service(store: str | None, workflows: Path | None = None):
    from blockflow.core.scheduling import create_scheduler
    from blockflow.orchestration.loader import FileWorkflowLoader, InMemoryWorkflowLoader

    loader = FileWorkflowLoader(workflows) if workflows else InMemoryWorkflowLoader()
    return create_scheduler(loader=loader, store=get_store(store))


def _row(schedule) -> dict:
    return {
        "id": schedule.id,
        "workflow": schedule.workflow_id,
        "cron": schedule.cron_expression,
        "status": schedule.status.value,
        "enabled": schedule.enabled,
        "next_run": schedule.next_run.isoformat() if schedule.next_run else None,
        "runs": schedule.run_count,
    }


@app.command("list")
def list_schedules(
    store: str | None = STORE_OPTION,
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List all schedules, newest first."""
    schedules = _service(store).list_schedules()
    if json_out:
        output_rows([s.to_dict() for s in schedules], as_json=True)
        return
    output_rows([_row(s) for s in schedules], title="Schedules")


@app.command("show")
def show_schedule(
    schedule_id: str = typer.Argument(..., help="Schedule ID"),
    store: str | None = STORE_OPTION,
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show schedule details."""
    schedule = _service(store).get_schedule(schedule_id)
    if schedule is None:
        fail(f"Schedule {schedule_id} not found", code="NOT_FOUND")
    output_record(schedule, as_json=json_out, title=f"Schedule: {schedule_id}")


@app.command("create")
def create_schedule(
    workflow_id: str = typer.Argument(..., help="Workflow to schedule"),
    cron: str = typer.Option(..., "--cron", help="Five-field cron expression"),
    workflows: Path = typer.Option(..., "--workflows", "-w", help="Directory of workflow files"),
    description: str = typer.Option("", "--description"),
    max_runs: int | None = typer.Option(None, "--max-runs", min=1),
    end_date: datetime | None = typer.Option(None, "--end-date"),
    max_retries: int | None = typer.Option(None, "--max-retries", min=0),
    enabled: bool = typer.Option(True, "--enabled/--disabled"),
    store: str | None = STORE_OPTION,
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Create a new schedule."""
    from blockflow.core.errors import BlockflowError
    from blockflow.core.scheduling import ScheduleConfig

    options = {} if max_retries is None else {"max_retries": max_retries}
    service = _service(store, workflows)
    try:
        schedule_id = service.schedule_execution(
            ScheduleConfig(
                workflow_id=workflow_id,
                cron_expression=cron,
                execution_options=options,
                enabled=enabled,
                description=description,
                max_runs=max_runs,
                end_date=end_date,
            )
        )
    except BlockflowError as e:
        fail_from(e)
    output_record(service.get_schedule(schedule_id), as_json=json_out, title="Schedule Created")


@app.command("toggle")
def toggle_schedule(
    schedule_id: str = typer.Argument(..., help="Schedule ID"),
    enabled: bool = typer.Option(..., "--enable/--disable"),
    store: str | None = STORE_OPTION,
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Enable or disable a schedule."""
    from blockflow.core.errors import BlockflowError

    try:
        schedule = _service(store).toggle_schedule(schedule_id, enabled)
    except BlockflowError as e:
        fail_from(e)
    output_record(schedule, as_json=json_out, title="Schedule Updated")


@app.command("cancel")
def cancel_schedule(
    schedule_id: str = typer.Argument(..., help="Schedule ID"),
    store: str | None = STORE_OPTION,
) -> None:
    """Delete a schedule."""
    if not _service(store).cancel_schedule(schedule_id):
        fail(f"Schedule {schedule_id} not found", code="NOT_FOUND")
    typer.echo(f"Cancelled {schedule_id}")
