"""
CLI: ``blockflow runs`` - execution state, checkpoints and recovery.
"""

from __future__ import annotations

from pathlib import Path

import typer

from blockflow.cli.utils import console, fail, fail_from, get_store, output_record, output_rows

app = typer.Typer(no_args_is_help=True)

STORE_OPTION = typer.Option(None, "--store", "-s", help="Store path (default: from settings)")


def _state_store(store: str | None):
    from blockflow.execution.state import StateStore

    return StateStore(get_store(store))


def _row(state) -> dict:
    return {
        "execution_id": state.execution_id,
        "workflow": state.workflow_ref,
        "type": state.execution_type.value,
        "status": state.status.value,
        "progress": f"{len(state.completed_nodes)}/{state.total_nodes}",
        "checkpoints": len(state.checkpoints),
        "started_at": state.started_at.isoformat() if state.started_at else None,
    }


@app.command("list")
def list_runs(
    status: str | None = typer.Option(None, "--status", help="Filter by status"),
    store: str | None = STORE_OPTION,
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List execution runs, newest first."""
    states = _state_store(store).list_all()
    if status:
        states = [s for s in states if s.status.value == status]
    output_rows([_row(s) for s in states], as_json=json_out, title="Runs")


@app.command("show")
def show_run(
    execution_id: str = typer.Argument(..., help="Execution ID"),
    store: str | None = STORE_OPTION,
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show a run with its node states and checkpoints."""
    state = _state_store(store).get(execution_id)
    if state is None:
        fail(f"Execution state {execution_id} not found", code="NOT_FOUND")
    if json_out:
        output_record(state, as_json=True)
        return

    output_record(_row(state), title=f"Run: {execution_id}")
    output_rows(
        [
            {
                "node": ns.node_id,
                "status": ns.status.value,
                "retries": ns.retry_count,
                "error": ns.error,
            }
            for ns in state.node_states.values()
        ],
        title="Nodes",
    )
    output_rows(
        [
            {"checkpoint": cp.id, "reason": cp.reason, "created_at": cp.created_at.isoformat()}
            for cp in state.checkpoints
        ],
        title="Checkpoints",
    )


@app.command("recoverable")
def list_recoverable(
    mark: bool = typer.Option(False, "--mark", help="Mark interrupted running runs as paused"),
    store: str | None = STORE_OPTION,
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List runs that can be resumed from a checkpoint."""
    states = _state_store(store)
    candidates = states.recover_interrupted() if mark else states.list_recoverable()
    output_rows([_row(s) for s in candidates], as_json=json_out, title="Recoverable Runs")


@app.command("expire")
def expire_runs(
    max_age: float | None = typer.Option(None, "--max-age", help="Age in seconds (default: from settings)"),
    store: str | None = STORE_OPTION,
) -> None:
    """Delete finished runs older than the retention age."""
    removed = _state_store(store).expire(max_age)
    console.print(f"Expired {removed} run(s)")


@app.command("delete")
def delete_run(
    execution_id: str = typer.Argument(..., help="Execution ID"),
    store: str | None = STORE_OPTION,
) -> None:
    """Delete one run's state."""
    if not _state_store(store).delete(execution_id):
        fail(f"Execution state {execution_id} not found", code="NOT_FOUND")
    typer.echo(f"Deleted {execution_id}")


@app.command("export")
def export_runs(
    output: Path | None = typer.Option(None, "--output", "-o", help="File to write (default: stdout)"),
    store: str | None = STORE_OPTION,
) -> None:
    """Export every run as a JSON document."""
    document = _state_store(store).export_states()
    if output is None:
        typer.echo(document)
        return
    output.write_text(document, encoding="utf-8")
    console.print(f"Exported to {output}")


@app.command("import")
def import_runs(
    source: Path = typer.Argument(..., help="File produced by 'runs export'"),
    mode: str = typer.Option("merge", "--mode", help="merge or replace"),
    store: str | None = STORE_OPTION,
) -> None:
    """Import runs from an export document."""
    from blockflow.core.errors import BlockflowError

    if not source.is_file():
        fail(f"File not found: {source}")
    try:
        imported = _state_store(store).import_states(source.read_text(encoding="utf-8"), mode=mode)
    except BlockflowError as e:
        fail_from(e)
    console.print(f"Imported {imported} run(s)")
