"""
CLI: ``blockflow workflow`` - inspect workflow definition files.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.markup import escape

from blockflow.cli.utils import console, fail, fail_from, output_json, output_rows

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_workflows(
    directory: Path = typer.Argument(..., help="Directory of .yaml/.yml/.json workflow files"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List workflows found in a directory."""
    from blockflow.orchestration.loader import FileWorkflowLoader

    if not directory.is_dir():
        fail(f"Not a directory: {directory}")
    output_rows(FileWorkflowLoader(directory).list(), as_json=json_out, title="Workflows")


@app.command("validate")
def validate_workflow(
    path: Path = typer.Argument(..., help="Workflow file"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Validate a workflow file and print its execution order."""
    from blockflow.core.errors import BlockflowError
    from blockflow.orchestration.graph import execution_order, validate_graph
    from blockflow.orchestration.loader import WorkflowSpec

    if not path.is_file():
        fail(f"File not found: {path}")
    try:
        graph = WorkflowSpec.from_file(path).to_graph(default_id=path.stem)
    except BlockflowError as e:
        fail_from(e)

    report = validate_graph(graph)
    order = execution_order(graph) if report.is_valid else []
    if json_out:
        output_json({"workflow_id": graph.id, "order": order, **report.to_dict()})
    else:
        status = "[green]valid[/green]" if report.is_valid else "[red]invalid[/red]"
        console.print(f"{status}  {graph.id} ({len(graph.nodes)} nodes, {len(graph.edges)} edges)")
        if order:
            console.print(f"  [cyan]order[/cyan]: {' -> '.join(order)}")
        for error in report.errors:
            console.print(f"  [red]error[/red]: {escape(error)}")
        for warning in report.warnings:
            console.print(f"  [yellow]warning[/yellow]: {escape(warning)}")

    if not report.is_valid:
        raise typer.Exit(code=1)
