"""
CLI: ``blockflow cron`` - validate and preview cron expressions.
"""

from __future__ import annotations

import typer

from blockflow.cli.utils import console, fail, output_json, output_rows

app = typer.Typer(no_args_is_help=True)


@app.command("check")
def check_expression(
    expression: str = typer.Argument(..., help='Five-field cron expression, e.g. "0 9 * * *"'),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Validate an expression and show its next run."""
    from blockflow.core.scheduling import cron

    result = cron.parse(expression)
    if json_out:
        output_json(result.to_dict())
        if not result.is_valid:
            raise typer.Exit(code=1)
        return

    if not result.is_valid:
        fail(result.error or "invalid expression", code="VALIDATION")
    console.print(f"[green]valid[/green]  {result.description}")
    console.print(f"  [cyan]next_run[/cyan]: {result.next_run.isoformat()}")


@app.command("next")
def next_runs(
    expression: str = typer.Argument(..., help="Five-field cron expression"),
    count: int = typer.Option(5, "--count", "-n", min=1, max=100),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List the next N firing times."""
    from blockflow.core.errors import CronValidationError
    from blockflow.core.scheduling import cron

    try:
        compiled = cron.validate(expression)
    except CronValidationError as e:
        fail(e.reason, code="VALIDATION")

    runs = []
    after = None
    for _ in range(count):
        after = cron.next_run(compiled, after)
        if after is None:
            break
        runs.append({"run": after.isoformat()})
    output_rows(runs, as_json=json_out, title=cron.describe(expression))
