"""
Root Typer application for the blockflow CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

app = Typer(
    name="blockflow",
    help="blockflow - scheduled execution of content-generation workflows.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from blockflow import __version__

        typer.echo(f"blockflow {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override BLOCKFLOW_LOG_LEVEL."),
) -> None:
    """blockflow CLI - validate cron, manage schedules, inspect runs."""
    from blockflow.core.logging import configure_logging
    from blockflow.core.settings import get_settings

    settings = get_settings()
    configure_logging(
        level=log_level or settings.log_level,
        json_format=settings.log_format == "json",
    )


# ── Sub-command registration ─────────────────────────────────────────────

from blockflow.cli.cron import app as cron_app  # noqa: E402
from blockflow.cli.runs import app as runs_app  # noqa: E402
from blockflow.cli.schedule import app as sched_app  # noqa: E402
from blockflow.cli.workflow import app as wf_app  # noqa: E402

app.add_typer(cron_app, name="cron", help="Cron expression tools.")
app.add_typer(wf_app, name="workflow", help="Workflow definitions.")
app.add_typer(sched_app, name="schedule", help="Schedule management.")
app.add_typer(runs_app, name="runs", help="Execution state and recovery.")
