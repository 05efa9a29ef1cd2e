"""
CLI utility helpers - output formatting and store access.
"""

from __future__ import annotations

import json
from dataclasses import asdict
from typing import Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from blockflow.core.errors import BlockflowError
from blockflow.core.settings import get_settings
from blockflow.core.storage import FileKeyValueStore, KeyValueStore, SQLiteKeyValueStore, create_store

console = Console()
err_console = Console(stderr=True)

SQLITE_SUFFIXES = (".db", ".sqlite", ".sqlite3")


# ── Store helper ─────────────────────────────────────────────────────────


def get_store(path: str | None = None) -> KeyValueStore:
    """Open the key-value store.

    An explicit path ending in ``.db``/``.sqlite`` opens SQLite, any other
    path a file store. Without a path the configured store is used.
    """
    if path is None:
        return create_store(get_settings())
    if path.endswith(SQLITE_SUFFIXES):
        return SQLiteKeyValueStore(path)
    return FileKeyValueStore(path)


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert dataclass / pydantic model / dict to plain dict."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def fail(message: str, code: str = "ERROR") -> None:
    """Print an error and exit with status 1."""
    err_console.print(f"[bold red]Error[/bold red] ({code}): {escape(message)}")
    raise typer.Exit(code=1)


def fail_from(error: BlockflowError) -> None:
    fail(error.message, code=error.category.value)


def output_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


def output_record(data: Any, *, as_json: bool = False, title: str = "") -> None:
    """Render a single record as JSON or key-value pairs."""
    record = _to_dict(data)
    if as_json:
        output_json(record)
        return
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in record.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")


def output_rows(
    rows: list[dict[str, Any]],
    *,
    as_json: bool = False,
    title: str = "",
) -> None:
    """Render a list of flat dicts as JSON or a Rich table."""
    if as_json:
        output_json(rows)
        return
    if not rows:
        console.print("[dim]No items.[/dim]")
        return

    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in rows[0]:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*("" if v is None else str(v) for v in row.values()))
    console.print(table)
