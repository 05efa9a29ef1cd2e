"""
CLI layer for blockflow.

Provides a Typer application whose sub-commands delegate to the scheduling,
execution and orchestration packages. This package handles only terminal
transport: argument parsing, coloured output and table formatting.

Entry point::

    blockflow --help
"""

from blockflow.cli.app import app

__all__ = ["app"]
