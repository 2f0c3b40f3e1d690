"""
CLI layer for pipelinefox.

Provides a Typer application that delegates to the runner. This package
handles only terminal transport: argument parsing, coloured summaries,
and the mapping from outcomes to process exit codes.

Entry point::

    pipelinefox --help
"""

from pipelinefox.cli.app import app

__all__ = ["app"]
