"""
Root Typer application for the pipelinefox CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from pipelinefox import __version__
from pipelinefox.cli.doctor import doctor_command
from pipelinefox.cli.jobs import jobs_command
from pipelinefox.cli.run import run_command
from pipelinefox.logging import configure_logging

app = Typer(
    name="pipelinefox",
    help="pipelinefox — run your CI pipeline locally, one container per job.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"pipelinefox {__version__}")
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
    log_level: str | None = typer.Option(
        None, "--log-level", "-l", help="DEBUG, INFO, WARNING or ERROR (logs go to stderr).",
    ),
    log_format: str | None = typer.Option(None, "--log-format", help="console or json."),
) -> None:
    """pipelinefox CLI — validate a pipeline before you push it."""
    if log_level is not None and log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR"):
        raise typer.BadParameter(f"unknown log level {log_level!r}", param_hint="--log-level")
    if log_format is not None and log_format not in ("console", "json"):
        raise typer.BadParameter(f"unknown log format {log_format!r}", param_hint="--log-format")
    configure_logging(
        level=log_level.upper() if log_level else None,  # type: ignore[arg-type]
        format=log_format,  # type: ignore[arg-type]
        force=True,
    )


# ── Command registration ─────────────────────────────────────────────────

app.command("run")(run_command)
app.command("jobs")(jobs_command)
app.command("doctor")(doctor_command)
