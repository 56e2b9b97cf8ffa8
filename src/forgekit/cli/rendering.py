"""Shared CLI plumbing: consoles, logging setup, error exit, Rich views."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from forgekit.config.forge_config import ForgeSettings, load_settings
from forgekit.engines.version import build_version
from forgekit.kernel.cleanup import CleanupReport
from forgekit.kernel.errors import ForgeError, InvocationError
from forgekit.kernel.models import TestReport

CONSOLE = Console()
ERR_CONSOLE = Console(stderr=True)
_LOGGING_CONFIGURED = False
_STDERR_TAIL_LINES = 20


def configure_logging(verbose: bool = False) -> None:
    """Configure Rich-backed logging on stderr once for CLI commands."""
    global _LOGGING_CONFIGURED  # noqa: PLW0603
    if _LOGGING_CONFIGURED:
        return
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[
            RichHandler(console=ERR_CONSOLE, show_path=False, rich_tracebacks=True)
        ],
    )
    _LOGGING_CONFIGURED = True


def load_cli_settings(root: Path) -> ForgeSettings:
    """Load settings for a CLI invocation rooted at ``root``."""
    return load_settings(root, build_version=build_version(cwd=root))


def fail(exc: Exception) -> NoReturn:
    """Print a user-facing error on stderr and exit 1."""
    code = exc.code if isinstance(exc, ForgeError) else "config_error"
    ERR_CONSOLE.print(
        f"[bold red]Error ({code}):[/bold red] {escape(str(exc))}",
        highlight=False,
        soft_wrap=True,
    )
    if isinstance(exc, InvocationError) and exc.stderr:
        tail = "\n".join(exc.stderr.splitlines()[-_STDERR_TAIL_LINES:])
        ERR_CONSOLE.print(
            f"[dim]engine stderr:[/dim]\n{escape(tail)}", highlight=False, soft_wrap=True
        )
    raise typer.Exit(code=1) from exc


def echo_json(payload: Any) -> None:
    """Write machine-readable JSON to stdout."""
    typer.echo(json.dumps(payload, indent=2))


def render_test_reports(reports: list[TestReport]) -> None:
    """Render test reports as a Rich table."""
    table = Table(title="Test Reports", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="bold", no_wrap=True)
    table.add_column("Stage")
    table.add_column("Status")
    table.add_column("Tests", justify="right")
    table.add_column("Coverage", justify="right")
    table.add_column("Started")
    for report in reports:
        status_style = "green" if report.status == "passed" else "red"
        stats = report.test_stats
        table.add_row(
            report.id,
            report.stage,
            f"[{status_style}]{report.status}[/{status_style}]",
            f"{stats.passed}/{stats.total}",
            f"{report.coverage.percentage:.1f}%",
            report.start_time.strftime("%Y-%m-%d %H:%M:%S"),
        )
    CONSOLE.print(table)


def render_cleanup(report: CleanupReport, title: str) -> None:
    """Render cleanup outcomes, one row per target."""
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Target", style="bold")
    table.add_column("Outcome")
    table.add_column("Error")
    for result in report.results:
        table.add_row(result.target, str(result.outcome), result.error or "")
    CONSOLE.print(table)
