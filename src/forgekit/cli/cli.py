"""Typer CLI entrypoint for forge."""

from __future__ import annotations

import signal
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from types import FrameType
from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

from forgekit.cli.rendering import (
    CONSOLE,
    configure_logging,
    echo_json,
    fail,
    load_cli_settings,
    render_cleanup,
)
from forgekit.cli.test_report import app as test_report_app
from forgekit.config.forge_config import ForgeConfigError
from forgekit.engines.caller import CancelToken
from forgekit.engines.resolver import EngineResolver, normalize_engine_uri
from forgekit.kernel.errors import ForgeError
from forgekit.orchestrate.build import run_build
from forgekit.orchestrate.test_runner import clear_test_environments, run_test_stage

app = typer.Typer(help="forge: lazy, engine-based builds and tests.", no_args_is_help=True)
engine_app = typer.Typer(help="Engine reference utilities.", no_args_is_help=True)
test_env_app = typer.Typer(help="Test environment maintenance.", no_args_is_help=True)
app.add_typer(engine_app, name="engine")
app.add_typer(test_env_app, name="test-env")
app.add_typer(test_report_app, name="test-report")


@contextmanager
def _cancel_on_sigint() -> Iterator[CancelToken]:
    """Turn Ctrl-C into cancellation of in-flight engine calls."""
    token = CancelToken()
    previous = signal.getsignal(signal.SIGINT)

    def _handler(signum: int, frame: FrameType | None) -> None:
        del signum, frame
        token.cancel()

    try:
        signal.signal(signal.SIGINT, _handler)
    except ValueError:
        # Not on the main thread (e.g. embedded runners); keep default handling.
        yield token
        return
    try:
        yield token
    finally:
        signal.signal(signal.SIGINT, previous)


@app.callback()
def _main(
    ctx: typer.Context,
    root: Annotated[
        Path,
        typer.Option(
            "--root", file_okay=False, dir_okay=True, help="Project root directory."
        ),
    ] = Path("."),
    verbose: Annotated[bool, typer.Option("--verbose", "-v")] = False,
) -> None:
    configure_logging(verbose)
    ctx.obj = root


@app.command("build")
def build_command(
    ctx: typer.Context,
    name: Annotated[
        str | None, typer.Argument(help="Build only this artifact.")
    ] = None,
    force: Annotated[
        bool, typer.Option("--force", help="Rebuild even when up to date.")
    ] = False,
) -> None:
    """Build stale artifacts declared in forge.yaml."""
    try:
        settings = load_cli_settings(ctx.obj)
        with _cancel_on_sigint() as cancel:
            summary = run_build(
                settings, artifact_name=name, force=force, cancel=cancel
            )
    except (ForgeError, ForgeConfigError) as exc:
        fail(exc)

    table = Table(title="Build", show_header=True, header_style="bold cyan")
    table.add_column("Artifact", style="bold")
    table.add_column("Result")
    table.add_column("Reason")
    for artifact in summary.built:
        reason = summary.rebuilt_reasons.get(artifact.name, "")
        table.add_row(artifact.name, "[green]built[/green]", reason)
    for skipped, reason in summary.skipped.items():
        table.add_row(skipped, "[dim]skipped[/dim]", reason)
    CONSOLE.print(table)


@app.command("test")
def test_command(
    ctx: typer.Context,
    stage: Annotated[str, typer.Argument(help="Test stage name.")],
) -> None:
    """Run a test stage and record its report; exit 1 when tests fail."""
    try:
        settings = load_cli_settings(ctx.obj)
        with _cancel_on_sigint() as cancel:
            report = run_test_stage(settings, stage, cancel=cancel)
    except (ForgeError, ForgeConfigError) as exc:
        fail(exc)

    style = "green" if report.status == "passed" else "red"
    stats = report.test_stats
    CONSOLE.print(
        Panel(
            (
                f"Report: {report.id}\n"
                f"Tests: {stats.passed} passed, {stats.failed} failed, "
                f"{stats.skipped} skipped of {stats.total}\n"
                f"Duration: {report.duration:.2f}s"
            ),
            title=f"Stage {stage}: {report.status}",
            border_style=style,
            expand=True,
        )
    )
    if report.status != "passed":
        raise typer.Exit(code=1)


@engine_app.command("resolve")
def engine_resolve_command(
    ctx: typer.Context,
    uri: Annotated[str, typer.Argument(help="Engine reference, e.g. pkg://go-build.")],
    version: Annotated[
        str | None, typer.Option("--version", help="Explicit engine version.")
    ] = None,
) -> None:
    """Print the command line an engine reference resolves to, as JSON."""
    try:
        settings = load_cli_settings(ctx.obj)
        normalized, _ = normalize_engine_uri(uri)
        resolved = EngineResolver(settings.engines).resolve(normalized, version)
    except (ForgeError, ForgeConfigError) as exc:
        fail(exc)
    echo_json(
        {"uri": resolved.uri, "command": resolved.command, "args": list(resolved.args)}
    )


@test_env_app.command("clear")
def test_env_clear_command(
    ctx: typer.Context,
    stage: Annotated[str, typer.Option("--stage", help="Only this stage.")] = "",
) -> None:
    """Delete leftover test environments; exit 1 if anything could not be removed."""
    try:
        report = clear_test_environments(load_cli_settings(ctx.obj), stage)
    except (ForgeError, ForgeConfigError) as exc:
        fail(exc)
    render_cleanup(report, "Test environments")
    if not report.ok:
        raise typer.Exit(code=1)


def main() -> None:
    app()
