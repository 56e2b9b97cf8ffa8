"""Single place for subprocess creation.

Uses shell=False and list args. All bandit suppressions live here.
"""

from __future__ import annotations

import os
import subprocess  # nosec B404 - used with shell=False, list args
from collections.abc import Mapping, Sequence
from pathlib import Path

# Re-export so callers can catch/annotate without importing subprocess elsewhere.
TimeoutExpired = subprocess.TimeoutExpired
CompletedProcess = subprocess.CompletedProcess
Popen = subprocess.Popen


def inherited_env(overrides: Mapping[str, str] | None = None) -> dict[str, str]:
    """Copy of the parent environment with caller overrides applied.

    Engines inherit the orchestrator environment; toolchains need PATH and HOME.

    Args:
        overrides: Extra variables layered on top.

    Returns:
        Fresh environment dict.
    """
    env = dict(os.environ)
    if overrides:
        env.update(overrides)
    return env


def run_subprocess(
    argv: Sequence[str],
    *,
    cwd: str | Path | None = None,
    env: dict[str, str] | None = None,
    timeout: float | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run a short-lived subprocess and capture its output.

    Returncode is not checked; caller inspects result.returncode.

    Args:
        argv: Command and arguments as a list (no shell parsing).
        cwd: Working directory for the subprocess.
        env: Environment dict; defaults to inherited_env().
        timeout: Optional timeout in seconds.

    Returns:
        CompletedProcess with stdout, stderr, returncode.
    """
    return subprocess.run(  # noqa: PLW1510  # nosec B603 - shell=False, list args
        list(argv),
        cwd=str(cwd) if cwd is not None else None,
        env=env or inherited_env(),
        capture_output=True,
        text=True,
        timeout=timeout,
        shell=False,
    )


def spawn_piped(
    argv: Sequence[str],
    *,
    cwd: str | Path | None = None,
    env: dict[str, str] | None = None,
) -> subprocess.Popen[str]:
    """Start a long-lived subprocess with line-buffered text pipes on all streams.

    Args:
        argv: Command and arguments as a list (no shell parsing).
        cwd: Working directory for the subprocess.
        env: Environment dict; defaults to inherited_env().

    Returns:
        Running Popen handle.

    Raises:
        OSError: If the executable cannot be started.
    """
    return subprocess.Popen(  # nosec B603 - shell=False, list args
        list(argv),
        cwd=str(cwd) if cwd is not None else None,
        env=env or inherited_env(),
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        encoding="utf-8",
        errors="replace",
        bufsize=1,
        shell=False,
    )
