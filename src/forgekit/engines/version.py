"""Build-time version of the running forgekit distribution."""

from __future__ import annotations

import logging
from importlib import metadata
from pathlib import Path

from forgekit.engines.run_cmd import TimeoutExpired, run_subprocess

_LOGGER = logging.getLogger(__name__)

_GIT_TIMEOUT_S = 5.0


def git_describe(cwd: Path | None = None) -> str | None:
    """Return ``git describe --tags --always --dirty`` for cwd, or None."""
    try:
        result = run_subprocess(
            ["git", "describe", "--tags", "--always", "--dirty"],
            cwd=cwd,
            timeout=_GIT_TIMEOUT_S,
        )
    except (OSError, TimeoutExpired) as exc:
        _LOGGER.debug("git describe unavailable: %s", exc)
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def build_version(distribution: str = "forgekit", cwd: Path | None = None) -> str | None:
    """Installed distribution version, else the git description of cwd.

    Args:
        distribution: Distribution name on the package index.
        cwd: Checkout consulted when the distribution is not installed.

    Returns:
        Version string, or None when neither source is available.
    """
    try:
        return metadata.version(distribution)
    except metadata.PackageNotFoundError:
        return git_describe(cwd)
