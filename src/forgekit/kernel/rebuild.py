"""Lazy-rebuild decision: compare recorded dependency mtimes against live files.

Change detection is timestamp-only. An artifact is rebuilt when its output is
gone, when no detector recorded its inputs, or when a dependency file is gone
or has a live mtime strictly later than the recorded snapshot. Recorded
timestamps have whole-second precision, so live mtimes are truncated to the
second before comparing. Content changes that keep or rewind the mtime are not
detected; callers that know about such changes pass ``force=True``.
"""

from __future__ import annotations

import os
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from forgekit.kernel.models import (
    Artifact,
    ArtifactDependency,
    format_rfc3339,
    parse_rfc3339,
)


class RebuildAction(StrEnum):
    """Outcome of the lazy-rebuild decision."""

    REBUILD = "rebuild"
    SKIP = "skip"


class RebuildDecision(BaseModel):
    """Decision plus a reason suitable for build logs."""

    model_config = ConfigDict(frozen=True)

    action: RebuildAction
    reason: str = ""

    @property
    def needs_rebuild(self) -> bool:
        return self.action == RebuildAction.REBUILD


def _rebuild(reason: str) -> RebuildDecision:
    return RebuildDecision(action=RebuildAction.REBUILD, reason=reason)


def file_mtime(path: str | Path) -> datetime:
    """Return a file's modification time as aware UTC, truncated to seconds.

    Raises:
        OSError: If the file cannot be stat'ed.
    """
    mtime = os.stat(path).st_mtime
    return datetime.fromtimestamp(int(mtime), tz=UTC)


def file_dependency(path: str | Path) -> ArtifactDependency:
    """Snapshot a file's current mtime as a file dependency.

    Args:
        path: File path; made absolute.

    Raises:
        OSError: If the file cannot be stat'ed.
    """
    abs_path = os.path.abspath(path)
    return ArtifactDependency(
        file_path=abs_path, timestamp=format_rfc3339(file_mtime(abs_path))
    )


def dependency_changed(dep: ArtifactDependency) -> str | None:
    """Return why ``dep`` is stale, or None when it is unchanged."""
    try:
        recorded = parse_rfc3339(dep.timestamp)
    except ValueError:
        return f"dependency {dep.file_path} timestamp parse error"
    try:
        live = file_mtime(dep.file_path)
    except FileNotFoundError:
        return f"dependency file {dep.file_path} missing"
    except OSError as exc:
        return f"cannot access dependency file {dep.file_path}: {exc}"
    if live > recorded:
        return f"dependency {dep.file_path} modified"
    return None


def should_rebuild(previous: Artifact | None, *, force: bool = False) -> RebuildDecision:
    """Decide whether the artifact must be rebuilt.

    Args:
        previous: Artifact recorded by the last successful build, if any.
        force: Bypass the decision entirely (untracked inputs changed).

    Returns:
        REBUILD with a reason, or SKIP when the output still exists and every
        dependency recorded by a detector is unchanged.
    """
    if force:
        return _rebuild("force flag set")
    if previous is None:
        return _rebuild("no previous build")
    try:
        os.stat(previous.location)
    except FileNotFoundError:
        return _rebuild("artifact file missing")
    except OSError as exc:
        return _rebuild(f"cannot access artifact file: {exc}")
    if not previous.dependencies:
        return _rebuild("dependencies not tracked")
    if not previous.dependency_detector_engine:
        return _rebuild("dependency detector not configured")
    for dep in previous.dependencies:
        reason = dependency_changed(dep)
        if reason is not None:
            return _rebuild(reason)
    return RebuildDecision(action=RebuildAction.SKIP, reason="unchanged")
