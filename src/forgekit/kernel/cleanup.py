"""Best-effort filesystem cleanup with one recorded outcome per action."""

from __future__ import annotations

import shutil
from collections.abc import Iterable
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class CleanupOutcome(StrEnum):
    """What happened to one cleanup target."""

    REMOVED = "removed"
    ALREADY_ABSENT = "already_absent"
    FAILED = "failed"


class CleanupResult(BaseModel):
    """Outcome of removing one path."""

    model_config = ConfigDict(frozen=True)

    target: str
    outcome: CleanupOutcome
    error: str | None = None


class CleanupReport(BaseModel):
    """Aggregated, non-fatal outcome of a cleanup loop."""

    results: list[CleanupResult] = Field(default_factory=list)

    @property
    def removed(self) -> list[str]:
        return [r.target for r in self.results if r.outcome == CleanupOutcome.REMOVED]

    @property
    def already_absent(self) -> list[str]:
        return [
            r.target for r in self.results if r.outcome == CleanupOutcome.ALREADY_ABSENT
        ]

    @property
    def failed(self) -> list[str]:
        return [r.target for r in self.results if r.outcome == CleanupOutcome.FAILED]

    @property
    def ok(self) -> bool:
        """True when nothing failed (absent targets count as cleaned)."""
        return not self.failed

    def add(self, result: CleanupResult) -> None:
        self.results.append(result)


def remove_path(target: str | Path) -> CleanupResult:
    """Remove a file, symlink, or directory tree; never raises.

    Args:
        target: Path to remove.

    Returns:
        CleanupResult describing what happened.
    """
    path = Path(target)
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
    except FileNotFoundError:
        return CleanupResult(target=str(target), outcome=CleanupOutcome.ALREADY_ABSENT)
    except OSError as exc:
        return CleanupResult(
            target=str(target), outcome=CleanupOutcome.FAILED, error=str(exc)
        )
    return CleanupResult(target=str(target), outcome=CleanupOutcome.REMOVED)


def remove_paths(targets: Iterable[str | Path]) -> CleanupReport:
    """Remove each target in order, recording every outcome."""
    report = CleanupReport()
    for target in targets:
        report.add(remove_path(target))
    return report
