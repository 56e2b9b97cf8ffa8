"""Per-run working directories handed to engines (tmpDir, buildDir, rootDir)."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from forgekit.kernel.cleanup import CleanupReport, remove_paths
from forgekit.kernel.paths import BUILD_DIR, get_tmp_root

_LOGGER = logging.getLogger(__name__)

KEEP_TMP_DIRS = 10


class RunDirs(BaseModel):
    model_config = ConfigDict(frozen=True)

    tmp_dir: Path
    build_dir: Path
    root_dir: Path


def create_run_dirs(project_root: Path) -> RunDirs:
    """Create a fresh tmp dir under .forge/tmp and ensure build/ exists."""
    stamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    tmp_dir = get_tmp_root(project_root) / f"{stamp}-{uuid.uuid4().hex[:8]}"
    tmp_dir.mkdir(parents=True, exist_ok=False)
    build_dir = project_root / BUILD_DIR
    build_dir.mkdir(parents=True, exist_ok=True)
    return RunDirs(tmp_dir=tmp_dir, build_dir=build_dir, root_dir=project_root)


def prune_tmp_dirs(project_root: Path, keep: int = KEEP_TMP_DIRS) -> CleanupReport:
    """Remove all but the newest ``keep`` run tmp dirs; failures are logged only."""
    tmp_root = get_tmp_root(project_root)
    if not tmp_root.is_dir():
        return CleanupReport()
    runs = sorted(
        (p for p in tmp_root.iterdir() if p.is_dir()),
        key=lambda p: p.name,
        reverse=True,
    )
    report = remove_paths(runs[keep:])
    for target in report.failed:
        _LOGGER.warning("could not remove old tmp dir %s", target)
    return report
