"""Shared test helpers: fake engine wiring and record builders."""

from __future__ import annotations

import os
import sys
from datetime import UTC, datetime
from pathlib import Path

from forgekit.config.forge_config import EngineAlias
from forgekit.kernel.models import Artifact, TestReport, TestStats, format_rfc3339
from forgekit.kernel.rebuild import file_dependency

FIXTURES_DIR = Path(__file__).parent / "fixtures"
FAKE_ENGINE = FIXTURES_DIR / "fake_engine.py"
SRC_DIR = Path(__file__).resolve().parents[1] / "src"


def fake_engine_alias(name: str, mode: str) -> dict[str, object]:
    """forge.yaml engines[] entry running the fake engine in ``mode``."""
    return {
        "name": name,
        "command": sys.executable,
        "args": [str(FAKE_ENGINE), mode],
    }


def fake_engine(name: str, mode: str) -> EngineAlias:
    return EngineAlias.model_validate(fake_engine_alias(name, mode))


def set_mtime(path: Path, when: datetime) -> None:
    """Set a file's atime and mtime to ``when``."""
    stamp = when.timestamp()
    os.utime(path, (stamp, stamp))


def make_artifact(
    name: str, *inputs: Path, detector: str = "alias://detect"
) -> Artifact:
    """Artifact whose dependencies snapshot the current mtimes of ``inputs``.

    The output file is written next to the first input so the artifact counts
    as present.
    """
    location = f"/build/bin/{name}"
    if inputs:
        output = inputs[0].parent / f"{name}.out"
        output.write_text(f"built {name}\n", encoding="utf-8")
        location = str(output)
    return Artifact(
        name=name,
        type="binary",
        location=location,
        timestamp=format_rfc3339(datetime(2025, 11, 23, 10, 0, tzinfo=UTC)),
        dependencies=[file_dependency(p) for p in inputs],
        dependency_detector_engine=detector,
    )


def make_report(
    report_id: str,
    stage: str = "unit",
    *,
    status: str = "passed",
    artifact_files: list[str] | None = None,
    start: datetime | None = None,
) -> TestReport:
    return TestReport(
        id=report_id,
        stage=stage,
        status=status,
        start_time=start or datetime(2025, 11, 5, 9, 0, tzinfo=UTC),
        duration=2.0,
        test_stats=TestStats(total=3, passed=3),
        artifact_files=artifact_files or [],
    )
