"""End-to-end build and test runs against real engine subprocesses."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import pytest

from forgekit.config.forge_config import ForgeSettings
from forgekit.kernel.artifact_store import ArtifactStore
from forgekit.kernel.errors import InvocationError
from forgekit.orchestrate.build import run_build
from forgekit.orchestrate.test_runner import run_test_stage
from tests.helpers import fake_engine_alias, set_mtime

pytestmark = pytest.mark.usefixtures("engine_pythonpath")

WriteConfig = Callable[[dict[str, object]], ForgeSettings]


@pytest.fixture
def source_file(project_root: Path) -> Path:
    source = project_root / "main.go"
    source.write_text("package main\n", encoding="utf-8")
    set_mtime(source, datetime(2025, 1, 1, 12, 0, tzinfo=UTC))
    return source


@pytest.mark.integration
def test_build_records_artifacts_then_skips(
    write_config: WriteConfig, source_file: Path
) -> None:
    """A second build with untouched inputs invokes no engine."""
    # Arrange
    settings = write_config(
        {
            "engine_timeout_s": 60,
            "engines": [fake_engine_alias("fake", "builder")],
            "build": [
                {
                    "name": "app",
                    "engine": "alias://fake",
                    "spec": {"inputs": [str(source_file)]},
                },
                {
                    "name": "tool",
                    "engine": "alias://fake",
                    "spec": {"inputs": [str(source_file)]},
                },
            ],
        }
    )

    # Act
    first = run_build(settings)
    second = run_build(settings)

    # Assert
    assert sorted(first.built_names) == ["app", "tool"]
    assert first.rebuilt_reasons["app"] == "no previous build"
    assert second.built == []
    assert second.skipped == {"app": "unchanged", "tool": "unchanged"}
    snapshot = ArtifactStore(settings.store).read()
    assert Path(snapshot.artifacts["app"].location).read_text(encoding="utf-8") == (
        "built app\n"
    )


@pytest.mark.integration
def test_touched_input_triggers_rebuild(
    write_config: WriteConfig, source_file: Path
) -> None:
    # Arrange
    settings = write_config(
        {
            "engines": [fake_engine_alias("fake", "builder")],
            "build": [
                {
                    "name": "app",
                    "engine": "alias://fake",
                    "spec": {"inputs": [str(source_file)]},
                }
            ],
        }
    )
    run_build(settings)
    set_mtime(source_file, datetime(2025, 6, 1, 12, 0, tzinfo=UTC))

    # Act
    summary = run_build(settings)

    # Assert
    assert summary.built_names == ["app"]
    assert summary.rebuilt_reasons["app"] == f"dependency {source_file} modified"


@pytest.mark.integration
def test_failing_group_keeps_earlier_groups(
    write_config: WriteConfig, source_file: Path
) -> None:
    # Arrange
    settings = write_config(
        {
            "engines": [
                fake_engine_alias("good", "builder"),
                fake_engine_alias("bad", "fail"),
            ],
            "build": [
                {
                    "name": "app",
                    "engine": "alias://good",
                    "spec": {"inputs": [str(source_file)]},
                },
                {"name": "broken", "engine": "alias://bad"},
            ],
        }
    )

    # Act
    with pytest.raises(InvocationError) as excinfo:
        run_build(settings)

    # Assert
    assert "compiler exploded" in excinfo.value.stderr
    snapshot = ArtifactStore(settings.store).read()
    assert set(snapshot.artifacts) == {"app"}


@pytest.mark.integration
def test_stage_with_two_runners_stores_merged_report(
    write_config: WriteConfig,
) -> None:
    # Arrange
    settings = write_config(
        {
            "engines": [
                fake_engine_alias("runner", "runner"),
                {
                    "name": "both",
                    "kind": "test-runner",
                    "steps": [
                        {"engine": "alias://runner", "spec": {"tag": "a"}},
                        {
                            "engine": "alias://runner",
                            "spec": {"tag": "b", "failed": 1},
                        },
                    ],
                },
            ],
            "test": [{"name": "unit", "runner": "alias://both", "spec": {"passed": 2}}],
        }
    )

    # Act
    report = run_test_stage(settings, "unit", report_id="test-unit-20251105-abcd1234")

    # Assert
    assert report.id == "test-unit-20251105-abcd1234"
    assert report.status == "failed"
    assert report.test_stats.total == 5
    assert report.test_stats.passed == 4
    assert report.duration == pytest.approx(3.0)
    assert [Path(p).name for p in report.artifact_files] == [
        "junit-a.xml",
        "junit-b.xml",
    ]
    snapshot = ArtifactStore(settings.store).read()
    assert snapshot.test_reports[report.id].status == "failed"
