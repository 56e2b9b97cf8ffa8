"""Unit tests for the test-report command line."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from forgekit.cli.test_report import app
from forgekit.kernel.artifact_store import ArtifactStore
from forgekit.kernel.errors import StoreLockTimeoutError
from tests.helpers import make_report

_RUNNER = CliRunner()


def _invoke(project_root: Path, *args: str):
    return _RUNNER.invoke(app, ["--root", str(project_root), *args])


@pytest.mark.unit
def test_get_prints_report_json(project_root: Path, store: ArtifactStore) -> None:
    # Arrange
    store.put_test_report(make_report("test-unit-20251105-001"))

    # Act
    result = _invoke(project_root, "get", "test-unit-20251105-001")

    # Assert
    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["id"] == "test-unit-20251105-001"
    assert payload["testStats"]["total"] == 3
    assert payload["startTime"] == "2025-11-05T09:00:00Z"


@pytest.mark.unit
def test_get_missing_report_exits_1(project_root: Path, store: ArtifactStore) -> None:
    # Arrange
    store.put_test_report(make_report("r1"))

    # Act
    result = _invoke(project_root, "get", "nope")

    # Assert
    assert result.exit_code == 1
    assert result.stdout == ""
    assert "test report not found" in result.stderr


@pytest.mark.unit
def test_get_without_store_exits_1(project_root: Path) -> None:
    result = _invoke(project_root, "get", "r1")

    assert result.exit_code == 1
    assert "store_not_found" in result.stderr


@pytest.mark.unit
def test_corrupt_store_exits_1(project_root: Path, store: ArtifactStore) -> None:
    # Arrange
    store.path.parent.mkdir(parents=True)
    store.path.write_text("][", encoding="utf-8")

    # Act
    result = _invoke(project_root, "list")

    # Assert
    assert result.exit_code == 1
    assert "store_corrupt" in result.stderr


@pytest.mark.unit
def test_list_json_filters_by_stage(project_root: Path, store: ArtifactStore) -> None:
    # Arrange
    store.put_test_report(make_report("u1", "unit"))
    store.put_test_report(make_report("e1", "e2e"))

    # Act
    result = _invoke(project_root, "list", "--stage", "unit", "--json")

    # Assert
    assert result.exit_code == 0
    assert [r["id"] for r in json.loads(result.stdout)] == ["u1"]


@pytest.mark.unit
def test_list_renders_table(project_root: Path, store: ArtifactStore) -> None:
    # Arrange
    store.put_test_report(make_report("u1", "unit"))

    # Act
    result = _invoke(project_root, "list")

    # Assert
    assert result.exit_code == 0
    assert "Test Reports" in result.stdout
    assert "u1" in result.stdout


@pytest.mark.unit
def test_list_on_absent_store_is_empty(project_root: Path) -> None:
    result = _invoke(project_root, "list", "--json")

    assert result.exit_code == 0
    assert json.loads(result.stdout) == []


@pytest.mark.unit
def test_delete_prints_result_and_removes_files(
    project_root: Path, store: ArtifactStore, tmp_path: Path
) -> None:
    # Arrange
    present = tmp_path / "b.xml"
    present.write_text("<testsuite/>", encoding="utf-8")
    store.put_test_report(
        make_report(
            "test-unit-20251105-001",
            artifact_files=[str(tmp_path / "a.xml"), str(present)],
        )
    )

    # Act
    result = _invoke(project_root, "delete", "test-unit-20251105-001")

    # Assert
    assert result.exit_code == 0
    assert json.loads(result.stdout) == {
        "id": "test-unit-20251105-001",
        "success": True,
        "deletedFiles": [str(present)],
        "failedFiles": [],
        "errorMessage": "",
        "partiallyDeleted": False,
    }


@pytest.mark.unit
def test_delete_unsuccessful_exits_1(
    project_root: Path, store: ArtifactStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A result with success=false is still printed, then exit code 1."""
    # Arrange
    store.put_test_report(make_report("r1"))

    def _busy(self: ArtifactStore, mutation: object) -> None:
        raise StoreLockTimeoutError("store busy")

    monkeypatch.setattr(ArtifactStore, "atomic_update", _busy)

    # Act
    result = _invoke(project_root, "delete", "r1")

    # Assert
    assert result.exit_code == 1
    payload = json.loads(result.stdout)
    assert payload["success"] is False
    assert "store busy" in payload["errorMessage"]
