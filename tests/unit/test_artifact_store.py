"""Unit tests for the shared artifact store."""

from __future__ import annotations

import json
import threading
from pathlib import Path

import pytest
from filelock import FileLock

from forgekit.kernel.artifact_store import (
    ArtifactStore,
    StoreSettings,
    get_artifact,
    get_artifacts_by_type,
    get_test_report,
    list_test_reports,
    read_or_create_store,
    read_store,
)
from forgekit.kernel.cleanup import CleanupOutcome, CleanupReport, CleanupResult
from forgekit.kernel.errors import (
    ArtifactNotFoundError,
    ConcurrentMutationConflict,
    StoreCorruptionError,
    StoreLockTimeoutError,
    StoreNotFoundError,
    TestEnvironmentNotFoundError,
    TestReportNotFoundError,
)
from forgekit.kernel.models import (
    Artifact,
    ArtifactDependency,
    StoreDocument,
    TestEnvironment,
    TestEnvironmentStatus,
)
from forgekit.kernel.paths import get_lock_path
from tests.helpers import make_report


def _artifact(name: str, artifact_type: str = "binary") -> Artifact:
    return Artifact(
        name=name,
        type=artifact_type,
        location=f"/build/bin/{name}",
        timestamp="2025-11-23T10:00:00Z",
        version="v1.2.3",
        dependencies=[
            ArtifactDependency(
                file_path=f"/src/{name}/main.go", timestamp="2025-11-23T09:00:00Z"
            )
        ],
        dependency_detector_engine="pkg://go-dependency-detector",
    )


@pytest.mark.unit
def test_absent_store_is_not_found_and_reads_as_empty(store: ArtifactStore) -> None:
    """Absent file is StoreNotFoundError for read, empty for read_or_create."""
    # Act / Assert
    with pytest.raises(StoreNotFoundError):
        store.read()
    snapshot = store.read_or_create()
    assert snapshot.artifacts == {}
    assert snapshot.test_reports == {}
    assert not store.path.exists()


@pytest.mark.unit
def test_corrupt_store_is_distinct_from_absent(store: ArtifactStore) -> None:
    """Unparseable bytes raise StoreCorruptionError, never an empty store."""
    # Arrange
    store.path.parent.mkdir(parents=True)
    store.path.write_text("{not json", encoding="utf-8")

    # Act / Assert
    with pytest.raises(StoreCorruptionError):
        read_store(store.path)
    with pytest.raises(StoreCorruptionError):
        read_or_create_store(store.path)
    with pytest.raises(StoreCorruptionError):
        store.put_artifact(_artifact("app"))


@pytest.mark.unit
def test_invalid_schema_is_corruption(store: ArtifactStore) -> None:
    # Arrange - artifact missing its required location
    store.path.parent.mkdir(parents=True)
    store.path.write_text(
        json.dumps({"artifacts": {"app": {"name": "app", "type": "binary"}}}),
        encoding="utf-8",
    )

    # Act / Assert
    with pytest.raises(StoreCorruptionError):
        store.read()


@pytest.mark.unit
def test_artifact_round_trips_with_camel_case_keys(store: ArtifactStore) -> None:
    """Committed artifacts read back field for field; file keys are camelCase."""
    # Arrange
    artifact = _artifact("app")

    # Act
    store.put_artifact(artifact)
    snapshot = store.read()

    # Assert
    assert get_artifact(snapshot, "app") == artifact
    raw = json.loads(store.path.read_text(encoding="utf-8"))
    stored = raw["artifacts"]["app"]
    assert stored["dependencyDetectorEngine"] == "pkg://go-dependency-detector"
    assert stored["dependencies"][0]["filePath"] == "/src/app/main.go"
    assert stored["timestamp"] == "2025-11-23T10:00:00Z"
    assert "lastUpdated" in raw
    assert raw["version"] == "1.0"


@pytest.mark.unit
def test_put_replaces_artifact_by_name(store: ArtifactStore) -> None:
    # Arrange
    store.put_artifact(_artifact("app"))
    newer = _artifact("app").model_copy(update={"version": "v2.0.0"})

    # Act
    store.put_artifact(newer)

    # Assert
    snapshot = store.read()
    assert len(snapshot.artifacts) == 1
    assert get_artifact(snapshot, "app").version == "v2.0.0"


@pytest.mark.unit
def test_get_helpers(store: ArtifactStore) -> None:
    # Arrange
    store.put_artifacts(
        [_artifact("app"), _artifact("img", "container"), _artifact("cli")]
    )
    snapshot = store.read()

    # Act / Assert
    assert [a.name for a in get_artifacts_by_type(snapshot, "binary")] == ["app", "cli"]
    with pytest.raises(ArtifactNotFoundError):
        get_artifact(snapshot, "missing")
    with pytest.raises(TestReportNotFoundError):
        get_test_report(snapshot, "missing")


@pytest.mark.unit
def test_test_reports_list_by_stage_and_keep_created_at(store: ArtifactStore) -> None:
    """created_at is set on first insert only; updated_at changes each time."""
    # Arrange
    store.put_test_report(make_report("test-unit-1", "unit"))
    store.put_test_report(make_report("test-e2e-1", "e2e"))
    first = get_test_report(store.read(), "test-unit-1")

    # Act
    store.put_test_report(first.model_copy(update={"duration": 9.0}))
    second = get_test_report(store.read(), "test-unit-1")

    # Assert
    assert [r.id for r in list_test_reports(store.read(), "unit")] == ["test-unit-1"]
    assert len(list_test_reports(store.read())) == 2
    assert second.created_at == first.created_at
    assert second.duration == 9.0
    assert second.updated_at is not None


@pytest.mark.unit
def test_replacing_report_from_fresh_record_keeps_created_at(
    store: ArtifactStore,
) -> None:
    """A re-put report without created_at inherits the stored one."""
    # Arrange
    store.put_test_report(make_report("test-unit-1"))
    first = get_test_report(store.read(), "test-unit-1")

    # Act
    store.put_test_report(make_report("test-unit-1", status="failed"))
    second = get_test_report(store.read(), "test-unit-1")

    # Assert
    assert second.status == "failed"
    assert second.created_at == first.created_at


@pytest.mark.unit
def test_concurrent_updates_lose_nothing(store_settings: StoreSettings) -> None:
    """Parallel writers each add a distinct artifact; every one survives."""
    # Arrange
    errors: list[Exception] = []

    def _writer(index: int) -> None:
        try:
            ArtifactStore(store_settings).put_artifact(_artifact(f"app-{index}"))
        except Exception as exc:  # noqa: BLE001 - collected for the assertion
            errors.append(exc)

    threads = [threading.Thread(target=_writer, args=(i,)) for i in range(8)]

    # Act
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    # Assert
    assert errors == []
    names = set(ArtifactStore(store_settings).read().artifacts)
    assert names == {f"app-{i}" for i in range(8)}


@pytest.mark.unit
def test_stale_snapshot_is_retried_not_overwritten(store: ArtifactStore) -> None:
    """A write that bypasses the lock mid-mutation forces a retry on fresh data."""
    # Arrange
    store.put_artifact(_artifact("existing"))
    calls: list[int] = []

    def _mutation(doc: StoreDocument) -> None:
        calls.append(len(doc.artifacts))
        if len(calls) == 1:
            sneaky = StoreDocument.model_validate(
                json.loads(store.path.read_text(encoding="utf-8"))
            )
            sneaky.artifacts["sneaky"] = _artifact("sneaky")
            store.path.write_text(json.dumps(sneaky.to_wire()), encoding="utf-8")
        doc.artifacts["mine"] = _artifact("mine")

    # Act
    store.atomic_update(_mutation)

    # Assert
    assert calls == [1, 2]
    assert set(store.read().artifacts) == {"existing", "sneaky", "mine"}


@pytest.mark.unit
def test_conflict_after_exhausting_attempts(store_settings: StoreSettings) -> None:
    # Arrange
    settings = store_settings.model_copy(update={"max_commit_attempts": 3})
    store = ArtifactStore(settings)
    store.put_artifact(_artifact("existing"))
    attempts: list[int] = []

    def _always_stale(doc: StoreDocument) -> None:
        attempts.append(1)
        store.path.write_text(
            json.dumps({"artifacts": {}, "n": len(attempts)}), encoding="utf-8"
        )

    # Act / Assert
    with pytest.raises(ConcurrentMutationConflict):
        store.atomic_update(_always_stale)
    assert len(attempts) == 3


@pytest.mark.unit
def test_mutation_error_writes_nothing(store: ArtifactStore) -> None:
    # Arrange
    store.put_artifact(_artifact("app"))
    before = store.path.read_bytes()

    def _boom(doc: StoreDocument) -> None:
        doc.artifacts.clear()
        raise ValueError("boom")

    # Act / Assert
    with pytest.raises(ValueError, match="boom"):
        store.atomic_update(_boom)
    assert store.path.read_bytes() == before


@pytest.mark.unit
def test_lock_timeout_fails_loudly(store_settings: StoreSettings) -> None:
    """A held lock produces StoreLockTimeoutError, not a silent skip."""
    # Arrange
    settings = store_settings.model_copy(update={"lock_timeout_s": 0.2})
    store = ArtifactStore(settings)
    lock_path = get_lock_path(settings.path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    holder = FileLock(str(lock_path))
    held = threading.Event()
    release = threading.Event()

    def _hold() -> None:
        with holder:
            held.set()
            release.wait(timeout=10)

    thread = threading.Thread(target=_hold)
    thread.start()
    held.wait(timeout=5)

    # Act / Assert
    try:
        with pytest.raises(StoreLockTimeoutError):
            store.put_artifact(_artifact("app"))
    finally:
        release.set()
        thread.join()
    assert not settings.path.exists()


@pytest.mark.unit
def test_delete_report_skips_absent_files(
    store: ArtifactStore, tmp_path: Path
) -> None:
    """Absent files are neither deleted nor failed; present ones are deleted."""
    # Arrange
    absent = tmp_path / "a.xml"
    present = tmp_path / "b.xml"
    present.write_text("<testsuite/>", encoding="utf-8")
    store.put_test_report(
        make_report("test-unit-20251105-001", artifact_files=[str(absent), str(present)])
    )

    # Act
    result = store.delete_test_report("test-unit-20251105-001")

    # Assert
    assert result.success
    assert result.deleted_files == [str(present)]
    assert result.failed_files == []
    assert not result.partially_deleted
    assert not present.exists()
    assert "test-unit-20251105-001" not in store.read().test_reports
    wire = result.model_dump(by_alias=True)
    assert wire["deletedFiles"] == [str(present)]
    assert wire["partiallyDeleted"] is False


@pytest.mark.unit
def test_delete_report_with_undeletable_file_is_partial(
    store: ArtifactStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    # Arrange
    store.put_test_report(
        make_report("r1", artifact_files=["/locked/a.xml", "/gone/b.xml"])
    )

    def _fake_remove_paths(targets: list[str]) -> CleanupReport:
        report = CleanupReport()
        report.add(
            CleanupResult(
                target=targets[0], outcome=CleanupOutcome.FAILED, error="denied"
            )
        )
        report.add(CleanupResult(target=targets[1], outcome=CleanupOutcome.REMOVED))
        return report

    monkeypatch.setattr(
        "forgekit.kernel.artifact_store.remove_paths", _fake_remove_paths
    )

    # Act
    result = store.delete_test_report("r1")

    # Assert
    assert result.success
    assert result.partially_deleted
    assert result.failed_files == ["/locked/a.xml"]
    assert result.deleted_files == ["/gone/b.xml"]
    assert "r1" not in store.read().test_reports


@pytest.mark.unit
def test_delete_report_store_failure_after_file_removal(
    store: ArtifactStore, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Files already removed plus a failed store update is partial and unsuccessful."""
    # Arrange
    junit = tmp_path / "junit.xml"
    junit.write_text("<testsuite/>", encoding="utf-8")
    store.put_test_report(make_report("r1", artifact_files=[str(junit)]))

    def _locked(mutation: object) -> StoreDocument:
        raise StoreLockTimeoutError("store busy")

    monkeypatch.setattr(store, "atomic_update", _locked)

    # Act
    result = store.delete_test_report("r1")

    # Assert
    assert not result.success
    assert result.partially_deleted
    assert result.deleted_files == [str(junit)]
    assert "store busy" in result.error_message


@pytest.mark.unit
def test_delete_missing_report_raises(store: ArtifactStore) -> None:
    # Arrange
    store.put_test_report(make_report("r1"))

    # Act / Assert
    with pytest.raises(TestReportNotFoundError):
        store.delete_test_report("nope")


@pytest.mark.unit
def test_delete_test_environment_removes_resources_and_record(
    store: ArtifactStore, tmp_path: Path
) -> None:
    # Arrange
    tmp_dir = tmp_path / "env-tmp"
    tmp_dir.mkdir()
    (tmp_dir / "kubeconfig").write_text("x", encoding="utf-8")
    resource = tmp_path / "registry.pid"
    resource.write_text("123", encoding="utf-8")
    store.put_test_environment(
        TestEnvironment(
            id="env-1",
            name="e2e",
            tmp_dir=str(tmp_dir),
            managed_resources=[str(resource), str(tmp_path / "already-gone")],
        )
    )

    # Act
    report = store.delete_test_environment("env-1")

    # Assert
    assert report.ok
    assert set(report.removed) == {str(resource), str(tmp_dir)}
    assert report.already_absent == [str(tmp_path / "already-gone")]
    assert "env-1" not in store.read().test_environments


@pytest.mark.unit
def test_delete_test_environment_partial_keeps_record(
    store: ArtifactStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    # Arrange
    store.put_test_environment(
        TestEnvironment(id="env-1", name="e2e", managed_resources=["/stuck"])
    )
    monkeypatch.setattr(
        "forgekit.kernel.artifact_store.remove_path",
        lambda target: CleanupResult(
            target=str(target), outcome=CleanupOutcome.FAILED, error="busy"
        ),
    )

    # Act
    report = store.delete_test_environment("env-1")

    # Assert
    assert not report.ok
    env = store.read().test_environments["env-1"]
    assert env.status == TestEnvironmentStatus.PARTIALLY_DELETED


@pytest.mark.unit
def test_delete_missing_test_environment_raises(store: ArtifactStore) -> None:
    store.put_artifact(_artifact("app"))

    with pytest.raises(TestEnvironmentNotFoundError):
        store.delete_test_environment("nope")
