"""Artifact store: read / atomic_update / get helpers over one shared JSON file.

Every mutation runs read-current -> mutate -> write-new under an exclusive file
lock on ``<store>.lock``. Before the rename the on-disk fingerprint is checked
against the snapshot the mutation started from, so a writer that bypassed the
lock turns into a retried conflict instead of a lost update.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from forgekit.kernel.atomic_write import atomic_write_bytes, encode_json
from forgekit.kernel.cleanup import CleanupReport, remove_path, remove_paths
from forgekit.kernel.errors import (
    ArtifactNotFoundError,
    ConcurrentMutationConflict,
    ForgeError,
    StoreCorruptionError,
    StoreNotFoundError,
    TestEnvironmentNotFoundError,
    TestReportNotFoundError,
)
from forgekit.kernel.models import (
    Artifact,
    StoreDocument,
    TestEnvironment,
    TestEnvironmentStatus,
    TestReport,
)
from forgekit.kernel.store_lock import store_lock

_LOGGER = logging.getLogger(__name__)
_TEMP_PREFIX = "artifacts"

StoreMutation = Callable[[StoreDocument], object]


class StoreSettings(BaseModel):
    """Resolved store location and locking policy."""

    model_config = ConfigDict(frozen=True)

    path: Path
    lock_timeout_s: float = 10.0
    max_commit_attempts: int = 5
    retry_backoff_s: float = 0.05


class DeleteResult(BaseModel):
    """Structured outcome of deleting a test report and its artifact files."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    success: bool
    deleted_files: list[str] = Field(default_factory=list)
    failed_files: list[str] = Field(default_factory=list)
    error_message: str = ""
    partially_deleted: bool = False


def _fingerprint(content: bytes | None) -> str:
    if content is None:
        return ""
    return hashlib.sha256(content).hexdigest()


def _read_bytes(path: Path) -> bytes | None:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None


def _decode_store(raw: bytes, path: Path) -> StoreDocument:
    """Decode and validate store bytes.

    Raises:
        StoreCorruptionError: If bytes are not a valid store document.
    """
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise StoreCorruptionError(
            f"Invalid artifact store JSON at {path}: {exc}",
            data={"path": str(path)},
        ) from exc
    if not isinstance(payload, dict):
        raise StoreCorruptionError(
            f"Invalid artifact store at {path}: root must be an object",
            data={"path": str(path)},
        )
    try:
        return StoreDocument.model_validate(payload)
    except ValidationError as exc:
        raise StoreCorruptionError(
            f"Invalid artifact store payload at {path}: {exc}",
            data={"path": str(path)},
        ) from exc


def read_store(path: Path) -> StoreDocument:
    """Load the store document.

    Args:
        path: Store file path.

    Returns:
        Parsed snapshot. Callers must not assume it tracks later writers.

    Raises:
        StoreNotFoundError: If the file does not exist.
        StoreCorruptionError: If the file exists but cannot be parsed.
    """
    raw = _read_bytes(path)
    if raw is None:
        raise StoreNotFoundError(
            f"Artifact store not found: {path}", data={"path": str(path)}
        )
    return _decode_store(raw, path)


def read_or_create_store(path: Path) -> StoreDocument:
    """Load the store, returning an empty document when the file is absent."""
    try:
        return read_store(path)
    except StoreNotFoundError:
        return StoreDocument.empty()


def get_artifact(snapshot: StoreDocument, name: str) -> Artifact:
    """Return the artifact recorded under ``name``.

    Raises:
        ArtifactNotFoundError: If no artifact has that name.
    """
    artifact = snapshot.artifacts.get(name)
    if artifact is None:
        raise ArtifactNotFoundError(
            f"no artifact found with name: {name}", data={"name": name}
        )
    return artifact


def get_artifacts_by_type(snapshot: StoreDocument, artifact_type: str) -> list[Artifact]:
    """Return all artifacts of a type, sorted by name."""
    return sorted(
        (a for a in snapshot.artifacts.values() if a.type == artifact_type),
        key=lambda a: a.name,
    )


def get_test_report(snapshot: StoreDocument, report_id: str) -> TestReport:
    """Return the test report recorded under ``report_id``.

    Raises:
        TestReportNotFoundError: If no report has that id.
    """
    report = snapshot.test_reports.get(report_id)
    if report is None:
        raise TestReportNotFoundError(
            f"test report not found: {report_id}", data={"id": report_id}
        )
    return report


def list_test_reports(snapshot: StoreDocument, stage: str = "") -> list[TestReport]:
    """Return reports (optionally for one stage), oldest first."""
    reports = [
        r for r in snapshot.test_reports.values() if not stage or r.stage == stage
    ]
    return sorted(reports, key=lambda r: (r.start_time, r.id))


def get_test_environment(snapshot: StoreDocument, env_id: str) -> TestEnvironment:
    """Return the test environment recorded under ``env_id``.

    Raises:
        TestEnvironmentNotFoundError: If no environment has that id.
    """
    env = snapshot.test_environments.get(env_id)
    if env is None:
        raise TestEnvironmentNotFoundError(
            f"test environment not found: {env_id}", data={"id": env_id}
        )
    return env


def list_test_environments(
    snapshot: StoreDocument, stage: str = ""
) -> list[TestEnvironment]:
    """Return environments (optionally for one stage), oldest first."""
    envs = [
        e for e in snapshot.test_environments.values() if not stage or e.name == stage
    ]
    return sorted(envs, key=lambda e: (e.created_at, e.id))


# --- pure mutations, applied inside atomic_update ---


def add_or_update_artifact(store: StoreDocument, artifact: Artifact) -> None:
    """Insert or replace the artifact under its name."""
    store.artifacts[artifact.name] = artifact


def add_or_update_test_report(store: StoreDocument, report: TestReport) -> None:
    """Insert or replace a report; created_at is set once, updated_at every time."""
    now = datetime.now(UTC)
    existing = store.test_reports.get(report.id)
    recorded = existing.created_at if existing is not None else None
    created_at = report.created_at or recorded or now
    store.test_reports[report.id] = report.model_copy(
        update={"created_at": created_at, "updated_at": now}
    )


def add_or_update_test_environment(store: StoreDocument, env: TestEnvironment) -> None:
    """Insert or replace a test environment, refreshing updated_at."""
    store.test_environments[env.id] = env.model_copy(
        update={"updated_at": datetime.now(UTC)}
    )


def remove_test_report(store: StoreDocument, report_id: str) -> TestReport:
    """Remove and return a report.

    Raises:
        TestReportNotFoundError: If the id is absent.
    """
    report = get_test_report(store, report_id)
    del store.test_reports[report_id]
    return report


def remove_test_environment(store: StoreDocument, env_id: str) -> TestEnvironment:
    """Remove and return a test environment.

    Raises:
        TestEnvironmentNotFoundError: If the id is absent.
    """
    env = get_test_environment(store, env_id)
    del store.test_environments[env_id]
    return env


class ArtifactStore:
    """Shared, file-backed store. All writes go through atomic_update."""

    def __init__(self, settings: StoreSettings) -> None:
        self._settings = settings

    @property
    def path(self) -> Path:
        return self._settings.path

    def read(self) -> StoreDocument:
        """Read the store; absent and corrupt files raise distinct errors."""
        return read_store(self.path)

    def read_or_create(self) -> StoreDocument:
        """Read the store, treating an absent file as empty."""
        return read_or_create_store(self.path)

    def atomic_update(self, mutation: StoreMutation) -> StoreDocument:
        """Apply ``mutation`` to the current on-disk snapshot and commit it.

        The mutation receives a private copy and may either modify it in place
        or return a replacement StoreDocument; any other return value is
        ignored. Mutation errors propagate and nothing is written.

        Args:
            mutation: Function from current snapshot to new snapshot.

        Returns:
            The committed document.

        Raises:
            StoreLockTimeoutError: If the lock cannot be acquired in time.
            StoreCorruptionError: If the current file cannot be parsed.
            ConcurrentMutationConflict: If the base snapshot kept going stale.
        """
        settings = self._settings
        path = settings.path
        for attempt in range(1, settings.max_commit_attempts + 1):
            with store_lock(path, settings.lock_timeout_s):
                raw = _read_bytes(path)
                base_fp = _fingerprint(raw)
                base = StoreDocument.empty() if raw is None else _decode_store(raw, path)
                working = base.model_copy(deep=True)
                returned = mutation(working)
                updated = returned if isinstance(returned, StoreDocument) else working
                updated.last_updated = datetime.now(UTC)
                content = encode_json(updated.to_wire())
                if _fingerprint(_read_bytes(path)) == base_fp:
                    atomic_write_bytes(path, content, _TEMP_PREFIX)
                    return updated
            _LOGGER.warning(
                "Artifact store %s changed underneath mutation (attempt %d/%d); retrying",
                path,
                attempt,
                settings.max_commit_attempts,
            )
            time.sleep(settings.retry_backoff_s * attempt)
        raise ConcurrentMutationConflict(
            f"Artifact store {path} kept changing during update; gave up after "
            f"{settings.max_commit_attempts} attempts",
            data={"path": str(path), "attempts": settings.max_commit_attempts},
        )

    def put_artifact(self, artifact: Artifact) -> StoreDocument:
        """Insert or replace one artifact."""
        return self.atomic_update(lambda store: add_or_update_artifact(store, artifact))

    def put_artifacts(self, artifacts: list[Artifact]) -> StoreDocument:
        """Insert or replace several artifacts in one commit."""

        def _merge(store: StoreDocument) -> None:
            for artifact in artifacts:
                add_or_update_artifact(store, artifact)

        return self.atomic_update(_merge)

    def put_test_report(self, report: TestReport) -> StoreDocument:
        """Insert or replace one test report."""
        return self.atomic_update(lambda store: add_or_update_test_report(store, report))

    def put_test_environment(self, env: TestEnvironment) -> StoreDocument:
        """Insert or replace one test environment."""
        return self.atomic_update(
            lambda store: add_or_update_test_environment(store, env)
        )

    def delete_test_report(self, report_id: str) -> DeleteResult:
        """Delete a report's artifact files, then its store record.

        Already-absent files are neither deleted nor failed. Files that cannot
        be removed make the result partial; a failed store update after some
        files were removed makes it partial and unsuccessful. Re-running delete
        finishes a partial deletion.

        Raises:
            StoreNotFoundError: If the store file does not exist.
            StoreCorruptionError: If the store cannot be parsed.
            TestReportNotFoundError: If the report does not exist.
        """
        report = get_test_report(self.read(), report_id)
        cleanup = remove_paths(report.artifact_files)
        for result in cleanup.results:
            if result.error:
                _LOGGER.warning("Could not delete %s: %s", result.target, result.error)
        deleted, failed = cleanup.removed, cleanup.failed
        try:
            self.atomic_update(lambda store: remove_test_report(store, report_id))
        except ForgeError as exc:
            return DeleteResult(
                id=report_id,
                success=False,
                deleted_files=deleted,
                failed_files=failed,
                error_message=f"failed to delete report from artifact store: {exc}",
                partially_deleted=bool(deleted),
            )
        return DeleteResult(
            id=report_id,
            success=True,
            deleted_files=deleted,
            failed_files=failed,
            error_message="some files could not be deleted" if failed else "",
            partially_deleted=bool(failed),
        )

    def delete_test_environment(self, env_id: str) -> CleanupReport:
        """Remove an environment's managed resources, then its record.

        When any resource cannot be removed the record is kept with status
        ``partially_deleted`` so a later delete can finish the job.

        Raises:
            TestEnvironmentNotFoundError: If the environment does not exist.
        """
        env = get_test_environment(self.read(), env_id)
        targets = list(env.managed_resources)
        if env.tmp_dir:
            targets.append(env.tmp_dir)
        report = CleanupReport()
        for target in targets:
            report.add(remove_path(target))
        if report.ok:
            self.atomic_update(lambda store: remove_test_environment(store, env_id))
            return report

        def _mark_partial(store: StoreDocument) -> None:
            current = get_test_environment(store, env_id)
            store.test_environments[env_id] = current.model_copy(
                update={
                    "status": TestEnvironmentStatus.PARTIALLY_DELETED,
                    "updated_at": datetime.now(UTC),
                }
            )

        self.atomic_update(_mark_partial)
        return report
