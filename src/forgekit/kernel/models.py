"""Artifact store schema: artifacts, dependencies, test reports, environments."""

from __future__ import annotations

import os
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

STORE_SCHEMA_VERSION = "1.0"
DEPENDENCY_TYPE_FILE = "file"


def format_rfc3339(value: datetime) -> str:
    """Format datetime as second-precision RFC3339 UTC, e.g. 2025-11-23T10:00:00Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_rfc3339(value: str) -> datetime:
    """Parse an RFC3339 timestamp into an aware UTC datetime.

    Raises:
        ValueError: If value is not a valid timestamp.
    """
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def now_rfc3339() -> str:
    return format_rfc3339(datetime.now(UTC))


def _utcnow() -> datetime:
    return datetime.now(UTC)


class _StoreModel(BaseModel):
    """Base for store records: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        """Serialize for the store file or an engine tool call."""
        return self.model_dump(mode="json", by_alias=True)


class ArtifactDependency(_StoreModel):
    """One declared input: an absolute file path and its mtime at detection."""

    type: Literal["file"] = DEPENDENCY_TYPE_FILE
    file_path: str
    timestamp: str

    @field_validator("file_path")
    @classmethod
    def _absolute_path(cls, value: str) -> str:
        if not value or not os.path.isabs(value):
            raise ValueError(f"dependency filePath must be absolute, got {value!r}")
        return value

    @field_validator("timestamp")
    @classmethod
    def _rfc3339(cls, value: str) -> str:
        try:
            parse_rfc3339(value)
        except ValueError as exc:
            raise ValueError(
                f"dependency timestamp must be RFC3339, got {value!r}"
            ) from exc
        return value


class Artifact(_StoreModel):
    """One produced unit of work plus the inputs it was built from.

    An artifact with no dependencies can never be proven fresh and is always
    rebuilt. ``dependency_detector_engine`` records which detector produced
    ``dependencies`` so a later build can run the same one.
    """

    name: str = Field(min_length=1)
    type: str = Field(min_length=1)
    location: str = Field(min_length=1)
    timestamp: str = Field(default_factory=now_rfc3339)
    version: str = ""
    dependencies: list[ArtifactDependency] = Field(default_factory=list)
    dependency_detector_engine: str = ""
    dependency_detector_spec: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def _rfc3339(cls, value: str) -> str:
        try:
            parse_rfc3339(value)
        except ValueError as exc:
            raise ValueError(f"artifact timestamp must be RFC3339, got {value!r}") from exc
        return value


class TestStats(_StoreModel):
    """Counts for one test-stage execution."""

    __test__ = False

    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0


class Coverage(_StoreModel):
    """Code coverage summary."""

    percentage: float = 0.0
    file_path: str = ""


class TestReportStatus:
    """Test report status values."""

    __test__ = False

    PASSED = "passed"
    FAILED = "failed"


class TestReport(_StoreModel):
    """One completed test-stage execution.

    ``artifact_files`` are side outputs (coverage, JUnit XML) deleted together
    with the report.
    """

    __test__ = False

    id: str = Field(min_length=1)
    stage: str
    status: Literal["passed", "failed"]
    error_message: str = ""
    start_time: datetime = Field(default_factory=_utcnow)
    duration: float = 0.0
    test_stats: TestStats = Field(default_factory=TestStats)
    coverage: Coverage = Field(default_factory=Coverage)
    artifact_files: list[str] = Field(default_factory=list)
    output_path: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


class TestEnvironmentStatus:
    """Test environment lifecycle values."""

    __test__ = False

    CREATED = "created"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    PARTIALLY_DELETED = "partially_deleted"


class TestEnvironment(_StoreModel):
    """Provisioned environment for a test stage; metadata is free-form strings."""

    __test__ = False

    id: str = Field(min_length=1)
    name: str
    status: str = TestEnvironmentStatus.CREATED
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    tmp_dir: str = ""
    files: dict[str, str] = Field(default_factory=dict)
    managed_resources: list[str] = Field(default_factory=list)
    metadata: dict[str, str] = Field(default_factory=dict)
    env: dict[str, str] = Field(default_factory=dict)


class StoreDocument(_StoreModel):
    """Aggregate root persisted as one JSON document."""

    version: str = STORE_SCHEMA_VERSION
    last_updated: datetime = Field(default_factory=_utcnow)
    artifacts: dict[str, Artifact] = Field(default_factory=dict)
    test_environments: dict[str, TestEnvironment] = Field(default_factory=dict)
    test_reports: dict[str, TestReport] = Field(default_factory=dict)

    @classmethod
    def empty(cls) -> StoreDocument:
        """Return a fresh store with no records."""
        return cls()
