"""Kernel Layer 0: artifact store, store schema, lazy-rebuild decision, errors."""

from forgekit.kernel.artifact_store import (
    ArtifactStore,
    DeleteResult,
    StoreSettings,
    get_artifact,
    get_artifacts_by_type,
    get_test_environment,
    get_test_report,
    list_test_environments,
    list_test_reports,
    read_or_create_store,
    read_store,
)
from forgekit.kernel.cleanup import CleanupOutcome, CleanupReport, CleanupResult
from forgekit.kernel.errors import (
    ArtifactNotFoundError,
    ConcurrentMutationConflict,
    EngineNotFoundError,
    ForgeError,
    ForgeErrorCode,
    InvocationCancelledError,
    InvocationError,
    ResolutionError,
    StoreCorruptionError,
    StoreError,
    StoreLockTimeoutError,
    StoreNotFoundError,
    TestEnvironmentNotFoundError,
    TestReportNotFoundError,
    UnsupportedEngineSchemeError,
)
from forgekit.kernel.models import (
    Artifact,
    ArtifactDependency,
    Coverage,
    StoreDocument,
    TestEnvironment,
    TestEnvironmentStatus,
    TestReport,
    TestReportStatus,
    TestStats,
)
from forgekit.kernel.rebuild import (
    RebuildAction,
    RebuildDecision,
    file_dependency,
    should_rebuild,
)

__all__ = [
    "Artifact",
    "ArtifactDependency",
    "ArtifactNotFoundError",
    "ArtifactStore",
    "CleanupOutcome",
    "CleanupReport",
    "CleanupResult",
    "ConcurrentMutationConflict",
    "Coverage",
    "DeleteResult",
    "EngineNotFoundError",
    "ForgeError",
    "ForgeErrorCode",
    "InvocationCancelledError",
    "InvocationError",
    "RebuildAction",
    "RebuildDecision",
    "ResolutionError",
    "StoreCorruptionError",
    "StoreDocument",
    "StoreError",
    "StoreLockTimeoutError",
    "StoreNotFoundError",
    "StoreSettings",
    "TestEnvironment",
    "TestEnvironmentNotFoundError",
    "TestEnvironmentStatus",
    "TestReport",
    "TestReportNotFoundError",
    "TestReportStatus",
    "TestStats",
    "UnsupportedEngineSchemeError",
    "file_dependency",
    "get_artifact",
    "get_artifacts_by_type",
    "get_test_environment",
    "get_test_report",
    "list_test_environments",
    "list_test_reports",
    "read_or_create_store",
    "read_store",
    "should_rebuild",
]
