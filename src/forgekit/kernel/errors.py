"""Deterministic error contracts for store, resolution, and invocation."""

from __future__ import annotations

from enum import StrEnum


class ForgeErrorCode(StrEnum):
    """Stable error codes surfaced to CLI and tool-call callers."""

    STORE_NOT_FOUND = "store_not_found"
    STORE_CORRUPT = "store_corrupt"
    STORE_LOCK_TIMEOUT = "store_lock_timeout"
    STORE_CONFLICT = "store_concurrent_mutation"
    ARTIFACT_NOT_FOUND = "artifact_not_found"
    TEST_REPORT_NOT_FOUND = "test_report_not_found"
    TEST_ENVIRONMENT_NOT_FOUND = "test_environment_not_found"
    ENGINE_SCHEME_UNSUPPORTED = "engine_scheme_unsupported"
    ENGINE_NOT_FOUND = "engine_not_found"
    INVOCATION_FAILED = "engine_invocation_failed"
    INVOCATION_CANCELLED = "engine_invocation_cancelled"


class ForgeError(RuntimeError):
    """Base failure with a stable code and structured diagnostics."""

    default_code = ForgeErrorCode.INVOCATION_FAILED

    def __init__(
        self,
        message: str,
        *,
        code: ForgeErrorCode | None = None,
        data: dict[str, object] | None = None,
    ) -> None:
        """Create failure.

        Args:
            message: Human-readable error message.
            code: Stable error code; defaults to the class default.
            data: Optional structured payload for diagnostics.
        """
        super().__init__(message)
        self.code = code or self.default_code
        self.data = data or {}


class StoreError(ForgeError):
    """Base class for artifact store failures."""


class StoreNotFoundError(StoreError):
    """Store file does not exist. Callers may treat this as an empty store."""

    default_code = ForgeErrorCode.STORE_NOT_FOUND


class StoreCorruptionError(StoreError):
    """Store file exists but cannot be decoded or validated."""

    default_code = ForgeErrorCode.STORE_CORRUPT


class StoreLockTimeoutError(StoreError):
    """Exclusive store lock could not be acquired in time."""

    default_code = ForgeErrorCode.STORE_LOCK_TIMEOUT


class ConcurrentMutationConflict(StoreError):
    """Base snapshot went stale before commit and retries were exhausted."""

    default_code = ForgeErrorCode.STORE_CONFLICT


class ArtifactNotFoundError(ForgeError):
    """No artifact recorded under the requested name."""

    default_code = ForgeErrorCode.ARTIFACT_NOT_FOUND


class TestReportNotFoundError(ForgeError):
    """No test report recorded under the requested id."""

    __test__ = False
    default_code = ForgeErrorCode.TEST_REPORT_NOT_FOUND


class TestEnvironmentNotFoundError(ForgeError):
    """No test environment recorded under the requested id."""

    __test__ = False
    default_code = ForgeErrorCode.TEST_ENVIRONMENT_NOT_FOUND


class ResolutionError(ForgeError):
    """Engine reference could not be turned into a command line."""

    default_code = ForgeErrorCode.ENGINE_NOT_FOUND


class UnsupportedEngineSchemeError(ResolutionError):
    """Engine URI uses a scheme the resolver does not know."""

    default_code = ForgeErrorCode.ENGINE_SCHEME_UNSUPPORTED


class EngineNotFoundError(ResolutionError):
    """Engine name cannot be located under a known scheme."""

    default_code = ForgeErrorCode.ENGINE_NOT_FOUND


class InvocationError(ForgeError):
    """Engine subprocess failed to start, broke protocol, or reported an error."""

    default_code = ForgeErrorCode.INVOCATION_FAILED

    def __init__(
        self,
        message: str,
        *,
        code: ForgeErrorCode | None = None,
        data: dict[str, object] | None = None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        """Create invocation failure with captured subprocess output.

        Args:
            message: Human-readable error message.
            code: Stable error code; defaults to the class default.
            data: Optional structured payload for diagnostics.
            stdout: Non-protocol stdout captured from the engine.
            stderr: Stderr captured from the engine.
        """
        super().__init__(message, code=code, data=data)
        self.stdout = stdout
        self.stderr = stderr


class InvocationCancelledError(InvocationError):
    """Invocation was cancelled or ran past its deadline; process terminated."""

    default_code = ForgeErrorCode.INVOCATION_CANCELLED
