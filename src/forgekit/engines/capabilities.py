"""Engine capability interfaces and the subprocess adapter that implements them.

Orchestration code depends on the Builder/TestRunner/DependencyDetector
protocols only; SubprocessEngine is the one concrete implementation and talks
to engines through invoke_tool.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError

from forgekit.engines.caller import CancelToken, StructuredResult, invoke_tool
from forgekit.engines.protocol import (
    TOOL_BUILD,
    TOOL_BUILD_BATCH,
    TOOL_DETECT_DEPENDENCIES,
    TOOL_RUN,
    BuildInput,
    DetectDependenciesInput,
    RunInput,
)
from forgekit.engines.resolver import ResolvedEngine
from forgekit.kernel.errors import InvocationError
from forgekit.kernel.models import Artifact, ArtifactDependency, TestReport

_LOGGER = logging.getLogger(__name__)


class Builder(Protocol):
    def build(self, spec: BuildInput) -> Artifact: ...

    def build_batch(self, specs: Sequence[BuildInput]) -> list[Artifact]: ...


class TestRunner(Protocol):
    __test__ = False

    def run(self, run_input: RunInput) -> TestReport: ...


class DependencyDetector(Protocol):
    def detect_dependencies(
        self, request: DetectDependenciesInput
    ) -> list[ArtifactDependency]: ...


class Engine(Builder, TestRunner, DependencyDetector, Protocol):
    """All three capabilities; what an EngineFactory hands back."""


class EngineFactory(Protocol):
    """Builds a capability adapter for a resolved engine."""

    def __call__(
        self,
        engine: ResolvedEngine,
        *,
        timeout_s: float | None = None,
        cancel: CancelToken | None = None,
    ) -> Engine: ...


def parse_artifacts(payload: Any) -> list[Artifact]:
    """Accept a single artifact, a list, or ``{"artifacts": [...]}``.

    Raises:
        InvocationError: If the payload matches none of those shapes.
    """
    if isinstance(payload, dict) and "artifacts" in payload:
        items = payload["artifacts"]
    elif isinstance(payload, dict):
        items = [payload]
    elif isinstance(payload, list):
        items = payload
    else:
        raise InvocationError(
            f"engine returned no artifacts (payload type {type(payload).__name__})"
        )
    if not isinstance(items, list):
        raise InvocationError("engine artifacts payload is not a list")
    try:
        return [Artifact.model_validate(item) for item in items]
    except ValidationError as exc:
        raise InvocationError(f"engine returned an invalid artifact: {exc}") from exc


def parse_dependencies(payload: Any) -> list[ArtifactDependency]:
    """Validate detector output, dropping malformed entries with a warning.

    Raises:
        InvocationError: If the payload has no dependencies list at all.
    """
    if not isinstance(payload, dict) or not isinstance(
        payload.get("dependencies"), list
    ):
        raise InvocationError("detector output has no dependencies list")
    deps: list[ArtifactDependency] = []
    for item in payload["dependencies"]:
        try:
            deps.append(ArtifactDependency.model_validate(item))
        except ValidationError as exc:
            _LOGGER.warning("dropping invalid dependency %r: %s", item, exc)
    return deps


class SubprocessEngine:
    """Builder, TestRunner, and DependencyDetector backed by an engine process."""

    def __init__(
        self,
        engine: ResolvedEngine,
        *,
        timeout_s: float | None = None,
        cancel: CancelToken | None = None,
        env: dict[str, str] | None = None,
        cwd: str | Path | None = None,
    ) -> None:
        self.engine = engine
        self._timeout_s = timeout_s
        self._cancel = cancel
        self._env = env
        self._cwd = cwd

    def call(self, tool_name: str, arguments: dict[str, Any]) -> StructuredResult:
        return invoke_tool(
            self.engine.command,
            self.engine.args,
            tool_name,
            arguments,
            timeout_s=self._timeout_s,
            cancel=self._cancel,
            env=self._env,
            cwd=self._cwd,
        )

    def build(self, spec: BuildInput) -> Artifact:
        result = self.call(TOOL_BUILD, spec.to_wire())
        artifacts = parse_artifacts(result.payload)
        if len(artifacts) != 1:
            raise InvocationError(
                f"build of {spec.name} returned {len(artifacts)} artifacts, expected 1"
            )
        return artifacts[0]

    def build_batch(self, specs: Sequence[BuildInput]) -> list[Artifact]:
        if len(specs) == 1:
            return [self.build(specs[0])]
        result = self.call(
            TOOL_BUILD_BATCH, {"specs": [spec.to_wire() for spec in specs]}
        )
        return parse_artifacts(result.payload)

    def run(self, run_input: RunInput) -> TestReport:
        result = self.call(TOOL_RUN, run_input.to_wire())
        try:
            return TestReport.model_validate(result.payload)
        except ValidationError as exc:
            raise InvocationError(
                f"test runner returned an invalid report: {exc}"
            ) from exc

    def detect_dependencies(
        self, request: DetectDependenciesInput
    ) -> list[ArtifactDependency]:
        result = self.call(TOOL_DETECT_DEPENDENCIES, request.to_wire())
        return parse_dependencies(result.payload)
