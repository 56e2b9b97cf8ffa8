"""Dependency detection round-trip, called by builders after producing an artifact.

Detection never fails a build: an unresolvable detector, a crashed detector,
or unusable output degrades to an empty dependency list plus a warning, which
makes the next build rebuild unconditionally.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from forgekit.engines.caller import CancelToken
from forgekit.engines.capabilities import EngineFactory, SubprocessEngine
from forgekit.engines.protocol import DetectDependenciesInput
from forgekit.engines.resolver import EngineResolver
from forgekit.kernel.errors import InvocationError, ResolutionError
from forgekit.kernel.models import Artifact, ArtifactDependency

_LOGGER = logging.getLogger(__name__)


class DetectionOutcome(BaseModel):
    """Detected dependencies, or an empty list and the reason detection failed."""

    model_config = ConfigDict(frozen=True)

    detector_engine: str = ""
    spec: dict[str, Any] = Field(default_factory=dict)
    dependencies: list[ArtifactDependency] = Field(default_factory=list)
    warning: str | None = None

    @property
    def ok(self) -> bool:
        return self.warning is None


def detect_dependencies(
    detector_uri: str,
    work_dir: str | Path,
    *,
    resolver: EngineResolver,
    spec: dict[str, Any] | None = None,
    timeout_s: float | None = None,
    cancel: CancelToken | None = None,
    engine_factory: EngineFactory = SubprocessEngine,
) -> DetectionOutcome:
    """Ask a detector engine which files an artifact was built from.

    Args:
        detector_uri: Detector engine reference.
        work_dir: Directory the detector analyses.
        resolver: Resolver used to locate the detector.
        spec: Detector-specific options, recorded on the artifact.
        timeout_s: Deadline for the detector call.
        cancel: Caller cancellation; a cancelled build is not downgraded.
        engine_factory: Adapter factory (tests inject fakes).

    Returns:
        DetectionOutcome; ``warning`` is set when detection degraded.

    Raises:
        InvocationCancelledError: Only when ``cancel`` fired.
    """
    options = dict(spec or {})
    try:
        engine = resolver.resolve(detector_uri)
        detector = engine_factory(engine, timeout_s=timeout_s, cancel=cancel)
        deps = detector.detect_dependencies(
            DetectDependenciesInput(work_dir=str(work_dir), spec=options)
        )
    except (ResolutionError, InvocationError) as exc:
        if cancel is not None and cancel.cancelled:
            raise
        warning = f"dependency detection with {detector_uri} failed: {exc}"
        _LOGGER.warning("%s; artifact will be rebuilt next time", warning)
        return DetectionOutcome(warning=warning)
    return DetectionOutcome(
        detector_engine=detector_uri, spec=options, dependencies=deps
    )


def attach_dependencies(artifact: Artifact, outcome: DetectionOutcome) -> Artifact:
    """Return a copy of ``artifact`` carrying the detection result."""
    return artifact.model_copy(
        update={
            "dependencies": list(outcome.dependencies),
            "dependency_detector_engine": outcome.detector_engine,
            "dependency_detector_spec": dict(outcome.spec),
        }
    )
