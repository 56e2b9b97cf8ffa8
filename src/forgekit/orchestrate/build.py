"""Build orchestration: lazy-rebuild check, group by engine, invoke, record."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel, Field

from forgekit.config.forge_config import BuildSpec, EngineStep, ForgeSettings
from forgekit.engines.caller import CancelToken
from forgekit.engines.capabilities import EngineFactory, SubprocessEngine
from forgekit.engines.protocol import BuildInput
from forgekit.engines.resolver import EngineResolver, normalize_engine_uri
from forgekit.kernel.artifact_store import ArtifactStore
from forgekit.kernel.errors import ArtifactNotFoundError
from forgekit.kernel.models import Artifact
from forgekit.kernel.rebuild import should_rebuild
from forgekit.orchestrate.workdirs import RunDirs, create_run_dirs, prune_tmp_dirs

_LOGGER = logging.getLogger(__name__)


class BuildSummary(BaseModel):
    """What a build run did, per artifact name."""

    built: list[Artifact] = Field(default_factory=list)
    rebuilt_reasons: dict[str, str] = Field(default_factory=dict)
    skipped: dict[str, str] = Field(default_factory=dict)

    @property
    def built_names(self) -> list[str]:
        return [artifact.name for artifact in self.built]


def _build_input(spec: BuildSpec, engine_uri: str, dirs: RunDirs, force: bool) -> BuildInput:
    return BuildInput(
        name=spec.name,
        src=spec.src,
        dest=spec.dest,
        engine=engine_uri,
        spec=dict(spec.spec),
        tmp_dir=str(dirs.tmp_dir),
        build_dir=str(dirs.build_dir),
        root_dir=str(dirs.root_dir),
        force=force,
    )


def _with_step_spec(inputs: Sequence[BuildInput], step: EngineStep) -> list[BuildInput]:
    merged: list[BuildInput] = []
    for item in inputs:
        spec: dict[str, Any] = {**item.spec, **step.spec}
        merged.append(item.model_copy(update={"spec": spec, "engine": step.engine}))
    return merged


def _build_group(
    engine_uri: str,
    inputs: list[BuildInput],
    *,
    resolver: EngineResolver,
    engine_factory: EngineFactory,
    timeout_s: float | None,
    cancel: CancelToken | None,
) -> list[Artifact]:
    steps = resolver.alias_steps(engine_uri)
    if steps is None:
        steps = [EngineStep(engine=engine_uri)]
        step_inputs = [inputs]
    else:
        step_inputs = [_with_step_spec(inputs, step) for step in steps]
    artifacts: list[Artifact] = []
    for step, batch in zip(steps, step_inputs, strict=True):
        builder = engine_factory(
            resolver.resolve(step.engine), timeout_s=timeout_s, cancel=cancel
        )
        _LOGGER.info(
            "building %s with %s", ", ".join(i.name for i in batch), step.engine
        )
        artifacts.extend(builder.build_batch(batch))
    return artifacts


def run_build(
    settings: ForgeSettings,
    *,
    artifact_name: str | None = None,
    force: bool = False,
    resolver: EngineResolver | None = None,
    engine_factory: EngineFactory | None = None,
    cancel: CancelToken | None = None,
) -> BuildSummary:
    """Build every configured artifact (or just ``artifact_name``) that is stale.

    Artifacts from each engine group are committed as soon as that group
    finishes, so a failure in a later group keeps earlier results.

    Args:
        settings: Startup settings.
        artifact_name: Restrict the run to one build spec.
        force: Rebuild regardless of recorded dependencies.
        resolver: Engine resolver; defaults to one built from settings.
        engine_factory: Adapter factory; defaults to SubprocessEngine.
        cancel: Cancellation token passed to every engine call.

    Returns:
        BuildSummary of built and skipped artifacts.

    Raises:
        ArtifactNotFoundError: ``artifact_name`` is not a configured build spec.
        ResolutionError: An engine reference cannot be resolved.
        InvocationError: A builder failed; the run stops there.
    """
    resolver = resolver or EngineResolver(settings.engines)
    factory: EngineFactory = engine_factory or SubprocessEngine
    force = force or settings.force_rebuild

    specs = [s for s in settings.build if artifact_name is None or s.name == artifact_name]
    if artifact_name is not None and not specs:
        raise ArtifactNotFoundError(
            f"no build spec named {artifact_name!r}", data={"name": artifact_name}
        )

    store = ArtifactStore(settings.store)
    snapshot = store.read_or_create()
    summary = BuildSummary()
    pending: list[tuple[str, BuildSpec]] = []
    for spec in specs:
        decision = should_rebuild(snapshot.artifacts.get(spec.name), force=force)
        if not decision.needs_rebuild:
            _LOGGER.info("skipping %s: %s", spec.name, decision.reason)
            summary.skipped[spec.name] = decision.reason
            continue
        _LOGGER.info("rebuilding %s: %s", spec.name, decision.reason)
        summary.rebuilt_reasons[spec.name] = decision.reason
        engine_uri, _ = normalize_engine_uri(spec.engine)
        pending.append((engine_uri, spec))

    if not pending:
        return summary

    dirs = create_run_dirs(settings.project_root)
    prune_tmp_dirs(settings.project_root)
    groups: dict[str, list[BuildInput]] = {}
    for engine_uri, spec in pending:
        groups.setdefault(engine_uri, []).append(
            _build_input(spec, engine_uri, dirs, force)
        )

    for engine_uri, inputs in groups.items():
        artifacts = _build_group(
            engine_uri,
            inputs,
            resolver=resolver,
            engine_factory=factory,
            timeout_s=settings.engines.timeout_s,
            cancel=cancel,
        )
        if artifacts:
            store.put_artifacts(artifacts)
        summary.built.extend(artifacts)
    return summary
