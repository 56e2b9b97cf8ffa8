"""forge.yaml config models, environment overrides, and runtime settings."""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from enum import StrEnum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from forgekit.kernel.artifact_store import StoreSettings
from forgekit.kernel.paths import get_config_path, get_default_store_path

ENV_STORE_PATH = "FORGE_ARTIFACT_STORE_PATH"
ENV_RUN_LOCAL_ENABLED = "FORGE_RUN_LOCAL_ENABLED"
ENV_RUN_LOCAL_BASEDIR = "FORGE_RUN_LOCAL_BASEDIR"
ENV_ENGINE_VERSION = "FORGE_ENGINE_VERSION"
ENV_FORCE_REBUILD = "FORGE_FORCE_REBUILD"

DEFAULT_ENGINE_VERSION = "latest"
DEFAULT_DISTRIBUTION = "forgekit"


class EngineKind(StrEnum):
    """Capability an engine alias is configured for."""

    BUILDER = "builder"
    TEST_RUNNER = "test-runner"
    DETECTOR = "detector"


class EngineStep(BaseModel):
    """One engine in a multi-engine alias, with its spec overrides."""

    model_config = ConfigDict(extra="forbid")

    engine: str
    spec: dict[str, Any] = Field(default_factory=dict)


class EngineAlias(BaseModel):
    """Named engine reachable as alias://<name>.

    Exactly one of ``uri``, ``command``, or ``steps`` must be set.
    """

    model_config = ConfigDict(extra="forbid")

    name: str
    kind: EngineKind = EngineKind.BUILDER
    uri: str | None = None
    command: str | None = None
    args: list[str] = Field(default_factory=list)
    steps: list[EngineStep] = Field(default_factory=list)

    @model_validator(mode="after")
    def _one_target(self) -> EngineAlias:
        targets = [self.uri is not None, self.command is not None, bool(self.steps)]
        if sum(targets) != 1:
            raise ValueError(
                f"engine alias {self.name!r} must set exactly one of uri, command, steps"
            )
        return self


class BuildSpec(BaseModel):
    """One build[] entry: what to build and which engine builds it."""

    model_config = ConfigDict(extra="forbid")

    name: str
    engine: str
    src: str = ""
    dest: str = ""
    spec: dict[str, Any] = Field(default_factory=dict)


class TestStageSpec(BaseModel):
    """One test[] entry: a stage name and the runner engine."""

    __test__ = False
    model_config = ConfigDict(extra="forbid")

    name: str
    runner: str
    spec: dict[str, Any] = Field(default_factory=dict)


class StoreConfig(BaseModel):
    """Store tuning knobs."""

    model_config = ConfigDict(extra="forbid")

    lock_timeout_s: float = Field(default=10.0, gt=0)
    max_commit_attempts: int = Field(default=5, ge=1)
    retry_backoff_s: float = Field(default=0.05, ge=0)


class ForgeConfig(BaseModel):
    """Root forge.yaml model."""

    model_config = ConfigDict(extra="forbid")

    artifact_store_path: str | None = None
    store: StoreConfig = StoreConfig()
    engine_timeout_s: float | None = Field(default=None, gt=0)
    default_engine_version: str = DEFAULT_ENGINE_VERSION
    engines: list[EngineAlias] = Field(default_factory=list)
    build: list[BuildSpec] = Field(default_factory=list)
    test: list[TestStageSpec] = Field(default_factory=list)


class ForgeConfigError(RuntimeError):
    """Raised when forge.yaml cannot be decoded or validated."""


class EngineSettings(BaseModel):
    """Resolved engine resolution policy."""

    model_config = ConfigDict(frozen=True)

    project_root: Path
    distribution: str = DEFAULT_DISTRIBUTION
    default_version: str = DEFAULT_ENGINE_VERSION
    build_version: str | None = None
    run_local: bool = False
    local_base_dir: Path | None = None
    timeout_s: float | None = None
    aliases: dict[str, EngineAlias] = Field(default_factory=dict)


class ForgeSettings(BaseModel):
    """Configuration built once at startup and passed explicitly downstream."""

    model_config = ConfigDict(frozen=True)

    project_root: Path
    store: StoreSettings
    engines: EngineSettings
    build: tuple[BuildSpec, ...] = ()
    test: tuple[TestStageSpec, ...] = ()
    force_rebuild: bool = False

    def find_test_stage(self, name: str) -> TestStageSpec | None:
        """Return the test stage spec named ``name``, if configured."""
        for stage in self.test:
            if stage.name == name:
                return stage
        return None


def _decode_config_payload(path: Path) -> dict[str, object]:
    """Decode forge config payload from JSON or YAML.

    Args:
        path: Config file path.

    Returns:
        Parsed mapping payload.

    Raises:
        ForgeConfigError: If decode fails or payload is not an object.
    """
    raw = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ForgeConfigError(f"Invalid forge config JSON: {exc}") from exc
    else:
        try:
            payload = yaml.safe_load(raw)
        except yaml.YAMLError as exc:
            raise ForgeConfigError(f"Invalid forge config YAML: {exc}") from exc
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ForgeConfigError("Invalid forge config payload: root must be an object")
    return payload


def load_forge_config(path: Path) -> ForgeConfig:
    """Load forge.yaml from disk, defaulting when missing.

    Args:
        path: Config file path.

    Returns:
        Parsed config, or defaults when file does not exist.

    Raises:
        ForgeConfigError: If payload decode or validation fails.
    """
    if not path.exists():
        return ForgeConfig()
    payload = _decode_config_payload(path)
    try:
        return ForgeConfig.model_validate(payload)
    except ValidationError as exc:
        raise ForgeConfigError(f"Invalid forge config payload: {exc}") from exc


def _env_flag(environ: Mapping[str, str], key: str) -> bool:
    return environ.get(key, "").strip().lower() in {"1", "true", "yes"}


def load_settings(
    project_root: Path,
    *,
    environ: Mapping[str, str] | None = None,
    config_path: Path | None = None,
    build_version: str | None = None,
) -> ForgeSettings:
    """Build ForgeSettings from forge.yaml plus environment overrides.

    This is the only place process environment is consulted.

    Args:
        project_root: Project directory (relative paths resolve against it).
        environ: Environment mapping; defaults to os.environ.
        config_path: Explicit config file; defaults to <project_root>/forge.yaml.
        build_version: Version of the running forgekit build, if known.

    Returns:
        Frozen settings for store, resolver, and orchestration.

    Raises:
        ForgeConfigError: If forge.yaml is invalid.
    """
    env = os.environ if environ is None else environ
    root = project_root.resolve()
    config = load_forge_config(config_path or get_config_path(root))

    store_path_raw = env.get(ENV_STORE_PATH) or config.artifact_store_path
    store_path = Path(store_path_raw) if store_path_raw else get_default_store_path(root)
    if not store_path.is_absolute():
        store_path = root / store_path

    aliases: dict[str, EngineAlias] = {}
    for alias in config.engines:
        if alias.name in aliases:
            raise ForgeConfigError(f"Duplicate engine alias: {alias.name!r}")
        aliases[alias.name] = alias

    base_dir_raw = env.get(ENV_RUN_LOCAL_BASEDIR)
    local_base_dir = Path(base_dir_raw).resolve() if base_dir_raw else None

    return ForgeSettings(
        project_root=root,
        store=StoreSettings(
            path=store_path,
            lock_timeout_s=config.store.lock_timeout_s,
            max_commit_attempts=config.store.max_commit_attempts,
            retry_backoff_s=config.store.retry_backoff_s,
        ),
        engines=EngineSettings(
            project_root=root,
            default_version=config.default_engine_version,
            build_version=env.get(ENV_ENGINE_VERSION) or build_version,
            run_local=_env_flag(env, ENV_RUN_LOCAL_ENABLED),
            local_base_dir=local_base_dir,
            timeout_s=config.engine_timeout_s,
            aliases=aliases,
        ),
        build=tuple(config.build),
        test=tuple(config.test),
        force_rebuild=_env_flag(env, ENV_FORCE_REBUILD),
    )
