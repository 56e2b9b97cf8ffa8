"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path

import pytest
import yaml

from forgekit.config.forge_config import EngineSettings, ForgeSettings, load_settings
from forgekit.kernel.artifact_store import ArtifactStore, StoreSettings
from tests.helpers import SRC_DIR


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """Temporary project root. .forge/ is created under it on first write."""
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def store_settings(project_root: Path) -> StoreSettings:
    return StoreSettings(
        path=project_root / ".forge" / "artifacts.json",
        lock_timeout_s=5.0,
        retry_backoff_s=0.0,
    )


@pytest.fixture
def store(store_settings: StoreSettings) -> ArtifactStore:
    return ArtifactStore(store_settings)


@pytest.fixture
def engine_settings(project_root: Path) -> EngineSettings:
    return EngineSettings(project_root=project_root)


@pytest.fixture
def engine_pythonpath(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make forgekit importable by fake engine subprocesses."""
    existing = os.environ.get("PYTHONPATH", "")
    value = str(SRC_DIR) if not existing else f"{SRC_DIR}{os.pathsep}{existing}"
    monkeypatch.setenv("PYTHONPATH", value)


@pytest.fixture
def write_config(project_root: Path) -> Callable[[dict[str, object]], ForgeSettings]:
    """Write forge.yaml into the project and load settings from it."""

    def _write(payload: dict[str, object]) -> ForgeSettings:
        (project_root / "forge.yaml").write_text(
            yaml.safe_dump(payload, sort_keys=False), encoding="utf-8"
        )
        return load_settings(project_root, environ={})

    return _write
