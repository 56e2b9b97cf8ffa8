"""Paths for the project-local artifact store. .forge is the kernel root."""

from pathlib import Path

FORGE_DIR = ".forge"
STORE_FILENAME = "artifacts.json"
LOCK_SUFFIX = ".lock"
BUILD_DIR = "build"
BIN_DIR = "bin"
TMP_DIR = "tmp"
CONFIG_FILENAME = "forge.yaml"


def get_forge_root(project_root: Path) -> Path:
    """Return path to .forge (kernel root) under the project."""
    return project_root / FORGE_DIR


def get_default_store_path(project_root: Path) -> Path:
    """Return path to .forge/artifacts.json."""
    return get_forge_root(project_root) / STORE_FILENAME


def get_lock_path(store_path: Path) -> Path:
    """Return path to the store's sibling lock file: <store>.lock."""
    return store_path.with_name(store_path.name + LOCK_SUFFIX)


def get_build_bin_dir(project_root: Path) -> Path:
    """Return path to build/bin, where locally built engines live."""
    return project_root / BUILD_DIR / BIN_DIR


def get_tmp_root(project_root: Path) -> Path:
    """Return path to .forge/tmp (per-build scratch directories)."""
    return get_forge_root(project_root) / TMP_DIR


def get_config_path(project_root: Path) -> Path:
    """Return path to forge.yaml."""
    return project_root / CONFIG_FILENAME
