"""Engine reference resolution: scheme://name[@version] -> (command, args)."""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Callable
from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from forgekit.config.forge_config import EngineAlias, EngineSettings, EngineStep
from forgekit.kernel.errors import (
    EngineNotFoundError,
    ResolutionError,
    UnsupportedEngineSchemeError,
)
from forgekit.kernel.paths import get_build_bin_dir

_LOGGER = logging.getLogger(__name__)

_SCHEME_SEP = "://"
_LATEST = "latest"
_DIRTY_SUFFIXES = ("+dirty", "-dirty")

# Old engine names still accepted, mapped to their current URI.
DEPRECATED_ENGINE_URIS: dict[str, str] = {
    "pkg://build-container": "pkg://container-build",
    "pkg://test-runner-go": "pkg://go-test",
    "pkg://lint-go": "pkg://go-lint",
}


class EngineScheme(StrEnum):
    """Supported engine reference schemes."""

    PKG = "pkg"
    BIN = "bin"
    ALIAS = "alias"


class EngineReference(BaseModel):
    """Parsed engine URI."""

    model_config = ConfigDict(frozen=True)

    uri: str
    scheme: EngineScheme
    name: str
    version: str | None = None


class ResolvedEngine(BaseModel):
    """Concrete command line for an engine reference."""

    model_config = ConfigDict(frozen=True)

    uri: str
    command: str
    args: tuple[str, ...] = ()

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]


def normalize_engine_uri(uri: str) -> tuple[str, bool]:
    """Map a deprecated engine URI to its replacement.

    Returns:
        (normalized_uri, was_deprecated).
    """
    replacement = DEPRECATED_ENGINE_URIS.get(uri)
    if replacement is None:
        return uri, False
    _LOGGER.warning("engine URI %s is deprecated, use %s", uri, replacement)
    return replacement, True


def parse_engine_uri(uri: str) -> EngineReference:
    """Split ``scheme://name[@version]``.

    Raises:
        UnsupportedEngineSchemeError: Missing or unknown scheme.
        EngineNotFoundError: Empty name.
    """
    scheme_raw, sep, rest = uri.partition(_SCHEME_SEP)
    if not sep:
        raise UnsupportedEngineSchemeError(
            f"engine URI {uri!r} has no scheme (expected pkg://, bin://, alias://)",
            data={"uri": uri},
        )
    try:
        scheme = EngineScheme(scheme_raw)
    except ValueError as exc:
        raise UnsupportedEngineSchemeError(
            f"unsupported engine scheme {scheme_raw!r} in {uri!r}",
            data={"uri": uri},
        ) from exc
    name, at, version = rest.partition("@")
    if scheme == EngineScheme.PKG and "/" in name:
        name = name.rsplit("/", 1)[-1]
    if not name:
        raise EngineNotFoundError(f"empty engine name in {uri!r}", data={"uri": uri})
    return EngineReference(
        uri=uri, scheme=scheme, name=name, version=version if at and version else None
    )


def _clean_version(version: str) -> str:
    for suffix in _DIRTY_SUFFIXES:
        if version.endswith(suffix):
            return version[: -len(suffix)]
    return version


class EngineResolver:
    """Resolve engine URIs against one EngineSettings; results are cached.

    Two resolutions of the same (uri, version) on one resolver return the same
    ResolvedEngine object.
    """

    def __init__(
        self,
        settings: EngineSettings,
        *,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self._settings = settings
        self._which = which
        self._cache: dict[tuple[str, str | None], ResolvedEngine] = {}

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    def resolve(self, uri: str, version: str | None = None) -> ResolvedEngine:
        """Resolve ``uri`` to a command line.

        Args:
            uri: Engine reference.
            version: Explicit version; beats any ``@pin`` in the URI.

        Raises:
            UnsupportedEngineSchemeError: Unknown scheme.
            EngineNotFoundError: Name not found under a known scheme.
            ResolutionError: Alias cycle, or a multi-engine alias.
        """
        key = (uri, version)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        resolved = self._resolve(uri, version, seen=())
        self._cache[key] = resolved
        _LOGGER.debug("resolved %s -> %s", uri, resolved.argv)
        return resolved

    def alias_steps(self, uri: str) -> list[EngineStep] | None:
        """Return the steps of a multi-engine alias, or None for single engines."""
        if not uri.startswith(EngineScheme.ALIAS + _SCHEME_SEP):
            return None
        alias = self._lookup_alias(parse_engine_uri(uri))
        return list(alias.steps) if alias.steps else None

    def effective_version(self, ref: EngineReference, version: str | None) -> str:
        """Apply version priority: explicit, pin, build version, default."""
        chosen = (
            version
            or ref.version
            or self._settings.build_version
            or self._settings.default_version
        )
        return _clean_version(chosen)

    def _resolve(
        self, uri: str, version: str | None, seen: tuple[str, ...]
    ) -> ResolvedEngine:
        ref = parse_engine_uri(uri)
        if ref.scheme == EngineScheme.PKG:
            return self._resolve_pkg(ref, version)
        if ref.scheme == EngineScheme.BIN:
            return self._resolve_bin(ref)
        return self._resolve_alias(ref, version, seen)

    def _resolve_pkg(self, ref: EngineReference, version: str | None) -> ResolvedEngine:
        if self._settings.run_local:
            base_dir = self._settings.local_base_dir
            if base_dir is None:
                raise EngineNotFoundError(
                    f"cannot run {ref.uri} locally: no local base directory configured",
                    data={"uri": ref.uri},
                )
            return ResolvedEngine(
                uri=ref.uri,
                command="uv",
                args=("run", "--directory", str(base_dir), ref.name),
            )
        chosen = self.effective_version(ref, version)
        dist = self._settings.distribution
        spec = dist if chosen == _LATEST else f"{dist}=={chosen}"
        return ResolvedEngine(
            uri=ref.uri, command="pipx", args=("run", "--spec", spec, ref.name)
        )

    def _resolve_bin(self, ref: EngineReference) -> ResolvedEngine:
        found = self._which(ref.name)
        if found:
            return ResolvedEngine(uri=ref.uri, command=found)
        local = get_build_bin_dir(self._settings.project_root) / ref.name
        if local.is_file() and os.access(local, os.X_OK):
            return ResolvedEngine(uri=ref.uri, command=str(local))
        raise EngineNotFoundError(
            f"engine binary {ref.name!r} not found on PATH or in {local.parent}",
            data={"uri": ref.uri},
        )

    def _lookup_alias(self, ref: EngineReference) -> EngineAlias:
        alias = self._settings.aliases.get(ref.name)
        if alias is None:
            raise EngineNotFoundError(
                f"engine alias {ref.name!r} is not configured", data={"uri": ref.uri}
            )
        return alias

    def _resolve_alias(
        self, ref: EngineReference, version: str | None, seen: tuple[str, ...]
    ) -> ResolvedEngine:
        if ref.name in seen:
            chain = " -> ".join([*seen, ref.name])
            raise ResolutionError(
                f"engine alias cycle: {chain}", data={"uri": ref.uri}
            )
        alias = self._lookup_alias(ref)
        if alias.command is not None:
            return ResolvedEngine(
                uri=ref.uri, command=alias.command, args=tuple(alias.args)
            )
        if alias.uri is not None:
            target = self._resolve(alias.uri, version, (*seen, ref.name))
            return ResolvedEngine(uri=ref.uri, command=target.command, args=target.args)
        raise ResolutionError(
            f"engine alias {ref.name!r} has multiple steps; resolve each step",
            data={"uri": ref.uri},
        )
