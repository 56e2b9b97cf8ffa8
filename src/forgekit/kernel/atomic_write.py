"""Atomic write with fsync for the store file."""

from __future__ import annotations

import json
import os
import uuid
from pathlib import Path
from typing import Any


def encode_json(data: dict[str, Any]) -> bytes:
    """Canonical on-disk encoding of the store document."""
    return json.dumps(data, indent=2, sort_keys=True).encode("utf-8")


def atomic_write_bytes(final_path: Path, content_bytes: bytes, temp_prefix: str) -> None:
    """Write bytes to final_path atomically: temp -> fsync -> rename -> fsync dir.

    Temp file is created next to final_path so rename is atomic. On failure,
    temp is removed. Caller must hold the store lock.

    Args:
        final_path: Destination path.
        content_bytes: Full file content.
        temp_prefix: Prefix for temp filename, e.g. "artifacts".
    """
    parent = final_path.parent
    parent.mkdir(parents=True, exist_ok=True)
    temp_path = parent / f".{temp_prefix}.{os.getpid()}.{uuid.uuid4().hex[:8]}.tmp"
    try:
        fd = os.open(
            str(temp_path),
            os.O_WRONLY | os.O_CREAT | os.O_TRUNC,
            0o600,
        )
        try:
            os.write(fd, content_bytes)
            os.fsync(fd)
        finally:
            os.close(fd)
        os.replace(temp_path, final_path)
        try:
            dir_fd = os.open(str(parent), os.O_RDONLY)
            try:
                os.fsync(dir_fd)
            finally:
                os.close(dir_fd)
        except OSError:
            pass  # e.g. Windows: directory fsync best-effort
    finally:
        if temp_path.exists():
            temp_path.unlink(missing_ok=True)
