"""Store-scoped file lock. Held for one read-modify-write cycle. No nested locks."""

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from filelock import FileLock, Timeout

from forgekit.kernel.errors import StoreLockTimeoutError
from forgekit.kernel.paths import get_lock_path


@contextmanager
def store_lock(store_path: Path, timeout_s: float) -> Iterator[None]:
    """Acquire the exclusive lock (<store>.lock) for a store mutation.

    Never acquire any other lock while holding the store lock.

    Args:
        store_path: Store file path (lock file sits beside it).
        timeout_s: Seconds to wait before failing loudly.

    Yields:
        None; lock is held for the context body.

    Raises:
        StoreLockTimeoutError: If another process holds the lock too long.
    """
    lock_path = get_lock_path(store_path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    flock = FileLock(str(lock_path))
    try:
        flock.acquire(timeout=timeout_s)
    except Timeout as exc:
        raise StoreLockTimeoutError(
            f"Timed out after {timeout_s}s waiting for store lock {lock_path}",
            data={"lock_path": str(lock_path), "timeout_s": timeout_s},
        ) from exc
    try:
        yield
    finally:
        flock.release()
