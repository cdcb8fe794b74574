"""Process lock for the data directory and cooperative cancellation."""

import sys
import threading
from pathlib import Path

from loguru import logger

log = logger.bind(stage="concurrency")


class LockError(Exception):
    """Raised when lock cannot be acquired."""


def acquire_global_lock(lock_dir: Path, skip: bool = False) -> object | None:
    """Acquire the data-directory lock so only one process writes the
    cache and library snapshot.

    Returns the lock file handle (keep reference to maintain lock),
    or None if locking was skipped.
    Raises LockError if another instance holds the lock.
    """
    log.debug(f"acquire_global_lock(lock_dir={lock_dir}, skip={skip})")

    if skip:
        log.debug("Skipping lock acquisition")
        return None

    lock_dir.mkdir(parents=True, exist_ok=True)
    lock_file = lock_dir / "organizer.lock"
    fh = open(lock_file, "w")
    try:
        if sys.platform == "win32":
            import msvcrt
            msvcrt.locking(fh.fileno(), msvcrt.LK_NBLCK, 1)
        else:
            import fcntl
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        fh.close()
        log.warning(f"Failed to acquire lock at {lock_file}")
        raise LockError("Another organizer instance is using this data directory")
    log.debug(f"Lock acquired at {lock_file}")
    return fh


class CancelToken:
    """Set once to ask long-running scans and batch matches to stop.

    Work already finished is kept; checks happen between files.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()
