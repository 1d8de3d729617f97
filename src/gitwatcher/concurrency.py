"""Single-daemon file lock."""

import sys
from pathlib import Path

from loguru import logger

from .errors import LockError

log = logger.bind(stage="lock")

LOCK_FILE_NAME = "gitwatcher.lock"


def acquire_global_lock(lock_dir: Path, skip: bool = False) -> object | None:
    """Take the daemon lock so only one watcher drives a state file.

    Returns the lock file handle (keep a reference to hold the lock), or
    None if locking was skipped. Raises LockError if another daemon holds it.
    """
    if skip:
        log.debug("Skipping lock acquisition")
        return None

    lock_dir.mkdir(parents=True, exist_ok=True)
    lock_file = lock_dir / LOCK_FILE_NAME

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
        raise LockError("Another gitwatcher daemon is running")
    log.info(f"Lock acquired at {lock_file}")
    return fh
