"""Host-wide, non-blocking mutual exclusion for mutating runs."""
from __future__ import annotations

import fcntl
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .errors import LockContention

logger = logging.getLogger(__name__)


@contextmanager
def host_lock(lock_path: Path) -> Iterator[None]:
    """Hold an exclusive ``flock`` on *lock_path* for the ``with`` body.

    A lock already held by another process raises ``LockContention``
    immediately; callers treat that as "another instance is running".
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a+") as lock_fh:
        try:
            fcntl.flock(lock_fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as exc:
            raise LockContention(f"Another run holds {lock_path}", stage="lock") from exc
        try:
            lock_fh.seek(0)
            lock_fh.truncate()
            lock_fh.write(f"{os.getpid()}\n")
            lock_fh.flush()
            yield
        finally:
            fcntl.flock(lock_fh.fileno(), fcntl.LOCK_UN)
