# lfspkg/locks.py
"""Advisory flock(2) locks for resources shared between lfspkg invocations."""

from __future__ import annotations

import fcntl
import contextlib
from pathlib import Path
from typing import Iterator


@contextlib.contextmanager
def file_lock(lock_path: Path) -> Iterator[Path]:
    """
    Hold an exclusive lock on lock_path for the duration of the block.
    Blocks until the lock is available; the lock file itself is left in place.
    """
    lock_path = Path(lock_path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a+", encoding="utf-8") as lf:
        fcntl.flock(lf.fileno(), fcntl.LOCK_EX)
        try:
            yield lock_path
        finally:
            fcntl.flock(lf.fileno(), fcntl.LOCK_UN)
