"""
Host lock — one lampctl process per host.

Plans mutate global system state (packages, services, the run record
and the secret bundle), so concurrent runs are refused rather than
serialized: a second invocation fails fast with ``LockHeld``.
"""

from __future__ import annotations

import contextlib
import fcntl
import logging
import os
from collections.abc import Generator
from pathlib import Path

from lampctl.core.errors import LockHeld

logger = logging.getLogger(__name__)


@contextlib.contextmanager
def exclusive_lock(path: Path) -> Generator[Path, None, None]:
    """Hold an exclusive, non-blocking ``flock`` on ``path``.

    The holder's PID is written into the file to help the operator
    find a stuck process.

    Raises:
        LockHeld: If another process holds the lock.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o600)
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            holder = _read_holder(path)
            raise LockHeld(
                f"Another lampctl run holds {path}"
                + (f" (pid {holder})" if holder else "")
            ) from None

        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        logger.debug("Acquired lock %s", path)
        try:
            yield path
        finally:
            os.ftruncate(fd, 0)
            fcntl.flock(fd, fcntl.LOCK_UN)
            logger.debug("Released lock %s", path)
    finally:
        os.close(fd)


def _read_holder(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError:
        return ""
