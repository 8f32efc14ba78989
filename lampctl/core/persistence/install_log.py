"""
Installation log — the plaintext, timestamped record of one plan run.

While a plan runs, a DEBUG file handler on the root logger captures
every phase's output into ``<log_dir>/wordpress_install_<timestamp>.log``.
The closing summary is written as bare ``"<Label>: <value>"`` lines.

Those label strings are a contract: hosts installed by the old shell
installer only have their MariaDB root password in this log, and
``last_recorded_value`` reads it back the way the add-site script did
(last matching line, last whitespace-separated field).
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from lampctl.core.observability.logging_config import (
    FMT_MESSAGE,
    attach_to_root,
    detach_from_root,
    file_handler,
)

INSTALL_LOG_PREFIX = "wordpress_install_"
ADD_SITE_LOG_PREFIX = "wordpress_add-site_"
_TIMESTAMP_FMT = "%Y-%m-%d_%H-%M-%S"

# ── Summary labels (stable; parsed by other tooling) ─────────────
LABEL_SITE_URL = "Site URL"
LABEL_SSH_HOST = "SFTP/SSH Host"
LABEL_SSH_USER = "SFTP/SSH User"
LABEL_DB_NAME = "Database Name"
LABEL_DB_USER = "Database User"
LABEL_DB_PASSWORD = "Database Password"
LABEL_ROOT_PASSWORD = "MariaDB Root Password"

LOG_FILE_MODE = 0o600
_RULE = "=" * 52
_SUMMARY_LOGGER = "lampctl.summary"


def new_log_path(log_dir: Path, prefix: str = INSTALL_LOG_PREFIX, now: datetime | None = None) -> Path:
    stamp = (now or datetime.now()).strftime(_TIMESTAMP_FMT)
    return log_dir / f"{prefix}{stamp}.log"


class InstallLog:
    """Context manager attaching the run's log file to the logging tree.

    Usage::

        with InstallLog(path) as install_log:
            install_log.banner("PHASE 1: ...")
            ... run steps (their log records land in the file) ...
            install_log.record(LABEL_ROOT_PASSWORD, root_pw)
    """

    def __init__(self, path: Path):
        self._path = path
        self._handler: logging.FileHandler | None = None
        self._summary_handler: logging.FileHandler | None = None
        self._root_level = logging.WARNING
        self._summary = logging.getLogger(_SUMMARY_LOGGER)

    @property
    def path(self) -> Path:
        return self._path

    def open(self) -> InstallLog:
        self._handler = file_handler(self._path, mode=LOG_FILE_MODE)
        self._root_level = attach_to_root(self._handler)

        # Summary lines are written bare so they stay greppable
        self._summary_handler = file_handler(self._path, level=logging.INFO, fmt=FMT_MESSAGE)
        self._summary.addHandler(self._summary_handler)
        self._summary.setLevel(logging.INFO)
        self._summary.propagate = False
        return self

    def close(self) -> None:
        if self._handler is not None:
            detach_from_root(self._handler, self._root_level)
            self._handler = None
        if self._summary_handler is not None:
            self._summary.removeHandler(self._summary_handler)
            self._summary_handler.close()
            self._summary_handler = None

    def __enter__(self) -> InstallLog:
        return self.open()

    def __exit__(self, *exc: object) -> None:
        self.close()

    def banner(self, message: str) -> None:
        """Phase banner, written verbatim."""
        self._summary.info("\n%s\n%s\n%s", _RULE, message, _RULE)

    def line(self, text: str = "") -> None:
        self._summary.info("%s", text)

    def record(self, label: str, value: str) -> None:
        """Write one ``"<Label>: <value>"`` summary line."""
        self._summary.info("%s: %s", label, value)


def latest_install_log(log_dir: Path) -> Path | None:
    """Newest ``wordpress_install_*.log`` by modification time."""
    if not log_dir.is_dir():
        return None
    candidates = list(log_dir.glob(f"{INSTALL_LOG_PREFIX}*.log"))
    if not candidates:
        return None
    return max(candidates, key=lambda p: p.stat().st_mtime)


def last_recorded_value(path: Path, label: str) -> str | None:
    """Last value recorded under ``label`` in a log file.

    Mirrors ``grep "<label>" | tail -n 1 | awk '{print $NF}'``.
    """
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None

    value = None
    for line in text.splitlines():
        if label in line:
            fields = line.split()
            if fields:
                value = fields[-1]
    return value
