"""
Logging configuration — console setup and the file handlers lampctl attaches.

``setup_logging`` runs once per invocation from main.py; the level comes
from the CLI flags, then LAMPCTL_LOG_LEVEL, then WARNING.  LAMPCTL_LOG_FILE
adds a persistent file alongside the console.

Plan runs additionally capture everything into their installation log.
``file_handler`` builds those handlers and ``attach_to_root`` /
``detach_from_root`` scope them to one run.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

FMT_MESSAGE = "%(message)s"

_FMT_VERBOSE = "%(asctime)s [%(name)s] %(message)s"
_FMT_DEBUG = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d %(message)s"
_DATEFMT_CONSOLE = "%H:%M:%S"

FMT_FILE = "%(asctime)s %(levelname)-5s %(name)s: %(message)s"
DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Configure the root logger for this process.

    Args:
        level: Console level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional path to a persistent log file.
        log_file_level: Level for that file; defaults to ``level``.
    """
    numeric_level = parse_level(level)

    if numeric_level <= logging.DEBUG:
        fmt, datefmt = _FMT_DEBUG, _DATEFMT_CONSOLE
    elif numeric_level <= logging.INFO:
        fmt, datefmt = _FMT_VERBOSE, _DATEFMT_CONSOLE
    else:
        fmt, datefmt = FMT_MESSAGE, None

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(numeric_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root.setLevel(numeric_level)

    if log_file:
        file_level = parse_level(log_file_level) if log_file_level else numeric_level
        root.addHandler(file_handler(Path(log_file), level=file_level))
        root.setLevel(min(numeric_level, file_level))

    logging.raiseExceptions = False


def file_handler(
    path: Path,
    *,
    level: int = logging.DEBUG,
    fmt: str = FMT_FILE,
    mode: int | None = None,
) -> logging.FileHandler:
    """Append-mode handler on ``path``.

    ``mode`` restricts the file's permissions right after it is opened;
    installation logs carry database credentials.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    if mode is not None:
        os.chmod(path, mode)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=DATEFMT_FILE))
    return handler


def attach_to_root(handler: logging.Handler) -> int:
    """Add ``handler`` to the root logger and open the root level up to it.

    The root level gates records before any handler sees them, so a DEBUG
    file handler under a WARNING console would otherwise stay empty.

    Returns:
        The previous root level, for ``detach_from_root``.
    """
    root = logging.getLogger()
    previous = root.level
    root.addHandler(handler)
    if previous == logging.NOTSET or previous > handler.level:
        root.setLevel(handler.level)
    return previous


def detach_from_root(handler: logging.Handler, previous_level: int) -> None:
    root = logging.getLogger()
    root.removeHandler(handler)
    root.setLevel(previous_level)
    handler.close()


def parse_level(level: str | None) -> int:
    """Level name to its numeric constant; unknown names mean WARNING."""
    if not level:
        return logging.WARNING
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        return logging.WARNING
    return numeric
