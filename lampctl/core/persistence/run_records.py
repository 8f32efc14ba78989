"""
Run record persistence — atomic read/write for RunRecord.

Records are stored as JSON in ``<state_dir>/runs/<plan-id>.json``.
Writes are atomic (write to temp file, then rename) so a crash
mid-write never leaves a half-written record behind.
"""

from __future__ import annotations

import json
import logging
import re
import tempfile
from pathlib import Path

from lampctl.core.models.run_record import RunRecord

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def record_path(runs_dir: Path, plan_id: str) -> Path:
    """Path of the record for a plan id such as ``install`` or ``add-site-blog.example.com``."""
    return runs_dir / f"{_UNSAFE_CHARS.sub('_', plan_id)}.json"


def load_record(path: Path) -> RunRecord | None:
    """Load a run record.

    Returns:
        The record, or None if the file doesn't exist or is corrupt.
        A corrupt record is treated as absent: the plan restarts and
        preconditions decide what to skip.
    """
    if not path.is_file():
        return None

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        record = RunRecord.model_validate(data)
        logger.debug("Loaded run record %s (status=%s)", path, record.status)
        return record
    except json.JSONDecodeError as e:
        logger.warning("Corrupt run record %s: %s — starting fresh", path, e)
        return None
    except Exception as e:
        logger.warning("Cannot load run record %s: %s — starting fresh", path, e)
        return None


def save_record(record: RunRecord, path: Path) -> None:
    """Save a run record (atomic write)."""
    record.touch()
    path.parent.mkdir(parents=True, exist_ok=True)

    data = record.model_dump(mode="json")
    content = json.dumps(data, indent=2, ensure_ascii=False) + "\n"

    try:
        _fd, tmp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=".run_",
            suffix=".tmp",
        )
        tmp = Path(tmp_path)
        try:
            with open(_fd, "w", encoding="utf-8") as f:
                f.write(content)
            tmp.replace(path)
            logger.debug("Run record saved to %s", path)
        except Exception:
            tmp.unlink(missing_ok=True)
            raise
    except Exception as e:
        logger.error("Failed to save run record to %s: %s", path, e)
        raise


def list_records(runs_dir: Path) -> list[RunRecord]:
    """All readable records, most recently updated first."""
    if not runs_dir.is_dir():
        return []
    records = []
    for f in sorted(runs_dir.glob("*.json")):
        record = load_record(f)
        if record is not None:
            records.append(record)
    records.sort(key=lambda r: r.updated_at, reverse=True)
    return records
