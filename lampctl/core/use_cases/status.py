"""
Status use case — what lampctl has done on this host so far.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from lampctl.core.errors import SecretNotFound
from lampctl.core.models.run_record import RunRecord
from lampctl.core.models.settings import Settings
from lampctl.core.persistence.install_log import latest_install_log
from lampctl.core.persistence.run_records import list_records
from lampctl.core.persistence.secrets_store import SecretsStore


@dataclass
class StatusResult:
    """Aggregated host status."""

    state_dir: Path | None = None
    records: list[RunRecord] = field(default_factory=list)
    secret_keys: list[str] = field(default_factory=list)
    installation_id: str | None = None
    latest_log: Path | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        result: dict = {"state_dir": str(self.state_dir) if self.state_dir else None}
        if self.error:
            result["error"] = self.error
        result["runs"] = [
            {
                "plan": r.plan,
                "run_id": r.run_id,
                "status": r.status,
                "started_at": r.started_at,
                "ended_at": r.ended_at,
                "resumed_count": r.resumed_count,
                "steps": {
                    name: {"status": s.status.value, "timestamp": s.timestamp, "error": s.error}
                    for name, s in r.steps.items()
                },
            }
            for r in self.records
        ]
        result["installation_id"] = self.installation_id
        result["secrets"] = self.secret_keys
        result["latest_install_log"] = str(self.latest_log) if self.latest_log else None
        return result


def get_status(settings: Settings) -> StatusResult:
    """Run records (newest first), stored secret keys and the newest log."""
    result = StatusResult(state_dir=settings.paths.state_dir)
    result.records = list_records(settings.runs_dir)
    result.latest_log = latest_install_log(settings.paths.log_dir)

    try:
        store = SecretsStore(settings.secrets_path)
        result.secret_keys = store.keys()
        result.installation_id = store.installation_id
    except SecretNotFound as e:
        result.error = e.message
    return result
