"""
RunRecord — persisted per-step outcome of one plan run.

Serialized to ``<state_dir>/runs/<plan-id>.json`` after every step
transition.  On the next invocation the executor reloads it and resumes
at the first step that is not settled.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field

from lampctl.core.models.step import StepStatus

RunStatus = Literal["running", "done", "failed", "cancelled"]


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


def _run_id() -> str:
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    return f"run-{now}-{uuid.uuid4().hex[:6]}"


class StepRecord(BaseModel):
    """Outcome of one step."""

    status: StepStatus = StepStatus.PENDING
    timestamp: str | None = None
    error: str | None = None
    kind: str | None = None


class RunRecord(BaseModel):
    """Root record for one plan run."""

    schema_version: int = 1

    plan: str
    run_id: str = Field(default_factory=_run_id)
    fingerprint: str = ""
    status: RunStatus = "running"

    started_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)
    ended_at: str | None = None
    resumed_count: int = 0

    # Insertion order follows the plan's step order
    steps: dict[str, StepRecord] = Field(default_factory=dict)

    @classmethod
    def for_plan(cls, plan_name: str, step_names: list[str], fingerprint: str = "") -> RunRecord:
        """Fresh record with every step pending."""
        return cls(
            plan=plan_name,
            fingerprint=fingerprint,
            steps={name: StepRecord() for name in step_names},
        )

    @property
    def finished(self) -> bool:
        return self.status == "done"

    def touch(self) -> None:
        self.updated_at = _now_iso()

    def mark(
        self,
        name: str,
        status: StepStatus,
        error: str | None = None,
        kind: str | None = None,
    ) -> None:
        """Record a step transition."""
        self.steps[name] = StepRecord(
            status=status,
            timestamp=_now_iso(),
            error=error,
            kind=kind,
        )

    def status_of(self, name: str) -> StepStatus:
        entry = self.steps.get(name)
        return entry.status if entry else StepStatus.PENDING

    def first_unsettled(self) -> str | None:
        """Name of the step a resumed run starts at."""
        for name, entry in self.steps.items():
            if not entry.status.settled:
                return name
        return None

    def settled_count(self) -> int:
        return sum(1 for e in self.steps.values() if e.status.settled)

    def finish(self, status: RunStatus) -> None:
        self.status = status
        self.ended_at = _now_iso()
