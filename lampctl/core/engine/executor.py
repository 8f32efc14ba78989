"""
Engine executor — walks a plan, one step at a time.

Flow per step:
    precondition holds → Skipped
    otherwise          → Running → apply → verify → Done | Failed

The run record is saved after every transition, so an interrupted run
resumes at the first step that is not settled.  The first failure halts
the plan; already-applied steps are left in place (no rollback) because
their preconditions make them safe to re-attempt on the next run.

Cancellation is only honoured between steps.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from lampctl.core.engine.context import StepContext
from lampctl.core.errors import ProvisionError, VerificationFailed
from lampctl.core.models.run_record import RunRecord, StepRecord
from lampctl.core.models.step import Phase, Plan, Step, StepStatus
from lampctl.core.persistence.run_records import load_record, save_record

logger = logging.getLogger(__name__)


@dataclass
class StepOutcome:
    """Result of one step in this invocation."""

    name: str
    phase: Phase
    status: StepStatus
    error: str | None = None
    kind: str | None = None
    stderr: str = ""
    duration_ms: int = 0
    resumed: bool = False   # settled by an earlier, interrupted run

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "phase": self.phase.value,
            "status": self.status.value,
            "error": self.error,
            "kind": self.kind,
            "stderr": self.stderr,
            "duration_ms": self.duration_ms,
            "resumed": self.resumed,
        }


@dataclass
class ExecutionReport:
    """Result of executing a plan."""

    plan: str
    run_id: str = ""
    outcomes: list[StepOutcome] = field(default_factory=list)
    cancelled: bool = False
    resumed_from: str | None = None

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def done(self) -> int:
        return sum(1 for o in self.outcomes if o.status == StepStatus.DONE and not o.resumed)

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.status == StepStatus.SKIPPED)

    @property
    def failed_step(self) -> StepOutcome | None:
        for o in self.outcomes:
            if o.status == StepStatus.FAILED:
                return o
        return None

    @property
    def ok(self) -> bool:
        return self.failed_step is None and not self.cancelled

    @property
    def status(self) -> str:
        if self.cancelled:
            return "cancelled"
        if self.failed_step is not None:
            return "failed"
        return "done"

    def outcome(self, name: str) -> StepOutcome | None:
        for o in self.outcomes:
            if o.name == name:
                return o
        return None

    def to_dict(self) -> dict:
        failed = self.failed_step
        return {
            "plan": self.plan,
            "run_id": self.run_id,
            "status": self.status,
            "resumed_from": self.resumed_from,
            "done": self.done,
            "skipped": self.skipped,
            "failed_step": failed.name if failed else None,
            "steps": [o.to_dict() for o in self.outcomes],
        }


class Executor:
    """Sequential, resumable plan executor.

    Args:
        plan: The plan to run.
        context: Shared step context.
        record_path: Where the run record lives.
        fingerprint: Identity of the run's inputs; a stored record with a
            different fingerprint is not resumed.
        cancel_event: Set from outside (signal handler) to stop between steps.
        fresh: Ignore any stored record.
    """

    def __init__(
        self,
        plan: Plan,
        context: StepContext,
        record_path: Path,
        *,
        fingerprint: str = "",
        cancel_event: threading.Event | None = None,
        fresh: bool = False,
        on_phase: Callable[[Phase], None] | None = None,
    ):
        self.plan = plan
        self.context = context
        self.record_path = record_path
        self.fingerprint = fingerprint
        self.cancel_event = cancel_event or threading.Event()
        self.fresh = fresh
        self._on_phase = on_phase

    # ── Record handling ──────────────────────────────────────────

    def _open_record(self) -> tuple[RunRecord, bool]:
        """Load a resumable record or start a new one.

        Returns:
            (record, resumed)
        """
        existing = None if self.fresh else load_record(self.record_path)

        if existing is not None and not existing.finished:
            if existing.plan != self.plan.name:
                logger.warning("Run record %s belongs to plan '%s'; starting fresh",
                               self.record_path, existing.plan)
            elif existing.fingerprint != self.fingerprint:
                logger.warning("Inputs changed since run %s; starting fresh", existing.run_id)
            else:
                # Steps added to the plan since the record was written start pending
                for name in self.plan.step_names:
                    existing.steps.setdefault(name, StepRecord())
                existing.steps = {n: existing.steps[n] for n in self.plan.step_names}
                existing.status = "running"
                existing.ended_at = None
                existing.resumed_count += 1
                return existing, True

        record = RunRecord.for_plan(self.plan.name, self.plan.step_names, self.fingerprint)
        return record, False

    def _save(self, record: RunRecord) -> None:
        save_record(record, self.record_path)

    # ── Execution ────────────────────────────────────────────────

    def run(self) -> ExecutionReport:
        record, resumed = self._open_record()
        report = ExecutionReport(plan=self.plan.name, run_id=record.run_id)
        if resumed:
            report.resumed_from = record.first_unsettled()
            logger.info("Resuming run %s at step '%s'", record.run_id, report.resumed_from)
        self._save(record)

        current_phase: Phase | None = None

        for step in self.plan.steps:
            previous = record.status_of(step.name)
            if resumed and previous.settled:
                report.outcomes.append(
                    StepOutcome(step.name, step.phase, previous, resumed=True)
                )
                logger.info("⊘ %s (completed in an earlier run)", step.name)
                continue

            if self.cancel_event.is_set():
                logger.warning("Cancelled before step '%s'", step.name)
                report.cancelled = True
                record.finish("cancelled")
                self._save(record)
                return report

            if step.phase != current_phase:
                current_phase = step.phase
                if self._on_phase is not None:
                    self._on_phase(step.phase)

            outcome = self._run_step(step, record)
            report.outcomes.append(outcome)

            if outcome.status == StepStatus.FAILED:
                record.finish("failed")
                self._save(record)
                logger.error("✗ %s failed: %s", step.name, outcome.error)
                return report

        record.finish("done")
        self._save(record)
        return report

    def _run_step(self, step: Step, record: RunRecord) -> StepOutcome:
        start = time.monotonic()
        ctx = self.context

        def _elapsed() -> int:
            return int((time.monotonic() - start) * 1000)

        try:
            if step.precondition is not None and step.precondition(ctx):
                record.mark(step.name, StepStatus.SKIPPED)
                self._save(record)
                logger.info("⊘ %s (already applied)", step.name)
                return StepOutcome(step.name, step.phase, StepStatus.SKIPPED,
                                   duration_ms=_elapsed())

            record.mark(step.name, StepStatus.RUNNING)
            self._save(record)
            logger.info("→ %s", step.name)

            step.apply(ctx)

            if step.verify is not None and not step.verify(ctx):
                raise VerificationFailed(
                    f"Step '{step.name}' applied but its verification does not hold"
                )

        except ProvisionError as e:
            record.mark(step.name, StepStatus.FAILED, error=e.message, kind=e.kind)
            return StepOutcome(step.name, step.phase, StepStatus.FAILED,
                               error=e.message, kind=e.kind, stderr=e.stderr,
                               duration_ms=_elapsed())
        except Exception as e:
            logger.exception("Unexpected error in step '%s'", step.name)
            record.mark(step.name, StepStatus.FAILED, error=str(e), kind="internal")
            return StepOutcome(step.name, step.phase, StepStatus.FAILED,
                               error=f"{type(e).__name__}: {e}", kind="internal",
                               duration_ms=_elapsed())

        record.mark(step.name, StepStatus.DONE)
        self._save(record)
        logger.info("✓ %s", step.name)
        return StepOutcome(step.name, step.phase, StepStatus.DONE, duration_ms=_elapsed())
