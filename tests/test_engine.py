"""
Tests for the engine — step state machine, halting, resume and cancellation.
"""

import json
import os
import signal
import subprocess
import sys
import textwrap
import threading
import time
from pathlib import Path

import pytest

import lampctl
from lampctl.adapters.mock import MockRunner
from lampctl.core.engine.context import StepContext
from lampctl.core.engine.executor import Executor
from lampctl.core.errors import CommandFailed, PreconditionFailed, StepTimeout
from lampctl.core.models.step import Phase, Plan, Step, StepStatus
from lampctl.core.persistence.run_records import load_record
from lampctl.core.persistence.secrets_store import SecretsStore

_PACKAGE_ROOT = Path(lampctl.__file__).resolve().parent.parent

# A two-step plan whose first step runs a real 2s command, driven the way
# the CLI drives it: SubprocessRunner under the CLI's signal handling.
_SLOW_PLAN_SCRIPT = textwrap.dedent("""\
    import json, sys, threading
    from pathlib import Path

    from lampctl.adapters.shell.command import SubprocessRunner
    from lampctl.core.engine.context import StepContext
    from lampctl.core.engine.executor import Executor
    from lampctl.core.models.settings import Settings
    from lampctl.core.models.step import Phase, Plan, Step
    from lampctl.core.persistence.secrets_store import SecretsStore
    from lampctl.ui.cli.provision import _cancel_on_signals

    root = Path(sys.argv[1])
    ctx = StepContext(runner=SubprocessRunner(), settings=Settings(),
                      secrets=SecretsStore(root / "secrets.json"))
    after = []
    plan = Plan("p", [
        Step("slow", Phase.PREP, lambda c: c.check(["sleep", "2"])),
        Step("after", Phase.PREP, lambda c: after.append(1)),
    ])
    print("ready", flush=True)
    with _cancel_on_signals(threading.Event()) as event:
        report = Executor(plan, ctx, root / "run.json", cancel_event=event).run()
    print(json.dumps({"slow": report.outcome("slow").status.value,
                      "after_ran": bool(after), "status": report.status}))
""")


@pytest.fixture
def ctx(settings) -> StepContext:
    return StepContext(
        runner=MockRunner(),
        settings=settings,
        secrets=SecretsStore(settings.secrets_path),
    )


@pytest.fixture
def record_file(tmp_path: Path) -> Path:
    return tmp_path / "runs" / "test.json"


class Flag:
    """A step whose applied state is a boolean."""

    def __init__(self, name: str, phase: Phase = Phase.PREP, applied: bool = False):
        self.name = name
        self.phase = phase
        self.applied = applied
        self.apply_calls = 0

    def step(self, *, fail: Exception | None = None, sticky: bool = True) -> Step:
        def apply(_ctx):
            self.apply_calls += 1
            if fail is not None:
                raise fail
            self.applied = sticky

        return Step(
            name=self.name,
            phase=self.phase,
            precondition=lambda _ctx: self.applied,
            apply=apply,
            verify=lambda _ctx: self.applied,
        )


# ── State machine ────────────────────────────────────────────────────


class TestStepStates:
    def test_pending_to_done(self, ctx, record_file):
        a = Flag("a")
        report = Executor(Plan("p", [a.step()]), ctx, record_file).run()
        assert report.ok
        assert report.outcome("a").status == StepStatus.DONE
        assert a.apply_calls == 1

    def test_precondition_holds_skips(self, ctx, record_file):
        a = Flag("a", applied=True)
        report = Executor(Plan("p", [a.step()]), ctx, record_file).run()
        assert report.outcome("a").status == StepStatus.SKIPPED
        assert a.apply_calls == 0

    def test_verify_failure_marks_failed(self, ctx, record_file):
        a = Flag("a")
        report = Executor(Plan("p", [a.step(sticky=False)]), ctx, record_file).run()
        outcome = report.outcome("a")
        assert outcome.status == StepStatus.FAILED
        assert outcome.kind == "verification_failed"

    def test_gate_step_without_precondition_always_runs(self, ctx, record_file):
        calls = []
        gate = Step(name="gate", phase=Phase.TLS, apply=lambda _ctx: calls.append(1))
        Executor(Plan("p", [gate]), ctx, record_file).run()
        Executor(Plan("p", [gate]), ctx, record_file).run()
        assert len(calls) == 2

    def test_command_failure_carries_stderr(self, ctx, record_file):
        ctx.runner.set_failure(("apt-get",), stderr="E: Unable to locate package", exit_code=100)

        def apply(c):
            c.check(["apt-get", "install", "-y", "nope"])

        report = Executor(Plan("p", [Step("pkg", Phase.PREP, apply)]), ctx, record_file).run()
        failed = report.failed_step
        assert failed.kind == "command_failed"
        assert "exited with code 100" in failed.error
        assert failed.stderr == "E: Unable to locate package"

    def test_timeout_kind(self, ctx, record_file):
        ctx.runner.set_timeout(("apt-get",))

        def apply(c):
            c.check(["apt-get", "update"], timeout=5)

        report = Executor(Plan("p", [Step("pkg", Phase.PREP, apply)]), ctx, record_file).run()
        assert report.failed_step.kind == "timeout"

    def test_unexpected_exception_is_internal_failure(self, ctx, record_file):
        a = Flag("a")
        report = Executor(Plan("p", [a.step(fail=KeyError("boom"))]), ctx, record_file).run()
        failed = report.failed_step
        assert failed.kind == "internal"
        assert "KeyError" in failed.error


# ── Plan traversal ───────────────────────────────────────────────────


class TestTraversal:
    def test_halts_on_first_failure(self, ctx, record_file):
        a, b, c = Flag("a"), Flag("b"), Flag("c")
        plan = Plan("p", [a.step(), b.step(fail=PreconditionFailed("nope")), c.step()])
        report = Executor(plan, ctx, record_file).run()

        assert report.status == "failed"
        assert report.failed_step.name == "b"
        assert c.apply_calls == 0
        assert a.applied  # no rollback
        record = load_record(record_file)
        assert record.status == "failed"
        assert record.steps["c"].status == StepStatus.PENDING

    def test_runs_in_listed_order(self, ctx, record_file):
        order = []
        steps = [
            Step(name, phase, lambda _c, n=name: order.append(n))
            for name, phase in [("x", Phase.PREP), ("y", Phase.SECURITY), ("z", Phase.SECURITY)]
        ]
        Executor(Plan("p", steps), ctx, record_file).run()
        assert order == ["x", "y", "z"]

    def test_phase_callback_once_per_phase(self, ctx, record_file):
        seen = []
        steps = [Flag("a", Phase.PREP).step(), Flag("b", Phase.WEB).step(),
                 Flag("c", Phase.WEB).step()]
        Executor(Plan("p", steps), ctx, record_file, on_phase=seen.append).run()
        assert seen == [Phase.PREP, Phase.WEB]

    def test_record_saved_per_transition(self, ctx, record_file):
        a = Flag("a")
        observed = []

        def spy(_ctx):
            observed.append(load_record(record_file).steps["b"].status)

        plan = Plan("p", [a.step(), Step("b", Phase.PREP, spy)])
        Executor(plan, ctx, record_file).run()
        assert observed == [StepStatus.RUNNING]
        assert load_record(record_file).status == "done"


# ── Resume ───────────────────────────────────────────────────────────


class TestResume:
    def test_resumes_after_last_completed_step(self, ctx, record_file):
        a, b, c = Flag("a"), Flag("b"), Flag("c")
        boom = CommandFailed(["certbot"], 1, "rate limited")
        Executor(Plan("p", [a.step(), b.step(fail=boom), c.step()]), ctx, record_file).run()
        assert a.apply_calls == 1

        # Make "a" look unapplied: a resumed run must still not touch it
        a.applied = False
        report = Executor(Plan("p", [a.step(), b.step(), c.step()]), ctx, record_file).run()

        assert report.ok
        assert report.resumed_from == "b"
        assert report.outcome("a").resumed
        assert a.apply_calls == 1
        assert b.apply_calls == 2
        assert c.apply_calls == 1
        assert load_record(record_file).resumed_count == 1

    def test_fingerprint_mismatch_starts_over(self, ctx, record_file):
        a, b = Flag("a"), Flag("b")
        Executor(Plan("p", [a.step(), b.step(fail=StepTimeout(["x"], 1))]), ctx, record_file,
                 fingerprint="one").run()
        a.applied = False
        report = Executor(Plan("p", [a.step(), b.step()]), ctx, record_file,
                          fingerprint="two").run()
        assert report.resumed_from is None
        assert a.apply_calls == 2

    def test_finished_record_not_resumed(self, ctx, record_file):
        a = Flag("a")
        first = Executor(Plan("p", [a.step()]), ctx, record_file).run()
        second = Executor(Plan("p", [a.step()]), ctx, record_file).run()
        assert second.run_id != first.run_id
        assert second.outcome("a").status == StepStatus.SKIPPED
        assert not second.outcome("a").resumed

    def test_fresh_ignores_unfinished_record(self, ctx, record_file):
        a, b = Flag("a"), Flag("b")
        Executor(Plan("p", [a.step(), b.step(fail=PreconditionFailed("x"))]), ctx,
                 record_file).run()
        report = Executor(Plan("p", [a.step(), b.step()]), ctx, record_file, fresh=True).run()
        assert report.resumed_from is None
        assert report.outcome("a").status == StepStatus.SKIPPED

    def test_new_steps_in_plan_start_pending(self, ctx, record_file):
        a, b = Flag("a"), Flag("b")
        Executor(Plan("p", [a.step(fail=PreconditionFailed("x"))]), ctx, record_file).run()
        report = Executor(Plan("p", [a.step(), b.step()]), ctx, record_file).run()
        assert report.ok
        assert list(load_record(record_file).steps) == ["a", "b"]


# ── Cancellation ─────────────────────────────────────────────────────


class TestCancellation:
    def test_cancel_between_steps(self, ctx, record_file):
        event = threading.Event()
        a, c = Flag("a"), Flag("c")
        plan = Plan("p", [a.step(), Step("b", Phase.PREP, lambda _c: event.set()), c.step()])

        report = Executor(plan, ctx, record_file, cancel_event=event).run()

        assert report.cancelled
        assert report.status == "cancelled"
        assert report.outcome("b").status == StepStatus.DONE
        assert c.apply_calls == 0
        assert load_record(record_file).status == "cancelled"

    def test_cancelled_run_resumes(self, ctx, record_file):
        event = threading.Event()
        a, c = Flag("a"), Flag("c")
        plan = Plan("p", [a.step(), Step("b", Phase.PREP, lambda _c: event.set()), c.step()])
        Executor(plan, ctx, record_file, cancel_event=event).run()

        report = Executor(plan, ctx, record_file).run()
        assert report.ok
        assert report.resumed_from == "c"
        assert c.apply_calls == 1

    def test_ctrl_c_lets_running_command_finish(self, tmp_path: Path):
        # Ctrl-C at a terminal signals the whole foreground process group.
        # The run is started as its own group so only it receives SIGINT.
        proc = subprocess.Popen(
            [sys.executable, "-c", _SLOW_PLAN_SCRIPT, str(tmp_path)],
            stdout=subprocess.PIPE,
            text=True,
            env={**os.environ, "PYTHONPATH": str(_PACKAGE_ROOT)},
            start_new_session=True,
        )
        try:
            assert proc.stdout.readline().strip() == "ready"
            time.sleep(0.5)
            os.killpg(proc.pid, signal.SIGINT)
            out, _ = proc.communicate(timeout=30)
        finally:
            if proc.poll() is None:
                proc.kill()
                proc.wait()

        assert "SIGINT received, stopping after the current step" in out
        result = json.loads(out.strip().splitlines()[-1])
        assert result == {"slow": "done", "after_ran": False, "status": "cancelled"}
        assert load_record(tmp_path / "run.json").steps["after"].status == StepStatus.PENDING


# ── Context helpers ──────────────────────────────────────────────────


class TestStepContext:
    def test_check_uses_default_timeout(self, ctx):
        ctx.check(["true"])
        assert ctx.runner.call_log[0]["timeout"] == ctx.settings.timeouts.default

    def test_check_falls_back_to_stdout(self, ctx):
        ctx.runner.set_response(("apache2ctl",), stdout="Syntax error on line 3", exit_code=1)
        with pytest.raises(CommandFailed) as exc:
            ctx.check(["apache2ctl", "configtest"])
        assert exc.value.stderr == "Syntax error on line 3"

    def test_succeeds(self, ctx):
        ctx.runner.set_failure(("systemctl", "is-active"))
        assert not ctx.succeeds(["systemctl", "is-active", "redis-server"])
        assert ctx.succeeds(["systemctl", "is-enabled", "redis-server"])
