"""
Provision use cases — run the Install or Add-Site plan end to end.

This is the top-level orchestrator: it takes the host lock, opens the
installation log, builds the plan, executes it against the host and
writes the credential summary.  The CLI only collects answers and
renders the result.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from lampctl.adapters.base import CommandRunner
from lampctl.core.engine.context import StepContext
from lampctl.core.engine.executor import ExecutionReport, Executor
from lampctl.core.errors import PreconditionFailed, ProvisionError, UserCancelled
from lampctl.core.models.settings import Settings
from lampctl.core.models.site import SiteConfig
from lampctl.core.models.step import Phase, Plan
from lampctl.core.persistence import install_log as il
from lampctl.core.persistence.lock import exclusive_lock
from lampctl.core.persistence.run_records import record_path
from lampctl.core.persistence.secrets_store import DB_ROOT_PASSWORD, SecretsStore
from lampctl.core.plans import add_site, common, install
from lampctl.core.services import dns

logger = logging.getLogger(__name__)


@dataclass
class ProvisionResult:
    """Outcome of one provisioning invocation."""

    plan: str
    site: SiteConfig | None = None
    report: ExecutionReport | None = None
    log_path: Path | None = None
    summary: list[tuple[str, str]] = field(default_factory=list)
    error: str | None = None
    error_kind: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.report is not None and self.report.ok

    @property
    def failed_step(self) -> str | None:
        if self.report is None or self.report.failed_step is None:
            return None
        return self.report.failed_step.name

    def to_dict(self) -> dict:
        result: dict = {
            "plan": self.plan,
            "ok": self.ok,
            "log_path": str(self.log_path) if self.log_path else None,
        }
        if self.site is not None:
            result["domain"] = self.site.domain
        if self.error:
            result["error"] = self.error
        if self.error_kind:
            result["error_kind"] = self.error_kind
        if self.report:
            result["report"] = self.report.to_dict()
        if self.ok:
            result["summary"] = dict(self.summary)
        return result


def plan_id(plan: Plan, site: SiteConfig) -> str:
    """Run-record id: one record for the host install, one per added site."""
    if plan.name == install.PLAN_NAME:
        return plan.name
    return f"{plan.name}-{site.domain}"


def _server_address(ctx: StepContext) -> str:
    cached = ctx.scratch.get(common.DNS_MATCH_KEY, {}).get(ctx.site.domain)
    if cached:
        return cached
    try:
        return dns.fetch_public_ip(ctx.settings.urls.public_ip)
    except PreconditionFailed as e:
        logger.warning("%s; reporting the domain as the SSH host", e.message)
        return ctx.site.domain


def _summary(ctx: StepContext, *, include_root: bool) -> list[tuple[str, str]]:
    site = ctx.site
    lines = [
        (il.LABEL_SITE_URL, f"https://{site.domain}"),
        (il.LABEL_SSH_HOST, _server_address(ctx)),
        (il.LABEL_SSH_USER, "root"),
        (il.LABEL_DB_NAME, site.db_name),
        (il.LABEL_DB_USER, f"{site.db_user} (access from localhost)"),
        (il.LABEL_DB_PASSWORD, common.site_password(ctx)),
    ]
    if include_root:
        # Last line of the log: read back by tooling that greps for it
        lines.append((il.LABEL_ROOT_PASSWORD, ctx.secrets.lookup(DB_ROOT_PASSWORD)))
    return lines


def _execute(
    plan: Plan,
    site: SiteConfig,
    settings: Settings,
    runner: CommandRunner,
    log_path: Path,
    *,
    cancel_event: threading.Event | None,
    fresh: bool,
    include_root: bool,
    on_phase: Callable[[int, Phase], None] | None,
) -> ProvisionResult:
    result = ProvisionResult(plan=plan.name, site=site, log_path=log_path)
    secrets = SecretsStore(settings.secrets_path)
    ctx = StepContext(runner=runner, settings=settings, secrets=secrets, site=site)

    try:
        with exclusive_lock(settings.lock_path), il.InstallLog(log_path) as ilog:
            ilog.banner(f"lampctl {plan.name}: {site.domain}")
            phase_numbers = {p: i for i, p in enumerate(plan.phases, start=1)}

            def phase_started(phase: Phase) -> None:
                number = phase_numbers[phase]
                ilog.banner(f"PHASE {number}: {phase.title}...")
                if on_phase is not None:
                    on_phase(number, phase)

            executor = Executor(
                plan,
                ctx,
                record_path(settings.runs_dir, plan_id(plan, site)),
                fingerprint=site.fingerprint(),
                cancel_event=cancel_event,
                fresh=fresh,
                on_phase=phase_started,
            )
            report = executor.run()
            result.report = report

            if report.ok:
                result.summary = _summary(ctx, include_root=include_root)
                ilog.banner("SUCCESS! WordPress is ready.")
                for label, value in result.summary:
                    ilog.record(label, value)
            elif report.cancelled:
                result.error_kind = UserCancelled.kind
                ilog.banner("Run cancelled; re-run to resume.")
            else:
                failed = report.failed_step
                ilog.banner(f"ERROR in step '{failed.name}': {failed.error}")
                if failed.stderr:
                    ilog.line(failed.stderr.rstrip())
    except ProvisionError as e:
        # Lock held, or the secret bundle is unreadable
        logger.error("%s", e.message)
        result.error = e.message
        result.error_kind = e.kind

    return result


def run_install(
    site: SiteConfig,
    settings: Settings,
    *,
    runner: CommandRunner | None = None,
    cancel_event: threading.Event | None = None,
    fresh: bool = False,
    now: datetime | None = None,
    on_phase: Callable[[int, Phase], None] | None = None,
) -> ProvisionResult:
    """Provision a fresh host with its first WordPress site.

    The first site is served on both ``<domain>`` and ``www.<domain>``,
    and the default Apache site is disabled.
    """
    if runner is None:
        from lampctl.adapters.shell.command import SubprocessRunner

        runner = SubprocessRunner()

    site = site.model_copy(update={"www_alias": True})
    log_path = il.new_log_path(settings.paths.log_dir, il.INSTALL_LOG_PREFIX, now)
    return _execute(
        install.build_install_plan(), site, settings, runner, log_path,
        cancel_event=cancel_event, fresh=fresh, include_root=True, on_phase=on_phase,
    )


def run_add_site(
    site: SiteConfig,
    settings: Settings,
    *,
    runner: CommandRunner | None = None,
    cancel_event: threading.Event | None = None,
    fresh: bool = False,
    now: datetime | None = None,
    on_phase: Callable[[int, Phase], None] | None = None,
) -> ProvisionResult:
    """Add one more site, reusing the stored MariaDB root password."""
    if runner is None:
        from lampctl.adapters.shell.command import SubprocessRunner

        runner = SubprocessRunner()

    prefix = f"{il.ADD_SITE_LOG_PREFIX}{site.domain}_"
    log_path = il.new_log_path(settings.paths.log_dir, prefix, now)
    return _execute(
        add_site.build_add_site_plan(), site, settings, runner, log_path,
        cancel_event=cancel_event, fresh=fresh, include_root=False, on_phase=on_phase,
    )
