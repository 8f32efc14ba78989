"""
CLI commands for the two provisioning plans.

Thin wrappers over ``lampctl.core.use_cases.provision``: collect the
site answers (prompting for anything not given as an option), confirm,
then render the result.  Also exposes ``lampctl-install`` and
``lampctl-add-site`` as standalone executables.
"""

from __future__ import annotations

import contextlib
import json
import os
import signal
import sys
import threading
from collections.abc import Generator

import click
from pydantic import ValidationError

from lampctl.core.models.site import SiteConfig
from lampctl.core.models.step import Phase

_RULE = "=" * 52
_ERR_RULE = "#" * 52


def _print_msg(message: str) -> None:
    click.secho(f"\n{_RULE}", fg="blue")
    click.secho(message, fg="green")
    click.secho(_RULE, fg="blue")


def _error_banner(message: str, details: list[str] | None = None) -> None:
    click.secho(f"\n{_ERR_RULE}", fg="red")
    click.secho(f"# ERROR: {message}", fg="red", bold=True)
    for line in details or []:
        click.secho(f"# {line}", fg="red")
    click.secho(_ERR_RULE, fg="red")


@contextlib.contextmanager
def _cancel_on_signals(event: threading.Event) -> Generator[threading.Event, None, None]:
    """SIGINT/SIGTERM request cancellation at the next step boundary."""

    def handler(signum: int, _frame: object) -> None:
        if not event.is_set():
            click.secho(
                f"\n⚠️  {signal.Signals(signum).name} received, stopping after the current step",
                fg="yellow",
            )
        event.set()

    previous = {sig: signal.signal(sig, handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield event
    finally:
        for sig, prev in previous.items():
            signal.signal(sig, prev)


def _site_options(fn):
    """Prompted site answers shared by both plans."""
    options = [
        click.option("--domain", prompt="Enter your domain name (e.g., example.com)",
                     help="Domain (or subdomain) of the site."),
        click.option("--db-name", prompt="Enter a database name", help="MariaDB database name."),
        click.option("--db-user", prompt="Enter a database username", help="MariaDB user name."),
        click.option("--db-password", prompt="Enter a strong password for the database user "
                     "(blank to generate one)",
                     hide_input=True, confirmation_prompt=True, default="", show_default=False,
                     help="Password for the database user."),
        click.option("--admin-email", prompt="Enter your admin email (for SSL certificate)",
                     help="Contact address for the certificate and vhost."),
        click.option("--yes", "-y", "assume_yes", is_flag=True,
                     help="Skip the confirmation prompt."),
        click.option("--fresh", is_flag=True,
                     help="Ignore the stored run record and start from the first step."),
        click.option("--json-output", "--json", "as_json", is_flag=True,
                     help="Output the result as JSON."),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


def _build_site(domain: str, db_name: str, db_user: str, db_password: str,
                admin_email: str) -> SiteConfig:
    try:
        return SiteConfig(
            domain=domain,
            db_name=db_name,
            db_user=db_user,
            db_password=db_password,
            admin_email=admin_email,
        )
    except ValidationError as e:
        details = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        _error_banner("Invalid site details.", details)
        sys.exit(1)


def _confirm(site: SiteConfig, assume_yes: bool, show: bool = True) -> None:
    if show:
        _show_site(site)
    if assume_yes:
        return
    if not click.confirm("\nIs this correct?", default=False):
        _error_banner("Operation cancelled by user.")
        sys.exit(1)


def _show_site(site: SiteConfig) -> None:
    click.echo(f"\n  Domain:        {site.domain}")
    click.echo(f"  Database:      {site.db_name}")
    click.echo(f"  Database user: {site.db_user}")
    click.echo(f"  Admin email:   {site.admin_email}")


def _require_root(settings) -> None:
    if settings.require_root and os.geteuid() != 0:
        _error_banner("This command must be run as root. Please use sudo.")
        sys.exit(1)


def _on_phase(number: int, phase: Phase) -> None:
    _print_msg(f"PHASE {number}: {phase.title}...")


def _render(result, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        if not result.ok:
            sys.exit(1)
        return

    log_hint = []
    if result.log_path is not None and result.log_path.is_file():
        log_hint = [f"Full log: {result.log_path}"]

    if result.error:
        _error_banner(result.error, log_hint)
        sys.exit(1)

    report = result.report
    if report.cancelled:
        _error_banner("Operation cancelled; re-run the same command to resume.", log_hint)
        sys.exit(1)

    failed = report.failed_step
    if failed is not None:
        details = [f"[{failed.kind}] {failed.error}"]
        details += failed.stderr.strip().splitlines()[-15:]
        if failed.name == "db-root-access" and failed.kind == "precondition_failed":
            details.append("Hosts set up by the legacy installer: run 'lampctl secrets adopt-log'.")
        _error_banner(f"Step '{failed.name}' failed.", details + log_hint)
        sys.exit(1)

    _print_msg("✅ SUCCESS! Your WordPress site is ready.")
    if report.resumed_from:
        click.echo(f"Resumed at step '{report.resumed_from}'.")
    click.echo(f"{report.done} step(s) applied, {report.skipped} already in place.")
    click.echo("-" * 50)
    for label, value in result.summary:
        click.echo(f"{label}: {value}")
    click.echo("-" * 50)
    click.echo(f"Installation Log saved to: {result.log_path}")


def _run(ctx: click.Context, runner_fn, title: str, site_args: dict,
         assume_yes: bool, fresh: bool, as_json: bool) -> None:
    from lampctl.main import load_settings_or_exit

    settings = load_settings_or_exit(ctx)
    _require_root(settings)

    site = _build_site(**site_args)
    if not as_json:
        _print_msg(title)
    _confirm(site, assume_yes, show=not as_json)

    with _cancel_on_signals(threading.Event()) as cancel_event:
        result = runner_fn(
            site,
            settings,
            runner=ctx.obj.get("runner"),
            cancel_event=cancel_event,
            fresh=fresh,
            on_phase=None if as_json else _on_phase,
        )
    _render(result, as_json)


@click.command()
@_site_options
@click.pass_context
def install(ctx: click.Context, domain: str, db_name: str, db_user: str, db_password: str,
            admin_email: str, assume_yes: bool, fresh: bool, as_json: bool) -> None:
    """Install the LAMP stack and the first WordPress site."""
    from lampctl.core.use_cases.provision import run_install

    _run(ctx, run_install, "WordPress Server Installation",
         dict(domain=domain, db_name=db_name, db_user=db_user,
              db_password=db_password, admin_email=admin_email),
         assume_yes, fresh, as_json)


@click.command("add-site")
@_site_options
@click.pass_context
def add_site(ctx: click.Context, domain: str, db_name: str, db_user: str, db_password: str,
             admin_email: str, assume_yes: bool, fresh: bool, as_json: bool) -> None:
    """Add another WordPress site (or subdomain) to an installed host."""
    from lampctl.core.use_cases.provision import run_add_site

    _run(ctx, run_add_site, "Add a New WordPress Site or Subdomain",
         dict(domain=domain, db_name=db_name, db_user=db_user,
              db_password=db_password, admin_email=admin_email),
         assume_yes, fresh, as_json)


# ── Standalone executables ──────────────────────────────────────

_GROUP_FLAGS = {"-v", "--verbose", "-q", "--quiet", "--debug"}
_GROUP_VALUE_OPTIONS = {"-c", "--config"}


def split_group_args(argv: list[str]) -> tuple[list[str], list[str]]:
    """Split leading ``lampctl`` options (``-v``, ``--debug``, ``-c FILE``) off ``argv``.

    ``lampctl-install -c site.yml --debug --domain x`` then behaves like
    ``lampctl -c site.yml --debug install --domain x``.
    """
    group: list[str] = []
    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg in _GROUP_FLAGS or arg.startswith("--config="):
            group.append(arg)
            i += 1
        elif arg in _GROUP_VALUE_OPTIONS and i + 1 < len(argv):
            group += argv[i:i + 2]
            i += 2
        else:
            break
    return group, argv[i:]


def _standalone(command: str) -> None:
    from lampctl.main import cli

    group, rest = split_group_args(sys.argv[1:])
    cli.main(args=[*group, command, *rest], prog_name=f"lampctl-{command}")


def install_main() -> None:
    """``lampctl-install``: same as ``lampctl install``."""
    _standalone("install")


def add_site_main() -> None:
    """``lampctl-add-site``: same as ``lampctl add-site``."""
    _standalone("add-site")
