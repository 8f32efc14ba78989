"""
lampctl — CLI entrypoint.

Usage:
    lampctl --help
    lampctl install
    lampctl add-site
    lampctl status
    lampctl secrets show
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from lampctl import __version__
from lampctl.core.observability.logging_config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="lampctl")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to lampctl.yml (default: $LAMPCTL_CONFIG or /etc/lampctl/lampctl.yml).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """lampctl — resumable LAMP + WordPress provisioning."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("LAMPCTL_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=os.environ.get("LAMPCTL_LOG_FILE"),
        log_file_level=os.environ.get("LAMPCTL_LOG_FILE_LEVEL"),
    )


def load_settings_or_exit(ctx: click.Context):
    """Settings for this invocation; exits 1 on a config error."""
    from lampctl.core.config.loader import ConfigError, load_settings

    try:
        return load_settings(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show the last run of each plan on this host."""
    from lampctl.core.use_cases.status import get_status

    settings = load_settings_or_exit(ctx)
    result = get_status(settings)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    if result.error:
        click.secho(f"⚠️  {result.error}", fg="yellow")

    click.secho(f"\n📋 lampctl state: {result.state_dir}", fg="cyan", bold=True)

    if not result.records:
        click.echo("   No runs recorded yet.")
    for record in result.records:
        color = {"done": "green", "failed": "red", "cancelled": "yellow"}.get(record.status, "white")
        click.echo(f"\n   {record.plan} ", nl=False)
        click.secho(record.status, fg=color, bold=True, nl=False)
        click.echo(f"  ({record.run_id}, {record.settled_count()}/{len(record.steps)} settled)")
        for name, step in record.steps.items():
            icon = {"done": "✓", "skipped": "⊘", "failed": "✗", "running": "…"}.get(
                step.status.value, " "
            )
            line = f"     {icon} {name}"
            if step.error:
                line += f": {step.error}"
            click.echo(line)

    click.echo(f"\n   Secrets stored: {len(result.secret_keys)}")
    if result.installation_id:
        click.echo(f"   Installation: {result.installation_id}")
    if result.latest_log:
        click.echo(f"   Latest install log: {result.latest_log}")
    click.echo()


# ── Register sub-groups ─────────────────────────────────────────

from lampctl.ui.cli.provision import add_site, install  # noqa: E402
from lampctl.ui.cli.secrets import secrets  # noqa: E402

cli.add_command(install)
cli.add_command(add_site)
cli.add_command(secrets)


if __name__ == "__main__":
    cli()
