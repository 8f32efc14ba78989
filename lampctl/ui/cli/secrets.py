"""
CLI commands for the secrets store.

Thin wrappers over ``lampctl.core.use_cases.secrets``.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click


@click.group()
def secrets() -> None:
    """Generated credentials — inspect the bundle, import legacy values."""


@secrets.command()
@click.option("--reveal", is_flag=True, help="Print values in clear text.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def show(ctx: click.Context, reveal: bool, as_json: bool) -> None:
    """List stored secrets (values masked unless --reveal)."""
    from lampctl.core.errors import SecretNotFound
    from lampctl.core.use_cases.secrets import list_secrets
    from lampctl.main import load_settings_or_exit

    settings = load_settings_or_exit(ctx)
    try:
        values = list_secrets(settings, reveal=reveal)
    except SecretNotFound as e:
        click.secho(f"✗ {e.message}", fg="red")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(values, indent=2))
        return

    if not values:
        click.echo(f"  No secrets stored in {settings.secrets_path}")
        return

    click.secho(f"  {settings.secrets_path}", fg="cyan", bold=True)
    width = max(len(k) for k in values)
    for key, value in values.items():
        click.echo(f"  {key:<{width}}  {value}")


@secrets.command("adopt-log")
@click.option(
    "--log",
    "log_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Install log to read (default: newest wordpress_install_*.log).",
)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def adopt_log(ctx: click.Context, log_path: Path | None, as_json: bool) -> None:
    """Import the MariaDB root password from a legacy install log."""
    from lampctl.core.use_cases.secrets import adopt_from_log
    from lampctl.main import load_settings_or_exit

    settings = load_settings_or_exit(ctx)
    result = adopt_from_log(settings, log_path)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        if result.error:
            sys.exit(1)
        return

    if result.error:
        click.secho(f"✗ {result.error}", fg="red")
        sys.exit(1)

    if result.adopted:
        click.secho(f"  ✓ MariaDB root password imported from {result.log_path}", fg="green")
    else:
        click.secho("  ⊘ A MariaDB root password is already stored; nothing imported", fg="yellow")
