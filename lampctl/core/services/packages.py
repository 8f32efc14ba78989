"""
Package helpers — apt/dpkg queries and installs.
"""

from __future__ import annotations

import logging

from lampctl.core.engine.context import StepContext

logger = logging.getLogger(__name__)

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}
_INSTALLED = "install ok installed"


def missing_packages(ctx: StepContext, packages: list[str]) -> list[str]:
    """Packages dpkg does not report as installed."""
    result = ctx.run(
        ["dpkg-query", "-W", "-f=${Package} ${Status}\n", *packages],
    )
    installed = set()
    for line in result.stdout.splitlines():
        name, _, status = line.partition(" ")
        if status.strip() == _INSTALLED:
            installed.add(name.split(":", 1)[0])
    missing = [p for p in packages if p not in installed]
    if missing:
        logger.debug("Missing packages: %s", ", ".join(missing))
    return missing


def install(ctx: StepContext, packages: list[str]) -> None:
    """``apt-get update && apt-get upgrade -y && apt-get install -y ...``."""
    timeout = ctx.settings.timeouts.packages
    ctx.check(["apt-get", "update"], timeout=timeout, env=APT_ENV)
    ctx.check(["apt-get", "upgrade", "-y"], timeout=timeout, env=APT_ENV)
    ctx.check(["apt-get", "install", "-y", *packages], timeout=timeout, env=APT_ENV)


def service_running(ctx: StepContext, service: str) -> bool:
    """Enabled at boot and active now."""
    return ctx.succeeds(["systemctl", "is-enabled", "--quiet", service]) and ctx.succeeds(
        ["systemctl", "is-active", "--quiet", service]
    )
