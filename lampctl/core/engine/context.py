"""
Step context — everything a step callable needs to do its work.

Steps receive one ``StepContext``.  It carries the runner, the host
settings, the site being provisioned and the secrets store, plus a
``scratch`` dict for values one step hands to a later one within the
same run (e.g. the public IP found by the DNS gate).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from lampctl.adapters.base import CommandResult, CommandRunner
from lampctl.core.errors import CommandFailed, StepTimeout
from lampctl.core.models.settings import Settings
from lampctl.core.models.site import SiteConfig
from lampctl.core.persistence.secrets_store import SecretsStore

logger = logging.getLogger(__name__)


@dataclass
class StepContext:
    runner: CommandRunner
    settings: Settings
    secrets: SecretsStore
    site: SiteConfig | None = None
    scratch: dict[str, Any] = field(default_factory=dict)

    @property
    def web_root(self) -> Path:
        assert self.site is not None, "site steps need a SiteConfig"
        return self.site.web_root(self.settings.paths.vhosts_root)

    def run(
        self,
        command: list[str],
        *,
        timeout: float | None = None,
        input: str | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        """Run a command; the caller inspects the result."""
        return self.runner.run(
            command,
            timeout=timeout or self.settings.timeouts.default,
            input=input,
            env=env,
        )

    def check(
        self,
        command: list[str],
        *,
        timeout: float | None = None,
        input: str | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        """Run a command that must succeed.

        Raises:
            StepTimeout: If the command was killed for running too long.
            CommandFailed: If it exited non-zero.
        """
        effective_timeout = timeout or self.settings.timeouts.default
        result = self.run(command, timeout=effective_timeout, input=input, env=env)
        if result.timed_out:
            raise StepTimeout(command, effective_timeout)
        if result.exit_code != 0:
            raise CommandFailed(command, result.exit_code, result.stderr or result.stdout)
        return result

    def succeeds(self, command: list[str], **kwargs: Any) -> bool:
        """Whether a read-only check command exits 0."""
        return self.run(command, **kwargs).ok
