"""
Command runner base — the protocol contract between steps and host tools.

Every external tool (apt-get, a2enmod, ufw, mysql, certbot, git, dig)
is reached through a ``CommandRunner``.  Steps never call
``subprocess`` directly, which keeps them testable with ``MockRunner``.

Runners NEVER raise for a non-zero exit: the result carries the exit
code and the caller decides.  Timeouts are reported the same way.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Literal

from pydantic import BaseModel

# Exit code reported for a killed (timed out) command, same as coreutils timeout(1)
TIMEOUT_EXIT_CODE = 124
# Exit code reported when the executable could not be started
NOT_FOUND_EXIT_CODE = 127


class CommandResult(BaseModel):
    """Outcome of one external command."""

    command: list[str]
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    timed_out: bool = False
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        """Whether the command exited 0 within its timeout."""
        return self.exit_code == 0 and not self.timed_out

    @property
    def failure_kind(self) -> Literal["timeout", "command_failed"] | None:
        if self.timed_out:
            return "timeout"
        if self.exit_code != 0:
            return "command_failed"
        return None


class CommandRunner(ABC):
    """Abstract base class for command runners.

    To add a runner:
        1. Subclass CommandRunner
        2. Implement ``run``
    """

    @abstractmethod
    def run(
        self,
        command: list[str],
        *,
        timeout: float = 300,
        input: str | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        """Run ``command`` and capture its output.

        Args:
            command: Argument vector; never interpreted by a shell.
            timeout: Seconds before the process is killed.
            input: Text piped to stdin (SQL, passwords).
            env: Extra environment variables merged over the current env.

        MUST never raise for a non-zero exit or a timeout.
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"
