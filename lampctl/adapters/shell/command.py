"""
Subprocess runner — execute host commands and capture their output.

This is the single place where ``subprocess.run`` is called.  Output is
logged at DEBUG so the installation log carries every phase's output;
stdin is never logged because it may carry SQL with credentials.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time

from lampctl.adapters.base import (
    NOT_FOUND_EXIT_CODE,
    TIMEOUT_EXIT_CODE,
    CommandResult,
    CommandRunner,
)

logger = logging.getLogger(__name__)


class SubprocessRunner(CommandRunner):
    """Run commands with ``subprocess.run`` (no shell).

    Children start in their own session: a Ctrl-C at the terminal reaches
    lampctl only, and the step in flight runs to completion.
    """

    def run(
        self,
        command: list[str],
        *,
        timeout: float = 300,
        input: str | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        child_env = None
        if env:
            child_env = os.environ.copy()
            child_env.update(env)

        logger.debug("$ %s (timeout=%ss)", " ".join(command), timeout)
        start = time.monotonic()

        try:
            proc = subprocess.run(
                command,
                input=input,
                env=child_env,
                capture_output=True,
                text=True,
                timeout=timeout,
                start_new_session=True,
            )
        except subprocess.TimeoutExpired as e:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            logger.warning("Command timed out after %ss: %s", timeout, command[0])
            return CommandResult(
                command=command,
                stdout=_decode(e.stdout),
                stderr=_decode(e.stderr) or f"Command timed out after {timeout}s",
                exit_code=TIMEOUT_EXIT_CODE,
                timed_out=True,
                duration_ms=elapsed_ms,
            )
        except OSError as e:
            # Missing binary, permission denied on exec, ...
            return CommandResult(
                command=command,
                stderr=f"Cannot execute {command[0]}: {e}",
                exit_code=NOT_FOUND_EXIT_CODE,
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        stdout = proc.stdout.strip()
        stderr = proc.stderr.strip()

        if stdout:
            logger.debug("%s", stdout)
        if stderr:
            logger.debug("stderr: %s", stderr)
        logger.debug("→ exit %d in %dms", proc.returncode, elapsed_ms)

        return CommandResult(
            command=command,
            stdout=stdout,
            stderr=stderr,
            exit_code=proc.returncode,
            duration_ms=elapsed_ms,
        )


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace").strip()
    return data.strip()
