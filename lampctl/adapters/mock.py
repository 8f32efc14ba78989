"""
Mock runner — universal test double for host commands.

Returns success for everything by default.  Responses can be scripted
per argv prefix, and every call is recorded so tests can assert which
tools were (or were not) invoked.
"""

from __future__ import annotations

from collections.abc import Callable

from lampctl.adapters.base import TIMEOUT_EXIT_CODE, CommandResult, CommandRunner

Responder = Callable[[list[str], "str | None", "dict[str, str] | None"], CommandResult]


class MockRunner(CommandRunner):
    """Scriptable command runner for tests.

    Responses are matched on the longest registered argv prefix, so
    ``("ufw", "status")`` beats ``("ufw",)``.
    """

    def __init__(self, default_stdout: str = ""):
        self._default_stdout = default_stdout
        self._responses: dict[tuple[str, ...], CommandResult | Responder] = {}
        self._call_log: list[dict] = []

    @property
    def call_log(self) -> list[dict]:
        """All calls received: ``{"command", "input", "env", "timeout"}``."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    @property
    def commands(self) -> list[list[str]]:
        return [c["command"] for c in self._call_log]

    def called(self, *prefix: str) -> bool:
        """Whether any recorded command starts with ``prefix``."""
        return any(tuple(cmd[: len(prefix)]) == prefix for cmd in self.commands)

    def set_response(
        self,
        prefix: tuple[str, ...],
        stdout: str = "",
        stderr: str = "",
        exit_code: int = 0,
    ) -> None:
        """Script a fixed result for commands starting with ``prefix``."""
        self._responses[tuple(prefix)] = CommandResult(
            command=list(prefix),
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
        )

    def set_handler(self, prefix: tuple[str, ...], handler: Responder) -> None:
        """Compute the result dynamically (for state-dependent tools).

        The handler receives ``(command, input, env)``.
        """
        self._responses[tuple(prefix)] = handler

    def set_failure(
        self, prefix: tuple[str, ...], stderr: str = "Mock failure", exit_code: int = 1
    ) -> None:
        self.set_response(prefix, stderr=stderr, exit_code=exit_code)

    def set_timeout(self, prefix: tuple[str, ...]) -> None:
        self._responses[tuple(prefix)] = CommandResult(
            command=list(prefix),
            stderr="Command timed out",
            exit_code=TIMEOUT_EXIT_CODE,
            timed_out=True,
        )

    def run(
        self,
        command: list[str],
        *,
        timeout: float = 300,
        input: str | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        self._call_log.append(
            {"command": list(command), "input": input, "env": env, "timeout": timeout}
        )

        match = None
        for prefix in self._responses:
            if tuple(command[: len(prefix)]) == prefix:
                if match is None or len(prefix) > len(match):
                    match = prefix

        if match is None:
            return CommandResult(command=list(command), stdout=self._default_stdout)

        response = self._responses[match]
        if callable(response):
            return response(list(command), input, env)
        return response.model_copy(update={"command": list(command)})

    def reset(self) -> None:
        """Clear call log and scripted responses."""
        self._call_log.clear()
        self._responses.clear()
