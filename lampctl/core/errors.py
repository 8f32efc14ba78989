"""
Provisioning errors — the failure vocabulary shared by steps and the engine.

Step callables raise these.  The executor catches them at the step
boundary and turns them into a ``failed`` outcome carrying ``kind``,
so the operator sees which category of failure stopped the plan.
"""

from __future__ import annotations


class ProvisionError(Exception):
    """Base class for every failure a plan run can report."""

    kind = "error"

    def __init__(self, message: str, *, stderr: str = ""):
        super().__init__(message)
        self.message = message
        self.stderr = stderr


class PreconditionFailed(ProvisionError):
    """An external precondition does not hold (DNS mismatch, missing secret)."""

    kind = "precondition_failed"


class SecretNotFound(PreconditionFailed):
    """A secret required by the plan is missing or unreadable."""

    def __init__(self, key: str, reason: str = ""):
        message = f"Secret '{key}' not found"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.key = key


class CommandFailed(ProvisionError):
    """An external tool exited non-zero."""

    kind = "command_failed"

    def __init__(self, command: list[str], exit_code: int, stderr: str = ""):
        label = " ".join(command[:3])
        super().__init__(f"'{label}' exited with code {exit_code}", stderr=stderr)
        self.command = command
        self.exit_code = exit_code


class StepTimeout(ProvisionError):
    """An external tool ran past its timeout and was killed."""

    kind = "timeout"

    def __init__(self, command: list[str], timeout: float):
        super().__init__(f"'{' '.join(command[:3])}' timed out after {timeout:g}s")
        self.command = command
        self.timeout = timeout


class VerificationFailed(ProvisionError):
    """``verify()`` did not hold after ``apply()`` completed."""

    kind = "verification_failed"


class UserCancelled(ProvisionError):
    """The operator declined confirmation or interrupted the run."""

    kind = "user_cancelled"


class LockHeld(ProvisionError):
    """Another lampctl process holds the host lock."""

    kind = "lock_held"
