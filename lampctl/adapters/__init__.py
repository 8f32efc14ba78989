"""Command runners — the only way the engine touches the host OS."""

from lampctl.adapters.base import CommandResult, CommandRunner

__all__ = ["CommandResult", "CommandRunner"]
