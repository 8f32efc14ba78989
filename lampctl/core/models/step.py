"""
Step and Plan — the declarative provisioning contract.

A Step is one idempotent unit of work: ``precondition`` answers "is this
already applied?", ``apply`` does the work, ``verify`` proves it took.
A Plan is an ordered list of Steps grouped into phases that always run
in the fixed order below.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from lampctl.core.engine.context import StepContext


class Phase(Enum):
    """Plan phases, in execution order."""

    PREP = "prep"
    SECURITY = "security"
    DATABASE = "database"
    WEB = "web"
    TLS = "tls"
    APP = "app"

    @property
    def order(self) -> int:
        return list(Phase).index(self)

    @property
    def title(self) -> str:
        return _PHASE_TITLES[self]


_PHASE_TITLES = {
    Phase.PREP: "Preparing system and installing dependencies",
    Phase.SECURITY: "Configuring performance and security",
    Phase.DATABASE: "Configuring database and cache",
    Phase.WEB: "Setting up WordPress and virtual host",
    Phase.TLS: "Validating DNS and obtaining TLS certificate",
    Phase.APP: "Writing wp-config.php and finalizing permissions",
}


class StepStatus(str, Enum):
    """Per-step state machine.

    Pending → Skipped                 (precondition already holds)
    Pending → Running → Done | Failed
    """

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"

    @property
    def settled(self) -> bool:
        """Whether the step needs no further work on resume."""
        return self in (StepStatus.DONE, StepStatus.SKIPPED)


Check = Callable[["StepContext"], bool]
Action = Callable[["StepContext"], None]


@dataclass
class Step:
    """One named, idempotent unit of provisioning work.

    ``precondition`` may be None for gate steps that must always run.
    ``verify`` may be None when ``apply`` cannot be observed afterwards;
    the executor then trusts ``apply`` raising on failure.
    """

    name: str
    phase: Phase
    apply: Action
    precondition: Check | None = None
    verify: Check | None = None
    description: str = ""

    def __repr__(self) -> str:
        return f"<Step {self.phase.value}:{self.name}>"


class PlanError(ValueError):
    """Raised when a plan definition violates its ordering rules."""


@dataclass
class Plan:
    """An ordered sequence of steps for one workflow."""

    name: str
    steps: list[Step] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Reject duplicate step names and phases that go backwards."""
        seen: set[str] = set()
        last_order = -1
        for step in self.steps:
            if step.name in seen:
                raise PlanError(f"Plan '{self.name}': duplicate step '{step.name}'")
            seen.add(step.name)
            if step.phase.order < last_order:
                raise PlanError(
                    f"Plan '{self.name}': step '{step.name}' in phase "
                    f"'{step.phase.value}' runs after a later phase"
                )
            last_order = step.phase.order

    @property
    def step_names(self) -> list[str]:
        return [s.name for s in self.steps]

    @property
    def phases(self) -> list[Phase]:
        ordered: list[Phase] = []
        for step in self.steps:
            if step.phase not in ordered:
                ordered.append(step.phase)
        return ordered

    def get(self, name: str) -> Step | None:
        for step in self.steps:
            if step.name == name:
                return step
        return None

    def __len__(self) -> int:
        return len(self.steps)
