"""Domain models — settings, sites, steps, run records, secrets."""

from lampctl.core.models.run_record import RunRecord, StepRecord
from lampctl.core.models.secrets import SecretBundle, SecretEntry
from lampctl.core.models.settings import Settings
from lampctl.core.models.site import SiteConfig
from lampctl.core.models.step import Phase, Plan, PlanError, Step, StepStatus

__all__ = [
    "Phase",
    "Plan",
    "PlanError",
    "RunRecord",
    "SecretBundle",
    "SecretEntry",
    "Settings",
    "SiteConfig",
    "Step",
    "StepRecord",
    "StepStatus",
]
