"""
Add-Site plan — one more WordPress site on an installed host.

No system-wide steps: it only needs the root credential stored by the
install, and fails fast when that is missing.
"""

from __future__ import annotations

from lampctl.core.engine.context import StepContext
from lampctl.core.errors import PreconditionFailed
from lampctl.core.models.step import Phase, Plan, Step
from lampctl.core.persistence.secrets_store import DB_ROOT_PASSWORD
from lampctl.core.plans import common
from lampctl.core.services import mariadb

PLAN_NAME = "add-site"


def _root_access_step() -> Step:
    def apply(ctx: StepContext) -> None:
        # SecretNotFound propagates as-is
        root_pw = ctx.secrets.lookup(DB_ROOT_PASSWORD)
        if not mariadb.root_login_works(ctx, root_pw):
            raise PreconditionFailed(
                "The stored MariaDB root password was rejected; "
                "was it changed outside lampctl?"
            )

    return Step(
        name="db-root-access",
        phase=Phase.DATABASE,
        apply=apply,
        description="Check the stored MariaDB root password still works",
    )


def build_add_site_plan() -> Plan:
    return Plan(
        name=PLAN_NAME,
        steps=[
            _root_access_step(),
            common.site_database_step(),
            *common.site_steps(disable_default=False),
        ],
    )
