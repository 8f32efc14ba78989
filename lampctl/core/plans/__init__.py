"""Plan definitions: full install and add-site."""

from lampctl.core.plans.add_site import build_add_site_plan
from lampctl.core.plans.install import build_install_plan

__all__ = ["build_add_site_plan", "build_install_plan"]
