"""
Install plan — a fresh LAMP + WordPress host.

Phases run in the fixed order prep → security → database → web → tls →
app.  System-wide steps live here; the per-site tail comes from
``common.site_steps``.
"""

from __future__ import annotations

import logging

from lampctl.core.engine.context import StepContext
from lampctl.core.models.step import Phase, Plan, Step
from lampctl.core.persistence.secrets_store import DB_ROOT_PASSWORD
from lampctl.core.plans import common
from lampctl.core.services import apache, firewall, mariadb, packages, waf

logger = logging.getLogger(__name__)

PLAN_NAME = "install"


# ── Prep ─────────────────────────────────────────────────────────


def _packages_step() -> Step:
    def installed(ctx: StepContext) -> bool:
        return not packages.missing_packages(ctx, ctx.settings.packages)

    def apply(ctx: StepContext) -> None:
        packages.install(ctx, ctx.settings.packages)

    return Step(
        name="system-packages",
        phase=Phase.PREP,
        precondition=installed,
        apply=apply,
        verify=installed,
        description="Update the system and install the LAMP stack",
    )


# ── Security ─────────────────────────────────────────────────────


def _modules_step() -> Step:
    def loaded(ctx: StepContext) -> bool:
        result = ctx.run(["apache2ctl", "-M"])
        return result.ok and not apache.missing_modules(result.stdout, ctx.settings.apache.modules)

    def apply(ctx: StepContext) -> None:
        ctx.check(["a2enmod", *ctx.settings.apache.modules])
        ctx.check(["systemctl", "restart", ctx.settings.apache.service])

    return Step(
        name="apache-modules",
        phase=Phase.SECURITY,
        precondition=loaded,
        apply=apply,
        verify=loaded,
        description="Enable rewrite, compression, TLS and WAF modules",
    )


def _brotli_step() -> Step:
    filename = f"{apache.BROTLI_CONF_NAME}.conf"

    def configured(ctx: StepContext) -> bool:
        cfg = ctx.settings.apache
        path = cfg.conf_available / filename
        return (
            path.is_file()
            and path.read_text(encoding="utf-8") == apache.BROTLI_CONF
            and apache.is_enabled(cfg.conf_enabled, filename)
        )

    def apply(ctx: StepContext) -> None:
        apache.write_if_changed(ctx.settings.apache.conf_available / filename, apache.BROTLI_CONF)
        ctx.check(["a2enconf", apache.BROTLI_CONF_NAME])

    return Step(
        name="brotli-config",
        phase=Phase.SECURITY,
        precondition=configured,
        apply=apply,
        verify=configured,
        description="Brotli output compression",
    )


def _firewall_step() -> Step:
    def enforced(ctx: StepContext) -> bool:
        result = ctx.run(["ufw", "status", "verbose"])
        if not result.ok:
            return False
        return firewall.parse_ufw_status(result.stdout).satisfies(firewall.required_ports())

    def apply(ctx: StepContext) -> None:
        ctx.check(["ufw", "default", "deny", "incoming"])
        ctx.check(["ufw", "default", "allow", "outgoing"])
        for service in firewall.REQUIRED_SERVICES:
            ctx.check(["ufw", "allow", service])
        ctx.check(["ufw", "--force", "enable"])

    return Step(
        name="firewall",
        phase=Phase.SECURITY,
        precondition=enforced,
        apply=apply,
        verify=enforced,
        description="Default-deny inbound; allow ssh, http and https",
    )


def _waf_step() -> Step:
    def active(ctx: StepContext) -> bool:
        cfg = ctx.settings
        include = cfg.apache.conf_available / waf.CRS_INCLUDE_CONF
        return (
            waf.engine_enabled(cfg.waf.config_dir)
            and waf.ruleset_active(cfg.waf.crs_dir)
            and include.is_file()
            and apache.is_enabled(cfg.apache.conf_enabled, waf.CRS_INCLUDE_CONF)
        )

    def apply(ctx: StepContext) -> None:
        cfg = ctx.settings
        waf.enable_engine(cfg.waf.config_dir)
        waf.install_ruleset(ctx, cfg.waf.crs_dir, cfg.waf.crs_repo)
        apache.write_if_changed(
            cfg.apache.conf_available / waf.CRS_INCLUDE_CONF,
            waf.render_include_conf(cfg.waf.crs_dir),
        )
        ctx.check(["a2enconf", waf.CRS_INCLUDE_CONF.removesuffix(".conf")])
        common.reload_apache(ctx)

    return Step(
        name="waf-ruleset",
        phase=Phase.SECURITY,
        precondition=active,
        apply=apply,
        verify=active,
        description="Turn on ModSecurity with the OWASP core rule set",
    )


# ── Database ─────────────────────────────────────────────────────


def _cache_step() -> Step:
    def running(ctx: StepContext) -> bool:
        return packages.service_running(ctx, ctx.settings.cache_service)

    def apply(ctx: StepContext) -> None:
        ctx.check(["systemctl", "enable", "--now", ctx.settings.cache_service])

    return Step(
        name="cache-service",
        phase=Phase.DATABASE,
        precondition=running,
        apply=apply,
        verify=running,
        description="Start and enable the object cache",
    )


def _root_credentials_step() -> Step:
    def login_works(ctx: StepContext) -> bool:
        root_pw = ctx.secrets.get(DB_ROOT_PASSWORD)
        return root_pw is not None and mariadb.root_login_works(ctx, root_pw)

    def apply(ctx: StepContext) -> None:
        root_pw = ctx.secrets.generate_once(DB_ROOT_PASSWORD)
        # Fresh MariaDB: root is reachable over the unix socket only
        mariadb.execute(ctx, mariadb.set_root_password_sql(root_pw))

    return Step(
        name="db-root-credentials",
        phase=Phase.DATABASE,
        precondition=login_works,
        apply=apply,
        verify=login_works,
        description="Generate and set the MariaDB root password",
    )


def build_install_plan() -> Plan:
    """The full host install, ending with the first site."""
    return Plan(
        name=PLAN_NAME,
        steps=[
            _packages_step(),
            _modules_step(),
            _brotli_step(),
            _firewall_step(),
            _waf_step(),
            _cache_step(),
            _root_credentials_step(),
            common.site_database_step(),
            *common.site_steps(disable_default=True),
        ],
    )
