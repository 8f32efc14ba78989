"""
Site-scoped steps shared by the Install and Add-Site plans.

Each factory returns a ``Step`` whose callables read everything from the
``StepContext``: the site, the host settings and the secrets store.
Service modules are referenced through their module so tests can swap
the network-facing helpers.
"""

from __future__ import annotations

import logging

from lampctl.core.engine.context import StepContext
from lampctl.core.errors import PreconditionFailed, VerificationFailed
from lampctl.core.models.step import Phase, Step
from lampctl.core.persistence.secrets_store import DB_ROOT_PASSWORD
from lampctl.core.services import apache, dns, mariadb, wordpress

logger = logging.getLogger(__name__)

DNS_MATCH_KEY = "dns_match"


# ── Helpers ──────────────────────────────────────────────────────


def site_password(ctx: StepContext) -> str:
    """The site's database password as recorded in the secrets store.

    An operator-supplied password is recorded on first use (first value
    wins); a blank one gets a generated password.
    """
    site = ctx.site
    if site.db_password:
        return ctx.secrets.remember(site.password_key, site.db_password)
    return ctx.secrets.generate_once(site.password_key)


def recorded_site_password(ctx: StepContext) -> str | None:
    """Read-only counterpart of ``site_password`` for checks.

    None when nothing is recorded yet and the password is to be generated.
    """
    return ctx.secrets.get(ctx.site.password_key) or ctx.site.db_password or None


def cert_path(ctx: StepContext):
    return ctx.settings.tls.live_dir / ctx.site.domain / "fullchain.pem"


def reload_apache(ctx: StepContext) -> None:
    ctx.check(["apache2ctl", "configtest"])
    ctx.check(["systemctl", "reload", ctx.settings.apache.service])


def ensure_dns_points_here(ctx: StepContext) -> str:
    """Fail with PreconditionFailed unless the domain resolves to this host.

    The result is cached in ``ctx.scratch`` for the rest of the run.
    """
    domain = ctx.site.domain
    cached = ctx.scratch.get(DNS_MATCH_KEY, {})
    if domain in cached:
        return cached[domain]

    server_ip = dns.fetch_public_ip(ctx.settings.urls.public_ip)
    domain_ips = dns.resolve_a_records(ctx, domain)
    dns.check_dns_match(domain, server_ip, domain_ips)
    ctx.scratch.setdefault(DNS_MATCH_KEY, {})[domain] = server_ip
    return server_ip


# ── Database ─────────────────────────────────────────────────────


def site_database_step() -> Step:
    def present(ctx: StepContext) -> bool:
        site = ctx.site
        root_pw = ctx.secrets.lookup(DB_ROOT_PASSWORD)
        password = recorded_site_password(ctx)
        return (
            password is not None
            and mariadb.site_database_present(ctx, root_pw, site.db_name, site.db_user)
            and mariadb.site_login_works(ctx, site.db_user, password, site.db_name)
        )

    def apply(ctx: StepContext) -> None:
        site = ctx.site
        root_pw = ctx.secrets.lookup(DB_ROOT_PASSWORD)
        password = site_password(ctx)
        # CREATE USER IF NOT EXISTS keeps an existing user's password
        if mariadb.query_returns_rows(
            ctx, mariadb.user_exists_sql(site.db_user), root_pw
        ) and not mariadb.site_login_works(ctx, site.db_user, password):
            raise PreconditionFailed(
                f"Database user '{site.db_user}' already exists with a different password. "
                "Choose another database user or supply its current password."
            )
        sql = mariadb.create_site_database_sql(site.db_name, site.db_user, password)
        mariadb.execute(ctx, sql, root_pw)

    return Step(
        name="site-database",
        phase=Phase.DATABASE,
        precondition=present,
        apply=apply,
        verify=present,
        description="Create the WordPress database, user and grant",
    )


# ── Web ──────────────────────────────────────────────────────────


def wordpress_files_step() -> Step:
    def deployed(ctx: StepContext) -> bool:
        return wordpress.is_deployed(ctx.web_root)

    def apply(ctx: StepContext) -> None:
        wordpress.deploy_tree(
            ctx.settings.urls.wordpress_archive,
            ctx.web_root,
            timeout=ctx.settings.timeouts.download,
        )

    return Step(
        name="wordpress-files",
        phase=Phase.WEB,
        precondition=deployed,
        apply=apply,
        verify=deployed,
        description="Download and unpack WordPress into the site root",
    )


def vhost_config_step() -> Step:
    # Present means "ours or certbot-edited": never rewrite an existing vhost.
    def present(ctx: StepContext) -> bool:
        return (ctx.settings.apache.sites_available / apache.vhost_filename(ctx.site)).is_file()

    def apply(ctx: StepContext) -> None:
        path = ctx.settings.apache.sites_available / apache.vhost_filename(ctx.site)
        apache.write_if_changed(path, apache.render_vhost(ctx.site, ctx.web_root))
        logger.info("Wrote virtual host %s", path)

    return Step(
        name="vhost-config",
        phase=Phase.WEB,
        precondition=present,
        apply=apply,
        verify=present,
        description="Write the port-80 virtual host",
    )


def vhost_enable_step(disable_default: bool) -> Step:
    def enabled(ctx: StepContext) -> bool:
        cfg = ctx.settings.apache
        if not apache.is_enabled(cfg.sites_enabled, apache.vhost_filename(ctx.site)):
            return False
        return not (disable_default and apache.is_enabled(cfg.sites_enabled, cfg.default_site))

    def apply(ctx: StepContext) -> None:
        cfg = ctx.settings.apache
        ctx.check(["a2ensite", apache.vhost_filename(ctx.site)])
        if disable_default and apache.is_enabled(cfg.sites_enabled, cfg.default_site):
            ctx.check(["a2dissite", cfg.default_site])
        reload_apache(ctx)

    return Step(
        name="vhost-enable",
        phase=Phase.WEB,
        precondition=enabled,
        apply=apply,
        verify=enabled,
        description="Enable the site and reload Apache",
    )


# ── TLS ──────────────────────────────────────────────────────────


def dns_gate_step() -> Step:
    def has_certificate(ctx: StepContext) -> bool:
        return cert_path(ctx).is_file()

    def apply(ctx: StepContext) -> None:
        ensure_dns_points_here(ctx)

    return Step(
        name="dns-gate",
        phase=Phase.TLS,
        precondition=has_certificate,
        apply=apply,
        description="Check the domain's A records point at this server",
    )


def certbot_command(ctx: StepContext) -> list[str]:
    command = ["certbot", "--apache"]
    for hostname in ctx.site.hostnames:
        command += ["-d", hostname]
    command += [
        "--non-interactive", "--agree-tos",
        "-m", ctx.site.admin_email,
        "--redirect",
    ]
    return command


def tls_certificate_step() -> Step:
    def has_certificate(ctx: StepContext) -> bool:
        return cert_path(ctx).is_file()

    def apply(ctx: StepContext) -> None:
        ensure_dns_points_here(ctx)
        ctx.check(certbot_command(ctx), timeout=ctx.settings.timeouts.tls)

    return Step(
        name="tls-certificate",
        phase=Phase.TLS,
        precondition=has_certificate,
        apply=apply,
        verify=has_certificate,
        description="Obtain and install a Let's Encrypt certificate",
    )


# ── App ──────────────────────────────────────────────────────────


def wp_config_step() -> Step:
    def rendered(ctx: StepContext) -> bool:
        password = recorded_site_password(ctx)
        return password is not None and wordpress.config_is_rendered(
            ctx.web_root / wordpress.CONFIG_FILE,
            ctx.site.db_name,
            ctx.site.db_user,
            password,
        )

    def apply(ctx: StepContext) -> None:
        sample = ctx.web_root / wordpress.SAMPLE_CONFIG
        if not sample.is_file():
            raise VerificationFailed(f"{sample} is missing; re-deploy the WordPress files")
        salts = ctx.secrets.generate_once(
            ctx.site.salts_key,
            lambda: wordpress.fetch_salts(ctx.settings.urls.salt_api),
            source="fetched",
        )
        text = wordpress.render_config(
            sample.read_text(encoding="utf-8"),
            ctx.site.db_name,
            ctx.site.db_user,
            site_password(ctx),
            salts,
        )
        (ctx.web_root / wordpress.CONFIG_FILE).write_text(text, encoding="utf-8")

    return Step(
        name="wp-config",
        phase=Phase.APP,
        precondition=rendered,
        apply=apply,
        verify=rendered,
        description="Render wp-config.php with credentials and salts",
    )


def permissions_step() -> Step:
    def locked_down(ctx: StepContext) -> bool:
        web = ctx.settings.web
        return wordpress.owner_ok(ctx.web_root, web.owner, web.group) and wordpress.modes_ok(
            ctx.web_root, web.dir_mode, web.file_mode
        )

    def apply(ctx: StepContext) -> None:
        web = ctx.settings.web
        ctx.check(["chown", "-R", f"{web.owner}:{web.group}", str(ctx.web_root)])
        wordpress.normalize_modes(ctx.web_root, web.dir_mode, web.file_mode)

    return Step(
        name="permissions",
        phase=Phase.APP,
        precondition=locked_down,
        apply=apply,
        verify=locked_down,
        description="Set ownership and directory/file modes on the site tree",
    )


def site_steps(*, disable_default: bool) -> list[Step]:
    """Web, TLS and app steps, in order."""
    return [
        wordpress_files_step(),
        vhost_config_step(),
        vhost_enable_step(disable_default),
        dns_gate_step(),
        tls_certificate_step(),
        wp_config_step(),
        permissions_step(),
    ]
