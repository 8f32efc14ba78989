"""
Shared test fixtures and configuration.

``FakeHost`` stands in for an Ubuntu box: it scripts a ``MockRunner`` so
apt, apache, ufw, systemctl, mysql, git, dig and certbot report (and
change) a small in-memory host state, and it swaps the network helpers
for local fakes.  Filesystem effects land under ``tmp_path``.
"""

from __future__ import annotations

import grp
import os
import pwd
import re
from pathlib import Path

import pytest

from lampctl.adapters.base import CommandResult
from lampctl.adapters.mock import MockRunner
from lampctl.core.models.settings import (
    ApacheSettings,
    PathSettings,
    Settings,
    TlsSettings,
    WafSettings,
    WebSettings,
)
from lampctl.core.services import dns, wordpress

WP_SAMPLE = """\
<?php
define( 'DB_NAME', 'database_name_here' );
define( 'DB_USER', 'username_here' );
define( 'DB_PASSWORD', 'password_here' );
define( 'DB_HOST', 'localhost' );
define( 'DB_CHARSET', 'utf8' );

define( 'AUTH_KEY',         'put your unique phrase here' );
define( 'SECURE_AUTH_KEY',  'put your unique phrase here' );
define( 'LOGGED_IN_KEY',    'put your unique phrase here' );
define( 'NONCE_KEY',        'put your unique phrase here' );
define( 'AUTH_SALT',        'put your unique phrase here' );
define( 'SECURE_AUTH_SALT', 'put your unique phrase here' );
define( 'LOGGED_IN_SALT',   'put your unique phrase here' );
define( 'NONCE_SALT',       'put your unique phrase here' );

$table_prefix = 'wp_';
"""

WP_SALTS = "\n".join(
    f"define('{key}', 'salt-{i}-xYz');" for i, key in enumerate(wordpress.SALT_KEYS)
)

PUBLIC_IP = "203.0.113.10"


def current_user() -> str:
    return pwd.getpwuid(os.getuid()).pw_name


def current_group() -> str:
    return grp.getgrgid(os.getgid()).gr_name


def make_settings(root: Path) -> Settings:
    """Settings with every host path under ``root``."""
    etc = root / "etc"
    return Settings(
        paths=PathSettings(
            state_dir=root / "var" / "lib" / "lampctl",
            log_dir=root / "var" / "log",
            vhosts_root=root / "var" / "www" / "vhosts",
        ),
        apache=ApacheSettings(
            sites_available=etc / "apache2" / "sites-available",
            sites_enabled=etc / "apache2" / "sites-enabled",
            conf_available=etc / "apache2" / "conf-available",
            conf_enabled=etc / "apache2" / "conf-enabled",
        ),
        waf=WafSettings(config_dir=etc / "modsecurity", crs_dir=etc / "modsecurity" / "crs"),
        tls=TlsSettings(live_dir=etc / "letsencrypt" / "live"),
        web=WebSettings(owner=current_user(), group=current_group()),
        require_root=False,
    )


def _ok(command: list[str], stdout: str = "") -> CommandResult:
    return CommandResult(command=command, stdout=stdout)


def _fail(command: list[str], stderr: str, exit_code: int = 1) -> CommandResult:
    return CommandResult(command=command, stderr=stderr, exit_code=exit_code)


def _sql_string(pattern: str, sql: str) -> str | None:
    m = re.search(pattern + r"'((?:[^'\\]|\\.)*)'", sql)
    if not m:
        return None
    return m.group(1).replace("\\'", "'").replace("\\\\", "\\")


class FakeHost:
    """In-memory Ubuntu host behind a MockRunner."""

    def __init__(self, settings: Settings, public_ip: str = PUBLIC_IP):
        self.settings = settings
        self.runner = MockRunner()
        self.public_ip = public_ip
        self.dns: dict[str, list[str]] = {}

        self.packages_installed = False
        self.modules_loaded = False
        self.firewall_on = False
        self.services: set[str] = set()
        self.root_password: str | None = None
        self.databases: set[str] = set()
        self.db_users: dict[str, str] = {}
        self.grants: dict[str, set[str]] = {}
        self.certbot_fails = False
        self.downloads = 0
        self.salt_fetches = 0

        apache = settings.apache
        for d in (apache.sites_available, apache.sites_enabled,
                  apache.conf_available, apache.conf_enabled, settings.waf.config_dir):
            d.mkdir(parents=True, exist_ok=True)
        (apache.sites_available / apache.default_site).write_text("<VirtualHost *:80>\n")
        (apache.sites_enabled / apache.default_site).symlink_to(
            apache.sites_available / apache.default_site
        )
        (settings.waf.config_dir / "modsecurity.conf-recommended").write_text(
            "SecRuleEngine DetectionOnly\nSecRequestBodyAccess On\n"
        )
        self._script()

    def point(self, domain: str, ip: str | None = None) -> None:
        self.dns[domain] = [ip or self.public_ip]

    def count(self, *prefix: str) -> int:
        return sum(1 for c in self.runner.commands if tuple(c[: len(prefix)]) == prefix)

    # ── Network fakes ────────────────────────────────────────────

    def fetch_public_ip(self, url: str, timeout: float = 15) -> str:
        return self.public_ip

    def deploy_tree(self, url: str, web_root: Path, timeout: float = 120) -> None:
        self.downloads += 1
        (web_root / "wp-includes").mkdir(parents=True, exist_ok=True)
        (web_root / "wp-includes" / "version.php").write_text("<?php $wp_version = '6.6';\n")
        (web_root / "wp-config-sample.php").write_text(WP_SAMPLE)
        index = web_root / "index.php"
        index.write_text("<?php\n")
        os.chmod(index, 0o600)

    def fetch_salts(self, url: str, timeout: float = 30) -> str:
        self.salt_fetches += 1
        return WP_SALTS

    # ── Command handlers ─────────────────────────────────────────

    def _script(self) -> None:
        r = self.runner
        r.set_handler(("dpkg-query",), self._dpkg_query)
        r.set_handler(("apt-get", "install"), self._apt_install)
        r.set_handler(("apache2ctl", "-M"), self._apache_modules)
        r.set_handler(("a2enmod",), self._a2enmod)
        r.set_handler(("a2enconf",), self._a2enconf)
        r.set_handler(("a2ensite",), self._a2ensite)
        r.set_handler(("a2dissite",), self._a2dissite)
        r.set_handler(("ufw", "status"), self._ufw_status)
        r.set_handler(("ufw", "--force", "enable"), self._ufw_enable)
        r.set_handler(("systemctl", "is-enabled"), self._service_state)
        r.set_handler(("systemctl", "is-active"), self._service_state)
        r.set_handler(("systemctl", "enable", "--now"), self._service_enable)
        r.set_handler(("mysql",), self._mysql)
        r.set_handler(("git", "clone"), self._git_clone)
        r.set_handler(("dig",), self._dig)
        r.set_handler(("certbot",), self._certbot)

    def _dpkg_query(self, command, input, env):
        if not self.packages_installed:
            return _fail(command, "dpkg-query: no packages found matching apache2")
        names = command[3:]
        return _ok(command, "".join(f"{n} install ok installed\n" for n in names))

    def _apt_install(self, command, input, env):
        self.packages_installed = True
        return _ok(command)

    def _apache_modules(self, command, input, env):
        lines = ["Loaded Modules:", " core_module (static)", " so_module (static)"]
        if self.modules_loaded:
            lines += [f" {m}_module (shared)" for m in self.settings.apache.modules]
        return _ok(command, "\n".join(lines) + "\n")

    def _a2enmod(self, command, input, env):
        self.modules_loaded = True
        return _ok(command)

    def _a2enconf(self, command, input, env):
        cfg = self.settings.apache
        name = f"{command[1]}.conf"
        if not (cfg.conf_available / name).is_file():
            return _fail(command, f"ERROR: Conf {command[1]} does not exist!")
        link = cfg.conf_enabled / name
        if not link.is_symlink():
            link.symlink_to(cfg.conf_available / name)
        return _ok(command)

    def _a2ensite(self, command, input, env):
        cfg = self.settings.apache
        if not (cfg.sites_available / command[1]).is_file():
            return _fail(command, f"ERROR: Site {command[1]} does not exist!")
        link = cfg.sites_enabled / command[1]
        if not link.is_symlink():
            link.symlink_to(cfg.sites_available / command[1])
        return _ok(command)

    def _a2dissite(self, command, input, env):
        link = self.settings.apache.sites_enabled / command[1]
        if link.is_symlink() or link.exists():
            link.unlink()
        return _ok(command)

    def _ufw_status(self, command, input, env):
        if not self.firewall_on:
            return _ok(command, "Status: inactive\n")
        return _ok(command, (
            "Status: active\n"
            "Logging: on (low)\n"
            "Default: deny (incoming), allow (outgoing), disabled (routed)\n"
            "New profiles: skip\n\n"
            "To                         Action      From\n"
            "--                         ------      ----\n"
            "22/tcp                     ALLOW IN    Anywhere\n"
            "80/tcp                     ALLOW IN    Anywhere\n"
            "443                        ALLOW IN    Anywhere\n"
            "22/tcp (v6)                ALLOW IN    Anywhere (v6)\n"
        ))

    def _ufw_enable(self, command, input, env):
        self.firewall_on = True
        return _ok(command, "Firewall is active and enabled on system startup\n")

    def _service_state(self, command, input, env):
        if command[-1] in self.services:
            return _ok(command)
        return CommandResult(command=command, exit_code=1)

    def _service_enable(self, command, input, env):
        self.services.add(command[-1])
        return _ok(command)

    def _mysql(self, command, input, env):
        user = command[command.index("-u") + 1] if "-u" in command else "root"
        password = (env or {}).get("MYSQL_PWD")
        if user == "root":
            if password is not None and password != self.root_password:
                return _fail(command, "ERROR 1045 (28000): Access denied for user 'root'@'localhost'")
        else:
            if self.db_users.get(user) != password:
                return _fail(command, f"ERROR 1045 (28000): Access denied for user '{user}'@'localhost'")
            if "-D" in command:
                db = command[command.index("-D") + 1]
                if db not in self.grants.get(user, set()):
                    return _fail(command, f"ERROR 1044 (42000): Access denied for user "
                                          f"'{user}'@'localhost' to database '{db}'")
            return _ok(command, "1\n")

        sql = input or ""
        new_root = _sql_string(r"ALTER USER 'root'@'localhost' IDENTIFIED BY ", sql)
        if new_root is not None:
            self.root_password = new_root

        m = re.search(r"CREATE DATABASE IF NOT EXISTS `(\w+)`", sql)
        if m:
            self.databases.add(m.group(1))
        m = re.search(r"CREATE USER IF NOT EXISTS '(\w+)'@'localhost'", sql)
        if m and m.group(1) not in self.db_users:
            self.db_users[m.group(1)] = _sql_string(r"IDENTIFIED BY ", sql[m.start():]) or ""
        m = re.search(r"GRANT ALL PRIVILEGES ON `(\w+)`\.\* TO '(\w+)'@'localhost'", sql)
        if m:
            self.grants.setdefault(m.group(2), set()).add(m.group(1))

        m = re.search(r"WHERE SCHEMA_NAME = '(\w+)'", sql)
        if m:
            return _ok(command, f"{m.group(1)}\n" if m.group(1) in self.databases else "")
        m = re.search(r"WHERE User = '(\w+)'", sql)
        if m:
            return _ok(command, f"{m.group(1)}\n" if m.group(1) in self.db_users else "")
        return _ok(command, "1\n" if "SELECT 1" in sql else "")

    def _git_clone(self, command, input, env):
        dest = Path(command[-1])
        if dest.exists() and any(dest.iterdir()):
            return _fail(command, f"fatal: destination path '{dest}' already exists "
                                  "and is not an empty directory.", 128)
        (dest / "rules").mkdir(parents=True, exist_ok=True)
        (dest / "crs-setup.conf.example").write_text("# OWASP CRS setup\n")
        return _ok(command)

    def _dig(self, command, input, env):
        return _ok(command, "".join(f"{ip}\n" for ip in self.dns.get(command[2], [])))

    def _certbot(self, command, input, env):
        if self.certbot_fails:
            return _fail(command, "Certbot failed to authenticate some domains")
        domains = [command[i + 1] for i, arg in enumerate(command) if arg == "-d"]
        live = self.settings.tls.live_dir / domains[0]
        live.mkdir(parents=True, exist_ok=True)
        (live / "fullchain.pem").write_text("-----BEGIN CERTIFICATE-----\n")
        return _ok(command, "Congratulations! You have successfully enabled HTTPS\n")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def host(settings: Settings, monkeypatch: pytest.MonkeyPatch) -> FakeHost:
    """A fresh fake host with the network helpers patched."""
    fake = FakeHost(settings)
    monkeypatch.setattr(dns, "fetch_public_ip", fake.fetch_public_ip)
    monkeypatch.setattr(wordpress, "deploy_tree", fake.deploy_tree)
    monkeypatch.setattr(wordpress, "fetch_salts", fake.fetch_salts)
    return fake
