"""
Settings model — host-level configuration loaded from lampctl.yml.

Every path and endpoint the plans touch lives here, so tests (and
non-Debian hosts) can point the engine somewhere else.  Defaults match
an Ubuntu 24.04 LAMP host.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field

DEFAULT_PACKAGES = [
    "git", "unzip", "software-properties-common", "curl", "dnsutils",
    "apache2", "mariadb-server",
    "php", "php-mysql", "php-gd", "php-xml", "php-mbstring", "php-curl",
    "php-zip", "php-imagick", "php-intl",
    "redis-server", "php-redis", "libapache2-mod-php", "brotli",
    "fail2ban", "ufw", "libapache2-mod-security2",
    "certbot", "python3-certbot-apache",
]

DEFAULT_APACHE_MODULES = ["rewrite", "headers", "expires", "brotli", "ssl", "security2"]


class PathSettings(BaseModel):
    """Where lampctl keeps its own state and where sites live."""

    state_dir: Path = Path("/var/lib/lampctl")
    log_dir: Path = Path("/var/log")
    vhosts_root: Path = Path("/var/www/vhosts")


class ApacheSettings(BaseModel):
    sites_available: Path = Path("/etc/apache2/sites-available")
    sites_enabled: Path = Path("/etc/apache2/sites-enabled")
    conf_available: Path = Path("/etc/apache2/conf-available")
    conf_enabled: Path = Path("/etc/apache2/conf-enabled")
    default_site: str = "000-default.conf"
    modules: list[str] = Field(default_factory=lambda: list(DEFAULT_APACHE_MODULES))
    service: str = "apache2"


class WafSettings(BaseModel):
    """ModSecurity engine config and the OWASP core rule set checkout."""

    config_dir: Path = Path("/etc/modsecurity")
    crs_dir: Path = Path("/etc/modsecurity/crs")
    crs_repo: str = "https://github.com/coreruleset/coreruleset.git"


class TlsSettings(BaseModel):
    live_dir: Path = Path("/etc/letsencrypt/live")


class UrlSettings(BaseModel):
    wordpress_archive: str = "https://wordpress.org/latest.tar.gz"
    salt_api: str = "https://api.wordpress.org/secret-key/1.1/salt/"
    public_ip: str = "https://ifconfig.me/ip"


class TimeoutSettings(BaseModel):
    """Per-command timeouts in seconds."""

    default: float = 300
    packages: float = 1800
    download: float = 120
    tls: float = 600


class WebSettings(BaseModel):
    owner: str = "www-data"
    group: str = "www-data"
    dir_mode: int = 0o755
    file_mode: int = 0o644


class Settings(BaseModel):
    """Root settings — one per host."""

    paths: PathSettings = Field(default_factory=PathSettings)
    apache: ApacheSettings = Field(default_factory=ApacheSettings)
    waf: WafSettings = Field(default_factory=WafSettings)
    tls: TlsSettings = Field(default_factory=TlsSettings)
    urls: UrlSettings = Field(default_factory=UrlSettings)
    timeouts: TimeoutSettings = Field(default_factory=TimeoutSettings)
    web: WebSettings = Field(default_factory=WebSettings)

    packages: list[str] = Field(default_factory=lambda: list(DEFAULT_PACKAGES))
    cache_service: str = "redis-server"
    require_root: bool = True

    @property
    def runs_dir(self) -> Path:
        return self.paths.state_dir / "runs"

    @property
    def secrets_path(self) -> Path:
        return self.paths.state_dir / "secrets.json"

    @property
    def lock_path(self) -> Path:
        return self.paths.state_dir / "lampctl.lock"
