"""
Apache helpers — vhost and conf rendering, module listing.

Renders the files the installer writes under /etc/apache2 and parses
``apache2ctl -M`` so steps can tell whether modules are already loaded.
"""

from __future__ import annotations

import logging
import re
import textwrap
from pathlib import Path

from lampctl.core.models.site import SiteConfig

logger = logging.getLogger(__name__)

BROTLI_CONF_NAME = "brotli"

BROTLI_CONF = textwrap.dedent("""\
    <IfModule mod_brotli.c>
        AddOutputFilterByType BROTLI_COMPRESS text/html text/plain text/xml text/css text/javascript application/javascript application/x-javascript application/json application/xml application/rss+xml application/atom+xml image/svg+xml
    </IfModule>
""")

_MODULE_LINE_RE = re.compile(r"^\s*([a-z0-9_]+)_module\s+\(", re.MULTILINE)


def render_vhost(site: SiteConfig, web_root: Path) -> str:
    """Port-80 virtual host for a site; certbot adds the TLS twin."""
    lines = [
        "<VirtualHost *:80>",
        f"    ServerAdmin {site.admin_email}",
        f"    ServerName {site.domain}",
    ]
    if site.www_alias:
        lines.append(f"    ServerAlias www.{site.domain}")
    lines += [
        f"    DocumentRoot {web_root}",
        f"    <Directory {web_root}>",
        "        AllowOverride All",
        "    </Directory>",
        "</VirtualHost>",
    ]
    return "\n".join(lines) + "\n"


def vhost_filename(site: SiteConfig) -> str:
    return f"{site.domain}.conf"


def parse_loaded_modules(output: str) -> set[str]:
    """Module names from ``apache2ctl -M`` (``rewrite_module (shared)`` → ``rewrite``)."""
    return set(_MODULE_LINE_RE.findall(output))


def missing_modules(output: str, wanted: list[str]) -> list[str]:
    loaded = parse_loaded_modules(output)
    return [m for m in wanted if m not in loaded]


def is_enabled(enabled_dir: Path, filename: str) -> bool:
    """a2ensite/a2enconf leave a symlink (or file) in the *-enabled dir."""
    return (enabled_dir / filename).exists() or (enabled_dir / filename).is_symlink()


def write_if_changed(path: Path, content: str) -> bool:
    """Write ``content`` unless the file already holds it.

    Returns:
        True if the file was written.
    """
    if path.is_file() and path.read_text(encoding="utf-8") == content:
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    logger.debug("Wrote %s (%d bytes)", path, len(content))
    return True
