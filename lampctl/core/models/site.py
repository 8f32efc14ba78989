"""
Site model — the operator's answers for one WordPress site.

Replaces the installer's global shell variables (DOMAIN_NAME, DB_NAME,
DB_USER, DB_PASS, ADMIN_EMAIL) with one validated value passed into
plan construction.
"""

from __future__ import annotations

import hashlib
import json
import re
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

_HOSTNAME_RE = re.compile(
    r"^(?=.{1,253}$)([a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$"
)
_IDENT_RE = re.compile(r"^[A-Za-z0-9_]+$")


class SiteConfig(BaseModel):
    """One site to provision."""

    domain: str
    db_name: str
    db_user: str
    db_password: str = Field(default="", repr=False)
    admin_email: str
    www_alias: bool = False

    @field_validator("domain")
    @classmethod
    def _check_domain(cls, value: str) -> str:
        value = value.strip().lower().rstrip(".")
        if not _HOSTNAME_RE.match(value):
            raise ValueError(f"not a valid domain name: {value!r}")
        return value

    @field_validator("db_name")
    @classmethod
    def _check_db_name(cls, value: str) -> str:
        if not _IDENT_RE.match(value) or len(value) > 64:
            raise ValueError("database name must be 1-64 letters, digits or underscores")
        return value

    @field_validator("db_user")
    @classmethod
    def _check_db_user(cls, value: str) -> str:
        if not _IDENT_RE.match(value) or len(value) > 32:
            raise ValueError("database user must be 1-32 letters, digits or underscores")
        return value

    @field_validator("admin_email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        value = value.strip()
        local, _, host = value.partition("@")
        if not local or "." not in host:
            raise ValueError(f"not a valid email address: {value!r}")
        return value

    def web_root(self, vhosts_root: Path) -> Path:
        """Document root: ``<vhosts_root>/<domain>``."""
        return vhosts_root / self.domain

    @property
    def hostnames(self) -> list[str]:
        """Names the vhost and certificate cover."""
        if self.www_alias:
            return [self.domain, f"www.{self.domain}"]
        return [self.domain]

    @property
    def password_key(self) -> str:
        return f"site:{self.domain}:db_password"

    @property
    def salts_key(self) -> str:
        return f"site:{self.domain}:wp_salts"

    def fingerprint(self) -> str:
        """Stable hash of the non-secret inputs, used to match run records."""
        data = self.model_dump(exclude={"db_password"})
        raw = json.dumps(data, sort_keys=True)
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]
