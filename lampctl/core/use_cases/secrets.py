"""
Secrets use cases — inspect the bundle and import legacy credentials.

Hosts provisioned by the old shell installer only kept the MariaDB root
password in ``/var/log/wordpress_install_*.log``.  ``adopt_from_log``
reads it back once (newest log, last ``MariaDB Root Password:`` line)
and stores it, after which add-site uses the store like any other host.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from lampctl.core.errors import PreconditionFailed
from lampctl.core.models.settings import Settings
from lampctl.core.persistence.install_log import (
    LABEL_ROOT_PASSWORD,
    last_recorded_value,
    latest_install_log,
)
from lampctl.core.persistence.secrets_store import DB_ROOT_PASSWORD, SecretsStore

logger = logging.getLogger(__name__)


@dataclass
class AdoptResult:
    log_path: Path | None = None
    adopted: bool = False
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "log_path": str(self.log_path) if self.log_path else None,
            "adopted": self.adopted,
            "error": self.error,
        }


def mask(value: str, visible: int = 4) -> str:
    """``abcd************`` style display for secrets."""
    if len(value) <= visible:
        return "*" * len(value)
    return value[:visible] + "*" * (len(value) - visible)


def list_secrets(settings: Settings, *, reveal: bool = False) -> dict[str, str]:
    """Stored keys with masked (or revealed) values."""
    store = SecretsStore(settings.secrets_path)
    return {
        key: (store.lookup(key) if reveal else mask(store.lookup(key)))
        for key in store.keys()
    }


def adopt_from_log(settings: Settings, log_path: Path | None = None) -> AdoptResult:
    """Import the root password from a legacy install log.

    Args:
        settings: Host settings (log dir and secrets path).
        log_path: Specific log to read; default is the newest one.
    """
    result = AdoptResult()
    path = log_path or latest_install_log(settings.paths.log_dir)
    if path is None:
        result.error = (
            f"No installation log found in {settings.paths.log_dir} "
            "to retrieve the MariaDB root password."
        )
        return result
    result.log_path = path

    value = last_recorded_value(path, LABEL_ROOT_PASSWORD)
    if not value:
        result.error = f"Could not read the MariaDB root password from the log file: {path}"
        return result

    store = SecretsStore(settings.secrets_path)
    try:
        result.adopted = store.adopt(DB_ROOT_PASSWORD, value)
    except PreconditionFailed as e:
        result.error = e.message
        return result

    if result.adopted:
        logger.info("Adopted the MariaDB root password from %s", path)
    else:
        logger.info("A MariaDB root password is already stored; %s not used", path)
    return result
