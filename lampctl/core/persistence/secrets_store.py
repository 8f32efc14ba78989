"""
Secrets Store — credentials generated exactly once per installation.

The bundle lives in ``<state_dir>/secrets.json`` with owner-only
permissions (0600).  Once a key exists its value is never regenerated,
so the add-site flow can reuse the database root password chosen by
the original install.

Usage::

    store = SecretsStore(settings.secrets_path)
    root_pw = store.generate_once("db_root_password")
    ...
    store.lookup("db_root_password")   # SecretNotFound if missing
"""

from __future__ import annotations

import base64
import json
import logging
import os
import secrets as _secrets
import tempfile
from collections.abc import Callable
from pathlib import Path

from lampctl.core.errors import SecretNotFound
from lampctl.core.models.secrets import SecretBundle, SecretEntry

logger = logging.getLogger(__name__)

DB_ROOT_PASSWORD = "db_root_password"

SECRET_FILE_MODE = 0o600
# 24 random bytes → 32 base64 characters
_RANDOM_BYTES = 24


def generate_password(num_bytes: int = _RANDOM_BYTES) -> str:
    """Cryptographically random base64 string (``openssl rand -base64`` style)."""
    return base64.b64encode(_secrets.token_bytes(num_bytes)).decode("ascii")


class SecretsStore:
    """Generate-once secret storage backed by a 0600 JSON file."""

    def __init__(self, path: Path):
        self._path = path
        self._bundle: SecretBundle | None = None

    @property
    def path(self) -> Path:
        return self._path

    # ── Reading ──────────────────────────────────────────────────

    def exists(self) -> bool:
        return self._path.is_file()

    def _load(self, *, create: bool) -> SecretBundle:
        if self._bundle is not None:
            return self._bundle

        if not self._path.is_file():
            if not create:
                raise SecretNotFound("*", f"no secret bundle at {self._path}")
            self._bundle = SecretBundle()
            logger.info("Creating secret bundle at %s", self._path)
            return self._bundle

        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            self._bundle = SecretBundle.model_validate(data)
        except (OSError, ValueError) as e:
            # Never regenerate over an unreadable bundle: the old values
            # may already be live in MariaDB.
            raise SecretNotFound("*", f"cannot read {self._path}: {e}") from e
        return self._bundle

    def lookup(self, key: str) -> str:
        """Return a stored value.

        Raises:
            SecretNotFound: If the bundle is missing, unreadable, or lacks ``key``.
        """
        try:
            bundle = self._load(create=False)
        except SecretNotFound as e:
            raise SecretNotFound(key, str(e)) from e
        entry = bundle.values.get(key)
        if entry is None:
            raise SecretNotFound(key, f"not present in {self._path}")
        return entry.value

    def get(self, key: str) -> str | None:
        """Like ``lookup`` but returns None instead of raising."""
        try:
            return self.lookup(key)
        except SecretNotFound:
            return None

    def keys(self) -> list[str]:
        if not self._path.is_file():
            return []
        return sorted(self._load(create=False).values)

    @property
    def installation_id(self) -> str | None:
        """Identifier of the stored bundle; None until the first secret is saved."""
        if not self._path.is_file():
            return None
        return self._load(create=False).installation_id

    # ── Writing ──────────────────────────────────────────────────

    def generate_once(
        self,
        key: str,
        generator: Callable[[], str] | None = None,
        *,
        source: str = "generated",
    ) -> str:
        """Return the value for ``key``, generating and persisting it on first use."""
        bundle = self._load(create=True)
        entry = bundle.values.get(key)
        if entry is not None:
            return entry.value

        value = (generator or generate_password)()
        bundle.values[key] = SecretEntry(value=value, source=source)
        self._save(bundle)
        logger.info("Stored new secret '%s'", key)
        return value

    def remember(self, key: str, value: str, *, source: str = "supplied") -> str:
        """Persist an operator-supplied value; the first value recorded wins.

        Returns:
            The value that is in effect (the stored one if it already existed).
        """
        existing = self.get(key)
        if existing is not None:
            if existing != value:
                logger.warning(
                    "Secret '%s' already recorded; keeping the stored value", key
                )
            return existing
        return self.generate_once(key, lambda: value, source=source)

    def _save(self, bundle: SecretBundle) -> None:
        """Atomic write with owner-only permissions."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps(bundle.model_dump(mode="json"), indent=2) + "\n"

        # mkstemp creates the file 0600 already; chmod keeps that explicit
        fd, tmp_path = tempfile.mkstemp(dir=self._path.parent, prefix=".secrets_", suffix=".tmp")
        tmp = Path(tmp_path)
        try:
            os.fchmod(fd, SECRET_FILE_MODE)
            with open(fd, "w", encoding="utf-8") as f:
                f.write(content)
            tmp.replace(self._path)
        except Exception:
            tmp.unlink(missing_ok=True)
            raise
        logger.debug("Secret bundle saved to %s", self._path)

    def adopt(self, key: str, value: str) -> bool:
        """Import a value recovered from elsewhere (legacy install log).

        Returns:
            True if the value was stored, False if ``key`` already existed.
        """
        if self.get(key) is not None:
            return False
        self.generate_once(key, lambda: value, source="adopted")
        return True
