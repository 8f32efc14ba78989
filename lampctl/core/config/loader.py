"""
Configuration loader — reads lampctl.yml into the Settings model.

Lookup order: explicit ``--config`` path, then ``LAMPCTL_CONFIG``, then
``/etc/lampctl/lampctl.yml``.  With no file at all the built-in defaults
apply, which match a stock Ubuntu host.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from lampctl.core.models.settings import Settings

logger = logging.getLogger(__name__)

SETTINGS_ENV_VAR = "LAMPCTL_CONFIG"
DEFAULT_SETTINGS_FILE = Path("/etc/lampctl/lampctl.yml")


class ConfigError(Exception):
    """Raised when the settings file is unreadable or invalid."""


def find_settings_file(explicit: Path | None = None) -> tuple[Path | None, bool]:
    """Resolve which settings file to read.

    Returns:
        (path, required) — ``required`` is True when the operator named
        the file, so its absence is an error rather than "use defaults".
    """
    if explicit is not None:
        return explicit, True
    env_path = os.environ.get(SETTINGS_ENV_VAR)
    if env_path:
        return Path(env_path), True
    return DEFAULT_SETTINGS_FILE, False


def load_settings(path: Path | None = None) -> Settings:
    """Load and validate host settings.

    Raises:
        ConfigError: If a named file is missing, or any file is invalid.
    """
    path, required = find_settings_file(path)

    if path is None or not path.is_file():
        if required:
            raise ConfigError(f"Config file not found: {path}")
        logger.debug("No settings file; using defaults")
        return Settings()

    logger.debug("Loading settings from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    try:
        settings = Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid settings in {path}: {e}") from e

    logger.info("Loaded settings from %s", path)
    return settings
