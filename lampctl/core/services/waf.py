"""
WAF helpers — ModSecurity engine config and the OWASP core rule set.

The Debian package ships ``modsecurity.conf-recommended`` in detection-only
mode.  Activating the WAF means: copy it to ``modsecurity.conf``, switch
``SecRuleEngine`` to ``On``, clone the rule set and activate its sample
setup file.  Each sub-action checks its own result, so a host left
half-configured by an interrupted run is repaired rather than skipped.
"""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path

from lampctl.core.engine.context import StepContext
from lampctl.core.errors import PreconditionFailed

logger = logging.getLogger(__name__)

ENGINE_CONF = "modsecurity.conf"
ENGINE_SAMPLE = "modsecurity.conf-recommended"
CRS_SETUP = "crs-setup.conf"
CRS_SETUP_SAMPLE = "crs-setup.conf.example"
CRS_INCLUDE_CONF = "modsecurity-crs.conf"

_ENGINE_RE = re.compile(r"^\s*SecRuleEngine\s+\S+", re.MULTILINE)


def engine_enabled(config_dir: Path) -> bool:
    conf = config_dir / ENGINE_CONF
    if not conf.is_file():
        return False
    m = _ENGINE_RE.search(conf.read_text(encoding="utf-8", errors="replace"))
    return bool(m) and m.group(0).split()[-1] == "On"


def enable_engine(config_dir: Path) -> None:
    conf = config_dir / ENGINE_CONF
    if not conf.is_file():
        sample = config_dir / ENGINE_SAMPLE
        if not sample.is_file():
            raise PreconditionFailed(f"ModSecurity sample config missing: {sample}")
        conf.write_text(sample.read_text(encoding="utf-8"), encoding="utf-8")
        logger.info("Activated %s from %s", conf, sample.name)

    text = conf.read_text(encoding="utf-8")
    if _ENGINE_RE.search(text):
        text = _ENGINE_RE.sub("SecRuleEngine On", text, count=1)
    else:
        text = text.rstrip("\n") + "\nSecRuleEngine On\n"
    conf.write_text(text, encoding="utf-8")


def ruleset_active(crs_dir: Path) -> bool:
    return (crs_dir / CRS_SETUP).is_file() and (crs_dir / "rules").is_dir()


def install_ruleset(ctx: StepContext, crs_dir: Path, repo: str) -> None:
    if not (crs_dir / "rules").is_dir():
        _clone_into(ctx, crs_dir, repo)

    setup = crs_dir / CRS_SETUP
    sample = crs_dir / CRS_SETUP_SAMPLE
    if not setup.is_file():
        if not sample.is_file():
            raise PreconditionFailed(f"Rule set sample config missing: {sample}")
        sample.rename(setup)
        logger.info("Activated %s", setup)


def _clone_into(ctx: StepContext, crs_dir: Path, repo: str) -> None:
    """Clone ``repo`` beside ``crs_dir`` and merge the checkout into it.

    ``crs_dir`` may already hold files (the ``modsecurity-crs`` package
    drops its own ``crs-setup.conf`` there) and git refuses to clone into
    a non-empty directory.  Existing files are kept.
    """
    staging = crs_dir.parent / f".{crs_dir.name}.clone"
    if staging.exists():
        shutil.rmtree(staging)
    crs_dir.parent.mkdir(parents=True, exist_ok=True)
    ctx.check(
        ["git", "clone", "--depth", "1", repo, str(staging)],
        timeout=ctx.settings.timeouts.download,
    )

    try:
        crs_dir.mkdir(exist_ok=True)
        for entry in sorted(staging.iterdir()):
            if entry.name == ".git":
                continue
            target = crs_dir / entry.name
            if target.exists() or target.is_symlink():
                logger.info("Keeping existing %s", target)
                continue
            shutil.move(str(entry), str(target))
    finally:
        shutil.rmtree(staging, ignore_errors=True)


def render_include_conf(crs_dir: Path) -> str:
    return (
        "<IfModule security2_module>\n"
        f"    IncludeOptional {crs_dir / CRS_SETUP}\n"
        f"    IncludeOptional {crs_dir / 'rules'}/*.conf\n"
        "</IfModule>\n"
    )
