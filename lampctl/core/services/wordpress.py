"""
WordPress helpers — fetch, unpack, configure and lock down a site tree.

Network access goes through ``urllib`` with explicit timeouts; the
archive is streamed to a temp file and unpacked with the top-level
``wordpress/`` directory stripped (``tar --strip-components=1``).
"""

from __future__ import annotations

import grp
import logging
import os
import pwd
import re
import shutil
import tarfile
import tempfile
import urllib.error
import urllib.request
from pathlib import Path, PurePosixPath

from lampctl.core.errors import PreconditionFailed

logger = logging.getLogger(__name__)

SAMPLE_CONFIG = "wp-config-sample.php"
CONFIG_FILE = "wp-config.php"
# Present in every WordPress release tree
MARKER_FILE = "wp-includes/version.php"

PLACEHOLDER_DB_NAME = "database_name_here"
PLACEHOLDER_DB_USER = "username_here"
PLACEHOLDER_DB_PASSWORD = "password_here"
PLACEHOLDER_SALT = "put your unique phrase here"

SALT_KEYS = (
    "AUTH_KEY", "SECURE_AUTH_KEY", "LOGGED_IN_KEY", "NONCE_KEY",
    "AUTH_SALT", "SECURE_AUTH_SALT", "LOGGED_IN_SALT", "NONCE_SALT",
)

_USER_AGENT = "lampctl (+wordpress)"


# ── Network ──────────────────────────────────────────────────────


def _open(url: str, timeout: float):
    req = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
    return urllib.request.urlopen(req, timeout=timeout)


def download_archive(url: str, dest: Path, timeout: float = 120) -> Path:
    """Stream ``url`` into ``dest``.

    Raises:
        PreconditionFailed: If the archive host is unreachable.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    logger.info("Downloading %s", url)
    try:
        with _open(url, timeout) as resp, dest.open("wb") as f:
            shutil.copyfileobj(resp, f, length=64 * 1024)
    except (urllib.error.URLError, TimeoutError, OSError) as e:
        dest.unlink(missing_ok=True)
        raise PreconditionFailed(f"Failed to download {url}: {e}") from e
    logger.debug("Downloaded %d bytes to %s", dest.stat().st_size, dest)
    return dest


def fetch_salts(url: str, timeout: float = 30) -> str:
    """Fetch the eight ``define(...)`` salt lines from the salt endpoint."""
    try:
        with _open(url, timeout) as resp:
            body = resp.read().decode("utf-8", errors="replace")
    except (urllib.error.URLError, TimeoutError, OSError) as e:
        raise PreconditionFailed(f"Failed to fetch WordPress salts from {url}: {e}") from e

    if not all(f"'{key}'" in body for key in SALT_KEYS):
        raise PreconditionFailed(f"Salt endpoint {url} returned an unexpected response")
    return body.strip()


# ── Archive ──────────────────────────────────────────────────────


def _stripped_members(tar: tarfile.TarFile, strip: int = 1):
    for member in tar.getmembers():
        parts = PurePosixPath(member.name).parts[strip:]
        if not parts:
            continue
        if member.issym() or member.islnk() or member.isdev():
            logger.debug("Skipping link/device member %s", member.name)
            continue
        if PurePosixPath(member.name).is_absolute() or ".." in parts:
            raise PreconditionFailed(f"Unsafe path in archive: {member.name}")
        member.name = str(PurePosixPath(*parts))
        yield member


def extract_archive(archive: Path, dest: Path) -> int:
    """Unpack a ``.tar.gz`` into ``dest`` without its top-level directory.

    Returns:
        Number of members extracted.
    """
    dest.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(archive, "r:gz") as tar:
            members = list(_stripped_members(tar))
            tar.extractall(dest, members=members)
    except tarfile.TarError as e:
        raise PreconditionFailed(f"Cannot unpack {archive}: {e}") from e
    logger.info("Unpacked %d entries into %s", len(members), dest)
    return len(members)


def deploy_tree(url: str, web_root: Path, timeout: float = 120) -> None:
    """Download and unpack the WordPress release into ``web_root``."""
    with tempfile.TemporaryDirectory(prefix="lampctl-wp-") as tmpdir:
        archive = download_archive(url, Path(tmpdir) / "wordpress.tar.gz", timeout=timeout)
        extract_archive(archive, web_root)


def is_deployed(web_root: Path) -> bool:
    return (web_root / MARKER_FILE).is_file() and (
        (web_root / SAMPLE_CONFIG).is_file() or (web_root / CONFIG_FILE).is_file()
    )


# ── wp-config.php ────────────────────────────────────────────────


def php_quote(value: str) -> str:
    """Escape for a PHP single-quoted string body."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def render_config(sample: str, db_name: str, db_user: str, db_password: str, salts: str) -> str:
    """Fill ``wp-config-sample.php`` placeholders.

    The eight ``put your unique phrase here`` defines are replaced by the
    fetched salt block at the position of the first one.
    """
    text = (
        sample.replace(f"'{PLACEHOLDER_DB_NAME}'", f"'{php_quote(db_name)}'", 1)
        .replace(f"'{PLACEHOLDER_DB_USER}'", f"'{php_quote(db_user)}'", 1)
        .replace(f"'{PLACEHOLDER_DB_PASSWORD}'", f"'{php_quote(db_password)}'", 1)
    )

    out: list[str] = []
    salts_written = False
    for line in text.splitlines(keepends=True):
        if PLACEHOLDER_SALT in line:
            if not salts_written:
                out.append(salts.rstrip("\n") + "\n")
                salts_written = True
            continue
        out.append(line)
    if not salts_written:
        raise PreconditionFailed("wp-config sample has no salt placeholders")
    return "".join(out)


def _define_re(constant: str, value: str) -> re.Pattern[str]:
    return re.compile(
        r"define\(\s*'" + constant + r"'\s*,\s*'" + re.escape(php_quote(value)) + r"'\s*\)"
    )


def config_is_rendered(path: Path, db_name: str, db_user: str, db_password: str) -> bool:
    """Whether ``wp-config.php`` exists with these credentials and no placeholders."""
    if not path.is_file():
        return False
    text = path.read_text(encoding="utf-8", errors="replace")
    if any(p in text for p in (PLACEHOLDER_DB_NAME, PLACEHOLDER_DB_USER,
                               PLACEHOLDER_DB_PASSWORD, PLACEHOLDER_SALT)):
        return False
    return all(
        _define_re(const, value).search(text)
        for const, value in (("DB_NAME", db_name), ("DB_USER", db_user),
                             ("DB_PASSWORD", db_password))
    )


# ── Ownership and modes ──────────────────────────────────────────


def _walk(root: Path):
    yield root, True
    for dirpath, dirnames, filenames in os.walk(root):
        for d in dirnames:
            yield Path(dirpath) / d, True
        for f in filenames:
            yield Path(dirpath) / f, False


def normalize_modes(root: Path, dir_mode: int, file_mode: int) -> int:
    """chmod directories and files to their modes; returns entries changed."""
    changed = 0
    for path, is_dir in _walk(root):
        if path.is_symlink():
            continue
        wanted = dir_mode if is_dir else file_mode
        if (path.stat().st_mode & 0o7777) != wanted:
            os.chmod(path, wanted)
            changed += 1
    logger.debug("Adjusted modes on %d entries under %s", changed, root)
    return changed


def modes_ok(root: Path, dir_mode: int, file_mode: int) -> bool:
    if not root.is_dir():
        return False
    for path, is_dir in _walk(root):
        if path.is_symlink():
            continue
        wanted = dir_mode if is_dir else file_mode
        if (path.stat().st_mode & 0o7777) != wanted:
            return False
    return True


def owner_ok(root: Path, owner: str, group: str) -> bool:
    """Whether every entry is owned by ``owner:group``."""
    try:
        uid = pwd.getpwnam(owner).pw_uid
        gid = grp.getgrnam(group).gr_gid
    except KeyError:
        return False
    if not root.is_dir():
        return False
    for path, _ in _walk(root):
        st = path.lstat()
        if st.st_uid != uid or st.st_gid != gid:
            return False
    return True
