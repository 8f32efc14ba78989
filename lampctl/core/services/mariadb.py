"""
MariaDB helpers — SQL text and the commands that carry it.

SQL is always piped to ``mysql`` on stdin and the root password travels
in ``MYSQL_PWD``, so neither shows up in the process table or in the
installation log.  Identifiers are validated upstream by ``SiteConfig``;
string literals are escaped here.
"""

from __future__ import annotations

import logging

from lampctl.core.engine.context import StepContext

logger = logging.getLogger(__name__)

CHARSET = "utf8mb4"
COLLATION = "utf8mb4_general_ci"


def quote_literal(value: str) -> str:
    """SQL single-quoted string literal."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def set_root_password_sql(password: str) -> str:
    return (
        f"ALTER USER 'root'@'localhost' IDENTIFIED BY {quote_literal(password)};\n"
        "FLUSH PRIVILEGES;\n"
    )


def create_site_database_sql(db_name: str, db_user: str, db_password: str) -> str:
    """Idempotent database + user + grant."""
    return (
        f"CREATE DATABASE IF NOT EXISTS `{db_name}` "
        f"CHARACTER SET {CHARSET} COLLATE {COLLATION};\n"
        f"CREATE USER IF NOT EXISTS '{db_user}'@'localhost' "
        f"IDENTIFIED BY {quote_literal(db_password)};\n"
        f"GRANT ALL PRIVILEGES ON `{db_name}`.* TO '{db_user}'@'localhost';\n"
        "FLUSH PRIVILEGES;\n"
    )


def database_exists_sql(db_name: str) -> str:
    return (
        "SELECT SCHEMA_NAME FROM information_schema.SCHEMATA "
        f"WHERE SCHEMA_NAME = {quote_literal(db_name)};\n"
    )


def user_exists_sql(db_user: str) -> str:
    return (
        "SELECT User FROM mysql.user "
        f"WHERE User = {quote_literal(db_user)} AND Host = 'localhost';\n"
    )


# ── Command helpers ──────────────────────────────────────────────


def _client(root_password: str | None) -> tuple[list[str], dict[str, str] | None]:
    if root_password is None:
        # Fresh MariaDB: root authenticates over the unix socket
        return ["mysql", "--batch", "--skip-column-names"], None
    return (
        ["mysql", "--batch", "--skip-column-names", "-u", "root"],
        {"MYSQL_PWD": root_password},
    )


def execute(ctx: StepContext, sql: str, root_password: str | None = None) -> str:
    """Run SQL that must succeed; returns stdout."""
    command, env = _client(root_password)
    logger.debug("Executing %d SQL statement(s) as root", sql.count(";"))
    return ctx.check(command, input=sql, env=env).stdout


def query_returns_rows(ctx: StepContext, sql: str, root_password: str | None) -> bool:
    command, env = _client(root_password)
    result = ctx.run(command, input=sql, env=env)
    return result.ok and bool(result.stdout.strip())


def root_login_works(ctx: StepContext, root_password: str) -> bool:
    command, env = _client(root_password)
    return ctx.run(command, input="SELECT 1;\n", env=env).ok


def site_database_present(ctx: StepContext, root_password: str, db_name: str, db_user: str) -> bool:
    return query_returns_rows(
        ctx, database_exists_sql(db_name), root_password
    ) and query_returns_rows(ctx, user_exists_sql(db_user), root_password)


def site_login_works(
    ctx: StepContext, db_user: str, password: str, db_name: str | None = None
) -> bool:
    """Whether ``db_user`` logs in with ``password`` (and can open ``db_name``)."""
    command = ["mysql", "--batch", "--skip-column-names", "-u", db_user]
    if db_name is not None:
        command += ["-D", db_name]
    return ctx.run(command, input="SELECT 1;\n", env={"MYSQL_PWD": password}).ok
