from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any, Callable

from assignments.errors import StoreUnavailable
from config.loader import DatabaseConfig

SQLITE_DRIVERS = {"sqlite", "sqlite3"}
MYSQL_DRIVERS = {"mysql", "pymysql"}


@dataclass(frozen=True, slots=True)
class Dialect:
    name: str
    placeholder: str
    upsert_clause: str
    errors: tuple[type[BaseException], ...]
    # Called before every operation; revives a connection the server dropped.
    reconnect: Callable[[Any], None] | None = None

    def params(self, count: int) -> str:
        return ", ".join([self.placeholder] * count)


SQLITE_DIALECT = Dialect(
    name="sqlite",
    placeholder="?",
    upsert_clause=(
        "ON CONFLICT(guild_id) DO UPDATE SET "
        "open_ticket_category=excluded.open_ticket_category, "
        "closed_ticket_category=excluded.closed_ticket_category"
    ),
    # Python ints above the signed 64-bit range fail at bind time with OverflowError.
    errors=(sqlite3.Error, OverflowError),
)


def _mysql_ping(conn: Any) -> None:
    conn.ping(reconnect=True)


def _mysql_dialect(errors: tuple[type[BaseException], ...]) -> Dialect:
    return Dialect(
        name="mysql",
        placeholder="%s",
        upsert_clause=(
            "ON DUPLICATE KEY UPDATE "
            "open_ticket_category=VALUES(open_ticket_category), "
            "closed_ticket_category=VALUES(closed_ticket_category)"
        ),
        errors=errors,
        reconnect=_mysql_ping,
    )


def build_dsn(config: DatabaseConfig, *, redact: bool = True) -> str:
    """user:password@protocol(host:port)/dbname, the form the bot has always logged."""
    if config.database_driver_name in SQLITE_DRIVERS:
        return f"sqlite:{config.database_name}"
    password = "***" if redact and config.database_password else config.database_password
    return (
        f"{config.database_user}:{password}@{config.server_protocol}"
        f"({config.server_host}:{config.server_port})/{config.database_name}"
    )


def _connect_sqlite(config: DatabaseConfig) -> tuple[Any, Dialect]:
    try:
        conn = sqlite3.connect(config.database_name, check_same_thread=False)
    except sqlite3.Error as exc:
        raise StoreUnavailable(f"could not open sqlite database {config.database_name}: {exc}", operation="connect") from exc
    return conn, SQLITE_DIALECT


def _connect_mysql(config: DatabaseConfig) -> tuple[Any, Dialect]:
    try:
        import pymysql
    except ModuleNotFoundError as exc:
        raise StoreUnavailable("mysql driver requested but PyMySQL is not installed", operation="connect") from exc

    kwargs: dict[str, Any] = {
        "user": config.database_user,
        "password": config.database_password,
        "database": config.database_name,
        "autocommit": False,
        "charset": "utf8mb4",
    }
    if config.server_protocol.lower() == "unix":
        kwargs["unix_socket"] = config.server_host
    else:
        kwargs["host"] = config.server_host
        kwargs["port"] = int(config.server_port)

    try:
        conn = pymysql.connect(**kwargs)
    except pymysql.MySQLError as exc:
        raise StoreUnavailable(f"could not connect to mysql at {build_dsn(config)}: {exc}", operation="connect") from exc
    return conn, _mysql_dialect((pymysql.MySQLError,))


def open_connection(config: DatabaseConfig) -> tuple[Any, Dialect]:
    driver = config.database_driver_name.strip().lower()
    if driver in SQLITE_DRIVERS:
        return _connect_sqlite(config)
    if driver in MYSQL_DRIVERS:
        return _connect_mysql(config)
    raise StoreUnavailable(f"unsupported database driver: {config.database_driver_name!r}", operation="connect")
