from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from assignments.errors import ConfigError
from config.defaults import DEFAULT_CLOSED_CATEGORY_NAME
from config.defaults import DEFAULT_COMPENSATE_ORPHANS
from config.defaults import DEFAULT_DB_DRIVER
from config.defaults import DEFAULT_LEFT_POLICY
from config.defaults import DEFAULT_OPEN_CATEGORY_NAME
from config.defaults import DEFAULT_SERVER_HOST
from config.defaults import DEFAULT_SERVER_PORT
from config.defaults import DEFAULT_SERVER_PROTOCOL
from config.defaults import LEFT_POLICIES
from config.defaults import SQL_CONFIG_PATH
from config.defaults import TOKEN_PATH


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    database_user: str
    database_password: str
    database_name: str
    database_driver_name: str = DEFAULT_DB_DRIVER
    server_protocol: str = DEFAULT_SERVER_PROTOCOL
    server_host: str = DEFAULT_SERVER_HOST
    server_port: int = DEFAULT_SERVER_PORT


@dataclass(frozen=True, slots=True)
class AssignmentSettings:
    open_category_name: str = DEFAULT_OPEN_CATEGORY_NAME
    closed_category_name: str = DEFAULT_CLOSED_CATEGORY_NAME
    left_policy: str = DEFAULT_LEFT_POLICY
    compensate_orphans: bool = DEFAULT_COMPENSATE_ORPHANS


def _lower_keys(value: Any) -> dict[str, Any]:
    if not isinstance(value, dict):
        return {}
    return {str(k).strip().lower(): v for k, v in value.items()}


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _pick(section: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in section and section[key] is not None:
            return section[key]
    return None


def _read_yaml(path: str | Path) -> dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"config file not found: {p}")
    try:
        payload = yaml.safe_load(p.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"could not read {p}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError(f"invalid config format in {p}: expected a mapping")
    return _lower_keys(payload)


def load_database_config(path: str | Path = SQL_CONFIG_PATH) -> DatabaseConfig:
    payload = _read_yaml(path)
    database = _lower_keys(payload.get("database"))
    server = _lower_keys(payload.get("server"))
    if not database:
        raise ConfigError(f"missing 'database' section in {path}")

    name = _text(_pick(database, "dbname", "name"))
    if not name:
        raise ConfigError(f"missing database.dbname in {path}")

    raw_port = _pick(server, "port")
    if raw_port is None:
        port = DEFAULT_SERVER_PORT
    else:
        try:
            port = int(raw_port)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"invalid server.port {raw_port!r} in {path}") from exc
        if not 0 < port < 65536:
            raise ConfigError(f"server.port out of range: {port}")

    return DatabaseConfig(
        database_user=_text(_pick(database, "dbuser", "user")),
        database_password=_text(_pick(database, "dbpassword", "password")),
        database_name=name,
        database_driver_name=(_text(_pick(database, "dbdriver", "driver")) or DEFAULT_DB_DRIVER).lower(),
        server_protocol=_text(_pick(server, "protocol")) or DEFAULT_SERVER_PROTOCOL,
        server_host=_text(_pick(server, "ip", "host")) or DEFAULT_SERVER_HOST,
        server_port=port,
    )


def load_assignment_settings(path: str | Path = SQL_CONFIG_PATH) -> AssignmentSettings:
    payload = _read_yaml(path)
    section = _lower_keys(payload.get("assignments"))
    defaults = AssignmentSettings()

    left_policy = (_text(section.get("left_policy")) or defaults.left_policy).lower()
    if left_policy not in LEFT_POLICIES:
        raise ConfigError(f"invalid assignments.left_policy {left_policy!r}; expected one of {sorted(LEFT_POLICIES)}")

    compensate = section.get("compensate_orphans")
    if compensate is None:
        compensate = defaults.compensate_orphans
    elif not isinstance(compensate, bool):
        raise ConfigError(f"invalid assignments.compensate_orphans {compensate!r}; expected true/false")

    return AssignmentSettings(
        open_category_name=_text(section.get("open_category_name")) or defaults.open_category_name,
        closed_category_name=_text(section.get("closed_category_name")) or defaults.closed_category_name,
        left_policy=left_policy,
        compensate_orphans=compensate,
    )


def read_token(path: str | Path = TOKEN_PATH) -> str:
    p = Path(path)
    try:
        token = p.read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise ConfigError(f"could not read token file {p}: {exc}") from exc
    if not token:
        raise ConfigError(f"token file {p} is empty")
    return token
