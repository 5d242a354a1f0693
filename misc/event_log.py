from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LOGGER_NAME = "ticketbot"
_CONTEXT_FIELDS = ("guild_id", "operation", "category_id", "table")


@dataclass(frozen=True, slots=True)
class Event:
    level: int
    message: str


JOINED_GUILD = Event(logging.INFO, "Joined server: %s")
LEFT_GUILD = Event(logging.INFO, "Left server: %s")
STARTED = Event(logging.INFO, "TicketBot is now running. Press CTRL-C to exit.")
STOPPING = Event(logging.INFO, "TicketBot is now stopping.")
CONNECTED = Event(logging.INFO, "Connected to Discord as %s")
CONFIG_ERROR = Event(logging.ERROR, "Config Error: %s")
DISCORD_CONNECTION_ERROR = Event(logging.ERROR, "Discord Connection Error: %s")
DISCORD_SESSION_ERROR = Event(logging.ERROR, "Discord Session Error: %s")
DISCORD_ERROR = Event(logging.ERROR, "Discord Error: %s")
SQL_ERROR = Event(logging.CRITICAL, "SQL Error: %s")
DSN_DEBUG = Event(logging.DEBUG, "DSN: %s")
SQL_OPENING = Event(TRACE, "Starting SQL Connection: %s")
SQL_OPENED = Event(TRACE, "Started SQL Connection: %s")
SCHEMA_ENSURED = Event(logging.DEBUG, "Ensured table exists: %s")
ASSIGNMENT_FOUND = Event(logging.DEBUG, "Assignment already exists for server: %s")
CATEGORY_PROVISIONED = Event(logging.DEBUG, "Created category: %s")
ASSIGNMENT_CREATED = Event(logging.INFO, "Assigned ticket categories for server: %s")
ASSIGNMENT_DELETED = Event(logging.INFO, "Removed ticket categories assignment for server: %s")
COMPENSATION_FAILED = Event(logging.WARNING, "Could not remove orphaned category: %s")
NOTIFICATION_REJECTED = Event(logging.WARNING, "Ignoring notification during shutdown: %s")


def _safe_repr(value: Any) -> str:
    try:
        return repr(value)
    except Exception:
        return object.__repr__(value)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "msg": record.getMessage(),
        }
        for key in _CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["error"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def resolve_log_level(raw: str | None) -> int:
    text = str(raw or "").strip().upper()
    if not text:
        return TRACE
    if text.isdigit():
        return int(text)
    level = logging.getLevelName(text)
    return level if isinstance(level, int) else TRACE


def configure_logging(level: int | None = None, *, stream=None) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    if level is None:
        level = resolve_log_level(os.getenv("TICKETBOT_LOG_LEVEL"))
    logger.setLevel(level)
    for handler in list(logger.handlers):
        if getattr(handler, "_ticketbot_handler", False):
            logger.removeHandler(handler)
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JsonFormatter())
    handler._ticketbot_handler = True
    logger.addHandler(handler)
    logger.propagate = False
    return logger


class EventLog:
    """One method per domain event; each emits exactly one record and never raises."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger(LOGGER_NAME)

    def joined_guild(self, guild_name: str, **context) -> None:
        self.handle_event(JOINED_GUILD, guild_name, **context)

    def left_guild(self, guild_name: str, **context) -> None:
        self.handle_event(LEFT_GUILD, guild_name, **context)

    def started(self) -> None:
        self.handle_event(STARTED)

    def stopping(self) -> None:
        self.handle_event(STOPPING)

    def connected(self, user) -> None:
        self.handle_event(CONNECTED, user)

    def config_error(self, error: BaseException) -> None:
        self.handle_event(CONFIG_ERROR, error)

    def gateway_connection_error(self, error: BaseException) -> None:
        self.handle_event(DISCORD_CONNECTION_ERROR, error)

    def gateway_session_error(self, error: BaseException) -> None:
        self.handle_event(DISCORD_SESSION_ERROR, error)

    def gateway_error(self, error: BaseException, **context) -> None:
        self.handle_event(DISCORD_ERROR, error, **context)

    def store_error(self, error: BaseException, *, fatal: bool = True, **context) -> None:
        # Per-notification store failures are reported at error level; only
        # startup failures keep the process-terminating severity.
        event = SQL_ERROR if fatal else Event(logging.ERROR, SQL_ERROR.message)
        self.handle_event(event, error, **context)

    def dsn_debug(self, dsn: str) -> None:
        self.handle_event(DSN_DEBUG, dsn)

    def store_opening(self, dsn: str) -> None:
        self.handle_event(SQL_OPENING, dsn)

    def store_opened(self, dsn: str) -> None:
        self.handle_event(SQL_OPENED, dsn)

    def schema_ensured(self, table: str) -> None:
        self.handle_event(SCHEMA_ENSURED, table, table=table)

    def assignment_found(self, guild_name: str, **context) -> None:
        self.handle_event(ASSIGNMENT_FOUND, guild_name, **context)

    def category_provisioned(self, category_name: str, **context) -> None:
        self.handle_event(CATEGORY_PROVISIONED, category_name, **context)

    def assignment_created(self, guild_name: str, **context) -> None:
        self.handle_event(ASSIGNMENT_CREATED, guild_name, **context)

    def assignment_deleted(self, guild_name: str, **context) -> None:
        self.handle_event(ASSIGNMENT_DELETED, guild_name, **context)

    def compensation_failed(self, error: BaseException, **context) -> None:
        self.handle_event(COMPENSATION_FAILED, error, **context)

    def notification_rejected(self, guild_name: str, **context) -> None:
        self.handle_event(NOTIFICATION_REJECTED, guild_name, **context)

    def handle_event(self, event: Event, *extras: Any, **context: Any) -> None:
        message = event.message
        if extras:
            try:
                message = event.message % (extras[0],)
            except Exception:
                message = f"{event.message} {_safe_repr(extras[0])}"
        fields = {k: v for k, v in context.items() if k in _CONTEXT_FIELDS and v is not None}
        try:
            self.logger.log(event.level, "%s", message, extra=fields)
        except Exception:
            # Emitting an event must never raise.
            pass
