from __future__ import annotations

import asyncio
import threading
from typing import Any

from assignments.errors import StoreError
from assignments.errors import StoreUnavailable
from assignments.models import AssignmentRecord
from config.defaults import ASSIGNMENTS_TABLE
from config.loader import DatabaseConfig
from db.connect import Dialect
from db.connect import build_dsn
from db.connect import open_connection
from misc.event_log import EventLog


def ensure_schema_sync(conn: Any, dialect: Dialect) -> None:
    cur = conn.cursor()
    cur.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {ASSIGNMENTS_TABLE} (
            guild_id                BIGINT UNSIGNED,
            open_ticket_category    BIGINT UNSIGNED,
            closed_ticket_category  BIGINT UNSIGNED,
            PRIMARY KEY (guild_id)
        )
        """
    )
    conn.commit()


def lookup_assignment_sync(conn: Any, dialect: Dialect, guild_id: int) -> tuple | None:
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT guild_id, open_ticket_category, closed_ticket_category
        FROM {ASSIGNMENTS_TABLE}
        WHERE guild_id = {dialect.placeholder}
        LIMIT 1
        """,
        (int(guild_id),),
    )
    row = cur.fetchone()
    # End the read transaction so the next lookup sees committed writes.
    conn.commit()
    return row


def upsert_assignment_sync(conn: Any, dialect: Dialect, record: AssignmentRecord) -> None:
    cur = conn.cursor()
    cur.execute(
        f"""
        INSERT INTO {ASSIGNMENTS_TABLE} (guild_id, open_ticket_category, closed_ticket_category)
        VALUES ({dialect.params(3)})
        {dialect.upsert_clause}
        """,
        record.as_row(),
    )
    conn.commit()


def delete_assignment_sync(conn: Any, dialect: Dialect, guild_id: int) -> int:
    cur = conn.cursor()
    cur.execute(
        f"DELETE FROM {ASSIGNMENTS_TABLE} WHERE guild_id = {dialect.placeholder}",
        (int(guild_id),),
    )
    conn.commit()
    return int(cur.rowcount or 0)


def list_assignments_sync(conn: Any, dialect: Dialect, limit: int = 100) -> list[tuple]:
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT guild_id, open_ticket_category, closed_ticket_category
        FROM {ASSIGNMENTS_TABLE}
        ORDER BY guild_id ASC
        LIMIT {dialect.placeholder}
        """,
        (int(limit),),
    )
    rows = list(cur.fetchall())
    conn.commit()
    return rows


class AssignmentStore:
    """Durable guild -> (open, closed) category mapping.

    Owns a single DB-API connection. Each operation takes the store lock for
    its own duration only, so callers never hold the connection across
    operations. Driver failures surface as StoreError; a missing row is None.
    """

    def __init__(self, conn: Any, dialect: Dialect, *, event_log: EventLog | None = None) -> None:
        self._conn = conn
        self.dialect = dialect
        self.event_log = event_log or EventLog()
        self._lock = threading.Lock()
        self._closed = False

    @classmethod
    def open(cls, config: DatabaseConfig, *, event_log: EventLog | None = None) -> AssignmentStore:
        log = event_log or EventLog()
        dsn = build_dsn(config)
        log.dsn_debug(dsn)
        log.store_opening(dsn)
        conn, dialect = open_connection(config)
        log.store_opened(dsn)
        return cls(conn, dialect, event_log=log)

    @property
    def closed(self) -> bool:
        return self._closed

    def _rollback(self) -> None:
        try:
            self._conn.rollback()
        except self.dialect.errors as exc:
            self.event_log.store_error(exc, fatal=False, operation="rollback")

    def _run(self, operation: str, func, *args, guild_id: int | None = None):
        with self._lock:
            if self._closed:
                raise StoreError("assignment store is closed", operation=operation, guild_id=guild_id)
            try:
                if self.dialect.reconnect is not None:
                    self.dialect.reconnect(self._conn)
                return func(self._conn, self.dialect, *args)
            except self.dialect.errors as exc:
                self._rollback()
                raise StoreError(f"{operation} failed: {exc}", operation=operation, guild_id=guild_id) from exc

    def ensure_schema(self) -> None:
        try:
            self._run("ensure_schema", ensure_schema_sync)
        except StoreError as exc:
            raise StoreUnavailable(str(exc), operation="ensure_schema") from exc
        self.event_log.schema_ensured(ASSIGNMENTS_TABLE)

    def lookup(self, guild_id: int) -> AssignmentRecord | None:
        row = self._run("lookup", lookup_assignment_sync, int(guild_id), guild_id=guild_id)
        if not row:
            return None
        try:
            return AssignmentRecord.from_row(row)
        except (TypeError, ValueError) as exc:
            raise StoreError(f"malformed assignment row: {exc}", operation="lookup", guild_id=guild_id) from exc

    def upsert(self, record: AssignmentRecord) -> None:
        self._run("upsert", upsert_assignment_sync, record, guild_id=record.guild_id)

    def delete(self, guild_id: int) -> bool:
        removed = self._run("delete", delete_assignment_sync, int(guild_id), guild_id=guild_id)
        return removed > 0

    def list_assignments(self, limit: int = 100) -> list[AssignmentRecord]:
        rows = self._run("list", list_assignments_sync, int(limit))
        return [AssignmentRecord.from_row(row) for row in rows]

    async def lookup_async(self, guild_id: int) -> AssignmentRecord | None:
        return await asyncio.to_thread(self.lookup, guild_id)

    async def upsert_async(self, record: AssignmentRecord) -> None:
        await asyncio.to_thread(self.upsert, record)

    async def delete_async(self, guild_id: int) -> bool:
        return await asyncio.to_thread(self.delete, guild_id)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._conn.close()
            except self.dialect.errors as exc:
                self.event_log.store_error(exc, fatal=False, operation="close")

    def __enter__(self) -> AssignmentStore:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
