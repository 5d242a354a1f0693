from __future__ import annotations

import unittest
from unittest import mock

from assignments.errors import StoreUnavailable
from config.loader import DatabaseConfig
from db.connect import SQLITE_DIALECT
from db.connect import _mysql_dialect
from db.connect import build_dsn
from db.connect import open_connection


def _config(**overrides) -> DatabaseConfig:
    base = dict(
        database_user="ticketbot",
        database_password="s3cret",
        database_name="tickets",
        database_driver_name="mysql",
        server_protocol="tcp",
        server_host="db.internal",
        server_port=3306,
    )
    base.update(overrides)
    return DatabaseConfig(**base)


class DbConnectTests(unittest.TestCase):
    def test_dsn_redacts_password_by_default(self):
        self.assertEqual(build_dsn(_config()), "ticketbot:***@tcp(db.internal:3306)/tickets")

    def test_dsn_can_include_password(self):
        self.assertEqual(
            build_dsn(_config(), redact=False),
            "ticketbot:s3cret@tcp(db.internal:3306)/tickets",
        )

    def test_sqlite_dsn_is_the_path(self):
        self.assertEqual(build_dsn(_config(database_driver_name="sqlite3", database_name="t.db")), "sqlite:t.db")

    def test_open_sqlite_connection(self):
        conn, dialect = open_connection(_config(database_driver_name="sqlite3", database_name=":memory:"))
        try:
            self.assertIs(dialect, SQLITE_DIALECT)
            self.assertEqual(conn.execute("SELECT 1").fetchone(), (1,))
        finally:
            conn.close()

    def test_unknown_driver(self):
        with self.assertRaises(StoreUnavailable):
            open_connection(_config(database_driver_name="postgres"))

    def test_dialect_params(self):
        self.assertEqual(SQLITE_DIALECT.params(3), "?, ?, ?")

    def test_mysql_dialect_pings_with_reconnect(self):
        dialect = _mysql_dialect((Exception,))
        conn = mock.Mock()
        dialect.reconnect(conn)
        conn.ping.assert_called_once_with(reconnect=True)
        self.assertEqual(dialect.params(2), "%s, %s")

    def test_sqlite_dialect_has_no_reconnect_hook(self):
        self.assertIsNone(SQLITE_DIALECT.reconnect)


if __name__ == "__main__":
    unittest.main()
