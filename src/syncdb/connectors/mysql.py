"""
MySQL-family dialect adapter (MySQL, MariaDB).

Uses mysql-connector-python. Introspection goes through
INFORMATION_SCHEMA restricted to the connected database; DDL comes from
SHOW CREATE TABLE.
"""

from __future__ import annotations

from typing import Any, Sequence

import mysql.connector

from syncdb.connectors.base import BaseDialect


class MySQLDialect(BaseDialect):
    """Dialect adapter for MySQL-compatible servers."""

    name = "mysql"
    quote_char = "`"
    placeholder = "%s"
    driver_error = mysql.connector.Error

    def _open(self) -> Any:
        return mysql.connector.connect(
            host=self.host,
            port=self.port or 3306,
            user=self.username,
            password=self.password,
            database=self.database,
            connection_timeout=self.connect_timeout,
            charset="utf8mb4",
            autocommit=False,
        )

    def stream_cursor(self):
        # Unbuffered so large tables stream from the server
        return self.cursor(buffered=False)

    def upsert_clause(
        self,
        table: str,
        columns: Sequence[str],
        keys: Sequence[str],
    ) -> str:
        updates = [c for c in columns if c not in keys] or list(columns[:1])
        assignments = ", ".join(
            f"{self.quote(c)}=VALUES({self.quote(c)})" for c in updates
        )
        return f"ON DUPLICATE KEY UPDATE {assignments}"

    def list_tables(self) -> list[str]:
        rows = self.fetch_all(
            """
            SELECT TABLE_NAME
            FROM INFORMATION_SCHEMA.TABLES
            WHERE TABLE_SCHEMA = DATABASE()
            AND TABLE_TYPE = 'BASE TABLE'
            ORDER BY TABLE_NAME
            """
        )
        return [row[0] for row in rows]

    def is_view(self, table: str) -> bool:
        count = self.fetch_value(
            """
            SELECT COUNT(*)
            FROM INFORMATION_SCHEMA.VIEWS
            WHERE TABLE_SCHEMA = DATABASE()
            AND TABLE_NAME = %s
            """,
            (table,),
        )
        return bool(count)

    def get_columns(self, table: str) -> list[str]:
        rows = self.fetch_all(
            """
            SELECT COLUMN_NAME
            FROM INFORMATION_SCHEMA.COLUMNS
            WHERE TABLE_SCHEMA = DATABASE()
            AND TABLE_NAME = %s
            AND (GENERATION_EXPRESSION IS NULL OR GENERATION_EXPRESSION = '')
            ORDER BY ORDINAL_POSITION
            """,
            (table,),
        )
        return [row[0] for row in rows]

    def get_primary_key(self, table: str) -> list[str]:
        rows = self.fetch_all(
            """
            SELECT COLUMN_NAME
            FROM INFORMATION_SCHEMA.KEY_COLUMN_USAGE
            WHERE TABLE_SCHEMA = DATABASE()
            AND TABLE_NAME = %s
            AND CONSTRAINT_NAME = 'PRIMARY'
            ORDER BY ORDINAL_POSITION
            """,
            (table,),
        )
        return [row[0] for row in rows]

    def get_schema_ddl(self, table: str) -> str:
        if self.is_view(table):
            definition = self.fetch_value(
                """
                SELECT VIEW_DEFINITION
                FROM INFORMATION_SCHEMA.VIEWS
                WHERE TABLE_SCHEMA = DATABASE()
                AND TABLE_NAME = %s
                """,
                (table,),
            )
            return f"CREATE VIEW {self.quote(table)} AS {definition};"

        rows = self.fetch_all(f"SHOW CREATE TABLE {self.quote(table)}")
        if not rows:
            raise mysql.connector.ProgrammingError(msg=f"Table not found: {table}")
        ddl = rows[0][1]
        if isinstance(ddl, (bytes, bytearray)):
            ddl = ddl.decode("utf-8")
        ddl = ddl.rstrip()
        return ddl if ddl.endswith(";") else ddl + ";"

    def get_references(self, table: str) -> list[str]:
        rows = self.fetch_all(
            """
            SELECT DISTINCT REFERENCED_TABLE_NAME
            FROM INFORMATION_SCHEMA.KEY_COLUMN_USAGE
            WHERE TABLE_SCHEMA = DATABASE()
            AND TABLE_NAME = %s
            AND REFERENCED_TABLE_NAME IS NOT NULL
            ORDER BY REFERENCED_TABLE_NAME
            """,
            (table,),
        )
        return [row[0] for row in rows]

    def get_session_mode(self) -> str | None:
        mode = self.fetch_value("SELECT @@SESSION.sql_mode")
        if isinstance(mode, (bytes, bytearray)):
            mode = mode.decode("utf-8")
        return mode

    def set_session_mode(self, mode: str) -> None:
        self.execute("SET SESSION sql_mode = %s", (mode,))

    def set_foreign_key_checks(self, enabled: bool) -> None:
        self.execute(f"SET FOREIGN_KEY_CHECKS = {1 if enabled else 0}")
