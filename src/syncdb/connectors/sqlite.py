"""
SQLite dialect adapter.

Provides snapshot access to local SQLite database files with:
- Schema introspection via sqlite_master and PRAGMAs
- Streaming row iteration (memory efficient)
- Batch insert/upsert operations
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any, Sequence

from syncdb.connectors.base import BaseDialect


class SQLiteDialect(BaseDialect):
    """
    Dialect adapter for SQLite database files.

    The database name is the path of the file. A destination file that
    does not exist yet is created on connect unless the adapter is
    read-only.

    Example:
        with SQLiteDialect("shop.db", readonly=True) as dialect:
            tables = dialect.list_tables()
            for row in dialect.query_rows("users", ["id", "name"]):
                process(row)
    """

    name = "sqlite"
    quote_char = '"'
    placeholder = "?"
    driver_error = sqlite3.Error

    def __init__(self, database: str | Path, readonly: bool = False, **kwargs: Any) -> None:
        super().__init__(str(database), **kwargs)
        self.path = Path(database)
        self.readonly = readonly

    def _open(self) -> sqlite3.Connection:
        if self.readonly:
            if not self.path.exists():
                raise sqlite3.OperationalError(f"Database not found: {self.path}")
            conn = sqlite3.connect(
                f"file:{self.path}?mode=ro",
                uri=True,
                timeout=float(self.connect_timeout),
            )
        else:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.path, timeout=float(self.connect_timeout))
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")

        conn.execute("PRAGMA cache_size=-64000")  # 64MB cache
        conn.execute("PRAGMA temp_store=MEMORY")
        return conn

    def _run(self, cur: Any, sql: str, params: Sequence[Any] = ()) -> None:
        cur.execute(sql, tuple(params))

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        if self.readonly:
            raise sqlite3.OperationalError(
                "Cannot execute write operations in read-only mode"
            )
        return super().execute(sql, params)

    def execute_many(self, sql: str, rows: Any) -> int:
        if self.readonly:
            raise sqlite3.OperationalError(
                "Cannot execute write operations in read-only mode"
            )
        return super().execute_many(sql, rows)

    def upsert_clause(
        self,
        table: str,
        columns: Sequence[str],
        keys: Sequence[str],
    ) -> str:
        updates = [c for c in columns if c not in keys]
        target = f"({', '.join(self.quote(k) for k in keys)}) " if keys else ""
        if not updates:
            return f"ON CONFLICT {target}DO NOTHING"
        assignments = ", ".join(
            f"{self.quote(c)}=excluded.{self.quote(c)}" for c in updates
        )
        return f"ON CONFLICT {target}DO UPDATE SET {assignments}"

    def truncate(self, table: str) -> None:
        self.execute(f"DELETE FROM {self.quote(table)}")

    def list_tables(self) -> list[str]:
        rows = self.fetch_all(
            """
            SELECT name FROM sqlite_master
            WHERE type = 'table'
            AND name NOT LIKE 'sqlite_%'
            ORDER BY name
            """
        )
        return [row[0] for row in rows]

    def is_view(self, table: str) -> bool:
        count = self.fetch_value(
            "SELECT COUNT(*) FROM sqlite_master WHERE type = 'view' AND name = ?",
            (table,),
        )
        return bool(count)

    def get_columns(self, table: str) -> list[str]:
        # hidden: 0 = ordinary, 1 = virtual-table hidden, 2/3 = generated
        rows = self.fetch_all(f"PRAGMA table_xinfo({self.quote(table)})")
        return [row[1] for row in rows if row[6] == 0]

    def get_primary_key(self, table: str) -> list[str]:
        rows = self.fetch_all(f"PRAGMA table_info({self.quote(table)})")
        keyed = sorted((row[5], row[1]) for row in rows if row[5])
        return [name for _, name in keyed]

    def get_schema_ddl(self, table: str) -> str:
        create_sql = self.fetch_value(
            "SELECT sql FROM sqlite_master WHERE name = ? AND type IN ('table', 'view')",
            (table,),
        )
        if not create_sql:
            raise sqlite3.OperationalError(f"no such table: {table}")
        statements = [create_sql.rstrip().rstrip(";") + ";"]
        statements.extend(s + ";" for s in self.get_index_statements(table))
        return "\n".join(statements)

    def get_index_statements(self, table: str) -> list[str]:
        """Get CREATE INDEX statements for a table."""
        rows = self.fetch_all(
            """
            SELECT sql FROM sqlite_master
            WHERE type = 'index' AND tbl_name = ? AND sql IS NOT NULL
            ORDER BY name
            """,
            (table,),
        )
        return [row[0] for row in rows if row[0]]

    def get_references(self, table: str) -> list[str]:
        rows = self.fetch_all(f"PRAGMA foreign_key_list({self.quote(table)})")
        seen: list[str] = []
        for row in rows:
            if row[2] not in seen:
                seen.append(row[2])
        return seen

    def set_foreign_key_checks(self, enabled: bool) -> None:
        self.connection.execute(f"PRAGMA foreign_keys = {'ON' if enabled else 'OFF'}")
