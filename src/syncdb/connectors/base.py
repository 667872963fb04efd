"""
Dialect adapter base class.

Each database engine implements the same capability set: table discovery,
view detection, column and key introspection, DDL extraction, row
streaming, statement execution, truncation and row counts. The engine and
pipeline only ever talk to this interface.

Shared DB-API plumbing (cursors, commits, streaming fetches, identifier
quoting and INSERT/SELECT construction) lives here; subclasses supply the
driver connection and the engine-specific metadata queries.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Generator, Iterable, Iterator, Sequence

from syncdb.errors import ConfigurationError, DBConnectionError, SchemaReadError


logger = logging.getLogger(__name__)

RowRecord = dict[str, Any]

_INVALID_NAME_CHARS = ("`", '"', "'")


def validate_table_name(name: str) -> str:
    """Reject empty table names and names containing quoting characters."""
    if not name or not name.strip():
        raise ConfigurationError("Table name cannot be empty")
    if any(ch in name for ch in _INVALID_NAME_CHARS):
        raise ConfigurationError(
            "Table name contains invalid characters",
            table=name,
        )
    return name


@dataclass
class SchemaEntry:
    """DDL and column layout of one table or view."""

    name: str
    is_view: bool
    ddl: str
    columns: list[str] = field(default_factory=list)


class BaseDialect(ABC):
    """
    Abstract dialect adapter.

    Example:
        with get_dialect(settings) as dialect:
            for table in dialect.list_tables():
                columns = dialect.get_columns(table)
                for row in dialect.query_rows(table, columns):
                    ...
    """

    name: str = ""
    quote_char: str = '"'
    placeholder: str = "%s"
    driver_error: type[Exception] = Exception

    def __init__(
        self,
        database: str,
        host: str = "localhost",
        port: int = 0,
        username: str = "",
        password: str = "",
        connect_timeout: int = 10,
    ) -> None:
        self.database = database
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.connect_timeout = connect_timeout
        self._connection: Any = None

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    @abstractmethod
    def _open(self) -> Any:
        """Open and return a driver connection."""

    def connect(self) -> "BaseDialect":
        """Open the connection if it is not open yet."""
        if self._connection is None:
            try:
                self._connection = self._open()
            except self.driver_error as exc:
                raise DBConnectionError(
                    f"Cannot connect to {self.name} database '{self.database}'",
                    detail=str(exc),
                ) from exc
            logger.debug("Connected to %s database %s", self.name, self.database)
        return self

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def __enter__(self) -> "BaseDialect":
        return self.connect()

    def __exit__(self, *args: Any) -> None:
        self.close()

    @property
    def connection(self) -> Any:
        if self._connection is None:
            raise DBConnectionError(f"{self.name} dialect is not connected")
        return self._connection

    @contextmanager
    def cursor(self, **kwargs: Any) -> Generator[Any, None, None]:
        """Get a cursor, rolling back the transaction on failure."""
        conn = self.connection
        cur = conn.cursor(**kwargs)
        try:
            yield cur
        except Exception:
            conn.rollback()
            raise
        finally:
            cur.close()

    def stream_cursor(self):
        """Cursor used for row streaming; drivers override for server-side cursors."""
        return self.cursor()

    # ------------------------------------------------------------------
    # SQL construction
    # ------------------------------------------------------------------

    def quote(self, identifier: str) -> str:
        """Quote an identifier for this dialect."""
        q = self.quote_char
        return f"{q}{identifier.replace(q, q + q)}{q}"

    def placeholders(self, count: int) -> str:
        return ", ".join(self.placeholder for _ in range(count))

    def build_select(
        self,
        table: str,
        columns: Sequence[str],
        condition: str = "",
        order_by: Sequence[str] = (),
        limit: int | None = None,
    ) -> str:
        col_str = ", ".join(self.quote(c) for c in columns) if columns else "*"
        sql = f"SELECT {col_str} FROM {self.quote(table)}"
        if condition:
            sql += f" WHERE {condition}"
        if order_by:
            sql += " ORDER BY " + ", ".join(self.quote(c) for c in order_by)
        if limit:
            sql += f" LIMIT {int(limit)}"
        return sql

    def build_insert(
        self,
        table: str,
        columns: Sequence[str],
        upsert_keys: Sequence[str] | None = None,
    ) -> str:
        """
        Build a parameterized INSERT, or an upsert when keys are given.

        Args:
            table: Target table
            columns: Column names in parameter order
            upsert_keys: Primary key columns; None means a plain insert
        """
        col_str = ", ".join(self.quote(c) for c in columns)
        sql = (
            f"INSERT INTO {self.quote(table)} ({col_str}) "
            f"VALUES ({self.placeholders(len(columns))})"
        )
        if upsert_keys is not None:
            sql += " " + self.upsert_clause(table, columns, upsert_keys)
        return sql

    @abstractmethod
    def upsert_clause(
        self,
        table: str,
        columns: Sequence[str],
        keys: Sequence[str],
    ) -> str:
        """Conflict-resolution suffix for an upsert."""

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _run(self, cur: Any, sql: str, params: Sequence[Any] = ()) -> None:
        cur.execute(sql, tuple(params) if params else None)

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[tuple[Any, ...]]:
        with self.cursor() as cur:
            self._run(cur, sql, params)
            return [tuple(row) for row in cur.fetchall()]

    def fetch_value(self, sql: str, params: Sequence[Any] = ()) -> Any:
        rows = self.fetch_all(sql, params)
        return rows[0][0] if rows else None

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """
        Execute a statement and return the affected row count.

        Each statement commits on its own; there is no table-wide
        transaction.
        """
        with self.cursor() as cur:
            self._run(cur, sql, params)
            count = cur.rowcount
        self.connection.commit()
        return count

    def execute_many(self, sql: str, rows: Iterable[Sequence[Any]]) -> int:
        """Execute a statement for each parameter row. Returns rows submitted."""
        params = [tuple(r) for r in rows]
        if not params:
            return 0
        with self.cursor() as cur:
            cur.executemany(sql, params)
        self.connection.commit()
        return len(params)

    def query_rows(
        self,
        table: str,
        columns: Sequence[str],
        condition: str = "",
        limit: int | None = None,
        batch_size: int = 500,
        order_by: Sequence[str] = (),
    ) -> Iterator[RowRecord]:
        """
        Stream rows of a table as column-name mappings.

        Rows are fetched batch_size at a time so large tables are never
        held in memory.
        """
        sql = self.build_select(table, columns, condition, order_by, limit)
        with self.stream_cursor() as cur:
            self._run(cur, sql)
            while True:
                batch = cur.fetchmany(batch_size)
                if not batch:
                    break
                for row in batch:
                    yield dict(zip(columns, row))

    def truncate(self, table: str) -> None:
        self.execute(f"TRUNCATE TABLE {self.quote(table)}")

    def row_count(self, table: str) -> int:
        return int(self.fetch_value(f"SELECT COUNT(*) FROM {self.quote(table)}") or 0)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @abstractmethod
    def list_tables(self) -> list[str]:
        """Base tables of the database, sorted by name."""

    @abstractmethod
    def is_view(self, table: str) -> bool:
        """True if the name refers to a view."""

    @abstractmethod
    def get_columns(self, table: str) -> list[str]:
        """Non-generated columns in ordinal order."""

    @abstractmethod
    def get_primary_key(self, table: str) -> list[str]:
        """Primary key columns in key order."""

    @abstractmethod
    def get_schema_ddl(self, table: str) -> str:
        """DDL that recreates the table or view, terminated by ';'."""

    @abstractmethod
    def get_references(self, table: str) -> list[str]:
        """Tables referenced by foreign keys declared on this table."""

    def get_foreign_key_targets(self, tables: Iterable[str]) -> dict[str, list[str]]:
        """Map each table to the tables it references."""
        targets: dict[str, list[str]] = {}
        for table in tables:
            try:
                targets[table] = self.get_references(table)
            except self.driver_error as exc:
                raise SchemaReadError(
                    "Failed to read foreign keys",
                    table=table,
                    detail=str(exc),
                ) from exc
        return targets

    def get_schema(self, table: str) -> SchemaEntry:
        """Collect view flag, DDL and columns for one table."""
        try:
            is_view = self.is_view(table)
            return SchemaEntry(
                name=table,
                is_view=is_view,
                ddl=self.get_schema_ddl(table),
                columns=self.get_columns(table),
            )
        except self.driver_error as exc:
            raise SchemaReadError(
                "Failed to read schema",
                table=table,
                detail=str(exc),
            ) from exc

    # ------------------------------------------------------------------
    # Session settings
    # ------------------------------------------------------------------

    def get_session_mode(self) -> str | None:
        """Session SQL mode worth recording in the schema artifact."""
        return None

    def set_session_mode(self, mode: str) -> None:
        """Apply a recorded session SQL mode."""

    @abstractmethod
    def set_foreign_key_checks(self, enabled: bool) -> None:
        """Toggle foreign key enforcement for this session."""
