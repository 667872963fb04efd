"""
Postgres-family dialect adapter.

Uses psycopg (v3). Introspection goes through information_schema in the
public schema. Postgres has no SHOW CREATE TABLE, so table DDL is
assembled from column metadata plus the primary key.
"""

from __future__ import annotations

from typing import Any, Sequence

import psycopg

from syncdb.connectors.base import BaseDialect
from syncdb.errors import RowApplyError


SCHEMA = "public"


class PostgresDialect(BaseDialect):
    """Dialect adapter for PostgreSQL servers."""

    name = "postgres"
    quote_char = '"'
    placeholder = "%s"
    driver_error = psycopg.Error

    def _open(self) -> psycopg.Connection:
        return psycopg.connect(
            host=self.host,
            port=self.port or 5432,
            user=self.username,
            password=self.password,
            dbname=self.database,
            connect_timeout=self.connect_timeout,
        )

    def stream_cursor(self):
        # Named cursors are server-side; rows arrive fetchmany() at a time
        return self.cursor(name="syncdb_stream")

    def upsert_clause(
        self,
        table: str,
        columns: Sequence[str],
        keys: Sequence[str],
    ) -> str:
        if not keys:
            raise RowApplyError(
                "Upsert requires a primary key on the destination table",
                table=table,
            )
        target = ", ".join(self.quote(k) for k in keys)
        updates = [c for c in columns if c not in keys]
        if not updates:
            return f"ON CONFLICT ({target}) DO NOTHING"
        assignments = ", ".join(
            f"{self.quote(c)}=EXCLUDED.{self.quote(c)}" for c in updates
        )
        return f"ON CONFLICT ({target}) DO UPDATE SET {assignments}"

    def truncate(self, table: str) -> None:
        # TRUNCATE refuses FK-referenced tables even when the children are empty
        self.execute(f"DELETE FROM {self.quote(table)}")

    def list_tables(self) -> list[str]:
        rows = self.fetch_all(
            """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = %s
            AND table_type = 'BASE TABLE'
            ORDER BY table_name
            """,
            (SCHEMA,),
        )
        return [row[0] for row in rows]

    def is_view(self, table: str) -> bool:
        count = self.fetch_value(
            """
            SELECT COUNT(*)
            FROM information_schema.views
            WHERE table_name = %s
            AND table_schema = %s
            """,
            (table, SCHEMA),
        )
        return bool(count)

    def get_columns(self, table: str) -> list[str]:
        rows = self.fetch_all(
            """
            SELECT column_name
            FROM information_schema.columns
            WHERE table_name = %s
            AND table_schema = %s
            AND is_generated = 'NEVER'
            ORDER BY ordinal_position
            """,
            (table, SCHEMA),
        )
        return [row[0] for row in rows]

    def get_primary_key(self, table: str) -> list[str]:
        rows = self.fetch_all(
            """
            SELECT kcu.column_name
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
                ON tc.constraint_name = kcu.constraint_name
                AND tc.table_schema = kcu.table_schema
            WHERE tc.constraint_type = 'PRIMARY KEY'
            AND tc.table_name = %s
            AND tc.table_schema = %s
            ORDER BY kcu.ordinal_position
            """,
            (table, SCHEMA),
        )
        return [row[0] for row in rows]

    def get_schema_ddl(self, table: str) -> str:
        if self.is_view(table):
            definition = self.fetch_value(
                """
                SELECT view_definition
                FROM information_schema.views
                WHERE table_name = %s
                AND table_schema = %s
                """,
                (table, SCHEMA),
            )
            body = (definition or "").strip().rstrip(";")
            return f"CREATE VIEW {self.quote(table)} AS {body};"

        rows = self.fetch_all(
            """
            SELECT column_name, data_type, character_maximum_length,
                   is_nullable, column_default
            FROM information_schema.columns
            WHERE table_name = %s
            AND table_schema = %s
            ORDER BY ordinal_position
            """,
            (table, SCHEMA),
        )
        if not rows:
            raise psycopg.ProgrammingError(f"Table not found: {table}")

        definitions = [self._column_definition(*row) for row in rows]
        keys = self.get_primary_key(table)
        if keys:
            definitions.append(
                f"PRIMARY KEY ({', '.join(self.quote(k) for k in keys)})"
            )
        return f"CREATE TABLE {self.quote(table)} ({', '.join(definitions)});"

    def _column_definition(
        self,
        name: str,
        data_type: str,
        max_length: int | None,
        is_nullable: str,
        default: Any,
    ) -> str:
        definition = f"{self.quote(name)} {data_type}"
        if max_length is not None:
            definition += f"({max_length})"
        if is_nullable == "NO":
            definition += " NOT NULL"
        # Sequence defaults reference objects the snapshot does not carry
        if default is not None and not str(default).startswith("nextval("):
            definition += f" DEFAULT {default}"
        return definition

    def get_references(self, table: str) -> list[str]:
        rows = self.fetch_all(
            """
            SELECT DISTINCT ccu.table_name
            FROM information_schema.table_constraints tc
            JOIN information_schema.constraint_column_usage ccu
                ON tc.constraint_name = ccu.constraint_name
                AND tc.table_schema = ccu.table_schema
            WHERE tc.constraint_type = 'FOREIGN KEY'
            AND tc.table_name = %s
            AND tc.table_schema = %s
            ORDER BY ccu.table_name
            """,
            (table, SCHEMA),
        )
        return [row[0] for row in rows]

    def set_foreign_key_checks(self, enabled: bool) -> None:
        role = "origin" if enabled else "replica"
        self.execute(f"SET session_replication_role = {role}")
