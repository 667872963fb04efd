"""Dialect adapters for syncdb."""

from __future__ import annotations

from typing import TYPE_CHECKING

from syncdb.connectors.base import BaseDialect, RowRecord, SchemaEntry, validate_table_name
from syncdb.connectors.sqlite import SQLiteDialect
from syncdb.errors import UnsupportedDialectError

if TYPE_CHECKING:
    from syncdb.config import Settings


SUPPORTED_DRIVERS = ("mysql", "postgres", "sqlite")


def get_dialect(settings: Settings, readonly: bool = False) -> BaseDialect:
    """
    Build the dialect adapter selected by settings.driver.

    Server drivers are imported lazily so a SQLite-only install does not
    need their client libraries loaded.
    """
    driver = settings.driver
    common = {
        "host": settings.host,
        "port": settings.port,
        "username": settings.username,
        "password": settings.password.get_secret_value(),
        "connect_timeout": settings.connect_timeout,
    }

    if driver == "sqlite":
        return SQLiteDialect(settings.database, readonly=readonly, **common)
    if driver == "mysql":
        from syncdb.connectors.mysql import MySQLDialect

        return MySQLDialect(settings.database, **common)
    if driver == "postgres":
        from syncdb.connectors.postgres import PostgresDialect

        return PostgresDialect(settings.database, **common)

    raise UnsupportedDialectError(
        f"Unsupported database driver: {driver or '<none>'}",
        detail=f"supported: {', '.join(SUPPORTED_DRIVERS)}",
    )


__all__ = [
    "BaseDialect",
    "RowRecord",
    "SchemaEntry",
    "SQLiteDialect",
    "SUPPORTED_DRIVERS",
    "get_dialect",
    "validate_table_name",
]
