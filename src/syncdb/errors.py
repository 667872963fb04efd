"""
Error taxonomy for syncdb.

Every failure surfaced to the operator is a SyncDBError subclass carrying
enough context (table, statement fragment, file) to resume manually.
Nothing here is retried automatically.
"""

from __future__ import annotations


class SyncDBError(Exception):
    """Base exception for all syncdb failures."""

    def __init__(
        self,
        message: str,
        table: str | None = None,
        detail: str | None = None,
    ) -> None:
        self.message = message
        self.table = table
        self.detail = detail
        super().__init__(self._format())

    def _format(self) -> str:
        parts = [self.message]
        if self.table:
            parts.append(f"[table: {self.table}]")
        if self.detail:
            parts.append(f"({self.detail})")
        return " ".join(parts)


class ConfigurationError(SyncDBError):
    """A required parameter is missing or invalid."""


class DBConnectionError(SyncDBError):
    """The database could not be reached."""


class UnsupportedDialectError(SyncDBError):
    """The configured driver has no dialect adapter."""


class SchemaReadError(SyncDBError):
    """Schema introspection failed."""


class SchemaApplyError(SyncDBError):
    """A DDL statement failed to execute."""


class RowCodecError(SyncDBError):
    """Artifact content could not be encoded or decoded."""


class RowApplyError(SyncDBError):
    """An insert or upsert failed."""


class ResumeStateError(SyncDBError):
    """The resume cursor or snapshot metadata is invalid."""


class StorageError(SyncDBError):
    """A storage backend operation failed."""


def statement_fragment(sql: str, limit: int = 120) -> str:
    """Shorten a statement for error messages."""
    flat = " ".join(sql.split())
    if len(flat) <= limit:
        return flat
    return flat[: limit - 3] + "..."
