"""
Table Pipeline - per-table export and import.

Export writes one artifact per table, named by its 1-based position in the
processing order, so an import can recover the order from the manifest
alone. Import reads the artifact back chunk by chunk and applies it with
parameterized INSERT (or upsert) statements.

Both directions accept a starting chunk for resumption. Earlier chunks are
still read, just not written again (export) or applied (import).
"""

from __future__ import annotations

import json
import logging
import math
import re
import time
from contextlib import contextmanager
from dataclasses import dataclass
from itertools import groupby, islice
from pathlib import Path
from typing import Callable, Collection, Generator, Iterable, Iterator, Sequence, TypeVar

from syncdb.config import SyncOptions
from syncdb.connectors.base import BaseDialect, RowRecord
from syncdb.core.codec import RowCodec, sql_comments, split_statements, to_parameter
from syncdb.core.state import ExportManifest
from syncdb.errors import (
    ResumeStateError,
    RowApplyError,
    SchemaApplyError,
    SchemaReadError,
    statement_fragment,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA_SQL_FILE = "0_schema.sql"
SCHEMA_JSON_FILE = "0_schema.json"
SQL_MODE_PREFIX = "-- SQL_MODE="
SQL_MODE_KEY = "__sql_mode"
_ARTIFACT_RE = re.compile(r"\d+_.+\.(?:sql|json)")

_NAME = r"[`\"]?([^`\"\s(;]+)[`\"]?"
_STATEMENT_TARGETS = (
    re.compile(rf"CREATE\s+(?:UNIQUE\s+)?INDEX\s+.*?\s+ON\s+{_NAME}", re.I | re.S),
    re.compile(rf"ALTER\s+TABLE\s+(?:ONLY\s+)?{_NAME}", re.I),
    re.compile(
        rf"CREATE\s+(?:\S+\s+)*?(?:TABLE|VIEW)\s+(?:IF\s+NOT\s+EXISTS\s+)?{_NAME}",
        re.I,
    ),
)


def data_file_name(position: int, table: str, extension: str) -> str:
    return f"{position}_{table}.{extension}"


def iter_chunks(items: Iterable[T], size: int) -> Iterator[list[T]]:
    """Group an iterable into lists of at most size items."""
    iterator = iter(items)
    while True:
        chunk = list(islice(iterator, size))
        if not chunk:
            return
        yield chunk


def statement_target(statement: str) -> str | None:
    """Table a DDL statement creates or alters, if recognizable."""
    text = statement.strip()
    for pattern in _STATEMENT_TARGETS:
        match = pattern.match(text)
        if match:
            return match.group(1).split(".")[-1]
    return None


@dataclass
class TableResult:
    """Outcome of one table's export or import."""

    table: str
    position: int
    file: str = ""
    rows: int = 0
    chunks: int = 0
    rows_before: int | None = None
    rows_after: int | None = None
    skipped: bool = False
    reason: str = ""
    duration_seconds: float = 0.0


class TablePipeline:
    """
    Export and import of single tables against one snapshot directory.

    Example:
        pipeline = TablePipeline(dialect, get_codec("sql"), settings.sync, snapshot_dir)
        pipeline.write_schema(order)
        for position, table in enumerate(order, 1):
            pipeline.export_table(position, table)
    """

    def __init__(
        self,
        dialect: BaseDialect,
        codec: RowCodec,
        options: SyncOptions,
        snapshot_dir: Path,
    ) -> None:
        self.dialect = dialect
        self.codec = codec
        self.options = options
        self.snapshot_dir = Path(snapshot_dir)

    def data_path(self, position: int, table: str) -> Path:
        return self.snapshot_dir / data_file_name(position, table, self.codec.extension)

    def clear_artifacts(self) -> int:
        """Remove schema and data artifacts left by an earlier export."""
        if not self.snapshot_dir.is_dir():
            return 0
        removed = 0
        for path in self.snapshot_dir.iterdir():
            if path.is_file() and _ARTIFACT_RE.fullmatch(path.name):
                path.unlink()
                removed += 1
        if removed:
            logger.info("Removed %d stale artifacts from %s", removed, self.snapshot_dir)
        return removed

    # =========================================================================
    # Manifest
    # =========================================================================

    def write_manifest(self, manifest: ExportManifest) -> Path:
        self.snapshot_dir.mkdir(parents=True, exist_ok=True)
        return manifest.save(self.snapshot_dir)

    def read_manifest(self) -> ExportManifest:
        return ExportManifest.load(self.snapshot_dir)

    # =========================================================================
    # Schema
    # =========================================================================

    def write_schema(self, tables: Sequence[str], excluded: Collection[str] = ()) -> Path:
        """Write the DDL of every table not excluded from schema export."""
        self.snapshot_dir.mkdir(parents=True, exist_ok=True)
        entries = [
            (table, self.dialect.get_schema(table).ddl)
            for table in tables
            if table not in excluded
        ]
        mode = self.dialect.get_session_mode()

        if self.codec.extension == "json":
            document: dict[str, str] = {}
            if mode:
                document[SQL_MODE_KEY] = mode
            document.update(entries)
            path = self.snapshot_dir / SCHEMA_JSON_FILE
            path.write_text(json.dumps(document, indent=2) + "\n", encoding="utf-8")
        else:
            header = f"{SQL_MODE_PREFIX}{mode}\n\n" if mode else ""
            blocks = [f"-- Table structure for {table}\n{ddl}\n" for table, ddl in entries]
            path = self.snapshot_dir / SCHEMA_SQL_FILE
            path.write_text(header + "\n".join(blocks), encoding="utf-8")

        logger.info("Wrote schema for %d tables to %s", len(entries), path.name)
        return path

    def _read_schema(self) -> tuple[str | None, list[tuple[str | None, str]]]:
        """Session mode and (target table, statement) pairs from the schema artifact."""
        sql_path = self.snapshot_dir / SCHEMA_SQL_FILE
        json_path = self.snapshot_dir / SCHEMA_JSON_FILE

        if sql_path.exists():
            text = sql_path.read_text(encoding="utf-8")
            mode = None
            for comment in sql_comments(text):
                if comment.startswith(SQL_MODE_PREFIX):
                    mode = comment[len(SQL_MODE_PREFIX):].strip()
                    break
            return mode, [(statement_target(s), s) for s in split_statements(text)]

        if json_path.exists():
            try:
                document = json.loads(json_path.read_text(encoding="utf-8"))
            except ValueError as exc:
                raise SchemaApplyError("Malformed schema artifact", detail=str(exc)) from exc
            mode = document.pop(SQL_MODE_KEY, None)
            statements = [
                (statement_target(s) or table, s)
                for table, ddl in document.items()
                for s in split_statements(ddl)
            ]
            return mode, statements

        raise SchemaApplyError(
            "Schema artifact not found",
            detail=str(self.snapshot_dir),
        )

    def import_schema(self, excluded: Collection[str] = ()) -> int:
        """
        Apply the schema artifact in file order.

        Statements that create or alter an excluded table are dropped.

        Returns:
            Number of statements executed
        """
        mode, statements = self._read_schema()
        if mode:
            self.dialect.set_session_mode(mode)

        applied = 0
        for target, statement in statements:
            if target is not None and target in excluded:
                logger.debug("Skipping schema statement for excluded table %s", target)
                continue
            try:
                self.dialect.execute(statement)
            except self.dialect.driver_error as exc:
                raise SchemaApplyError(
                    "Failed to apply schema statement",
                    table=target,
                    detail=f"{statement_fragment(statement)}: {exc}",
                ) from exc
            applied += 1

        logger.info("Applied %d schema statements", applied)
        return applied

    # =========================================================================
    # Data export
    # =========================================================================

    def export_table(self, position: int, table: str, start_chunk: int = 0) -> TableResult:
        """
        Export one table's rows to its artifact.

        Args:
            position: 1-based position in the processing order
            table: Table name
            start_chunk: Chunks already present in the artifact to keep
        """
        start = time.time()
        result = TableResult(table=table, position=position)

        try:
            is_view = self.dialect.is_view(table)
            columns = self.dialect.get_columns(table)
            order_by = [] if is_view else self.dialect.get_primary_key(table)
        except self.dialect.driver_error as exc:
            raise SchemaReadError("Failed to read table layout", table=table, detail=str(exc)) from exc

        if is_view and not self.options.include_view_data:
            result.skipped = True
            result.reason = "view"
            logger.info("Skipping data of view %s", table)
            return result
        if not columns:
            raise SchemaReadError("Table not found or has no columns", table=table)

        path = self.data_path(position, table)
        batch_size = self.options.batch_size

        retained: list[list] = []
        if start_chunk:
            if not path.exists():
                raise ResumeStateError(
                    "Cannot resume export: artifact is missing",
                    table=table,
                    detail=str(path),
                )
            existing = self.codec.encoded_chunks(path.read_text(encoding="utf-8"), batch_size)
            if len(existing) < start_chunk:
                raise ResumeStateError(
                    f"Resume chunk {start_chunk} is beyond the {len(existing)} chunks written",
                    table=table,
                )
            retained = existing[:start_chunk]

        rows = self.dialect.query_rows(
            table,
            columns,
            condition=self.options.condition,
            limit=self.options.record_limit,
            batch_size=batch_size,
            order_by=order_by,
        )
        fresh = islice(iter_chunks(rows, batch_size), start_chunk, None)

        self.snapshot_dir.mkdir(parents=True, exist_ok=True)
        try:
            with path.open("w", encoding="utf-8") as fh:
                result.rows = self.codec.write(fh, table, columns, fresh, retained=retained)
        except self.dialect.driver_error as exc:
            raise SchemaReadError("Failed to read rows", table=table, detail=str(exc)) from exc

        result.file = path.name
        result.chunks = math.ceil(result.rows / batch_size)
        result.duration_seconds = time.time() - start
        logger.info(
            "Exported %s: %d rows",
            table,
            result.rows,
            extra={"table": table, "rows": result.rows, "file": path.name},
        )
        return result

    # =========================================================================
    # Data import
    # =========================================================================

    @contextmanager
    def foreign_key_checks_disabled(self) -> Generator[None, None, None]:
        """Suspend FK enforcement when the options ask for it."""
        if not self.options.disable_foreign_key_checks:
            yield
            return
        self.dialect.set_foreign_key_checks(False)
        try:
            yield
        finally:
            self.dialect.set_foreign_key_checks(True)

    def truncate_table(self, table: str) -> None:
        try:
            self.dialect.truncate(table)
        except self.dialect.driver_error as exc:
            raise RowApplyError("Failed to truncate table", table=table, detail=str(exc)) from exc
        logger.info("Truncated %s", table)

    def import_table(
        self,
        position: int,
        table: str,
        start_chunk: int = 0,
        on_chunk: Callable[[int], None] | None = None,
    ) -> TableResult:
        """
        Apply one table's artifact to the destination.

        Chunks before start_chunk are decoded but not applied. A missing
        artifact (a view exported without data) is skipped.

        Args:
            position: 1-based position in the processing order
            table: Table name
            start_chunk: First chunk to apply
            on_chunk: Called with the next chunk index after each chunk commits
        """
        start = time.time()
        result = TableResult(table=table, position=position)
        path = self.data_path(position, table)

        if not path.exists():
            result.skipped = True
            result.reason = "no data artifact"
            logger.warning("No data artifact for %s (%s)", table, path.name)
            return result

        result.file = path.name
        result.rows_before = self._row_count(table)
        keys = self.dialect.get_primary_key(table) if self.options.upsert else None

        text = path.read_text(encoding="utf-8")
        seen = 0
        for index, chunk in enumerate(self.codec.read(text, self.options.batch_size, table)):
            seen += 1
            if index < start_chunk:
                continue
            result.rows += self._apply_chunk(table, index, chunk, keys)
            result.chunks += 1
            if on_chunk:
                on_chunk(index + 1)

        if start_chunk > seen:
            raise ResumeStateError(
                f"Resume chunk {start_chunk} is beyond the {seen} chunks in {path.name}",
                table=table,
            )

        result.rows_after = self._row_count(table)
        result.duration_seconds = time.time() - start
        logger.info(
            "Imported %s: %d rows (before %d, after %d)",
            table,
            result.rows,
            result.rows_before,
            result.rows_after,
            extra={"table": table, "rows": result.rows},
        )
        return result

    def _apply_chunk(
        self,
        table: str,
        index: int,
        chunk: list[RowRecord],
        keys: Sequence[str] | None,
    ) -> int:
        applied = 0
        # Rows of one chunk normally share a column layout; group runs that do
        for columns, group in groupby(chunk, key=lambda row: tuple(row)):
            params = [[to_parameter(row[c]) for c in columns] for row in group]
            sql = self.dialect.build_insert(table, columns, upsert_keys=keys)
            try:
                applied += self.dialect.execute_many(sql, params)
            except self.dialect.driver_error as exc:
                raise RowApplyError(
                    f"Failed to apply chunk {index}",
                    table=table,
                    detail=str(exc),
                ) from exc
        return applied

    def _row_count(self, table: str) -> int:
        try:
            return self.dialect.row_count(table)
        except self.dialect.driver_error as exc:
            raise RowApplyError("Failed to count rows", table=table, detail=str(exc)) from exc
