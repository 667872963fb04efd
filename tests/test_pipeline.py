"""Tests for the table pipeline."""

import json
import sqlite3
from pathlib import Path

import pytest

from syncdb.config import SyncOptions
from syncdb.connectors import SQLiteDialect
from syncdb.core.codec import QUERY_SEPARATOR, get_codec
from syncdb.core.pipeline import TablePipeline, iter_chunks, statement_target
from syncdb.core.state import ExportManifest
from syncdb.errors import ResumeStateError, RowApplyError, SchemaApplyError


def make_pipeline(dialect: SQLiteDialect, snapshot: Path, fmt: str = "sql", **options: object) -> TablePipeline:
    return TablePipeline(dialect, get_codec(fmt), SyncOptions(**options), snapshot)


class TestHelpers:
    """Tests for module-level helpers."""

    @pytest.mark.parametrize(
        "statement,target",
        [
            ("CREATE TABLE logs (id INTEGER);", "logs"),
            ("CREATE TABLE IF NOT EXISTS `logs` (id INT);", "logs"),
            ('CREATE OR REPLACE VIEW "v_logs" AS SELECT 1;', "v_logs"),
            ("CREATE TEMPORARY TABLE tmp (id INT);", "tmp"),
            ("ALTER TABLE public.logs ADD COLUMN x INT;", "logs"),
            ("CREATE UNIQUE INDEX idx_a ON logs (message);", "logs"),
            ("CREATE INDEX idx_table ON orders(customer_id);", "orders"),
            ("INSERT INTO logs (id) VALUES (1);", None),
        ],
    )
    def test_statement_target(self, statement: str, target: str | None) -> None:
        """DDL statements are attributed to their table."""
        assert statement_target(statement) == target

    def test_iter_chunks(self) -> None:
        """Items are grouped into fixed-size lists."""
        assert list(iter_chunks(range(5), 2)) == [[0, 1], [2, 3], [4]]
        assert list(iter_chunks([], 3)) == []


class TestExport:
    """Tests for per-table export."""

    def test_empty_table_statement_format(self, shop_db: Path, tmp_path: Path) -> None:
        """A table with zero rows gives an artifact with no INSERT lines."""
        snapshot = tmp_path / "snap"
        with SQLiteDialect(shop_db, readonly=True) as dialect:
            result = make_pipeline(dialect, snapshot).export_table(5, "empty_table")

        assert result.rows == 0
        assert result.file == "5_empty_table.sql"
        assert "INSERT" not in (snapshot / "5_empty_table.sql").read_text()

    def test_export_chunks(self, shop_db: Path, tmp_path: Path) -> None:
        """Rows are written in primary key order, batch_size per chunk."""
        snapshot = tmp_path / "snap"
        with SQLiteDialect(shop_db, readonly=True) as dialect:
            result = make_pipeline(dialect, snapshot, batch_size=2).export_table(2, "orders")

        text = (snapshot / "2_orders.sql").read_text()
        assert result.rows == 5
        assert result.chunks == 3
        assert text.count(QUERY_SEPARATOR) == 2
        assert text.startswith("INSERT INTO orders (id, customer_id, total, meta) VALUES (1, 1, 10.5, ")

    def test_condition_and_limit(self, shop_db: Path, tmp_path: Path) -> None:
        """Row filters apply to the export."""
        snapshot = tmp_path / "snap"
        with SQLiteDialect(shop_db, readonly=True) as dialect:
            pipeline = make_pipeline(dialect, snapshot, "json", condition="total > 10", record_limit=2)
            result = pipeline.export_table(1, "orders")

        document = json.loads((snapshot / "1_orders.json").read_text())
        assert result.rows == 2
        assert [row["id"] for row in document["rows"]] == [1, 2]

    def test_view_data_skipped(self, shop_db: Path, tmp_path: Path) -> None:
        """Views produce no data artifact unless view data is enabled."""
        snapshot = tmp_path / "snap"
        with SQLiteDialect(shop_db, readonly=True) as dialect:
            skipped = make_pipeline(dialect, snapshot).export_table(1, "big_orders")
            included = make_pipeline(dialect, snapshot, include_view_data=True).export_table(2, "big_orders")

        assert skipped.skipped and skipped.reason == "view"
        assert not (snapshot / "1_big_orders.sql").exists()
        assert included.rows == 2

    def test_resume_rewrites_identically(self, shop_db: Path, tmp_path: Path) -> None:
        """Resuming at a chunk keeps earlier chunks and rewrites the rest."""
        snapshot = tmp_path / "snap"
        with SQLiteDialect(shop_db, readonly=True) as dialect:
            pipeline = make_pipeline(dialect, snapshot, batch_size=2)
            pipeline.export_table(1, "orders")
            original = (snapshot / "1_orders.sql").read_text()

            pipeline.export_table(1, "orders", start_chunk=2)
            assert (snapshot / "1_orders.sql").read_text() == original

    def test_resume_without_artifact(self, shop_db: Path, tmp_path: Path) -> None:
        """Resuming a table that was never written fails."""
        with SQLiteDialect(shop_db, readonly=True) as dialect:
            with pytest.raises(ResumeStateError):
                make_pipeline(dialect, tmp_path / "snap").export_table(1, "orders", start_chunk=1)

    def test_schema_sql(self, shop_db: Path, tmp_path: Path) -> None:
        """Schema blocks are headed per table; excluded tables are left out."""
        snapshot = tmp_path / "snap"
        with SQLiteDialect(shop_db, readonly=True) as dialect:
            path = make_pipeline(dialect, snapshot).write_schema(["customers", "logs"], excluded={"logs"})

        text = path.read_text()
        assert path.name == "0_schema.sql"
        assert "-- Table structure for customers\nCREATE TABLE customers" in text
        assert "logs" not in text

    def test_schema_json(self, shop_db: Path, tmp_path: Path) -> None:
        """The JSON schema maps table names to DDL."""
        snapshot = tmp_path / "snap"
        with SQLiteDialect(shop_db, readonly=True) as dialect:
            path = make_pipeline(dialect, snapshot, "json").write_schema(["customers", "orders"])

        document = json.loads(path.read_text())
        assert set(document) == {"customers", "orders"}
        assert "idx_orders_customer" in document["orders"]


class TestImport:
    """Tests for schema and per-table import."""

    def _export(self, shop_db: Path, snapshot: Path, fmt: str = "sql") -> None:
        with SQLiteDialect(shop_db, readonly=True) as dialect:
            pipeline = make_pipeline(dialect, snapshot, fmt, batch_size=2)
            order = ["customers", "orders", "logs"]
            pipeline.write_manifest(ExportManifest(exported_at="now", database_name="shop", tables=order))
            pipeline.write_schema(order)
            for position, table in enumerate(order, 1):
                pipeline.export_table(position, table)

    @pytest.mark.parametrize("fmt", ["sql", "json"])
    def test_schema_and_data(self, shop_db: Path, tmp_path: Path, read_rows, fmt: str) -> None:
        """Imported rows match the source."""
        snapshot = tmp_path / "snap"
        self._export(shop_db, snapshot, fmt)
        target = tmp_path / "target.db"

        with SQLiteDialect(target) as dialect:
            pipeline = make_pipeline(dialect, snapshot, fmt, batch_size=2)
            assert pipeline.read_manifest().tables == ["customers", "orders", "logs"]
            pipeline.import_schema()
            results = [pipeline.import_table(i, t) for i, t in enumerate(["customers", "orders"], 1)]

        assert [r.rows for r in results] == [3, 5]
        assert results[1].rows_before == 0 and results[1].rows_after == 5
        assert read_rows(target, "customers") == read_rows(shop_db, "customers")
        assert read_rows(target, "orders") == read_rows(shop_db, "orders")

    def test_schema_exclusion(self, shop_db: Path, tmp_path: Path) -> None:
        """Statements for excluded tables are not executed."""
        snapshot = tmp_path / "snap"
        self._export(shop_db, snapshot)
        target = tmp_path / "target.db"

        with SQLiteDialect(target) as dialect:
            make_pipeline(dialect, snapshot).import_schema(excluded={"logs"})
            assert dialect.list_tables() == ["customers", "orders"]

    def test_schema_failure(self, shop_db: Path, tmp_path: Path) -> None:
        """Applying the schema twice fails with the statement in the error."""
        snapshot = tmp_path / "snap"
        self._export(shop_db, snapshot)

        with SQLiteDialect(tmp_path / "target.db") as dialect:
            pipeline = make_pipeline(dialect, snapshot)
            pipeline.import_schema()
            with pytest.raises(SchemaApplyError, match="CREATE TABLE customers"):
                pipeline.import_schema()

    def test_missing_schema_artifact(self, tmp_path: Path) -> None:
        """Importing a schema that was never exported fails."""
        with SQLiteDialect(tmp_path / "target.db") as dialect:
            with pytest.raises(SchemaApplyError):
                make_pipeline(dialect, tmp_path).import_schema()

    def test_duplicate_rows_fail_without_upsert(self, shop_db: Path, tmp_path: Path) -> None:
        """A constraint violation names the table and chunk."""
        snapshot = tmp_path / "snap"
        self._export(shop_db, snapshot)

        with SQLiteDialect(tmp_path / "target.db") as dialect:
            pipeline = make_pipeline(dialect, snapshot, batch_size=2)
            pipeline.import_schema()
            pipeline.import_table(1, "customers")
            with pytest.raises(RowApplyError, match="chunk 0"):
                pipeline.import_table(1, "customers")

    def test_upsert_is_idempotent(self, shop_db: Path, tmp_path: Path) -> None:
        """Upserting the same artifact twice leaves counts unchanged."""
        snapshot = tmp_path / "snap"
        self._export(shop_db, snapshot)

        with SQLiteDialect(tmp_path / "target.db") as dialect:
            pipeline = make_pipeline(dialect, snapshot, batch_size=2, upsert=True)
            pipeline.import_schema()
            first = pipeline.import_table(1, "customers")
            second = pipeline.import_table(1, "customers")

        assert first.rows_after == second.rows_after == 3

    def test_start_chunk_skips_applied_chunks(self, shop_db: Path, tmp_path: Path) -> None:
        """Chunks before the resume point are read but not applied."""
        snapshot = tmp_path / "snap"
        self._export(shop_db, snapshot)

        with SQLiteDialect(tmp_path / "target.db") as dialect:
            pipeline = make_pipeline(dialect, snapshot, batch_size=2)
            pipeline.import_schema()
            result = pipeline.import_table(2, "orders", start_chunk=1)

        assert result.rows == 3
        assert result.rows_after == 3

    def test_start_chunk_out_of_range(self, shop_db: Path, tmp_path: Path) -> None:
        """A resume chunk beyond the artifact is rejected."""
        snapshot = tmp_path / "snap"
        self._export(shop_db, snapshot)

        with SQLiteDialect(tmp_path / "target.db") as dialect:
            pipeline = make_pipeline(dialect, snapshot, batch_size=2)
            pipeline.import_schema()
            with pytest.raises(ResumeStateError):
                pipeline.import_table(2, "orders", start_chunk=9)

    def test_missing_artifact_is_skipped(self, tmp_path: Path) -> None:
        """Tables without an artifact are reported as skipped."""
        with SQLiteDialect(tmp_path / "target.db") as dialect:
            result = make_pipeline(dialect, tmp_path).import_table(4, "big_orders")
        assert result.skipped

    def test_foreign_key_toggle(self, tmp_path: Path) -> None:
        """FK enforcement is switched off and back on."""
        target = tmp_path / "target.db"
        with SQLiteDialect(target) as dialect:
            pipeline = make_pipeline(dialect, tmp_path, disable_foreign_key_checks=True)
            dialect.set_foreign_key_checks(True)
            with pipeline.foreign_key_checks_disabled():
                assert dialect.fetch_value("PRAGMA foreign_keys") == 0
            assert dialect.fetch_value("PRAGMA foreign_keys") == 1

    def test_truncate_table(self, shop_db: Path) -> None:
        """Truncation empties the destination table."""
        with SQLiteDialect(shop_db) as dialect:
            make_pipeline(dialect, shop_db.parent).truncate_table("logs")
            assert dialect.row_count("logs") == 0
        conn = sqlite3.connect(shop_db)
        assert conn.execute("SELECT COUNT(*) FROM customers").fetchone()[0] == 3
        conn.close()
