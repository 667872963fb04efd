"""
Sync Engine - Main orchestration for export and import runs.

Coordinates all components:
- Dialect adapter for the live database
- Dependency resolver for a foreign-key safe table order
- Table pipeline for per-table artifacts
- State manager for resume/recovery
- Storage backends and zip archives for snapshot transport
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Any, Callable

from syncdb.config import Settings, StorageType
from syncdb.connectors import BaseDialect, get_dialect, validate_table_name
from syncdb.core.codec import get_codec
from syncdb.core.pipeline import TablePipeline, TableResult
from syncdb.core.resolver import DependencyResolver
from syncdb.core.selection import TableSelection, has_wildcards
from syncdb.core.state import ExportManifest, RunProgress, StateManager, utc_now
from syncdb.errors import ConfigurationError, ResumeStateError, SchemaReadError
from syncdb.storage import (
    Storage,
    create_zip_archive,
    extract_zip_archive,
    get_storage,
    is_export_path,
    latest_local_archive,
    latest_snapshot_dir,
)


logger = logging.getLogger(__name__)


class RunState(str, Enum):
    """Lifecycle of a single run."""

    INITIALIZING = "initializing"
    RESOLVING_ORDER = "resolving_order"
    EXPORTING_TABLE = "exporting_table"
    IMPORTING_TABLE = "importing_table"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RunStats:
    """Statistics for an export or import run."""

    operation: str  # export or import
    state: RunState = RunState.INITIALIZING
    history: list[RunState] = field(default_factory=list)
    order: list[str] = field(default_factory=list)
    tables_total: int = 0
    tables_processed: int = 0
    tables_skipped: int = 0
    rows_processed: int = 0
    cycles_dropped: int = 0
    table_results: list[TableResult] = field(default_factory=list)
    snapshot_path: str = ""
    archive: str = ""
    start_time: float = 0.0
    end_time: float = 0.0
    errors: list[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        """Duration in seconds."""
        if self.end_time and self.start_time:
            return self.end_time - self.start_time
        if self.start_time:
            return time.time() - self.start_time
        return 0.0

    @property
    def rows_per_second(self) -> float:
        """Processing rate."""
        duration = self.duration_seconds
        if duration > 0:
            return self.rows_processed / duration
        return 0.0

    @property
    def percent_complete(self) -> float:
        """Completion percentage by table."""
        if self.tables_total > 0:
            done = self.tables_processed + self.tables_skipped
            return done / self.tables_total * 100
        return 0.0


# Progress callback type
ProgressCallback = Callable[[RunStats], None]


class SyncEngine:
    """
    Main sync engine coordinating export and import runs.

    The engine owns the database connection for the duration of a run: it
    connects at the start of run_export/run_import and closes in a finally
    block. A dialect passed in by the caller is left open.

    Example:
        engine = SyncEngine(settings)

        # Snapshot the database
        stats = engine.run_export(
            on_progress=lambda s: print(f"{s.percent_complete:.1f}%")
        )

        # Restore it elsewhere
        stats = SyncEngine(other_settings).run_import()
    """

    def __init__(
        self,
        settings: Settings,
        dialect: BaseDialect | None = None,
        storage: Storage | None = None,
    ) -> None:
        """
        Initialize sync engine.

        Args:
            settings: Application settings
            dialect: Pre-built dialect adapter (default: from settings.driver)
            storage: Pre-built storage backend (default: from settings.storage)
        """
        self.settings = settings
        self.options = settings.sync
        self._dialect = dialect
        self._storage = storage
        self.resolver = DependencyResolver()
        self.state_mgr = StateManager(self.options.state_file)

    # =========================================================================
    # Shared helpers
    # =========================================================================

    def _transition(self, stats: RunStats, state: RunState) -> None:
        if stats.history and stats.history[-1] == state:
            return
        stats.state = state
        stats.history.append(state)
        logger.debug(
            "Run state -> %s",
            state.value,
            extra={"event": "state_transition", "state": state.value, "operation": stats.operation},
        )

    def _validate(self) -> None:
        """Check required parameters before touching the database."""
        errors = self.settings.validate_connection()
        if self._dialect is not None:
            errors = [e for e in errors if not e.startswith("driver")]
        errors.extend(self.settings.validate_storage())
        if errors:
            raise ConfigurationError("Invalid settings", detail="; ".join(errors))

        opts = self.options
        for name in [*opts.tables, *opts.exclude_table, *opts.exclude_table_schema, *opts.exclude_table_data]:
            if not has_wildcards(name):
                validate_table_name(name)

    def _selection(self, universe: list[str]) -> TableSelection:
        opts = self.options
        return TableSelection.build(
            universe,
            tables=opts.tables,
            exclude_table=opts.exclude_table,
            exclude_table_schema=opts.exclude_table_schema,
            exclude_table_data=opts.exclude_table_data,
        )

    def _get_dialect(self, readonly: bool) -> BaseDialect:
        if self._dialect is not None:
            return self._dialect
        return get_dialect(self.settings, readonly=readonly)

    def _get_storage(self) -> Storage:
        if self._storage is None:
            self._storage = get_storage(self.settings)
        return self._storage

    @property
    def _remote(self) -> bool:
        return self.settings.storage.type != StorageType.LOCAL

    def _record(self, stats: RunStats, index: int, result: TableResult) -> None:
        stats.table_results.append(result)
        if result.skipped:
            stats.tables_skipped += 1
        else:
            stats.tables_processed += 1
            stats.rows_processed += result.rows
        self.state_mgr.complete_table(
            index,
            result.table,
            status="skipped" if result.skipped else "completed",
            rows=result.rows,
            rows_before=result.rows_before,
            rows_after=result.rows_after,
        )

    def _fail(self, stats: RunStats, exc: Exception) -> None:
        self._transition(stats, RunState.FAILED)
        stats.errors.append(str(exc))
        if self.state_mgr.state is None:
            # Failed before a processing order existed
            self.state_mgr.start(stats.operation, self.settings.database, stats.snapshot_path, stats.order)
        self.state_mgr.mark_complete("failed", str(exc))
        logger.error("%s failed: %s", stats.operation.capitalize(), exc)

    # =========================================================================
    # Export
    # =========================================================================

    def _export_dir(self) -> Path:
        """Snapshot directory for this export; an existing snapshot is reused."""
        base = Path(self.options.path)
        if is_export_path(base):
            return base
        name = self.options.file_name
        if not name:
            stem = Path(self.settings.database).stem or "db"
            name = f"{stem}_{datetime.now():%Y%m%d_%H%M%S}"
        return base / name

    def _discover(self, dialect: BaseDialect) -> list[str]:
        """Explicit table names, or every table when patterns or nothing is given."""
        tables = self.options.tables
        if tables and not any(has_wildcards(t) for t in tables):
            return list(dict.fromkeys(tables))
        try:
            return dialect.list_tables()
        except dialect.driver_error as exc:
            raise SchemaReadError("Failed to list tables", detail=str(exc)) from exc

    def run_export(self, on_progress: ProgressCallback | None = None) -> RunStats:
        """
        Export schema and data to a snapshot directory.

        Args:
            on_progress: Optional callback invoked after each table

        Returns:
            RunStats with operation results
        """
        opts = self.options
        stats = RunStats(operation="export")
        stats.start_time = time.time()
        self._transition(stats, RunState.INITIALIZING)

        dialect: BaseDialect | None = None

        try:
            self._validate()
            dialect = self._get_dialect(readonly=True)
            dialect.connect()
            self._transition(stats, RunState.RESOLVING_ORDER)

            snapshot_dir = self._export_dir()
            stats.snapshot_path = str(snapshot_dir)
            progress = RunProgress(opts.from_table_index, opts.from_chunk_index)

            if not progress.is_fresh:
                if not is_export_path(snapshot_dir):
                    raise ResumeStateError(
                        "Cannot resume an export without an existing snapshot",
                        detail=str(snapshot_dir),
                    )
                # Dependency order must not change mid-resume
                order = ExportManifest.load(snapshot_dir).tables
                selection = self._selection(order)
                progress = progress.validate(order)
                logger.info("Reusing processing order from %s", snapshot_dir)
            else:
                universe = self._discover(dialect)
                selection = self._selection(universe)
                targets = selection.filter(universe)
                order = self.resolver.resolve(targets, dialect.get_foreign_key_targets(targets))
                stats.cycles_dropped = self.resolver.cycles_detected

            stats.order = list(order)
            stats.tables_total = len(order)
            logger.info("Processing order: %s", ", ".join(order) or "<empty>")

            codec = get_codec(opts.format.value, base64=opts.base64)
            pipeline = TablePipeline(dialect, codec, opts, snapshot_dir)
            if progress.is_fresh and is_export_path(snapshot_dir):
                # Positions may have shifted since the earlier export
                pipeline.clear_artifacts()
            pipeline.write_manifest(
                ExportManifest(
                    exported_at=utc_now(),
                    database_name=self.settings.database,
                    tables=list(order),
                    include_schema=opts.include_schema,
                    include_view_data=opts.include_view_data,
                    include_data=opts.include_data,
                    base64=opts.base64,
                    format=opts.format.value,
                    driver=dialect.name,
                    batch_size=opts.batch_size,
                )
            )
            if opts.include_schema:
                pipeline.write_schema(order, selection.exclude_schema)

            self.state_mgr.start("export", self.settings.database, snapshot_dir, order, progress)

            for index, table in enumerate(order):
                if index < progress.table_index:
                    continue
                self._transition(stats, RunState.EXPORTING_TABLE)

                if not opts.include_data or selection.skip_data(table):
                    result = TableResult(table, index + 1, skipped=True, reason="data excluded")
                else:
                    self.state_mgr.update_table(table, status="in_progress")
                    result = pipeline.export_table(index + 1, table, progress.start_chunk(index))

                self._record(stats, index, result)
                if on_progress:
                    on_progress(stats)

            if opts.zip or self._remote:
                archive = create_zip_archive(snapshot_dir)
                stats.archive = str(archive)
                logger.info("Created archive %s", archive.name)
                if self._remote:
                    self._get_storage().upload(archive.read_bytes(), archive.name)
                    if not self.settings.storage.keep_local:
                        shutil.rmtree(snapshot_dir)
                        archive.unlink()

            self._transition(stats, RunState.COMPLETED)
            self.state_mgr.mark_complete()

        except Exception as exc:
            self._fail(stats, exc)
            raise

        finally:
            if dialect is not None and self._dialect is None:
                dialect.close()
            stats.end_time = time.time()

        return stats

    # =========================================================================
    # Import
    # =========================================================================

    def _import_dir(self, scratch: list[Path]) -> Path:
        """
        Locate the snapshot to import.

        Remote storage: the latest archive is downloaded and extracted.
        Local path: a snapshot directory, a zip file, or a base directory
        holding timestamped snapshots (or archives with --zip).
        """
        path = Path(self.options.path)

        if self._remote:
            storage = self._get_storage()
            key = f"{self.options.file_name}.zip" if self.options.file_name else storage.latest_archive()
            workdir = Path(tempfile.mkdtemp(prefix="syncdb_"))
            scratch.append(workdir)
            archive = workdir / Path(key).name
            archive.write_bytes(storage.download(key))
            logger.info("Downloaded %s", key)
            return extract_zip_archive(archive, workdir / "snapshot")

        if path.is_file() and path.suffix == ".zip":
            return self._extract(path, scratch)
        if is_export_path(path):
            return path
        if path.is_dir():
            if self.options.file_name:
                named = path / self.options.file_name
                if is_export_path(named):
                    return named
                if named.with_name(named.name + ".zip").is_file():
                    return self._extract(named.with_name(named.name + ".zip"), scratch)
            if self.options.zip:
                return self._extract(latest_local_archive(path), scratch)
            return latest_snapshot_dir(path)

        raise ConfigurationError("Import path not found", detail=str(path))

    def _extract(self, archive: Path, scratch: list[Path]) -> Path:
        workdir = Path(tempfile.mkdtemp(prefix="syncdb_"))
        scratch.append(workdir)
        logger.info("Extracting %s", archive.name)
        return extract_zip_archive(archive, workdir)

    def run_import(self, on_progress: ProgressCallback | None = None) -> RunStats:
        """
        Import a snapshot into the configured database.

        Args:
            on_progress: Optional callback invoked after each table

        Returns:
            RunStats with operation results, including before/after row counts
        """
        opts = self.options
        stats = RunStats(operation="import")
        stats.start_time = time.time()
        self._transition(stats, RunState.INITIALIZING)

        dialect: BaseDialect | None = None
        scratch: list[Path] = []

        try:
            self._validate()
            dialect = self._get_dialect(readonly=False)
            snapshot_dir = self._import_dir(scratch)
            stats.snapshot_path = str(snapshot_dir)
            dialect.connect()

            self._transition(stats, RunState.RESOLVING_ORDER)
            manifest = ExportManifest.load(snapshot_dir)
            selection = self._selection(manifest.tables)
            progress = RunProgress(opts.from_table_index, opts.from_chunk_index).validate(manifest.tables)

            selected = selection.filter(manifest.tables)
            stats.order = selected
            stats.tables_total = len(selected)

            # Chunk indexes must line up with the chunks the export wrote
            options = opts.model_copy(update={"batch_size": manifest.batch_size})
            codec = get_codec(
                manifest.format,
                detect_base64=manifest.base64 or opts.base64,
                trusted_base64=manifest.base64,
            )
            pipeline = TablePipeline(dialect, codec, options, snapshot_dir)

            self.state_mgr.start("import", self.settings.database, snapshot_dir, selected, progress)

            if opts.include_schema and progress.is_fresh:
                unselected = {t for t in manifest.tables if not selection.is_selected(t)}
                pipeline.import_schema(selection.exclude_schema | unselected)

            pending = [
                (index, table)
                for index, table in enumerate(manifest.tables)
                if index >= progress.table_index and selection.is_selected(table)
            ]

            with pipeline.foreign_key_checks_disabled():
                if opts.truncate and opts.include_data:
                    # Children first so parents are not referenced while cleared
                    for index, table in reversed(pending):
                        if selection.skip_data(table):
                            continue
                        if index == progress.table_index and progress.chunk_index > 0:
                            continue
                        if pipeline.data_path(index + 1, table).exists():
                            pipeline.truncate_table(table)

                for index, table in pending:
                    self._transition(stats, RunState.IMPORTING_TABLE)

                    if not opts.include_data or selection.skip_data(table):
                        result = TableResult(table, index + 1, skipped=True, reason="data excluded")
                    else:
                        self.state_mgr.update_table(table, status="in_progress")
                        result = pipeline.import_table(
                            index + 1,
                            table,
                            progress.start_chunk(index),
                            on_chunk=partial(self.state_mgr.advance_chunk, index),
                        )

                    self._record(stats, index, result)
                    if on_progress:
                        on_progress(stats)

            self._transition(stats, RunState.COMPLETED)
            self.state_mgr.mark_complete()

        except Exception as exc:
            self._fail(stats, exc)
            raise

        finally:
            if dialect is not None and self._dialect is None:
                dialect.close()
            for workdir in scratch:
                shutil.rmtree(workdir, ignore_errors=True)
            stats.end_time = time.time()

        return stats

    def get_state_summary(self) -> dict[str, Any]:
        """Get summary of the persisted run state."""
        self.state_mgr.load()
        return self.state_mgr.get_summary()

    def clear_state(self) -> None:
        """Clear persisted run state (for fresh start)."""
        self.state_mgr.clear_state()
