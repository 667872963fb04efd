"""
Snapshot State - manifest, resume cursor and persisted run progress.

Provides:
- ExportManifest, the 0_metadata.json written by every export
- RunProgress, the (table index, chunk index) resume cursor
- StateManager, a JSON state file recording how far a run got
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

from syncdb.errors import ResumeStateError, RowCodecError


logger = logging.getLogger(__name__)

MANIFEST_FILE = "0_metadata.json"
MANIFEST_VERSION = 1


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ExportManifest:
    """Snapshot metadata; tables is the processing order."""

    exported_at: str
    database_name: str
    tables: list[str] = field(default_factory=list)
    include_schema: bool = False
    include_view_data: bool = False
    include_data: bool = True
    base64: bool = False
    format: str = "sql"
    driver: str = ""
    batch_size: int = 500
    version: int = MANIFEST_VERSION

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> "ExportManifest":
        """Create from dictionary, rejecting malformed content."""
        if not isinstance(data, dict):
            raise RowCodecError("Manifest is not a JSON object")
        tables = data.get("tables")
        if not isinstance(tables, list) or not all(isinstance(t, str) for t in tables):
            raise RowCodecError("Manifest 'tables' must be a list of table names")

        return cls(
            exported_at=str(data.get("exported_at", "")),
            database_name=str(data.get("database_name", "")),
            tables=list(tables),
            include_schema=bool(data.get("include_schema", False)),
            include_view_data=bool(data.get("include_view_data", False)),
            include_data=bool(data.get("include_data", True)),
            base64=bool(data.get("base64", False)),
            format=str(data.get("format", "sql")),
            driver=str(data.get("driver", "")),
            batch_size=int(data.get("batch_size", 500)),
            version=int(data.get("version", MANIFEST_VERSION)),
        )

    def save(self, directory: Path) -> Path:
        path = directory / MANIFEST_FILE
        path.write_text(json.dumps(self.to_dict(), indent=2) + "\n", encoding="utf-8")
        return path

    @classmethod
    def load(cls, directory: Path) -> "ExportManifest":
        path = directory / MANIFEST_FILE
        if not path.exists():
            raise ResumeStateError("Snapshot manifest not found", detail=str(path))
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except ValueError as exc:
            raise RowCodecError("Malformed snapshot manifest", detail=str(exc)) from exc
        return cls.from_dict(data)


@dataclass(frozen=True)
class RunProgress:
    """
    Resume cursor: first table to process and first chunk within it.

    Both indexes are 0-based. (0, 0) means a fresh run.
    """

    table_index: int = 0
    chunk_index: int = 0

    @property
    def is_fresh(self) -> bool:
        return self.table_index == 0 and self.chunk_index == 0

    def validate(self, order: Sequence[str]) -> "RunProgress":
        """Check the cursor against a processing order."""
        if self.table_index < 0 or self.chunk_index < 0:
            raise ResumeStateError(
                "Resume cursor cannot be negative",
                detail=f"table {self.table_index}, chunk {self.chunk_index}",
            )
        if self.is_fresh:
            return self
        if self.table_index >= len(order):
            raise ResumeStateError(
                f"Resume table index {self.table_index} is outside the processing order",
                detail=f"{len(order)} tables recorded",
            )
        return self

    def start_chunk(self, table_index: int) -> int:
        """First chunk to apply for the table at table_index."""
        return self.chunk_index if table_index == self.table_index else 0


@dataclass
class TableProgress:
    """Progress tracking for a single table."""

    name: str
    position: int
    status: str = "pending"  # pending, in_progress, completed, skipped, failed
    rows: int = 0
    rows_before: int | None = None
    rows_after: int | None = None
    started_at: str | None = None
    completed_at: str | None = None


@dataclass
class SyncState:
    """Complete run state for persistence."""

    operation: str  # export or import
    database: str
    snapshot_path: str
    started_at: str
    updated_at: str
    status: str = "in_progress"  # in_progress, completed, failed
    tables: dict[str, TableProgress] = field(default_factory=dict)
    next_table_index: int = 0
    next_chunk_index: int = 0
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["tables"] = {name: asdict(p) for name, p in self.tables.items()}
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncState":
        """Create from dictionary."""
        tables = {
            name: TableProgress(**progress)
            for name, progress in data.get("tables", {}).items()
        }
        return cls(
            operation=data.get("operation", "export"),
            database=data.get("database", ""),
            snapshot_path=data.get("snapshot_path", ""),
            started_at=data.get("started_at", ""),
            updated_at=data.get("updated_at", ""),
            status=data.get("status", "in_progress"),
            tables=tables,
            next_table_index=data.get("next_table_index", 0),
            next_chunk_index=data.get("next_chunk_index", 0),
            error=data.get("error", ""),
        )


class StateManager:
    """
    State persistence for export and import runs.

    The state file records the cursor past the last committed chunk so an
    interrupted run can be resumed with --from-table-index and
    --from-chunk-index.

    Example:
        state_mgr = StateManager(Path(".syncdb-state.json"))
        state_mgr.start("export", "shop", "backups/shop_20240102_030405", order)
        state_mgr.update_table("users", status="in_progress")
        state_mgr.complete_table(0, "users", rows=120)
        state_mgr.mark_complete()
    """

    def __init__(self, state_file: Path | str) -> None:
        self.state_file = Path(state_file)
        self._state: SyncState | None = None

    @property
    def state(self) -> SyncState | None:
        """Current state or None if not initialized."""
        return self._state

    def load(self) -> SyncState | None:
        """Load state from file if it exists."""
        if not self.state_file.exists():
            return None

        try:
            data = json.loads(self.state_file.read_text(encoding="utf-8"))
            self._state = SyncState.from_dict(data)
            return self._state
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Could not load state file %s: %s", self.state_file, e)
            return None

    def save(self) -> None:
        """Save current state to file."""
        if self._state is None:
            return

        self._state.updated_at = utc_now()
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        self.state_file.write_text(
            json.dumps(self._state.to_dict(), indent=2),
            encoding="utf-8",
        )

    def start(
        self,
        operation: str,
        database: str,
        snapshot_path: Path | str,
        order: Sequence[str],
        progress: RunProgress | None = None,
    ) -> SyncState:
        """Begin tracking a run over the given processing order."""
        now = utc_now()
        progress = progress or RunProgress()
        self._state = SyncState(
            operation=operation,
            database=database,
            snapshot_path=str(snapshot_path),
            started_at=now,
            updated_at=now,
            tables={
                name: TableProgress(name=name, position=i + 1)
                for i, name in enumerate(order)
            },
            next_table_index=progress.table_index,
            next_chunk_index=progress.chunk_index,
        )
        self.save()
        return self._state

    def _require(self) -> SyncState:
        if self._state is None:
            raise RuntimeError("State not initialized")
        return self._state

    def update_table(
        self,
        table: str,
        status: str | None = None,
        rows: int | None = None,
        rows_before: int | None = None,
        rows_after: int | None = None,
    ) -> None:
        """Update progress for a table."""
        state = self._require()
        progress = state.tables.get(table)
        if progress is None:
            raise ValueError(f"Table not tracked: {table}")

        if status is not None:
            progress.status = status
            if status == "in_progress" and not progress.started_at:
                progress.started_at = utc_now()
            elif status in ("completed", "skipped", "failed"):
                progress.completed_at = utc_now()
        if rows is not None:
            progress.rows = rows
        if rows_before is not None:
            progress.rows_before = rows_before
        if rows_after is not None:
            progress.rows_after = rows_after
        self.save()

    def advance_chunk(self, index: int, next_chunk: int) -> None:
        """Move the cursor within the table at index after a chunk commits."""
        state = self._require()
        state.next_table_index = index
        state.next_chunk_index = next_chunk
        self.save()

    def complete_table(self, index: int, table: str, status: str = "completed", **counts: int | None) -> None:
        """Record a finished table and advance the cursor past it."""
        state = self._require()
        state.next_table_index = index + 1
        state.next_chunk_index = 0
        self.update_table(table, status=status, **counts)

    def mark_complete(self, status: str = "completed", error: str = "") -> None:
        """Mark the entire run as finished."""
        if self._state is None:
            return
        self._state.status = status
        self._state.error = error
        self.save()

    def clear_state(self) -> None:
        """Clear all state and delete state file."""
        self._state = None
        if self.state_file.exists():
            self.state_file.unlink()

    def get_summary(self) -> dict[str, Any]:
        """Get a summary of current state for display."""
        if self._state is None:
            return {}

        return {
            "operation": self._state.operation,
            "database": self._state.database,
            "snapshot_path": self._state.snapshot_path,
            "status": self._state.status,
            "started_at": self._state.started_at,
            "updated_at": self._state.updated_at,
            "next_table_index": self._state.next_table_index,
            "next_chunk_index": self._state.next_chunk_index,
            "error": self._state.error,
            "tables": {
                name: {
                    "position": p.position,
                    "status": p.status,
                    "rows": p.rows,
                    "rows_before": p.rows_before,
                    "rows_after": p.rows_after,
                }
                for name, p in self._state.tables.items()
            },
        }
