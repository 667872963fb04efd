"""
Rich Terminal Display Components.

Provides console UI for:
- A live per-table progress bar
- Run summary and per-table result tables
- Persisted run state (status command)
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table
from rich.text import Text

if TYPE_CHECKING:
    from syncdb.core.engine import RunStats


console = Console()


class ProgressDisplay:
    """
    Live table-by-table progress for a run.

    Example:
        with ProgressDisplay("export", "shop") as display:
            engine.run_export(on_progress=display.update)
    """

    def __init__(self, operation: str, database: str) -> None:
        self.operation = operation
        self.database = database
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(bar_width=40),
            TaskProgressColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
        )
        self._task_id: Any = self.progress.add_task(f"[cyan]{operation.upper()}", total=None)
        self._live: Live | None = None
        self._rows = 0
        self._last_table = ""

    def start(self) -> None:
        """Start the live display."""
        self._live = Live(self._build_display(), console=console, refresh_per_second=4)
        self._live.start()

    def stop(self) -> None:
        """Stop the live display."""
        if self._live:
            self._live.stop()
            self._live = None

    def update(self, stats: RunStats) -> None:
        """Progress callback for SyncEngine runs."""
        done = stats.tables_processed + stats.tables_skipped
        self.progress.update(self._task_id, total=stats.tables_total, completed=done)
        self._rows = stats.rows_processed
        if stats.table_results:
            self._last_table = stats.table_results[-1].table
        if self._live:
            self._live.update(self._build_display())

    def _build_display(self) -> Panel:
        info = Table.grid(padding=(0, 2))
        info.add_column(style="dim")
        info.add_column()
        info.add_row("Database:", self.database)
        info.add_row("Rows:", f"{self._rows:,}")

        status = Text()
        if self._last_table:
            status.append("Last table: ", style="dim")
            status.append(self._last_table, style="bold cyan")

        return Panel(
            Group(info, Text(), self.progress, status),
            title=f"[bold white]syncdb - {self.operation.upper()}[/bold white]",
            border_style="blue",
            padding=(1, 2),
        )

    def __enter__(self) -> "ProgressDisplay":
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        self.stop()


def print_summary(stats: RunStats) -> None:
    """Print a summary table after a run."""
    table = Table(title="Run Summary", border_style="green")

    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Operation", stats.operation)
    table.add_row("State", stats.state.value)
    table.add_row("Duration", f"{stats.duration_seconds:.1f}s")
    table.add_row("Tables", f"{stats.tables_processed}/{stats.tables_total}")
    table.add_row("Tables Skipped", str(stats.tables_skipped))
    table.add_row("Rows", f"{stats.rows_processed:,}")
    table.add_row("Average Speed", f"{stats.rows_per_second:,.0f} rows/s")
    if stats.cycles_dropped:
        table.add_row("FK Cycles Dropped", str(stats.cycles_dropped))
    if stats.snapshot_path:
        table.add_row("Snapshot", stats.snapshot_path)
    if stats.archive:
        archive = Path(stats.archive)
        size = format_bytes(archive.stat().st_size) if archive.exists() else "uploaded"
        table.add_row("Archive", f"{archive.name} ({size})")

    console.print(table)


def print_table_results(stats: RunStats) -> None:
    """Print per-table rows, with before/after counts for imports."""
    table = Table(title="Tables", border_style="blue")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Table", style="cyan")
    table.add_column("Rows", justify="right")
    if stats.operation == "import":
        table.add_column("Before", justify="right")
        table.add_column("After", justify="right")
    table.add_column("Note", style="dim")

    for result in stats.table_results:
        row = [str(result.position), result.table, f"{result.rows:,}"]
        if stats.operation == "import":
            row.append("" if result.rows_before is None else f"{result.rows_before:,}")
            row.append("" if result.rows_after is None else f"{result.rows_after:,}")
        row.append(result.reason if result.skipped else result.file)
        table.add_row(*row)

    console.print(table)


def print_state(summary: dict[str, Any]) -> None:
    """Print the persisted run state."""
    header = Table.grid(padding=(0, 2))
    header.add_column(style="dim")
    header.add_column()
    for key in ("operation", "database", "snapshot_path", "status", "started_at", "updated_at"):
        header.add_row(f"{key.replace('_', ' ').title()}:", str(summary.get(key, "")))
    if summary.get("error"):
        header.add_row("Error:", f"[red]{summary['error']}[/red]")
    console.print(Panel(header, title="Run State", border_style="blue"))

    table = Table(border_style="blue")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Table", style="cyan")
    table.add_column("Status")
    table.add_column("Rows", justify="right")
    for name, info in summary.get("tables", {}).items():
        color = {"completed": "green", "failed": "red", "in_progress": "yellow"}.get(info["status"], "dim")
        table.add_row(
            str(info["position"]),
            name,
            f"[{color}]{info['status']}[/{color}]",
            f"{info['rows']:,}",
        )
    console.print(table)

    if summary.get("status") != "completed":
        console.print(
            f"Resume with [bold]--from-table-index {summary.get('next_table_index', 0)}"
            f" --from-chunk-index {summary.get('next_chunk_index', 0)}[/bold]"
        )


def format_bytes(size: float) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "KB", "MB", "GB"]:
        if abs(size) < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[red bold]Error:[/red bold] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green bold]✓[/green bold] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow bold]⚠[/yellow bold] {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[blue]ℹ[/blue] {message}")
