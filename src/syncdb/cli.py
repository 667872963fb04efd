"""
syncdb CLI - Command Line Interface.

Snapshot a database to files (or S3 / Google Drive) and restore it.

Commands:
    export  Export schema and data to a snapshot
    import  Import a snapshot into a database
    status  Show the persisted run state
    config  Manage configuration
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from syncdb import __version__
from syncdb.config import ArtifactFormat, Settings, StorageType, load_settings
from syncdb.core.engine import RunStats, SyncEngine
from syncdb.core.state import StateManager
from syncdb.errors import SyncDBError
from syncdb.utils.display import (
    ProgressDisplay,
    print_error,
    print_info,
    print_state,
    print_success,
    print_summary,
    print_table_results,
    print_warning,
)
from syncdb.utils.logger import setup_logging


# Create the Typer app
app = typer.Typer(
    name="syncdb",
    help="Dependency-ordered database snapshot export and import.",
    add_completion=True,
    rich_markup_mode="rich",
)

console = Console()

_CONNECTION_FIELDS = ("driver", "host", "port", "username", "password", "database")
_NEGATABLE_FLAGS = ("include_data",)
_STORAGE_FIELDS = {
    "storage": "type",
    "s3_bucket": "s3_bucket",
    "s3_region": "s3_region",
    "s3_prefix": "s3_prefix",
    "gdrive_credentials": "gdrive_credentials",
    "gdrive_folder": "gdrive_folder",
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold cyan]syncdb[/bold cyan] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """syncdb - dependency-ordered database snapshot export and import."""
    pass


def _build_settings(
    config_file: Path | None = None,
    **overrides: Any,
) -> Settings:
    """Build settings from config file, environment and CLI overrides."""
    settings = load_settings(config_file) if config_file else Settings()
    data = settings.model_dump()

    for key, value in overrides.items():
        if value is None or value == []:
            continue
        # Unset flags must not override config file values
        if value is False and key not in _NEGATABLE_FLAGS:
            continue
        if key in _CONNECTION_FIELDS:
            data[key] = value
        elif key in _STORAGE_FIELDS:
            data["storage"][_STORAGE_FIELDS[key]] = value
        else:
            data["sync"][key] = value

    return Settings.model_validate(data)


def _run(
    operation: str,
    config_file: Path | None,
    quiet: bool,
    **overrides: Any,
) -> RunStats:
    """Shared driver for export and import."""
    try:
        settings = _build_settings(config_file=config_file, **overrides)
    except (ValidationError, ValueError, FileNotFoundError) as e:
        print_error(str(e))
        raise typer.Exit(1)

    setup_logging(
        level="WARNING" if quiet else settings.logging.level,
        log_file=settings.logging.file,
        format_style=settings.logging.format,
        max_file_size_mb=settings.logging.max_file_size_mb,
        backup_count=settings.logging.backup_count,
    )

    engine = SyncEngine(settings)
    display = ProgressDisplay(operation, settings.database) if not quiet else None

    try:
        if display:
            display.start()
        run = engine.run_export if operation == "export" else engine.run_import
        stats = run(on_progress=display.update if display else None)
    except SyncDBError as e:
        if display:
            display.stop()
        print_error(str(e))
        summary = engine.get_state_summary()
        if summary.get("tables"):
            print_info(
                f"Resume with --from-table-index {summary['next_table_index']} "
                f"--from-chunk-index {summary['next_chunk_index']}"
            )
        raise typer.Exit(1)
    finally:
        if display:
            display.stop()

    if not quiet:
        console.print()
        print_table_results(stats)
        print_summary(stats)
    if stats.cycles_dropped:
        print_warning(f"{stats.cycles_dropped} foreign key cycle edge(s) ignored for ordering")
    return stats


# =============================================================================
# EXPORT Command
# =============================================================================


@app.command()
def export(
    driver: str = typer.Option(None, "--driver", help="Database driver: mysql, postgres or sqlite."),
    host: str = typer.Option(None, "--host", "-H", help="Database host."),
    port: int = typer.Option(None, "--port", "-P", help="Database port."),
    username: str = typer.Option(None, "--username", "-u", help="Database user."),
    password: str = typer.Option(
        None,
        "--password",
        envvar="SYNCDB_PASSWORD",
        help="Database password.",
    ),
    database: str = typer.Option(None, "--database", "-d", help="Database name (file path for sqlite)."),
    tables: Optional[list[str]] = typer.Option(
        None,
        "--table",
        "-t",
        help="Tables to export; glob patterns allowed (can be repeated).",
    ),
    exclude_table: Optional[list[str]] = typer.Option(
        None,
        "--exclude-table",
        help="Tables to exclude entirely (can be repeated).",
    ),
    exclude_table_schema: Optional[list[str]] = typer.Option(
        None,
        "--exclude-table-schema",
        help="Tables whose schema is skipped (can be repeated).",
    ),
    exclude_table_data: Optional[list[str]] = typer.Option(
        None,
        "--exclude-table-data",
        help="Tables whose data is skipped (can be repeated).",
    ),
    format: ArtifactFormat = typer.Option(None, "--format", "-f", help="Artifact format."),
    include_schema: bool = typer.Option(False, "--include-schema", help="Export table DDL."),
    include_data: bool = typer.Option(True, "--include-data/--no-include-data", help="Export rows."),
    include_view_data: bool = typer.Option(False, "--include-view-data", help="Export rows of views."),
    base64: bool = typer.Option(False, "--base64", help="Base64-encode string values."),
    condition: str = typer.Option(None, "--condition", help="WHERE condition applied to every table."),
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Maximum rows per table."),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", "-b", help="Rows per chunk."),
    path: Path = typer.Option(None, "--path", "-o", help="Snapshot base directory."),
    file_name: str = typer.Option(None, "--file-name", help="Snapshot directory name."),
    zip: bool = typer.Option(False, "--zip", help="Create a zip archive of the snapshot."),
    storage: StorageType = typer.Option(None, "--storage", help="Upload destination."),
    s3_bucket: str = typer.Option(None, "--s3-bucket", help="S3 bucket."),
    s3_region: str = typer.Option(None, "--s3-region", help="S3 region."),
    gdrive_credentials: Path = typer.Option(None, "--gdrive-credentials", help="Service account file."),
    gdrive_folder: str = typer.Option(None, "--gdrive-folder", help="Google Drive folder ID."),
    from_table_index: Optional[int] = typer.Option(
        None,
        "--from-table-index",
        help="Resume from this table position (0-based).",
    ),
    from_chunk_index: Optional[int] = typer.Option(
        None,
        "--from-chunk-index",
        help="Resume from this chunk within the resumed table.",
    ),
    state_file: Path = typer.Option(None, "--state-file", help="Path to state file."),
    config_file: Path = typer.Option(None, "--config", "-c", help="Path to config file.", exists=True),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Minimal output."),
) -> None:
    """
    Export schema and data to a snapshot directory.

    Example:
        syncdb export --driver sqlite --database shop.db --include-schema -o backups
    """
    stats = _run(
        "export",
        config_file,
        quiet,
        driver=driver,
        host=host,
        port=port,
        username=username,
        password=password,
        database=database,
        tables=tables,
        exclude_table=exclude_table,
        exclude_table_schema=exclude_table_schema,
        exclude_table_data=exclude_table_data,
        format=format,
        include_schema=include_schema,
        include_data=None if include_data else False,
        include_view_data=include_view_data,
        base64=base64,
        condition=condition,
        record_limit=limit,
        batch_size=batch_size,
        path=path,
        file_name=file_name,
        zip=zip,
        storage=storage,
        s3_bucket=s3_bucket,
        s3_region=s3_region,
        gdrive_credentials=gdrive_credentials,
        gdrive_folder=gdrive_folder,
        from_table_index=from_table_index,
        from_chunk_index=from_chunk_index,
        state_file=state_file,
    )
    print_success(f"Export completed: {stats.archive or stats.snapshot_path}")


# =============================================================================
# IMPORT Command
# =============================================================================


@app.command("import")
def import_(
    driver: str = typer.Option(None, "--driver", help="Database driver: mysql, postgres or sqlite."),
    host: str = typer.Option(None, "--host", "-H", help="Database host."),
    port: int = typer.Option(None, "--port", "-P", help="Database port."),
    username: str = typer.Option(None, "--username", "-u", help="Database user."),
    password: str = typer.Option(
        None,
        "--password",
        envvar="SYNCDB_PASSWORD",
        help="Database password.",
    ),
    database: str = typer.Option(None, "--database", "-d", help="Database name (file path for sqlite)."),
    tables: Optional[list[str]] = typer.Option(
        None,
        "--table",
        "-t",
        help="Tables to import; glob patterns allowed (can be repeated).",
    ),
    exclude_table: Optional[list[str]] = typer.Option(
        None,
        "--exclude-table",
        help="Tables to skip entirely (can be repeated).",
    ),
    exclude_table_schema: Optional[list[str]] = typer.Option(
        None,
        "--exclude-table-schema",
        help="Tables whose schema is not applied (can be repeated).",
    ),
    exclude_table_data: Optional[list[str]] = typer.Option(
        None,
        "--exclude-table-data",
        help="Tables whose data is not applied (can be repeated).",
    ),
    include_schema: bool = typer.Option(False, "--include-schema", help="Apply the schema artifact."),
    include_data: bool = typer.Option(True, "--include-data/--no-include-data", help="Apply rows."),
    base64: bool = typer.Option(False, "--base64", help="Decode base64 string values."),
    truncate: bool = typer.Option(False, "--truncate", help="Truncate tables before import."),
    upsert: bool = typer.Option(False, "--upsert", help="Upsert on primary key."),
    disable_foreign_key_checks: bool = typer.Option(
        False,
        "--disable-foreign-key-checks",
        help="Disable FK enforcement while importing.",
    ),
    path: Path = typer.Option(None, "--path", "-i", help="Snapshot directory, base directory or zip file."),
    file_name: str = typer.Option(None, "--file-name", help="Snapshot name inside the base directory."),
    zip: bool = typer.Option(False, "--zip", help="Import the latest zip archive in the base directory."),
    storage: StorageType = typer.Option(None, "--storage", help="Download source."),
    s3_bucket: str = typer.Option(None, "--s3-bucket", help="S3 bucket."),
    s3_region: str = typer.Option(None, "--s3-region", help="S3 region."),
    gdrive_credentials: Path = typer.Option(None, "--gdrive-credentials", help="Service account file."),
    gdrive_folder: str = typer.Option(None, "--gdrive-folder", help="Google Drive folder ID."),
    from_table_index: Optional[int] = typer.Option(
        None,
        "--from-table-index",
        help="Resume from this table position (0-based).",
    ),
    from_chunk_index: Optional[int] = typer.Option(
        None,
        "--from-chunk-index",
        help="Resume from this chunk within the resumed table.",
    ),
    state_file: Path = typer.Option(None, "--state-file", help="Path to state file."),
    config_file: Path = typer.Option(None, "--config", "-c", help="Path to config file.", exists=True),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Minimal output."),
) -> None:
    """
    Import a snapshot into a database.

    Example:
        syncdb import --driver sqlite --database restored.db -i backups --include-schema
    """
    _run(
        "import",
        config_file,
        quiet,
        driver=driver,
        host=host,
        port=port,
        username=username,
        password=password,
        database=database,
        tables=tables,
        exclude_table=exclude_table,
        exclude_table_schema=exclude_table_schema,
        exclude_table_data=exclude_table_data,
        include_schema=include_schema,
        include_data=None if include_data else False,
        base64=base64,
        truncate=truncate,
        upsert=upsert,
        disable_foreign_key_checks=disable_foreign_key_checks,
        path=path,
        file_name=file_name,
        zip=zip,
        storage=storage,
        s3_bucket=s3_bucket,
        s3_region=s3_region,
        gdrive_credentials=gdrive_credentials,
        gdrive_folder=gdrive_folder,
        from_table_index=from_table_index,
        from_chunk_index=from_chunk_index,
        state_file=state_file,
    )
    print_success("Import completed successfully!")


# =============================================================================
# STATUS Command
# =============================================================================


@app.command()
def status(
    state_file: Path = typer.Option(
        Path(".syncdb-state.json"),
        "--state-file",
        help="Path to state file.",
    ),
) -> None:
    """Show the state of the last export or import run."""
    state_mgr = StateManager(state_file)
    if not state_mgr.load():
        print_info("No run state found. Run an export or import first.")
        raise typer.Exit(0)
    print_state(state_mgr.get_summary())


# =============================================================================
# CONFIG Command
# =============================================================================


@app.command()
def config(
    show: bool = typer.Option(
        False,
        "--show",
        help="Show current configuration.",
    ),
    init: bool = typer.Option(
        False,
        "--init",
        help="Write a config file with default settings.",
    ),
    output: Path = typer.Option(
        Path("syncdb.toml"),
        "--output",
        "-o",
        help="Output path for config file.",
    ),
    config_file: Path = typer.Option(None, "--config", "-c", help="Path to config file.", exists=True),
) -> None:
    """Manage configuration."""
    if init:
        Settings().to_file(output)
        print_success(f"Generated config file: {output}")
        return

    if show:
        try:
            settings = load_settings(config_file)
        except (ValidationError, ValueError) as e:
            print_error(str(e))
            raise typer.Exit(1)

        table = Table(title="Current Configuration", border_style="cyan")
        table.add_column("Setting", style="cyan")
        table.add_column("Value")

        table.add_row("Driver", settings.driver or "[dim]not set[/dim]")
        table.add_row("Host", f"{settings.host}:{settings.port}")
        table.add_row("Database", settings.database or "[dim]not set[/dim]")
        table.add_row("Username", settings.username or "[dim]not set[/dim]")
        table.add_row("Format", settings.sync.format.value)
        table.add_row("Batch Size", f"{settings.sync.batch_size} rows")
        table.add_row("Snapshot Path", str(settings.sync.path))
        table.add_row("Storage", settings.storage.type.value)
        table.add_row("State File", str(settings.sync.state_file))
        console.print(table)

        errors = settings.validate_connection() + settings.validate_storage()
        for err in errors:
            print_warning(err)
        return

    print_info("Use --show or --init.")


if __name__ == "__main__":
    app()
