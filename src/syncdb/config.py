"""
syncdb Configuration System.

This module provides a type-safe configuration system using Pydantic.
Settings can be loaded from:
1. Environment variables (prefixed with SYNCDB_)
2. Config file (TOML or JSON)
3. CLI arguments (highest priority)

Example usage:
    from syncdb.config import Settings

    # Load from environment
    settings = Settings()

    # Or with explicit values
    settings = Settings(
        driver="postgres",
        host="db.internal",
        database="shop",
    )
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Any, Self

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_PORTS = {
    "mysql": 3306,
    "postgres": 5432,
}


class ArtifactFormat(str, Enum):
    """Wire format for table artifacts."""

    SQL = "sql"
    JSON = "json"


class StorageType(str, Enum):
    """Where snapshots are stored."""

    LOCAL = "local"
    S3 = "s3"
    GDRIVE = "gdrive"


class SyncOptions(BaseModel):
    """Options controlling export and import runs."""

    # Table selection
    tables: list[str] = Field(
        default_factory=list,
        description="Tables or glob patterns to process (empty = all tables)",
    )
    exclude_table: list[str] = Field(
        default_factory=list,
        description="Tables to exclude entirely (schema and data)",
    )
    exclude_table_schema: list[str] = Field(
        default_factory=list,
        description="Tables whose schema is skipped",
    )
    exclude_table_data: list[str] = Field(
        default_factory=list,
        description="Tables whose data is skipped",
    )

    # Content
    format: ArtifactFormat = Field(
        default=ArtifactFormat.SQL,
        description="Artifact format: sql statements or structured json",
    )
    include_schema: bool = Field(
        default=False,
        description="Export or apply table DDL",
    )
    include_data: bool = Field(
        default=True,
        description="Export or apply table rows",
    )
    include_view_data: bool = Field(
        default=False,
        description="Export rows of views as well as tables",
    )
    base64: bool = Field(
        default=False,
        description="Encode string values as base64 on export, decode on import",
    )

    # Row selection
    condition: str = Field(
        default="",
        description="WHERE condition applied when reading rows",
    )
    record_limit: int | None = Field(
        default=None,
        ge=1,
        description="Maximum rows exported per table",
    )
    batch_size: int = Field(
        default=500,
        ge=1,
        le=100_000,
        description="Rows per chunk",
    )

    # Import behaviour
    truncate: bool = Field(
        default=False,
        description="Truncate destination tables before import",
    )
    upsert: bool = Field(
        default=False,
        description="Upsert on primary key instead of plain insert",
    )
    disable_foreign_key_checks: bool = Field(
        default=False,
        description="Disable foreign key enforcement while importing data",
    )

    # Snapshot location
    path: Path = Field(
        default=Path("."),
        description="Snapshot base directory, snapshot directory or zip file",
    )
    file_name: str = Field(
        default="",
        description="Snapshot directory name (default: <database>_YYYYMMDD_HHMMSS)",
    )
    zip: bool = Field(
        default=False,
        description="Create (export) or read (import) a zip archive",
    )

    # Resume
    from_table_index: int = Field(
        default=0,
        ge=0,
        description="Resume from this position in the processing order (0-based)",
    )
    from_chunk_index: int = Field(
        default=0,
        ge=0,
        description="Resume from this chunk within the resumed table",
    )
    state_file: Path = Field(
        default=Path(".syncdb-state.json"),
        description="Path to state file recording run progress",
    )


class StorageConfig(BaseModel):
    """Storage backend configuration."""

    type: StorageType = Field(
        default=StorageType.LOCAL,
        description="Storage backend: local, s3 or gdrive",
    )
    s3_bucket: str = Field(default="", description="S3 bucket name")
    s3_region: str = Field(default="", description="S3 region")
    s3_prefix: str = Field(default="", description="Key prefix inside the bucket")
    gdrive_credentials: Path | None = Field(
        default=None,
        description="Google service account credentials file",
    )
    gdrive_folder: str = Field(default="", description="Google Drive folder ID")
    keep_local: bool = Field(
        default=True,
        description="Keep local snapshot files after a remote upload",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Log level",
    )
    file: Path | None = Field(
        default=None,
        description="Log file path (None = console only)",
    )
    format: str = Field(
        default="rich",
        pattern="^(rich|json|simple)$",
        description="Log format: rich (colored), json, or simple",
    )
    max_file_size_mb: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Max log file size before rotation",
    )
    backup_count: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Number of rotated log files to keep",
    )


class Settings(BaseSettings):
    """
    Main settings class for syncdb.

    Settings are loaded in this priority (highest first):
    1. Explicit constructor arguments
    2. Environment variables (SYNCDB_* prefix)
    3. Config file (if specified)
    4. Defaults

    Example:
        # From environment
        export SYNCDB_DRIVER="mysql"
        export SYNCDB_DATABASE="shop"
        export SYNCDB_SYNC__BATCH_SIZE=1000
        settings = Settings()

        # From config file
        settings = Settings.from_file("syncdb.toml")
    """

    model_config = SettingsConfigDict(
        env_prefix="SYNCDB_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Connection
    driver: str = Field(
        default="",
        description="Database driver (mysql, postgres, sqlite)",
    )
    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=0, ge=0, description="Database port (0 = driver default)")
    username: str = Field(default="", description="Database username")
    password: SecretStr = Field(
        default=SecretStr(""),
        description="Database password",
    )
    database: str = Field(
        default="",
        description="Database name (file path for sqlite)",
    )
    connect_timeout: int = Field(
        default=10,
        ge=1,
        description="Connection timeout in seconds",
    )

    # Nested configs
    sync: SyncOptions = Field(default_factory=SyncOptions)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def apply_default_port(self) -> Self:
        """Fill in the driver's standard port when none is given."""
        if not self.port and self.driver in DEFAULT_PORTS:
            self.port = DEFAULT_PORTS[self.driver]
        return self

    @field_validator("driver", mode="before")
    @classmethod
    def normalize_driver(cls, v: Any) -> str:
        """Accept driver names case-insensitively."""
        if isinstance(v, str):
            return v.strip().lower()
        return ""

    @field_validator("password", mode="before")
    @classmethod
    def validate_password(cls, v: Any) -> SecretStr:
        """Handle password from various sources."""
        if isinstance(v, SecretStr):
            return v
        if isinstance(v, str):
            return SecretStr(v)
        return SecretStr("")

    @classmethod
    def from_file(cls, path: Path | str) -> "Settings":
        """Load settings from a TOML or JSON config file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        content = path.read_text()

        if path.suffix in (".toml", ".tml"):
            import tomllib

            data = tomllib.loads(content)
        elif path.suffix == ".json":
            data = json.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")

        return cls.model_validate(data)

    def to_file(self, path: Path | str) -> None:
        """Save current settings to a config file."""
        path = Path(path)
        data = self.model_dump(mode="json", exclude_none=True)

        # Mask sensitive data
        if "password" in data:
            data["password"] = "***REDACTED***"

        if path.suffix in (".toml", ".tml"):
            # Basic TOML serialization
            lines = []
            for key, value in data.items():
                if not isinstance(value, dict):
                    lines.append(f"{key} = {json.dumps(value)}")
            for key, value in data.items():
                if isinstance(value, dict):
                    lines.append(f"\n[{key}]")
                    for k, v in value.items():
                        lines.append(f"{k} = {json.dumps(v)}")
            path.write_text("\n".join(lines) + "\n")
        else:
            path.write_text(json.dumps(data, indent=2))

    def validate_connection(self) -> list[str]:
        """Validate that required connection settings are present. Returns list of errors."""
        errors = []
        if not self.driver:
            errors.append("driver is required (mysql, postgres, sqlite)")
        if not self.database:
            errors.append("database is required")
        if self.driver in DEFAULT_PORTS and not self.host:
            errors.append("host is required")
        return errors

    def validate_storage(self) -> list[str]:
        """Validate the storage backend settings. Returns list of errors."""
        errors = []
        if self.storage.type == StorageType.S3 and not self.storage.s3_bucket:
            errors.append("storage.s3_bucket is required for s3 storage")
        if self.storage.type == StorageType.GDRIVE:
            if not self.storage.gdrive_credentials:
                errors.append("storage.gdrive_credentials is required for gdrive storage")
            if not self.storage.gdrive_folder:
                errors.append("storage.gdrive_folder is required for gdrive storage")
        return errors


# Convenience function for loading settings
def load_settings(
    config_file: Path | str | None = None,
    **overrides: Any,
) -> Settings:
    """
    Load settings with optional config file and overrides.

    Args:
        config_file: Optional path to config file
        **overrides: Settings to override (highest priority)

    Returns:
        Configured Settings instance
    """
    if config_file:
        settings = Settings.from_file(config_file)
        if overrides:
            data = settings.model_dump()
            data.update(overrides)
            return Settings.model_validate(data)
        return settings
    return Settings(**overrides)
