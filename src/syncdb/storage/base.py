"""
Storage backend interface.

Backends move snapshot archives (zip files) between the local machine and
a destination. Keys are flat names or '/'-separated paths relative to the
backend root.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Protocol, runtime_checkable

from syncdb.errors import ConfigurationError, StorageError

if TYPE_CHECKING:
    from syncdb.config import Settings


ARCHIVE_SUFFIX = ".zip"


@runtime_checkable
class Storage(Protocol):
    """Capability set every storage backend implements."""

    def upload(self, data: bytes, key: str) -> None:
        """Store data under key, replacing any existing object."""
        ...

    def download(self, key: str) -> bytes:
        """Return the bytes stored under key."""
        ...

    def list(self, prefix: str = "") -> list[str]:
        """Keys starting with prefix."""
        ...

    def latest_archive(self, prefix: str = "") -> str:
        """Most recent archive key under prefix."""
        ...


def latest_by_suffix(keys: Iterable[str], suffix: str = ARCHIVE_SUFFIX) -> str:
    """
    Lexicographically greatest key ending in suffix.

    Archive names embed a YYYYMMDD_HHMMSS stamp, so the greatest name is
    the newest snapshot.
    """
    candidates = [k for k in keys if k.endswith(suffix)]
    if not candidates:
        raise StorageError(f"No {suffix} archives found")
    return max(candidates)


def get_storage(settings: Settings) -> Storage:
    """Build the storage backend selected by settings.storage.type."""
    config = settings.storage
    kind = config.type.value

    errors = settings.validate_storage()
    if errors:
        raise ConfigurationError("Invalid storage settings", detail="; ".join(errors))

    if kind == "local":
        from syncdb.storage.local import LocalStorage

        return LocalStorage(settings.sync.path)
    if kind == "s3":
        from syncdb.storage.s3 import S3Storage

        return S3Storage(config.s3_bucket, config.s3_region, prefix=config.s3_prefix)
    if kind == "gdrive":
        from syncdb.storage.gdrive import GoogleDriveStorage

        return GoogleDriveStorage(config.gdrive_credentials, config.gdrive_folder)

    raise ConfigurationError(f"Unsupported storage type: {kind}")
