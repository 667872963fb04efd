"""Snapshot storage backends and archive helpers."""

from syncdb.storage.archive import (
    create_zip_archive,
    extract_zip_archive,
    is_export_path,
    latest_local_archive,
    latest_snapshot_dir,
    snapshot_stamp,
)
from syncdb.storage.base import Storage, get_storage, latest_by_suffix
from syncdb.storage.local import LocalStorage

__all__ = [
    "LocalStorage",
    "Storage",
    "create_zip_archive",
    "extract_zip_archive",
    "get_storage",
    "is_export_path",
    "latest_by_suffix",
    "latest_local_archive",
    "latest_snapshot_dir",
    "snapshot_stamp",
]
