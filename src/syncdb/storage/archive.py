"""
Snapshot archives and snapshot directory discovery.

A snapshot directory holds 0_metadata.json plus its artifacts. Its zip
archive contains the directory itself, so extraction recreates it.
"""

from __future__ import annotations

import re
import zipfile
from pathlib import Path

from syncdb.core.state import MANIFEST_FILE
from syncdb.errors import StorageError

_STAMP_RE = re.compile(r"(?:.+_)?(\d{8}_\d{6})")


def snapshot_stamp(name: str) -> str | None:
    """YYYYMMDD_HHMMSS suffix of a snapshot name, if any."""
    match = _STAMP_RE.fullmatch(name)
    return match.group(1) if match else None


def is_export_path(path: Path | str) -> bool:
    """True if path is a snapshot directory."""
    return (Path(path) / MANIFEST_FILE).is_file()


def create_zip_archive(source_dir: Path | str, zip_path: Path | str | None = None) -> Path:
    """
    Zip a snapshot directory.

    Args:
        source_dir: Snapshot directory
        zip_path: Archive path (default: <source_dir>.zip)

    Returns:
        Path of the written archive
    """
    source = Path(source_dir)
    target = Path(zip_path) if zip_path else source.with_name(source.name + ".zip")
    if not source.is_dir():
        raise StorageError("Snapshot directory not found", detail=str(source))

    with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for file in sorted(source.rglob("*")):
            if file.is_file():
                zf.write(file, Path(source.name) / file.relative_to(source))
    return target


def extract_zip_archive(zip_path: Path | str, dest_dir: Path | str) -> Path:
    """
    Extract an archive and return the snapshot directory inside it.

    Raises:
        StorageError: Archive unreadable, unsafe, or without a manifest
    """
    dest = Path(dest_dir)
    dest.mkdir(parents=True, exist_ok=True)
    root = dest.resolve()

    try:
        with zipfile.ZipFile(zip_path) as zf:
            for member in zf.namelist():
                if not (root / member).resolve().is_relative_to(root):
                    raise StorageError("Archive member escapes destination", detail=member)
            zf.extractall(dest)
    except zipfile.BadZipFile as exc:
        raise StorageError("Not a valid zip archive", detail=str(zip_path)) from exc

    if is_export_path(dest):
        return dest
    for manifest in sorted(dest.rglob(MANIFEST_FILE)):
        return manifest.parent
    raise StorageError("Archive does not contain a snapshot manifest", detail=str(zip_path))


def latest_snapshot_dir(base_dir: Path | str) -> Path:
    """Newest snapshot directory under base_dir, by name stamp."""
    base = Path(base_dir)
    candidates = [
        (stamp, child)
        for child in base.iterdir()
        if child.is_dir()
        and is_export_path(child)
        and (stamp := snapshot_stamp(child.name)) is not None
    ] if base.is_dir() else []
    if not candidates:
        raise StorageError("No snapshot directories found", detail=str(base))
    return max(candidates)[1]


def latest_local_archive(base_dir: Path | str) -> Path:
    """Newest snapshot zip under base_dir, by name stamp."""
    base = Path(base_dir)
    candidates = [
        (stamp, file)
        for file in base.glob("*.zip")
        if (stamp := snapshot_stamp(file.stem)) is not None
    ] if base.is_dir() else []
    if not candidates:
        raise StorageError("No snapshot archives found", detail=str(base))
    return max(candidates)[1]
