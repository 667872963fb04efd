"""Local filesystem storage backend."""

from __future__ import annotations

from pathlib import Path

from syncdb.errors import StorageError
from syncdb.storage.base import latest_by_suffix


class LocalStorage:
    """
    Storage rooted at a local directory.

    Example:
        storage = LocalStorage("backups")
        storage.upload(data, "shop_20240102_030405.zip")
        key = storage.latest_archive()
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise StorageError("Key escapes the storage root", detail=key)
        return path

    def upload(self, data: bytes, key: str) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            raise StorageError("Failed to write object", detail=f"{key}: {exc}") from exc

    def download(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise StorageError("Failed to read object", detail=f"{key}: {exc}") from exc

    def list(self, prefix: str = "") -> list[str]:
        if not self.root.exists():
            return []
        keys = (
            p.relative_to(self.root).as_posix()
            for p in self.root.rglob("*")
            if p.is_file()
        )
        return sorted(k for k in keys if k.startswith(prefix))

    def latest_archive(self, prefix: str = "") -> str:
        return latest_by_suffix(self.list(prefix))
