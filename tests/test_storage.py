"""Tests for storage backends and snapshot archives."""

import io
import zipfile
from pathlib import Path

import pytest
from botocore.exceptions import ClientError

from syncdb.config import Settings
from syncdb.core.state import ExportManifest
from syncdb.errors import ConfigurationError, StorageError
from syncdb.storage import (
    LocalStorage,
    Storage,
    create_zip_archive,
    extract_zip_archive,
    get_storage,
    latest_by_suffix,
    latest_snapshot_dir,
    snapshot_stamp,
)
from syncdb.storage.s3 import S3Storage


def make_snapshot(base: Path, name: str) -> Path:
    snapshot = base / name
    snapshot.mkdir(parents=True)
    ExportManifest(exported_at="now", database_name="shop", tables=["users"]).save(snapshot)
    (snapshot / "1_users.sql").write_text("INSERT INTO users (id) VALUES (1);")
    return snapshot


class FakeS3Client:
    """In-memory stand-in for a boto3 S3 client."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}

    def put_object(self, Bucket: str, Key: str, Body: bytes) -> None:
        self.objects[Key] = Body

    def get_object(self, Bucket: str, Key: str) -> dict:
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {"Body": io.BytesIO(self.objects[Key])}

    def get_paginator(self, name: str) -> "FakeS3Client":
        return self

    def paginate(self, Bucket: str, Prefix: str) -> list[dict]:
        keys = sorted(k for k in self.objects if k.startswith(Prefix))
        return [{"Contents": [{"Key": k} for k in keys[:1]]}, {"Contents": [{"Key": k} for k in keys[1:]]}]


class TestLocalStorage:
    """Tests for LocalStorage."""

    def test_upload_download(self, tmp_path: Path) -> None:
        """Objects round-trip by key, nested keys included."""
        storage = LocalStorage(tmp_path)
        storage.upload(b"data", "nested/a.zip")
        assert storage.download("nested/a.zip") == b"data"
        assert isinstance(storage, Storage)

    def test_list_and_latest(self, tmp_path: Path) -> None:
        """Listing is sorted; the latest archive has the newest stamp."""
        storage = LocalStorage(tmp_path)
        for key in ["shop_20240101_000000.zip", "shop_20240301_000000.zip", "notes.txt"]:
            storage.upload(b"x", key)

        assert storage.list() == ["notes.txt", "shop_20240101_000000.zip", "shop_20240301_000000.zip"]
        assert storage.list("shop_") == ["shop_20240101_000000.zip", "shop_20240301_000000.zip"]
        assert storage.latest_archive() == "shop_20240301_000000.zip"

    def test_key_cannot_escape_root(self, tmp_path: Path) -> None:
        """Keys resolving outside the root are refused."""
        with pytest.raises(StorageError):
            LocalStorage(tmp_path / "root").upload(b"x", "../evil.zip")

    def test_missing_object(self, tmp_path: Path) -> None:
        """Downloading an unknown key is a storage error."""
        with pytest.raises(StorageError):
            LocalStorage(tmp_path).download("nope.zip")


class TestS3Storage:
    """Tests for S3Storage against a fake client."""

    def test_prefix_applied_and_stripped(self) -> None:
        """Keys are stored under the prefix and listed without it."""
        client = FakeS3Client()
        storage = S3Storage("bucket", prefix="/snapshots/", client=client)

        storage.upload(b"one", "shop_20240101_000000.zip")
        storage.upload(b"two", "shop_20240202_000000.zip")

        assert "snapshots/shop_20240101_000000.zip" in client.objects
        assert storage.list() == ["shop_20240101_000000.zip", "shop_20240202_000000.zip"]
        assert storage.latest_archive() == "shop_20240202_000000.zip"
        assert storage.download("shop_20240101_000000.zip") == b"one"

    def test_client_errors_wrapped(self) -> None:
        """botocore errors surface as StorageError."""
        storage = S3Storage("bucket", client=FakeS3Client())
        with pytest.raises(StorageError, match="download"):
            storage.download("missing.zip")


class TestFactory:
    """Tests for get_storage and latest_by_suffix."""

    def test_local_backend(self, tmp_path: Path) -> None:
        """The default backend is local storage at the sync path."""
        settings = Settings(sync={"path": tmp_path})
        storage = get_storage(settings)
        assert isinstance(storage, LocalStorage)
        assert storage.root == tmp_path

    def test_incomplete_remote_settings(self) -> None:
        """Remote backends need their settings."""
        with pytest.raises(ConfigurationError):
            get_storage(Settings(storage={"type": "s3"}))

    def test_latest_by_suffix(self) -> None:
        """Only archives are considered."""
        assert latest_by_suffix(["a_20240101_000000.zip", "b.txt", "a_20230101_000000.zip"]) == "a_20240101_000000.zip"
        with pytest.raises(StorageError):
            latest_by_suffix(["b.txt"])


class TestArchives:
    """Tests for zip archives and snapshot discovery."""

    def test_zip_round_trip(self, tmp_path: Path) -> None:
        """An extracted archive yields the snapshot directory."""
        snapshot = make_snapshot(tmp_path, "shop_20240102_030405")
        archive = create_zip_archive(snapshot)
        assert archive == tmp_path / "shop_20240102_030405.zip"

        extracted = extract_zip_archive(archive, tmp_path / "extract")
        assert extracted.name == "shop_20240102_030405"
        assert (extracted / "1_users.sql").read_text() == "INSERT INTO users (id) VALUES (1);"

    def test_archive_without_manifest(self, tmp_path: Path) -> None:
        """Archives that hold no snapshot are rejected."""
        archive = tmp_path / "other.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("readme.txt", "hello")
        with pytest.raises(StorageError):
            extract_zip_archive(archive, tmp_path / "extract")

    def test_unsafe_member(self, tmp_path: Path) -> None:
        """Members that escape the destination are refused."""
        archive = tmp_path / "evil.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("../escape.txt", "x")
        with pytest.raises(StorageError):
            extract_zip_archive(archive, tmp_path / "extract")

    def test_not_a_zip(self, tmp_path: Path) -> None:
        """Corrupt archives are storage errors."""
        archive = tmp_path / "bad.zip"
        archive.write_bytes(b"not a zip")
        with pytest.raises(StorageError):
            extract_zip_archive(archive, tmp_path / "extract")

    def test_latest_snapshot_dir(self, tmp_path: Path) -> None:
        """The newest stamped snapshot wins regardless of prefix."""
        make_snapshot(tmp_path, "shop_20240101_000000")
        newest = make_snapshot(tmp_path, "other_20240601_120000")
        (tmp_path / "shop_20991231_000000").mkdir()
        assert latest_snapshot_dir(tmp_path) == newest

    def test_no_snapshots(self, tmp_path: Path) -> None:
        """An empty base directory has no latest snapshot."""
        with pytest.raises(StorageError):
            latest_snapshot_dir(tmp_path)

    @pytest.mark.parametrize(
        "name,stamp",
        [
            ("shop_20240102_030405", "20240102_030405"),
            ("20240102_030405", "20240102_030405"),
            ("shop", None),
        ],
    )
    def test_snapshot_stamp(self, name: str, stamp: str | None) -> None:
        """Stamps are read from the end of the name."""
        assert snapshot_stamp(name) == stamp
