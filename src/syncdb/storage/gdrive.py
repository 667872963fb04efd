"""
Google Drive storage backend.

Authenticates with a service account credentials file. Keys are file
names inside one Drive folder.
"""

from __future__ import annotations

import io
import logging
from pathlib import Path

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseDownload, MediaIoBaseUpload

from syncdb.errors import StorageError
from syncdb.storage.base import latest_by_suffix


logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/drive"]


class GoogleDriveStorage:
    """Storage in one Google Drive folder."""

    def __init__(self, credentials_file: Path | str | None, folder_id: str, service=None) -> None:
        self.folder_id = folder_id
        if service is None:
            if not credentials_file:
                raise StorageError("Google Drive credentials file is required")
            credentials = service_account.Credentials.from_service_account_file(
                str(credentials_file),
                scopes=SCOPES,
            )
            service = build("drive", "v3", credentials=credentials, cache_discovery=False)
        self.service = service

    def _find(self, key: str) -> str | None:
        name = key.replace("'", "\\'")
        response = self.service.files().list(
            q=f"name = '{name}' and '{self.folder_id}' in parents and trashed = false",
            fields="files(id, name)",
        ).execute()
        files = response.get("files", [])
        return files[0]["id"] if files else None

    def upload(self, data: bytes, key: str) -> None:
        media = MediaIoBaseUpload(io.BytesIO(data), mimetype="application/zip", resumable=True)
        try:
            existing = self._find(key)
            if existing:
                self.service.files().update(fileId=existing, media_body=media).execute()
            else:
                metadata = {"name": key, "parents": [self.folder_id]}
                self.service.files().create(body=metadata, media_body=media, fields="id").execute()
        except HttpError as exc:
            raise StorageError("Google Drive upload failed", detail=f"{key}: {exc}") from exc
        logger.info("Uploaded %s to Google Drive folder %s", key, self.folder_id)

    def download(self, key: str) -> bytes:
        try:
            file_id = self._find(key)
            if file_id is None:
                raise StorageError("File not found in Google Drive folder", detail=key)
            buffer = io.BytesIO()
            downloader = MediaIoBaseDownload(buffer, self.service.files().get_media(fileId=file_id))
            done = False
            while not done:
                _, done = downloader.next_chunk()
        except HttpError as exc:
            raise StorageError("Google Drive download failed", detail=f"{key}: {exc}") from exc
        return buffer.getvalue()

    def list(self, prefix: str = "") -> list[str]:
        names: list[str] = []
        page_token = None
        try:
            while True:
                response = self.service.files().list(
                    q=f"'{self.folder_id}' in parents and trashed = false",
                    fields="nextPageToken, files(id, name)",
                    pageToken=page_token,
                ).execute()
                names.extend(f["name"] for f in response.get("files", []))
                page_token = response.get("nextPageToken")
                if not page_token:
                    break
        except HttpError as exc:
            raise StorageError("Google Drive listing failed", detail=str(exc)) from exc
        return sorted(n for n in names if n.startswith(prefix))

    def latest_archive(self, prefix: str = "") -> str:
        return latest_by_suffix(self.list(prefix))
