"""
Amazon S3 storage backend.

Credentials come from the standard boto3 chain (environment, shared
config, instance profile).
"""

from __future__ import annotations

import logging

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from syncdb.errors import StorageError
from syncdb.storage.base import latest_by_suffix


logger = logging.getLogger(__name__)


class S3Storage:
    """Storage in one S3 bucket, optionally under a key prefix."""

    def __init__(self, bucket: str, region: str = "", prefix: str = "", client=None) -> None:
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.client = client or boto3.client("s3", region_name=region or None)

    def _key(self, key: str) -> str:
        return f"{self.prefix}/{key}" if self.prefix else key

    def _strip(self, key: str) -> str:
        if self.prefix and key.startswith(self.prefix + "/"):
            return key[len(self.prefix) + 1:]
        return key

    def upload(self, data: bytes, key: str) -> None:
        try:
            self.client.put_object(Bucket=self.bucket, Key=self._key(key), Body=data)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError("S3 upload failed", detail=f"{key}: {exc}") from exc
        logger.info("Uploaded s3://%s/%s", self.bucket, self._key(key))

    def download(self, key: str) -> bytes:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=self._key(key))
            return response["Body"].read()
        except (BotoCoreError, ClientError) as exc:
            raise StorageError("S3 download failed", detail=f"{key}: {exc}") from exc

    def list(self, prefix: str = "") -> list[str]:
        keys: list[str] = []
        paginator = self.client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=self._key(prefix)):
                keys.extend(self._strip(obj["Key"]) for obj in page.get("Contents", []))
        except (BotoCoreError, ClientError) as exc:
            raise StorageError("S3 listing failed", detail=str(exc)) from exc
        return keys

    def latest_archive(self, prefix: str = "") -> str:
        return latest_by_suffix(self.list(prefix))
