"""
Object storage client for session audio.

Lists, downloads, uploads and deletes chunk objects and creates time-limited
download URLs for the transcription provider.

Dependencies: boto3 (any S3-compatible endpoint)
System role: storage boundary for the pipeline stages
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from consultflow.config import get_storage_endpoint_url, get_storage_region
from consultflow.errors import PipelineError, PipelineErrorCode
from consultflow.utils.paths import object_key

logger = logging.getLogger(__name__)


class StorageError(PipelineError):
    """An object storage operation failed."""

    def __init__(self, message: str):
        super().__init__(PipelineErrorCode.STORAGE_ERROR, message)


@dataclass(frozen=True)
class StoredObject:
    """One object directly under a prefix."""

    name: str
    key: str
    size: int | None = None


class S3ObjectStorage:
    """S3 client for session audio buckets."""

    def __init__(
        self,
        region: str | None = None,
        endpoint_url: str | None = None,
        client=None,
    ) -> None:
        """
        Initialize the storage client.

        Args:
            region: Optional AWS region; defaults to CONSULTFLOW_STORAGE_REGION
            endpoint_url: Optional S3-compatible endpoint override
            client: Pre-built boto3 S3 client (mainly for tests)
        """
        if client is None:
            client = boto3.client(
                "s3",
                region_name=region or get_storage_region(),
                endpoint_url=endpoint_url or get_storage_endpoint_url(),
            )
        self._s3_client = client

    def list_objects(self, bucket: str, prefix: str) -> list[StoredObject]:
        """
        List objects directly under a prefix, sorted by name ascending.

        Args:
            bucket: Bucket name
            prefix: Key prefix (without trailing slash)

        Returns:
            list[StoredObject]: Objects in lexical name order

        Raises:
            StorageError: If the listing fails
        """
        list_prefix = object_key(prefix, "")
        objects: list[StoredObject] = []
        try:
            paginator = self._s3_client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=bucket, Prefix=list_prefix, Delimiter="/"):
                for item in page.get("Contents", []):
                    name = item["Key"][len(list_prefix) :]
                    if not name:
                        continue
                    objects.append(StoredObject(name=name, key=item["Key"], size=item.get("Size")))
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to list {bucket}/{prefix}: {e}") from e

        objects.sort(key=lambda o: o.name)
        return objects

    def download(self, bucket: str, key: str, dest: Path) -> int:
        """
        Download one object to a local file.

        Returns:
            int: Number of bytes written

        Raises:
            StorageError: If the download fails
        """
        try:
            self._s3_client.download_file(bucket, key, str(dest))
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to download {bucket}/{key}: {e}") from e
        return dest.stat().st_size

    def upload(self, bucket: str, key: str, source: Path, content_type: str) -> None:
        """
        Upload a local file, overwriting any existing object.

        Raises:
            StorageError: If the upload fails
        """
        try:
            self._s3_client.upload_file(
                str(source), bucket, key, ExtraArgs={"ContentType": content_type}
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to upload {bucket}/{key}: {e}") from e

    def delete(self, bucket: str, keys: list[str]) -> None:
        """
        Delete a batch of objects.

        Raises:
            StorageError: If the request fails or any key could not be deleted
        """
        if not keys:
            return
        try:
            # DeleteObjects accepts at most 1000 keys per request
            for start in range(0, len(keys), 1000):
                batch = keys[start : start + 1000]
                response = self._s3_client.delete_objects(
                    Bucket=bucket,
                    Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                )
                errors = response.get("Errors") or []
                if errors:
                    first = errors[0]
                    raise StorageError(
                        f"Failed to delete {len(errors)} object(s) from {bucket}: "
                        f"{first.get('Key')}: {first.get('Message')}"
                    )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to delete objects from {bucket}: {e}") from e

    def create_signed_url(self, bucket: str, key: str, expires_in: int) -> str:
        """
        Generate a presigned GET URL.

        Args:
            bucket: Bucket name
            key: Object key
            expires_in: URL expiry in seconds

        Returns:
            str: Presigned URL

        Raises:
            StorageError: If URL generation fails
        """
        try:
            return self._s3_client.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to sign URL for {bucket}/{key}: {e}") from e
