"""S3-compatible object storage client.

Provides existence checks, whole-object downloads to disk, byte-range
reads and deletes using boto3. Works against AWS S3 or any
S3-compatible endpoint.
"""

from __future__ import annotations

import logging
import os
from typing import BinaryIO

import boto3
from botocore.exceptions import ClientError

from session_transcriber.utils.errors import AudioFetchError, StorageError

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "Unknown")


class S3Client:
    """S3-compatible client for uploaded session media.

    Reads configuration from environment variables:
        S3_BUCKET, S3_ENDPOINT (optional), S3_REGION,
        AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY
    """

    def __init__(
        self,
        bucket: str | None = None,
        endpoint_url: str | None = None,
        region: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
    ) -> None:
        self.bucket = bucket or os.environ.get("S3_BUCKET", "")
        self.endpoint_url = endpoint_url or os.environ.get("S3_ENDPOINT") or None
        self.region = region or os.environ.get("S3_REGION", "us-east-1")
        self.access_key_id = access_key_id or os.environ.get(
            "AWS_ACCESS_KEY_ID", ""
        )
        self.secret_access_key = secret_access_key or os.environ.get(
            "AWS_SECRET_ACCESS_KEY", ""
        )

        if not self.bucket:
            raise StorageError("S3_BUCKET is required", operation="init")

        client_kwargs: dict = {"region_name": self.region}
        if self.endpoint_url:
            client_kwargs["endpoint_url"] = self.endpoint_url
        if self.access_key_id and self.secret_access_key:
            client_kwargs["aws_access_key_id"] = self.access_key_id
            client_kwargs["aws_secret_access_key"] = self.secret_access_key
        self._client = boto3.client("s3", **client_kwargs)

    def exists(self, key: str) -> bool:
        """Return True if an object exists under ``key``.

        Raises:
            StorageError: On any error other than "not found".
        """
        try:
            self._client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as exc:
            code = _error_code(exc)
            if code in _NOT_FOUND_CODES:
                return False
            raise StorageError(
                f"Failed to check S3 object '{key}': {code}",
                operation="exists",
            ) from exc

    def object_size(self, key: str) -> int:
        """Return the object's size in bytes."""
        try:
            response = self._client.head_object(Bucket=self.bucket, Key=key)
            return int(response["ContentLength"])
        except ClientError as exc:
            raise AudioFetchError(
                f"Failed to stat S3 object '{key}': {_error_code(exc)}",
                key=key,
            ) from exc

    def download_to_path(self, key: str, dest_path: str) -> str:
        """Download a whole object to a local file, streaming to disk.

        Returns:
            The destination path.

        Raises:
            AudioFetchError: If the object cannot be retrieved.
        """
        os.makedirs(os.path.dirname(dest_path) or ".", exist_ok=True)
        try:
            self._client.download_file(self.bucket, key, dest_path)
        except ClientError as exc:
            if os.path.exists(dest_path):
                os.remove(dest_path)
            raise AudioFetchError(
                f"Failed to download S3 object '{key}': {_error_code(exc)}",
                key=key,
            ) from exc
        return dest_path

    def fetch_range(self, key: str, start: int, end: int) -> bytes:
        """Read bytes ``start..end`` (inclusive) of an object.

        Raises:
            AudioFetchError: If the range cannot be retrieved.
        """
        try:
            response = self._client.get_object(
                Bucket=self.bucket, Key=key, Range=f"bytes={start}-{end}"
            )
            return response["Body"].read()
        except ClientError as exc:
            raise AudioFetchError(
                f"Failed to fetch range {start}-{end} of S3 object '{key}': "
                f"{_error_code(exc)}",
                key=key,
            ) from exc

    def copy_range_to(
        self, key: str, start: int, end: int, dest: BinaryIO
    ) -> int:
        """Write bytes ``start..end`` of an object into an open file.

        Returns:
            Number of bytes written.
        """
        data = self.fetch_range(key, start, end)
        dest.write(data)
        return len(data)

    def delete_object(self, key: str) -> None:
        """Delete an object.

        Raises:
            StorageError: If the object cannot be deleted.
        """
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            raise StorageError(
                f"Failed to delete S3 object '{key}': {_error_code(exc)}",
                operation="delete_object",
            ) from exc
