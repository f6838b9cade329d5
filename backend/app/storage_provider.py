"""Pluggable content-addressed object storage for uploaded documents."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Protocol

from app.errors import StorageError
from app.settings import settings

logger = logging.getLogger(__name__)


def ensure_dir(path: Path) -> Path:
    """Create directory if needed and return it."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def content_key(data: bytes, filename: str = "") -> str:
    """Derive the storage key for a blob from its digest."""
    suffix = Path(filename).suffix.lower()
    return f"documents/{hashlib.sha256(data).hexdigest()}{suffix}"


class StorageProvider(Protocol):
    def put(self, data: bytes, content_type: str, filename: str = "") -> str:
        """Persist bytes and return the storage key."""

    def get(self, key: str) -> bytes:
        """Return the bytes stored under key."""


class LocalDiskProvider:
    """Stores objects under data_path/objects for local development."""

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = ensure_dir(base_dir)

    def _resolve(self, key: str) -> Path:
        clean_key = key.strip("/")
        destination = (self.base_dir / clean_key).resolve()
        if self.base_dir.resolve() not in destination.parents and destination != self.base_dir.resolve():
            raise StorageError("Invalid storage key")
        return destination

    def put(self, data: bytes, content_type: str, filename: str = "") -> str:
        del content_type
        key = content_key(data, filename)
        destination = self._resolve(key)
        if destination.exists():
            return key
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Could not write object {key}: {exc}") from exc
        return key

    def get(self, key: str) -> bytes:
        try:
            return self._resolve(key).read_bytes()
        except OSError as exc:
            raise StorageError(f"Could not read object {key}: {exc}") from exc


class S3Provider:
    """S3-compatible object storage provider."""

    def __init__(
        self,
        bucket: str,
        access_key_id: str,
        secret_access_key: str,
        endpoint_url: str | None = None,
        region: str | None = None,
    ) -> None:
        self.bucket = bucket
        import boto3

        self._client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )

    def put(self, data: bytes, content_type: str, filename: str = "") -> str:
        from botocore.exceptions import BotoCoreError, ClientError

        key = content_key(data, filename)
        try:
            self._client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Could not upload object {key}: {exc}") from exc
        return key

    def get(self, key: str) -> bytes:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Could not download object {key}: {exc}") from exc


_provider: StorageProvider | None = None


def _create_provider() -> StorageProvider:
    backend = settings.storage_backend.lower().strip()
    if backend == "s3":
        if not settings.s3_bucket or not settings.s3_access_key_id or not settings.s3_secret_access_key:
            raise RuntimeError("S3 storage backend requires S3_BUCKET, S3_ACCESS_KEY_ID, and S3_SECRET_ACCESS_KEY")
        return S3Provider(
            bucket=settings.s3_bucket,
            access_key_id=settings.s3_access_key_id,
            secret_access_key=settings.s3_secret_access_key,
            endpoint_url=settings.s3_endpoint_url,
            region=settings.s3_region,
        )
    return LocalDiskProvider(settings.data_path / "objects")


def get_storage_provider() -> StorageProvider:
    global _provider
    if _provider is None:
        _provider = _create_provider()
        logger.info("storage provider ready", extra={"backend": settings.storage_backend})
    return _provider


def reset_storage_provider() -> None:
    global _provider
    _provider = None
