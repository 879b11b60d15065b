"""S3-compatible blob storage for story media and chat attachments."""
from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from urllib.parse import urlparse

from boto3.session import Session
from botocore.client import BaseClient
from botocore.exceptions import BotoCoreError, ClientError
from fastapi.concurrency import run_in_threadpool

from ..clients.base import BlobStorage
from ..config import get_settings
from ..security.secrets import MissingSecretError, is_placeholder, require_secret

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageConfig:
    """Runtime configuration extracted from settings and secrets."""

    key: str
    secret: str
    region: str
    api_endpoint: str
    public_endpoint: str


class StorageConfigurationError(RuntimeError):
    """Raised when required storage settings are missing or invalid."""


class StorageUploadError(RuntimeError):
    """Raised when an upload to blob storage fails."""


def load_storage_config() -> StorageConfig:
    settings = get_settings()
    endpoint_raw = (settings.storage_endpoint or "").strip()
    if is_placeholder(endpoint_raw):
        raise StorageConfigurationError("STORAGE_ENDPOINT must point to an S3-compatible endpoint")
    try:
        key = settings.storage_key or require_secret("STORAGE_KEY")
        secret = settings.storage_secret or require_secret("STORAGE_SECRET")
    except MissingSecretError as exc:
        raise StorageConfigurationError(str(exc)) from exc

    if "://" not in endpoint_raw:
        endpoint_raw = f"https://{endpoint_raw.lstrip(':/')}"
    parsed = urlparse(endpoint_raw)
    if not (parsed.netloc or parsed.path):
        raise StorageConfigurationError("STORAGE_ENDPOINT must include a hostname.")
    api_endpoint = parsed.geturl().rstrip("/")
    public_endpoint = (settings.storage_public_base_url or api_endpoint).rstrip("/")

    return StorageConfig(
        key=key,
        secret=secret,
        region=settings.storage_region,
        api_endpoint=api_endpoint,
        public_endpoint=public_endpoint,
    )


@lru_cache(maxsize=1)
def get_storage_client() -> BaseClient:
    """Create a singleton boto3 client for blob storage."""

    config = load_storage_config()
    session = Session()
    return session.client(
        "s3",
        region_name=config.region,
        endpoint_url=config.api_endpoint,
        aws_access_key_id=config.key,
        aws_secret_access_key=config.secret,
    )


def safe_object_name(name: str) -> str:
    """Reduce a user-supplied file name to characters safe for an object key."""

    cleaned = re.sub(r"[^A-Za-z0-9._-]", "-", (name or "").strip())
    cleaned = re.sub(r"-+", "-", cleaned).strip("-")
    return cleaned or "upload"


class S3BlobStorage(BlobStorage):
    def __init__(self, client: BaseClient | None = None, config: StorageConfig | None = None) -> None:
        self._config = config or load_storage_config()
        self._client = client

    @property
    def client(self) -> BaseClient:
        if self._client is None:
            self._client = get_storage_client()
        return self._client

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
    ) -> None:
        key = path.lstrip("/")
        if not key:
            raise StorageUploadError("Invalid object key for upload")

        def _upload() -> None:
            try:
                self.client.upload_fileobj(
                    io.BytesIO(data),
                    bucket,
                    key,
                    ExtraArgs={"ContentType": content_type or "application/octet-stream"},
                )
            except (ClientError, BotoCoreError) as exc:
                logger.exception("Upload to %s/%s failed", bucket, key)
                raise StorageUploadError("Upload to blob storage failed") from exc

        await run_in_threadpool(_upload)

    def get_public_url(self, bucket: str, path: str) -> str:
        key = path.lstrip("/")
        return f"{self._config.public_endpoint}/{bucket}/{key}"


__all__ = [
    "S3BlobStorage",
    "StorageConfig",
    "StorageConfigurationError",
    "StorageUploadError",
    "get_storage_client",
    "load_storage_config",
    "safe_object_name",
]
