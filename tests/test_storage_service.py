"""Tests for blob storage configuration and uploads."""
from __future__ import annotations

from typing import Any, Iterator

import pytest
from botocore.exceptions import ClientError

from voxspace.config import get_settings
from voxspace.services import storage_service
from voxspace.services.storage_service import (
    S3BlobStorage,
    StorageConfig,
    StorageConfigurationError,
    StorageUploadError,
    load_storage_config,
    safe_object_name,
)

CONFIG = StorageConfig(
    key="key",
    secret="secret",
    region="us-east-1",
    api_endpoint="https://s3.test",
    public_endpoint="https://cdn.test",
)


class RecordingClient:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[dict[str, Any]] = []

    def upload_fileobj(self, fileobj, bucket: str, key: str, ExtraArgs: dict[str, Any]) -> None:  # noqa: N803
        if self.error is not None:
            raise self.error
        self.calls.append({"data": fileobj.read(), "bucket": bucket, "key": key, "extra": ExtraArgs})


@pytest.fixture(autouse=True)
def _reset_cached_config() -> Iterator[None]:
    get_settings.cache_clear()
    storage_service.get_storage_client.cache_clear()
    yield
    get_settings.cache_clear()
    storage_service.get_storage_client.cache_clear()


def test_missing_endpoint_is_a_configuration_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("STORAGE_ENDPOINT", raising=False)
    with pytest.raises(StorageConfigurationError):
        load_storage_config()


def test_missing_credentials_are_a_configuration_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STORAGE_ENDPOINT", "https://s3.test")
    monkeypatch.delenv("STORAGE_KEY", raising=False)
    monkeypatch.delenv("STORAGE_SECRET", raising=False)
    with pytest.raises(StorageConfigurationError):
        load_storage_config()


def test_bare_host_endpoint_gets_a_scheme(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STORAGE_ENDPOINT", "minio.local:9000/")
    monkeypatch.setenv("STORAGE_KEY", "access")
    monkeypatch.setenv("STORAGE_SECRET", "very-secret")
    monkeypatch.delenv("STORAGE_PUBLIC_BASE_URL", raising=False)

    config = load_storage_config()

    assert config.api_endpoint == "https://minio.local:9000"
    assert config.public_endpoint == "https://minio.local:9000"
    assert (config.key, config.secret) == ("access", "very-secret")


@pytest.mark.asyncio
async def test_upload_sends_bytes_with_content_type() -> None:
    client = RecordingClient()
    storage = S3BlobStorage(client=client, config=CONFIG)  # type: ignore[arg-type]

    await storage.upload("stories", "/alice/1_photo.png", b"png-bytes", content_type="image/png")

    assert client.calls == [
        {"data": b"png-bytes", "bucket": "stories", "key": "alice/1_photo.png", "extra": {"ContentType": "image/png"}}
    ]
    assert storage.get_public_url("stories", "alice/1_photo.png") == "https://cdn.test/stories/alice/1_photo.png"


@pytest.mark.asyncio
async def test_upload_failures_are_wrapped() -> None:
    error = ClientError({"Error": {"Code": "AccessDenied", "Message": "nope"}}, "PutObject")
    storage = S3BlobStorage(client=RecordingClient(error), config=CONFIG)  # type: ignore[arg-type]

    with pytest.raises(StorageUploadError):
        await storage.upload("stories", "alice/x.png", b"x")
    with pytest.raises(StorageUploadError):
        await storage.upload("stories", "/", b"x")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("beach day.png", "beach-day.png"), ("../../etc/passwd", "..-..-etc-passwd"), ("  ", "upload"), ("ok_name-1.mp4", "ok_name-1.mp4")],
)
def test_safe_object_name(raw: str, expected: str) -> None:
    assert safe_object_name(raw) == expected
