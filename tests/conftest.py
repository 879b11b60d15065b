"""Shared fixtures: an in-memory remote store, realtime hub and local mirror."""
from __future__ import annotations

import os
from typing import Any, Iterator, Sequence

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")
os.environ.setdefault("MIRROR_DATABASE_URL", "sqlite+pysqlite://")
os.environ["SUPABASE_URL"] = ""
os.environ["SUPABASE_ANON_KEY"] = ""

import pytest  # noqa: E402
from sqlalchemy.engine import Engine  # noqa: E402

from voxspace.clients import Filter, Order, RemoteStore, RemoteStoreError, SqlRemoteStore  # noqa: E402
from voxspace.clients.base import BlobStorage  # noqa: E402
from voxspace.database import Base, build_engine  # noqa: E402
from voxspace.services import LocalMirrorStore, RealtimeHub  # noqa: E402


class FlakyRemoteStore(RemoteStore):
    """Delegates to a real store, raising injected failures for chosen calls."""

    def __init__(self, inner: RemoteStore) -> None:
        self.inner = inner
        self.calls: list[tuple[str, str]] = []
        self._failures: dict[tuple[str, str | None], type[RemoteStoreError]] = {}

    def fail(self, method: str, table: str | None = None, error: type[RemoteStoreError] = RemoteStoreError) -> None:
        self._failures[(method, table)] = error

    def heal(self) -> None:
        self._failures.clear()

    def count(self, method: str, table: str | None = None) -> int:
        return sum(1 for call in self.calls if call[0] == method and (table is None or call[1] == table))

    def _check(self, method: str, table: str) -> None:
        self.calls.append((method, table))
        error = self._failures.get((method, table)) or self._failures.get((method, None))
        if error is not None:
            raise error(f"injected {method} failure on {table}")

    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order: Sequence[Order] = (),
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        self._check("select", table)
        return await self.inner.select(table, filters, order, limit=limit, offset=offset)

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        self._check("insert", table)
        return await self.inner.insert(table, row)

    async def update(self, table: str, filters: Sequence[Filter], patch: dict[str, Any]) -> int:
        self._check("update", table)
        return await self.inner.update(table, filters, patch)

    async def delete(self, table: str, filters: Sequence[Filter]) -> int:
        self._check("delete", table)
        return await self.inner.delete(table, filters)

    async def upsert_ignore(self, table: str, rows: Sequence[dict[str, Any]]) -> int:
        self._check("upsert_ignore", table)
        return await self.inner.upsert_ignore(table, rows)

    async def get_or_create_dm(self, user_id: str, target_user_id: str) -> str:
        self._check("rpc", "get_or_create_dm")
        return await self.inner.get_or_create_dm(user_id, target_user_id)


class FakeBlobStorage(BlobStorage):
    def __init__(self) -> None:
        self.uploads: dict[tuple[str, str], tuple[bytes, str]] = {}

    async def upload(self, bucket: str, path: str, data: bytes, *, content_type: str = "application/octet-stream") -> None:
        self.uploads[(bucket, path)] = (data, content_type)

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"https://cdn.test/{bucket}/{path}"


@pytest.fixture
def engine() -> Iterator[Engine]:
    engine = build_engine("sqlite+pysqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def hub() -> RealtimeHub:
    return RealtimeHub()


@pytest.fixture
def store(engine: Engine, hub: RealtimeHub) -> SqlRemoteStore:
    return SqlRemoteStore(engine, hub=hub)


@pytest.fixture
def flaky(store: SqlRemoteStore) -> FlakyRemoteStore:
    return FlakyRemoteStore(store)


@pytest.fixture
def mirror() -> Iterator[LocalMirrorStore]:
    mirror = LocalMirrorStore("sqlite+pysqlite://")
    yield mirror


@pytest.fixture
def blobs() -> FakeBlobStorage:
    return FakeBlobStorage()
