"""Contracts for the remote collaborators the sync core depends on.

The core only ever talks to these abstractions: a relational store with
row-level filtering, a realtime change feed, and blob storage. Authorization
rejections raised by the backend's row-level policies surface as ordinary
:class:`RemoteStoreError` instances; the core never distinguishes them.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Literal, Sequence, TypeVar

from voxspace.schemas import ChangeEvent

FilterOp = Literal["eq", "neq", "gt", "gte", "lt", "lte", "in", "is"]

T = TypeVar("T")


class RemoteStoreError(RuntimeError):
    """Raised when the remote store rejects or fails an operation."""

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class DuplicateKeyError(RemoteStoreError):
    """Raised when an insert collides with an existing unique key."""

    def __init__(self, message: str = "duplicate key value violates unique constraint") -> None:
        super().__init__(message, code="23505")


class RemoteTimeoutError(RemoteStoreError):
    """Raised when a remote call does not complete within its time budget."""


@dataclass(frozen=True)
class Filter:
    column: str
    op: FilterOp
    value: Any

    def matches(self, row: dict[str, Any]) -> bool:
        """Evaluate the predicate against a plain row (used by the realtime hub)."""

        actual = row.get(self.column)
        if self.op == "eq":
            return actual == self.value
        if self.op == "neq":
            return actual != self.value
        if self.op == "is":
            return actual is self.value
        if self.op == "in":
            return actual in self.value
        if actual is None:
            return False
        if self.op == "gt":
            return actual > self.value
        if self.op == "gte":
            return actual >= self.value
        if self.op == "lt":
            return actual < self.value
        if self.op == "lte":
            return actual <= self.value
        raise ValueError(f"Unsupported filter operator {self.op!r}")


@dataclass(frozen=True)
class Order:
    column: str
    ascending: bool = True


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


async def with_timeout(awaitable: Awaitable[T], seconds: float | None) -> T:
    """Await ``awaitable`` within ``seconds``; a timeout becomes a remote failure."""

    if seconds is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError as exc:
        raise RemoteTimeoutError(f"Remote call exceeded {seconds:.1f}s") from exc


class RemoteStore(ABC):
    """Relational store with row-level filtering."""

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order: Sequence[Order] = (),
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        ...

    @abstractmethod
    async def update(self, table: str, filters: Sequence[Filter], patch: dict[str, Any]) -> int:
        """Apply ``patch`` to matching rows; zero matches is not an error."""

    @abstractmethod
    async def delete(self, table: str, filters: Sequence[Filter]) -> int:
        """Delete matching rows; zero matches is not an error."""

    @abstractmethod
    async def upsert_ignore(self, table: str, rows: Sequence[dict[str, Any]]) -> int:
        """Insert rows whose primary key is absent and skip the rest; returns inserted count."""

    @abstractmethod
    async def get_or_create_dm(self, user_id: str, target_user_id: str) -> str:
        """Return the id of the direct-message chat between two users, creating it if needed."""

    async def select_one(self, table: str, filters: Sequence[Filter]) -> dict[str, Any] | None:
        rows = await self.select(table, filters, limit=1)
        return rows[0] if rows else None


ChangeHandler = Callable[[ChangeEvent], Any]


@dataclass(frozen=True)
class SubscriptionHandle:
    id: int
    table: str


class ChangeFeed(ABC):
    """Realtime row-change subscription; delivery is at-least-once and unordered across rows."""

    @abstractmethod
    def subscribe(
        self,
        table: str,
        filters: Iterable[Filter] = (),
        *,
        on_insert: ChangeHandler | None = None,
        on_update: ChangeHandler | None = None,
        on_delete: ChangeHandler | None = None,
    ) -> SubscriptionHandle:
        ...

    @abstractmethod
    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        ...


class BlobStorage(ABC):
    """Object storage for story media and attachments."""

    @abstractmethod
    async def upload(self, bucket: str, path: str, data: bytes, *, content_type: str = "application/octet-stream") -> None:
        ...

    @abstractmethod
    def get_public_url(self, bucket: str, path: str) -> str:
        ...


__all__ = [
    "BlobStorage",
    "ChangeFeed",
    "DuplicateKeyError",
    "Filter",
    "FilterOp",
    "ChangeHandler",
    "Order",
    "RemoteStore",
    "RemoteStoreError",
    "RemoteTimeoutError",
    "SubscriptionHandle",
    "eq",
    "with_timeout",
]
