"""Merge realtime row changes into an in-memory feed without duplicates."""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Generic, Iterable, TypeVar

from pydantic import BaseModel, ValidationError

from ..clients.base import ChangeFeed, Filter, RemoteStoreError, SubscriptionHandle
from ..schemas import ChangeEvent
from .mutation_service import LocalView

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class FeedAdapter(Generic[M]):
    """Keeps a newest-first ``LocalView`` in step with a table's change stream.

    Inserts are refetched through ``fetch_one`` so the entity carries its joined
    display fields, then prepended only when no entry with that id exists.
    Updates patch known fields in place without re-sorting. Deletes remove by id.
    """

    def __init__(
        self,
        feed: ChangeFeed,
        view: LocalView[M],
        *,
        table: str,
        fetch_one: Callable[[str], Awaitable[M | None]],
        filters: Iterable[Filter] = (),
    ) -> None:
        self._feed = feed
        self.view = view
        self._table = table
        self._fetch_one = fetch_one
        self._filters = tuple(filters)
        self._handle: SubscriptionHandle | None = None

    @property
    def active(self) -> bool:
        return self._handle is not None

    def start(self) -> SubscriptionHandle:
        if self._handle is None:
            self._handle = self._feed.subscribe(
                self._table,
                self._filters,
                on_insert=self.handle_insert,
                on_update=self.handle_update,
                on_delete=self.handle_delete,
            )
        return self._handle

    def stop(self) -> None:
        if self._handle is not None:
            self._feed.unsubscribe(self._handle)
            self._handle = None

    async def handle_insert(self, event: ChangeEvent) -> None:
        row_id = event.row_id
        if row_id is None or self.view.contains(row_id):
            return
        try:
            entity = await self._fetch_one(row_id)
        except RemoteStoreError as exc:
            logger.warning("Could not refetch %s %s after insert: %s", self._table, row_id, exc)
            return
        if entity is None:
            return
        # The optimistic confirmation may have landed while we were refetching.
        if self.view.contains(row_id):
            return
        self.view.insert_head(entity)

    def handle_update(self, event: ChangeEvent) -> None:
        row_id = event.row_id
        if row_id is None:
            return
        current = self.view.get(row_id)
        if current is None:
            return
        fields = type(current).model_fields
        changes: dict[str, Any] = {key: value for key, value in event.new.items() if key in fields and key != "id"}
        if not changes:
            return
        try:
            updated = type(current).model_validate({**current.model_dump(), **changes})
        except ValidationError:
            logger.warning("Ignoring malformed update for %s %s", self._table, row_id)
            return
        self.view.replace(row_id, updated)

    def handle_delete(self, event: ChangeEvent) -> None:
        row_id = event.row_id
        if row_id is not None:
            self.view.remove(row_id)


__all__ = ["FeedAdapter"]
