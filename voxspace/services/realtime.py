"""In-process realtime hub: row-change fan-out plus WebSocket broadcast.

The hub implements the :class:`~voxspace.clients.base.ChangeFeed` contract for
the SQL-backed store and relays every change event to connected WebSocket
clients, so a companion UI sees the same stream the adapters consume.
"""
from __future__ import annotations

import asyncio
import inspect
import itertools
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from fastapi import WebSocket

from ..clients.base import ChangeFeed, ChangeHandler, Filter, SubscriptionHandle
from ..schemas import ChangeEvent, ChangeType

logger = logging.getLogger(__name__)


@dataclass
class _Subscription:
    handle: SubscriptionHandle
    filters: tuple[Filter, ...]
    handlers: dict[ChangeType, ChangeHandler] = field(default_factory=dict)

    def accepts(self, event: ChangeEvent) -> bool:
        if event.type is ChangeType.DELETE:
            # Delete payloads may only carry the primary key.
            row = event.old
            return all(f.matches(row) for f in self.filters if f.column in row)
        return all(f.matches(event.new) for f in self.filters)


class WebSocketManager:
    """Tracks active WebSocket connections and broadcasts JSON payloads."""

    def __init__(self) -> None:
        self._connections: set[WebSocket] = set()
        self._lock = asyncio.Lock()

    @property
    def has_connections(self) -> bool:
        return bool(self._connections)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections.add(websocket)

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections.discard(websocket)

    async def broadcast(self, message: dict[str, Any]) -> None:
        payload = json.dumps(message, default=str)
        async with self._lock:
            targets = list(self._connections)
        for connection in targets:
            try:
                await connection.send_text(payload)
            except Exception:
                logger.debug("Dropping WebSocket connection after failed send", exc_info=True)
                await self.disconnect(connection)


class RealtimeHub(ChangeFeed):
    """Delivers committed row changes to matching subscribers."""

    def __init__(self, sockets: WebSocketManager | None = None) -> None:
        self.sockets = sockets or WebSocketManager()
        self._subscriptions: dict[int, _Subscription] = {}
        self._ids = itertools.count(1)
        self._pending: set[asyncio.Task[Any]] = set()

    def subscribe(
        self,
        table: str,
        filters: Iterable[Filter] = (),
        *,
        on_insert: ChangeHandler | None = None,
        on_update: ChangeHandler | None = None,
        on_delete: ChangeHandler | None = None,
    ) -> SubscriptionHandle:
        handle = SubscriptionHandle(id=next(self._ids), table=table)
        handlers = {
            change: handler
            for change, handler in (
                (ChangeType.INSERT, on_insert),
                (ChangeType.UPDATE, on_update),
                (ChangeType.DELETE, on_delete),
            )
            if handler is not None
        }
        self._subscriptions[handle.id] = _Subscription(handle=handle, filters=tuple(filters), handlers=handlers)
        logger.debug("Subscribed %s to %s", handle.id, table)
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        self._subscriptions.pop(handle.id, None)

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, event: ChangeEvent) -> None:
        """Fan ``event`` out to subscribers; coroutine handlers run as tasks."""

        for subscription in list(self._subscriptions.values()):
            if subscription.handle.table != event.table:
                continue
            handler = subscription.handlers.get(event.type)
            if handler is None or not subscription.accepts(event):
                continue
            try:
                result = handler(event)
            except Exception:
                logger.exception("Change handler for %s failed", event.table)
                continue
            if inspect.isawaitable(result):
                self._track(result)
        if self.sockets.has_connections:
            self._track(self.sockets.broadcast(event.model_dump(mode="json")))

    def _track(self, awaitable: Any) -> None:
        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Change handler task failed", exc_info=exc)

    async def drain(self) -> None:
        """Wait until every handler task scheduled so far (and their follow-ups) completes."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


__all__ = ["RealtimeHub", "WebSocketManager"]
