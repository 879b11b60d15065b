"""Optimistic mutation coordinator.

``MutationCoordinator.apply`` changes the in-memory :class:`LocalView`
synchronously and dispatches the same mutation to the remote store on the
running event loop. A confirmed create remaps its placeholder id to the
server id; a failed dispatch restores the per-entity snapshot taken before the
local change and reports a :class:`MutationFailed` to the error notifier.
Failures are never retried.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Iterable, Iterator, Literal, TypeVar, Union

from pydantic import BaseModel

from ..clients.base import DuplicateKeyError, RemoteStore, RemoteStoreError, eq, with_timeout
from ..schemas import SyncState, TemporaryId, is_temporary

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

Position = Literal["head", "tail"]


class LocalView(Generic[M]):
    """Ordered in-memory list of entities keyed by their ``id`` field."""

    def __init__(self, items: Iterable[M] = ()) -> None:
        self._items: list[M] = list(items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[M]:
        return iter(list(self._items))

    @property
    def items(self) -> list[M]:
        return list(self._items)

    def ids(self) -> list[str]:
        return [str(item.id) for item in self._items]  # type: ignore[attr-defined]

    def index_of(self, entity_id: str) -> int | None:
        for index, item in enumerate(self._items):
            if str(item.id) == entity_id:  # type: ignore[attr-defined]
                return index
        return None

    def contains(self, entity_id: str) -> bool:
        return self.index_of(entity_id) is not None

    def get(self, entity_id: str) -> M | None:
        index = self.index_of(entity_id)
        return self._items[index] if index is not None else None

    def insert_head(self, item: M) -> None:
        self._items.insert(0, item)

    def insert_at(self, index: int, item: M) -> None:
        self._items.insert(max(0, min(index, len(self._items))), item)

    def append(self, item: M) -> None:
        self._items.append(item)

    def replace(self, entity_id: str, item: M) -> bool:
        index = self.index_of(entity_id)
        if index is None:
            return False
        self._items[index] = item
        return True

    def patch(self, entity_id: str, changes: dict[str, Any]) -> M | None:
        current = self.get(entity_id)
        if current is None:
            return None
        updated = current.model_copy(update=changes)
        self.replace(entity_id, updated)
        return updated

    def remove(self, entity_id: str) -> M | None:
        index = self.index_of(entity_id)
        if index is None:
            return None
        return self._items.pop(index)

    def reset(self, items: Iterable[M]) -> None:
        self._items = list(items)


@dataclass
class CreateItem:
    table: str
    row: dict[str, Any]
    placeholder: BaseModel
    # Builds the confirmed entity from the inserted row; defaults to re-keying the placeholder
    resolve: Callable[[dict[str, Any]], Union[BaseModel, Awaitable[BaseModel]]] | None = None
    position: Position = "head"


@dataclass
class UpdateItem:
    table: str
    entity_id: str
    patch: dict[str, Any]
    row_patch: dict[str, Any] | None = None
    key_column: str = "id"


@dataclass
class DeleteItem:
    table: str
    entity_id: str
    key_column: str = "id"


@dataclass
class ToggleRelation:
    """Flip a boolean relation (like, follow) and its denormalised counter."""

    relation_table: str
    entity_id: str
    relation_row: dict[str, Any]
    flag_field: str = "is_liked"
    counter_field: str | None = "likes_count"


Mutation = Union[CreateItem, UpdateItem, DeleteItem, ToggleRelation]


class Operation(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class Snapshot:
    entity: BaseModel | None
    index: int | None


@dataclass(eq=False)
class SyncQueueEntry:
    local_id: str
    operation: Operation
    target_table: str
    payload: dict[str, Any]
    rollback: Snapshot
    state: SyncState = SyncState.PENDING
    server_id: str | None = None
    error: BaseException | None = None
    task: asyncio.Task[None] | None = field(default=None, repr=False)


class MutationFailed(RuntimeError):
    """Delivered to the error notifier once a mutation has been rolled back."""

    def __init__(self, entry: SyncQueueEntry, cause: BaseException) -> None:
        super().__init__(f"{entry.operation.value} on {entry.target_table} failed: {cause}")
        self.entry = entry
        self.cause = cause


ErrorNotifier = Callable[[MutationFailed], Any]


class MutationCoordinator(Generic[M]):
    def __init__(
        self,
        store: RemoteStore,
        view: LocalView[M],
        *,
        on_error: ErrorNotifier | None = None,
        timeout: float | None = None,
    ) -> None:
        self._store = store
        self.view = view
        self._on_error = on_error
        self._timeout = timeout
        self._entity_locks: dict[str, asyncio.Lock] = {}
        # Holders plus waiters per entity; a lock is dropped only when nobody references it.
        self._lock_refs: dict[str, int] = {}
        self._in_flight: dict[int, SyncQueueEntry] = {}

    @property
    def pending(self) -> list[SyncQueueEntry]:
        return list(self._in_flight.values())

    # -- local application -------------------------------------------------

    def apply(self, mutation: Mutation) -> SyncQueueEntry:
        """Apply ``mutation`` to the view now and dispatch it remotely in the background."""

        if isinstance(mutation, CreateItem):
            entry = self._apply_create(mutation)
        elif isinstance(mutation, UpdateItem):
            entry = self._apply_update(mutation)
        elif isinstance(mutation, DeleteItem):
            entry = self._apply_delete(mutation)
        elif isinstance(mutation, ToggleRelation):
            entry = self._apply_toggle(mutation)
        else:
            raise TypeError(f"Unsupported mutation {type(mutation).__name__}")

        entry.task = asyncio.get_running_loop().create_task(self._dispatch(entry, mutation))
        self._in_flight[id(entry)] = entry
        return entry

    def _apply_create(self, mutation: CreateItem) -> SyncQueueEntry:
        local_id = str(mutation.placeholder.id)  # type: ignore[attr-defined]
        if not is_temporary(local_id):
            raise ValueError(f"Optimistic creates need a placeholder id, got {local_id!r}")
        placeholder = mutation.placeholder
        if "sync_state" in type(placeholder).model_fields:
            placeholder = placeholder.model_copy(update={"sync_state": SyncState.PENDING})
        if mutation.position == "head":
            self.view.insert_head(placeholder)  # type: ignore[arg-type]
        else:
            self.view.append(placeholder)  # type: ignore[arg-type]
        return SyncQueueEntry(
            local_id=local_id,
            operation=Operation.INSERT,
            target_table=mutation.table,
            payload=dict(mutation.row),
            rollback=Snapshot(entity=None, index=None),
        )

    def _snapshot(self, entity_id: str) -> Snapshot:
        index = self.view.index_of(entity_id)
        entity = self.view.get(entity_id)
        return Snapshot(entity=entity.model_copy(deep=True) if entity is not None else None, index=index)

    def _apply_update(self, mutation: UpdateItem) -> SyncQueueEntry:
        snapshot = self._snapshot(mutation.entity_id)
        self.view.patch(mutation.entity_id, mutation.patch)
        return SyncQueueEntry(
            local_id=mutation.entity_id,
            operation=Operation.UPDATE,
            target_table=mutation.table,
            payload=dict(mutation.row_patch if mutation.row_patch is not None else mutation.patch),
            rollback=snapshot,
        )

    def _apply_delete(self, mutation: DeleteItem) -> SyncQueueEntry:
        snapshot = self._snapshot(mutation.entity_id)
        self.view.remove(mutation.entity_id)
        return SyncQueueEntry(
            local_id=mutation.entity_id,
            operation=Operation.DELETE,
            target_table=mutation.table,
            payload={mutation.key_column: mutation.entity_id},
            rollback=snapshot,
        )

    def _apply_toggle(self, mutation: ToggleRelation) -> SyncQueueEntry:
        current = self.view.get(mutation.entity_id)
        if current is None:
            raise LookupError(f"{mutation.entity_id} is not in the local view")
        snapshot = self._snapshot(mutation.entity_id)
        turning_on = not bool(getattr(current, mutation.flag_field))
        changes: dict[str, Any] = {mutation.flag_field: turning_on}
        if mutation.counter_field is not None:
            count = int(getattr(current, mutation.counter_field) or 0)
            changes[mutation.counter_field] = count + 1 if turning_on else max(0, count - 1)
        self.view.patch(mutation.entity_id, changes)
        return SyncQueueEntry(
            local_id=mutation.entity_id,
            operation=Operation.INSERT if turning_on else Operation.DELETE,
            target_table=mutation.relation_table,
            payload=dict(mutation.relation_row),
            rollback=snapshot,
        )

    # -- remote dispatch ---------------------------------------------------

    async def _send(self, entry: SyncQueueEntry, mutation: Mutation) -> dict[str, Any] | None:
        if isinstance(mutation, CreateItem):
            return await self._store.insert(mutation.table, entry.payload)
        if isinstance(mutation, UpdateItem):
            await self._store.update(mutation.table, [eq(mutation.key_column, mutation.entity_id)], entry.payload)
            return None
        if isinstance(mutation, DeleteItem):
            await self._store.delete(mutation.table, [eq(mutation.key_column, mutation.entity_id)])
            return None
        if entry.operation is Operation.INSERT:
            try:
                await self._store.insert(mutation.relation_table, entry.payload)
            except DuplicateKeyError:
                logger.debug("Relation %s already present; treating as applied", mutation.relation_table)
            return None
        await self._store.delete(mutation.relation_table, [eq(key, value) for key, value in entry.payload.items()])
        return None

    async def _dispatch(self, entry: SyncQueueEntry, mutation: Mutation) -> None:
        key = entry.local_id
        lock = self._entity_locks.setdefault(key, asyncio.Lock())
        self._lock_refs[key] = self._lock_refs.get(key, 0) + 1
        try:
            async with lock:
                try:
                    result = await with_timeout(self._send(entry, mutation), self._timeout)
                except RemoteStoreError as exc:
                    self._rollback(entry)
                    entry.state = SyncState.FAILED
                    entry.error = exc
                    logger.warning(
                        "Rolled back %s on %s for %s: %s",
                        entry.operation.value,
                        entry.target_table,
                        entry.local_id,
                        exc,
                    )
                    await self._notify(MutationFailed(entry, exc))
                    return
                if isinstance(mutation, CreateItem):
                    await self._confirm_create(entry, mutation, result or {})
                entry.state = SyncState.SYNCED
        finally:
            self._in_flight.pop(id(entry), None)
            self._lock_refs[key] -= 1
            if not self._lock_refs[key]:
                del self._lock_refs[key]
                self._entity_locks.pop(key, None)

    async def _confirm_create(self, entry: SyncQueueEntry, mutation: CreateItem, row: dict[str, Any]) -> None:
        server_id = str(TemporaryId(entry.local_id).remap(str(row.get("id", ""))))
        entry.server_id = server_id
        updates: dict[str, Any] = {"id": server_id}
        if "sync_state" in type(mutation.placeholder).model_fields:
            updates["sync_state"] = SyncState.SYNCED
        confirmed = mutation.placeholder.model_copy(update=updates)
        if mutation.resolve is not None:
            try:
                resolved = mutation.resolve(row)
                if inspect.isawaitable(resolved):
                    resolved = await resolved
            except RemoteStoreError as exc:
                # The row is committed; keep the re-keyed placeholder rather than the temporary one.
                logger.warning("Could not hydrate confirmed %s %s: %s", mutation.table, server_id, exc)
            else:
                confirmed = resolved
        # The realtime fan-out may already have delivered the confirmed row.
        if self.view.contains(server_id):
            self.view.remove(entry.local_id)
            return
        self.view.replace(entry.local_id, confirmed)  # type: ignore[arg-type]

    def _rollback(self, entry: SyncQueueEntry) -> None:
        snapshot = entry.rollback
        if entry.operation is Operation.INSERT and snapshot.entity is None:
            self.view.remove(entry.local_id)
            return
        if snapshot.entity is None:
            return
        if self.view.contains(entry.local_id):
            self.view.replace(entry.local_id, snapshot.entity)  # type: ignore[arg-type]
        else:
            self.view.insert_at(snapshot.index if snapshot.index is not None else 0, snapshot.entity)  # type: ignore[arg-type]

    async def _notify(self, failure: MutationFailed) -> None:
        if self._on_error is None:
            return
        outcome = self._on_error(failure)
        if inspect.isawaitable(outcome):
            await outcome

    async def wait_idle(self) -> None:
        """Wait for every dispatched mutation to settle."""

        while self._in_flight:
            tasks = [entry.task for entry in self._in_flight.values() if entry.task is not None]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)


__all__ = [
    "CreateItem",
    "DeleteItem",
    "LocalView",
    "Mutation",
    "MutationCoordinator",
    "MutationFailed",
    "Operation",
    "Snapshot",
    "SyncQueueEntry",
    "ToggleRelation",
    "UpdateItem",
]
