"""PIN-gated private vault ("My Bag") with quota enforcement and offline items.

A :class:`VaultController` owns one owner's vault session. While locked it
never lists, fetches or returns item content. Writes are local-first: the
mirror is written before the remote insert is dispatched, and a remote failure
is logged without rolling the local item back.
"""
from __future__ import annotations

import asyncio
import hmac
import json
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Collection

from ..clients.base import Order, RemoteStore, RemoteStoreError, eq, with_timeout
from ..config import get_settings
from ..models.base import utcnow
from ..schemas import (
    SyncState,
    TemporaryId,
    VaultItem,
    VaultItemCreate,
    VaultItemType,
    VaultUsage,
    is_temporary,
    new_permanent_id,
)
from ..schemas.ids import LOCAL_PREFIX
from ..security.data_vault import decrypt_text, encrypt_text, is_ciphertext, is_vault_configured
from .local_mirror import LocalMirrorStore, MirrorError

logger = logging.getLogger(__name__)

BAG_TABLE = "my_bag_items"
PIN_PATTERN = re.compile(r"^\d{4}$")

SEARCH_FILTERS: dict[str, frozenset[VaultItemType] | None] = {
    "all": None,
    "messages": frozenset({VaultItemType.MESSAGE}),
    "media": frozenset({VaultItemType.IMAGE, VaultItemType.VIDEO, VaultItemType.AUDIO}),
    "files": frozenset({VaultItemType.FILE}),
    "notes": frozenset({VaultItemType.NOTE}),
    "links": frozenset({VaultItemType.LINK}),
}


class VaultLockedError(RuntimeError):
    """Raised when a vault operation is attempted while the vault is locked."""


class QuotaExceeded(RuntimeError):
    """Raised when a new item would push the owner past their storage quota."""


class AuthMismatch(RuntimeError):
    """Raised when a PIN attempt does not match the stored PIN."""


class PinNotConfigured(RuntimeError):
    """Raised when the owner has not set a vault PIN yet."""


class InvalidPinFormat(ValueError):
    """Raised when a PIN is not exactly four digits."""


class VaultItemNotFound(LookupError):
    """Raised when an item id is unknown to both memory and the local mirror."""


class VaultState(str, Enum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"


def validate_pin(pin: str) -> str:
    if not isinstance(pin, str) or not PIN_PATTERN.fullmatch(pin):
        raise InvalidPinFormat("PIN must be exactly 4 digits")
    return pin


class PinStore(ABC):
    @abstractmethod
    async def load_pin(self, owner_id: str) -> str | None:
        ...

    @abstractmethod
    async def save_pin(self, owner_id: str, pin: str) -> None:
        ...


class ProfilePinStore(PinStore):
    """Reads and writes the PIN kept on the owner's profile row."""

    def __init__(self, store: RemoteStore, *, timeout: float | None = None) -> None:
        self._store = store
        self._timeout = timeout

    async def load_pin(self, owner_id: str) -> str | None:
        row = await with_timeout(self._store.select_one("profiles", [eq("id", owner_id)]), self._timeout)
        if row is None:
            return None
        return row.get("chat_lock_pin") or None

    async def save_pin(self, owner_id: str, pin: str) -> None:
        updated = await with_timeout(
            self._store.update("profiles", [eq("id", owner_id)], {"chat_lock_pin": pin}), self._timeout
        )
        if not updated:
            raise RemoteStoreError(f"profile {owner_id} not found")


class VaultController:
    def __init__(
        self,
        owner_id: str,
        store: RemoteStore,
        *,
        pins: PinStore | None = None,
        mirror: LocalMirrorStore | None = None,
        quota_bytes: int | None = None,
        unlimited_owners: Collection[str] | None = None,
        timeout: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        settings = get_settings()
        self.owner_id = owner_id
        self._store = store
        self._pins = pins or ProfilePinStore(store, timeout=timeout)
        self._mirror = mirror
        self._timeout = timeout
        self._clock = clock
        unlimited = settings.unlimited_vault_owners if unlimited_owners is None else frozenset(unlimited_owners)
        self.quota_bytes: int | None = (
            None if owner_id in unlimited else (quota_bytes if quota_bytes is not None else settings.vault_quota_bytes)
        )
        self.state = VaultState.LOCKED
        self._items: list[VaultItem] = []
        # Whether the item list has been fetched since the last unlock
        self._loaded = False
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def scope(self) -> str:
        return f"vault:{self.owner_id}"

    @property
    def is_locked(self) -> bool:
        return self.state is VaultState.LOCKED

    @property
    def items(self) -> list[VaultItem]:
        if self.is_locked:
            return []
        return list(self._items)

    def _require_unlocked(self) -> None:
        if self.is_locked:
            raise VaultLockedError("Vault is locked")

    async def _call(self, awaitable: Any) -> Any:
        return await with_timeout(awaitable, self._timeout)

    # -- session -------------------------------------------------------------

    async def unlock(self, pin: str) -> None:
        stored = await self._pins.load_pin(self.owner_id)
        if not stored:
            raise PinNotConfigured("Set a vault PIN before unlocking")
        if not hmac.compare_digest(str(pin or ""), stored):
            raise AuthMismatch("Incorrect PIN")
        self.state = VaultState.UNLOCKED
        self._loaded = False
        logger.info("Vault unlocked for %s", self.owner_id)

    def lock(self) -> None:
        self.state = VaultState.LOCKED
        self._items = []
        self._loaded = False

    async def setup_pin(self, new_pin: str) -> None:
        validate_pin(new_pin)
        if await self._pins.load_pin(self.owner_id):
            raise AuthMismatch("A PIN is already configured; change it instead")
        await self._pins.save_pin(self.owner_id, new_pin)

    async def change_pin(self, old_pin: str, new_pin: str) -> None:
        validate_pin(new_pin)
        stored = await self._pins.load_pin(self.owner_id)
        if not stored:
            raise PinNotConfigured("No PIN configured yet")
        if not hmac.compare_digest(str(old_pin or ""), stored):
            raise AuthMismatch("Current PIN is incorrect")
        # Remote-authoritative: a failure here leaves the stored PIN unchanged.
        await self._pins.save_pin(self.owner_id, new_pin)
        logger.info("Vault PIN changed for %s", self.owner_id)

    # -- mirror helpers ------------------------------------------------------

    @staticmethod
    def _seal(item: VaultItem) -> dict[str, Any]:
        row = item.to_row()
        if is_vault_configured():
            row["content"] = encrypt_text(item.content)
        row["sync_state"] = item.sync_state.value
        return row

    @staticmethod
    def _open(row: dict[str, Any]) -> VaultItem:
        content = row.get("content") or ""
        if is_ciphertext(content):
            content = decrypt_text(content)
        return VaultItem.model_validate({**row, "content": content})

    def _mirror_put(self, item: VaultItem) -> bool:
        if self._mirror is None:
            return False
        try:
            self._mirror.put(self.scope, self._seal(item))
        except MirrorError:
            logger.exception("Local mirror write failed for vault item %s", item.id)
            return False
        return True

    def _local_items(self) -> list[VaultItem]:
        if self._mirror is None:
            return list(self._items)
        try:
            return [self._open(row) for row in self._mirror.all(self.scope)]
        except MirrorError:
            logger.exception("Local mirror read failed for %s", self.scope)
            return list(self._items)

    def _find(self, item_id: str) -> VaultItem | None:
        for item in self._items:
            if item.id == item_id:
                return item
        if self._mirror is not None:
            row = self._mirror.get(self.scope, item_id)
            if row is not None:
                return self._open(row)
        return None

    def _swap(self, old_id: str, item: VaultItem) -> None:
        for index, current in enumerate(self._items):
            if current.id == old_id:
                self._items[index] = item
                return
        self._items.insert(0, item)

    def _schedule(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def flush(self) -> None:
        """Wait for background remote writes to settle."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # -- reads ---------------------------------------------------------------

    async def list_items(self) -> list[VaultItem]:
        if self.is_locked:
            return []
        local = self._local_items()
        try:
            rows = await self._call(
                self._store.select(BAG_TABLE, [eq("user_id", self.owner_id)], [Order("created_at", ascending=False)])
            )
        except RemoteStoreError as exc:
            logger.warning("Vault remote fetch failed for %s, serving local items: %s", self.owner_id, exc)
            self._items = sorted(local, key=lambda item: item.created_at, reverse=True)
            self._loaded = True
            return list(self._items)

        remote = [VaultItem.model_validate(row) for row in rows]
        if self._mirror is not None:
            try:
                self._mirror.bulk_put(self.scope, [self._seal(item) for item in remote])
            except MirrorError:
                logger.exception("Could not refresh local mirror for %s", self.scope)
        remote_ids = {item.id for item in remote}
        merged = remote + [item for item in local if item.id not in remote_ids]
        self._items = sorted(merged, key=lambda item: item.created_at, reverse=True)
        self._loaded = True
        return list(self._items)

    def usage(self) -> VaultUsage:
        self._require_unlocked()
        return VaultUsage(used_bytes=self._used_bytes(), quota_bytes=self.quota_bytes)

    def _used_bytes(self) -> int:
        items = {item.id: item for item in self._local_items()}
        items.update({item.id: item for item in self._items})
        return sum(item.size_bytes for item in items.values())

    def search(self, category: str = "all", query: str = "") -> list[VaultItem]:
        self._require_unlocked()
        if category not in SEARCH_FILTERS:
            raise ValueError(f"Unknown vault filter {category!r}")
        kinds = SEARCH_FILTERS[category]
        needle = (query or "").strip().lower()
        results = []
        for item in self._items:
            if kinds is not None and item.type not in kinds:
                continue
            if needle and needle not in item.content.lower() and needle not in (item.title or "").lower():
                continue
            results.append(item)
        return results

    def export_items(self) -> str:
        self._require_unlocked()
        document = {
            "owner": self.owner_id,
            "exported_at": self._clock().isoformat(),
            "items": [item.to_row() for item in self._local_items()],
        }
        return json.dumps(document, indent=2, ensure_ascii=False)

    def clear_local(self) -> int:
        self._require_unlocked()
        if self._mirror is None:
            return 0
        return self._mirror.clear(self.scope)

    # -- writes --------------------------------------------------------------

    async def add_item(self, payload: VaultItemCreate) -> VaultItem:
        self._require_unlocked()
        offline = payload.offline
        item = VaultItem(
            id=str(TemporaryId.new(LOCAL_PREFIX)) if offline else str(new_permanent_id()),
            user_id=self.owner_id,
            type=payload.type,
            content=payload.content,
            title=payload.title,
            category=payload.category,
            details=payload.details or {},
            created_at=self._clock(),
            sync_state=SyncState.PENDING,
        )
        if self.quota_bytes is not None:
            if not self._loaded:
                await self.list_items()
            used = self._used_bytes()
            if used + item.size_bytes > self.quota_bytes:
                raise QuotaExceeded(
                    f"Adding {item.size_bytes} bytes would exceed the {self.quota_bytes} byte quota ({used} used)"
                )

        mirrored = self._mirror_put(item)
        if offline:
            if not mirrored:
                raise MirrorError("Offline items need a working local mirror")
            self._items.insert(0, item)
            return item

        if mirrored:
            self._items.insert(0, item)
            self._schedule(self._push_insert(item))
            return item

        # No durable local copy; the remote write has to succeed.
        await self._call(self._store.insert(BAG_TABLE, item.to_row()))
        item = item.model_copy(update={"sync_state": SyncState.SYNCED})
        self._items.insert(0, item)
        return item

    async def _push_insert(self, item: VaultItem) -> None:
        try:
            await self._call(self._store.insert(BAG_TABLE, item.to_row()))
        except RemoteStoreError as exc:
            logger.warning("Vault item %s kept locally; remote insert failed: %s", item.id, exc)
            return
        synced = item.model_copy(update={"sync_state": SyncState.SYNCED})
        self._mirror_put(synced)
        if any(current.id == item.id for current in self._items):
            self._swap(item.id, synced)

    async def update_item(self, item_id: str, **changes: Any) -> VaultItem:
        self._require_unlocked()
        if is_temporary(item_id):
            return await self.migrate_local_item(item_id, **changes)
        current = self._find(item_id)
        if current is None:
            raise VaultItemNotFound(item_id)
        updated = VaultItem.model_validate({**current.model_dump(), **changes})
        self._mirror_put(updated)
        self._swap(item_id, updated)
        patch = {key: value for key, value in updated.to_row().items() if key in changes}
        try:
            await self._call(self._store.update(BAG_TABLE, [eq("id", item_id), eq("user_id", self.owner_id)], patch))
        except RemoteStoreError as exc:
            logger.warning("Vault item %s updated locally only: %s", item_id, exc)
        return updated

    async def migrate_local_item(self, local_id: str, **changes: Any) -> VaultItem:
        """Give an offline item a permanent id, locally and remotely.

        The mirror swap is a single transaction, so callers observe either the
        old id or the new one.
        """

        self._require_unlocked()
        current = self._find(local_id)
        if current is None:
            raise VaultItemNotFound(local_id)
        migrated = VaultItem.model_validate(
            {**current.model_dump(), **changes, "id": str(new_permanent_id()), "sync_state": SyncState.PENDING}
        )
        if self._mirror is not None:
            self._mirror.replace(self.scope, local_id, self._seal(migrated))
        self._swap(local_id, migrated)
        logger.info("Migrated offline vault item %s to %s", local_id, migrated.id)
        await self._push_insert(migrated)
        return self._find(migrated.id) or migrated

    async def delete_item(self, item_id: str) -> bool:
        self._require_unlocked()
        if not is_temporary(item_id):
            await self._call(self._store.delete(BAG_TABLE, [eq("id", item_id), eq("user_id", self.owner_id)]))
        removed = False
        if self._mirror is not None:
            removed = self._mirror.delete(self.scope, item_id)
        before = len(self._items)
        self._items = [item for item in self._items if item.id != item_id]
        return removed or len(self._items) != before


__all__ = [
    "AuthMismatch",
    "BAG_TABLE",
    "InvalidPinFormat",
    "PinNotConfigured",
    "PinStore",
    "ProfilePinStore",
    "QuotaExceeded",
    "SEARCH_FILTERS",
    "VaultController",
    "VaultItemNotFound",
    "VaultLockedError",
    "VaultState",
    "validate_pin",
]
