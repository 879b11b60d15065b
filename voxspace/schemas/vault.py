"""Pydantic schemas for "My Bag" vault items."""
from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .common import SyncState, UtcDatetime


class VaultItemType(str, Enum):
    NOTE = "note"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    LINK = "link"
    FILE = "file"
    MESSAGE = "message"


class VaultItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: str
    type: VaultItemType = VaultItemType.NOTE
    content: str = ""
    title: str | None = None
    category: str | None = None
    details: dict[str, Any] | None = None
    is_locked: bool = False
    created_at: UtcDatetime
    sync_state: SyncState = SyncState.SYNCED

    @computed_field  # type: ignore[prop-decorator]
    @property
    def size_bytes(self) -> int:
        declared = (self.details or {}).get("size")
        if isinstance(declared, (int, float)) and declared > 0:
            return int(declared)
        return len(self.content.encode("utf-8"))

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude={"size_bytes", "sync_state"})


class VaultUnlock(BaseModel):
    pin: str


class VaultPinChange(BaseModel):
    old_pin: str | None = None
    new_pin: str


class VaultItemCreate(BaseModel):
    content: str
    title: str | None = Field(default=None, max_length=255)
    type: VaultItemType = VaultItemType.NOTE
    category: str | None = None
    details: dict[str, Any] | None = None
    offline: bool = False


class VaultUsage(BaseModel):
    used_bytes: int
    quota_bytes: int | None


__all__ = [
    "VaultItem",
    "VaultItemCreate",
    "VaultItemType",
    "VaultPinChange",
    "VaultUnlock",
    "VaultUsage",
]
