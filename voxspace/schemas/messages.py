"""Pydantic schemas for chat messages and chat backup documents."""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .common import SyncState, UtcDatetime

BACKUP_VERSION = 1


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    chat_id: str
    sender_id: str
    content: str = ""
    type: str = "text"
    created_at: UtcDatetime
    media_url: str | None = None
    details: dict[str, Any] | None = None
    is_deleted: bool = False
    status: str | None = None
    sync_state: SyncState = SyncState.SYNCED


class ChatBackup(BaseModel):
    """Portable chat export: ``{version, date, userId, messageCount, messages}``."""

    model_config = ConfigDict(populate_by_name=True)

    version: Literal[1] = BACKUP_VERSION
    date: UtcDatetime
    user_id: str = Field(alias="userId")
    message_count: int = Field(alias="messageCount")
    messages: list[dict[str, Any]]

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class RestoreSummary(BaseModel):
    total: int
    inserted: int
    skipped: int


__all__ = ["BACKUP_VERSION", "ChatBackup", "ChatMessage", "RestoreSummary"]
