"""Shared enums and field types for rows crossing the remote boundary."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated

from pydantic import AfterValidator


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_ensure_utc)]


class ContentKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    TEXT = "text"
    VOICE = "voice"
    POLL = "poll"
    NOTE = "note"
    LINK = "link"
    FILE = "file"
    MESSAGE = "message"


class SyncState(str, Enum):
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


__all__ = ["ChangeType", "ContentKind", "SyncState", "UtcDatetime"]
