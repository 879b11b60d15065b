"""Schema for row-level change events delivered by the realtime feed."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from .common import ChangeType, UtcDatetime


class ChangeEvent(BaseModel):
    table: str
    type: ChangeType
    new: dict[str, Any] = Field(default_factory=dict)
    old: dict[str, Any] = Field(default_factory=dict)
    commit_timestamp: UtcDatetime

    @property
    def row_id(self) -> str | None:
        source = self.new if self.type is not ChangeType.DELETE else self.old
        value = source.get("id")
        return str(value) if value is not None else None


__all__ = ["ChangeEvent"]
