"""Utility helpers shared across ORM models."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime


def new_uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CreatedAtMixin:
    """Timezone-aware creation timestamp assigned client-side."""

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)


__all__ = ["CreatedAtMixin", "new_uuid", "utcnow"]
