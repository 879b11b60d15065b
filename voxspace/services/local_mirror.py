"""Durable per-device mirror of remote rows.

Rows are stored as JSON payloads keyed by ``(scope, id)`` in a local SQLite
file (or any SQLAlchemy URL). A scope groups the rows of one logical list,
for example ``vault:<owner>`` or ``messages:<chat>``. Payloads are JSON-safe
copies: datetimes are written as ISO-8601 strings and read back as strings,
so callers revalidate through their pydantic models.
"""
from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable

from sqlalchemy import JSON, Column, DateTime, String, delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base

from ..config import get_settings
from ..database import build_engine, build_sessionmaker
from ..models.base import utcnow

logger = logging.getLogger(__name__)

MirrorBase = declarative_base()


class MirrorRow(MirrorBase):
    __tablename__ = "mirror_rows"

    scope = Column(String(128), primary_key=True)
    id = Column(String(64), primary_key=True)
    payload = Column(JSON, nullable=False)
    sort_key = Column(String(64), nullable=True, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class MirrorError(RuntimeError):
    """Raised when the local mirror cannot be read or written."""


def _default(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_json_safe(row: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(row, default=_default))


def _sort_key(payload: dict[str, Any]) -> str | None:
    value = payload.get("created_at")
    return str(value) if value is not None else None


class LocalMirrorStore:
    def __init__(self, url: str | None = None, *, engine: Engine | None = None) -> None:
        self._engine = engine or build_engine(url or get_settings().mirror_database_url)
        self._sessions = build_sessionmaker(self._engine)
        self._lock = threading.Lock()
        MirrorBase.metadata.create_all(bind=self._engine)

    def _run(self, work: Callable[[Session], Any], *, write: bool = False) -> Any:
        with self._lock:
            with self._sessions() as session:
                try:
                    result = work(session)
                    if write:
                        session.commit()
                    return result
                except SQLAlchemyError as exc:
                    session.rollback()
                    raise MirrorError("Local mirror operation failed") from exc

    @staticmethod
    def _upsert(session: Session, scope: str, row: dict[str, Any]) -> None:
        row_id = row.get("id")
        if not row_id:
            raise MirrorError("Mirrored rows require an id")
        payload = to_json_safe(row)
        existing = session.get(MirrorRow, (scope, str(row_id)))
        if existing is None:
            session.add(MirrorRow(scope=scope, id=str(row_id), payload=payload, sort_key=_sort_key(payload)))
        else:
            existing.payload = payload
            existing.sort_key = _sort_key(payload)

    def get(self, scope: str, row_id: str) -> dict[str, Any] | None:
        def _work(session: Session) -> dict[str, Any] | None:
            record = session.get(MirrorRow, (scope, row_id))
            return dict(record.payload) if record is not None else None

        return self._run(_work)

    def put(self, scope: str, row: dict[str, Any]) -> None:
        self._run(lambda session: self._upsert(session, scope, row), write=True)

    def bulk_put(self, scope: str, rows: Iterable[dict[str, Any]]) -> int:
        materialized = list(rows)

        def _work(session: Session) -> int:
            for row in materialized:
                self._upsert(session, scope, row)
            return len(materialized)

        return self._run(_work, write=True)

    def patch(self, scope: str, row_id: str, changes: dict[str, Any]) -> dict[str, Any] | None:
        def _work(session: Session) -> dict[str, Any] | None:
            record = session.get(MirrorRow, (scope, row_id))
            if record is None:
                return None
            payload = {**record.payload, **to_json_safe(changes)}
            record.payload = payload
            record.sort_key = _sort_key(payload)
            return payload

        return self._run(_work, write=True)

    def replace(self, scope: str, old_id: str, row: dict[str, Any]) -> None:
        """Atomically swap the row stored under ``old_id`` for ``row``."""

        def _work(session: Session) -> None:
            session.execute(delete(MirrorRow).where(MirrorRow.scope == scope, MirrorRow.id == old_id))
            self._upsert(session, scope, row)

        self._run(_work, write=True)

    def delete(self, scope: str, row_id: str) -> bool:
        def _work(session: Session) -> bool:
            result = session.execute(delete(MirrorRow).where(MirrorRow.scope == scope, MirrorRow.id == row_id))
            return bool(result.rowcount)

        return self._run(_work, write=True)

    def clear(self, scope: str | None = None) -> int:
        def _work(session: Session) -> int:
            statement = delete(MirrorRow)
            if scope is not None:
                statement = statement.where(MirrorRow.scope == scope)
            return session.execute(statement).rowcount or 0

        removed = self._run(_work, write=True)
        logger.info("Cleared %s mirrored rows (scope=%s)", removed, scope or "*")
        return removed

    def all(
        self,
        scope: str,
        where: Callable[[dict[str, Any]], bool] | None = None,
        *,
        newest_first: bool = True,
    ) -> list[dict[str, Any]]:
        order = MirrorRow.sort_key.desc() if newest_first else MirrorRow.sort_key.asc()

        def _work(session: Session) -> list[dict[str, Any]]:
            records = session.execute(select(MirrorRow).where(MirrorRow.scope == scope).order_by(order)).scalars()
            return [dict(record.payload) for record in records]

        rows = self._run(_work)
        if where is None:
            return rows
        return [row for row in rows if where(row)]


__all__ = ["LocalMirrorStore", "MirrorError", "MirrorRow", "to_json_safe"]
