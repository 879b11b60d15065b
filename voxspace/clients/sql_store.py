"""SQLAlchemy-backed implementation of the remote relational store.

Serves as a self-hosted stand-in for the hosted Postgres API: it speaks the
same table/filter contract, maps unique violations to ``DuplicateKeyError``
and publishes a change event to the attached realtime hub after every commit.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Sequence, TypeVar

from sqlalchemy import DateTime, Table, and_, delete, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from voxspace import models  # noqa: F401  registers tables on Base.metadata
from voxspace.database import Base, build_sessionmaker, get_engine
from voxspace.schemas import ChangeEvent, ChangeType

from .base import DuplicateKeyError, Filter, Order, RemoteStore, RemoteStoreError

if TYPE_CHECKING:
    from voxspace.services.realtime import RealtimeHub

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utc(value: Any) -> Any:
    if not isinstance(value, datetime):
        return value
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_timestamp(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return _utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError as exc:
            raise RemoteStoreError(f"invalid input syntax for type timestamp: {value!r}", code="22007") from exc
    return _utc(value)


def _is_unique_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code == "23505":
        return True
    message = str(orig or exc)
    return "UNIQUE constraint failed" in message or "duplicate key" in message


class SqlRemoteStore(RemoteStore):
    def __init__(self, engine: Engine | None = None, *, hub: "RealtimeHub | None" = None) -> None:
        self._engine = engine or get_engine()
        self._sessions = build_sessionmaker(self._engine)
        self._hub = hub
        # A single writer at a time; in-memory SQLite shares one connection.
        self._lock = threading.Lock()

    @property
    def engine(self) -> Engine:
        return self._engine

    def attach_hub(self, hub: "RealtimeHub") -> None:
        self._hub = hub

    # -- helpers -----------------------------------------------------------

    def _table(self, name: str) -> Table:
        table = Base.metadata.tables.get(name)
        if table is None:
            raise RemoteStoreError(f'relation "{name}" does not exist', code="42P01")
        return table

    def _where(self, table: Table, filters: Sequence[Filter]) -> list[ColumnElement[bool]]:
        clauses: list[ColumnElement[bool]] = []
        for item in filters:
            if item.column not in table.c:
                raise RemoteStoreError(f'column "{item.column}" does not exist', code="42703")
            column = table.c[item.column]
            value = item.value
            if isinstance(column.type, DateTime):
                value = [_parse_timestamp(v) for v in value] if item.op == "in" else _parse_timestamp(value)
            if item.op == "eq":
                clauses.append(column == value)
            elif item.op == "neq":
                clauses.append(column != value)
            elif item.op == "gt":
                clauses.append(column > value)
            elif item.op == "gte":
                clauses.append(column >= value)
            elif item.op == "lt":
                clauses.append(column < value)
            elif item.op == "lte":
                clauses.append(column <= value)
            elif item.op == "in":
                clauses.append(column.in_(list(value)))
            elif item.op == "is":
                clauses.append(column.is_(value))
            else:
                raise RemoteStoreError(f"unsupported operator {item.op!r}")
        return clauses

    def _coerce_row(self, table: Table, row: dict[str, Any]) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for key, value in row.items():
            if key not in table.c:
                raise RemoteStoreError(f'column "{key}" of relation "{table.name}" does not exist', code="PGRST204")
            if isinstance(table.c[key].type, DateTime):
                value = _parse_timestamp(value)
            values[key] = value
        return values

    @staticmethod
    def _to_dict(mapping: Any) -> dict[str, Any]:
        return {key: _utc(value) for key, value in dict(mapping).items()}

    def _pk_filter(self, table: Table, row: dict[str, Any]) -> ColumnElement[bool]:
        return and_(*(column == row[column.name] for column in table.primary_key.columns))

    def _fetch_rows(self, session: Session, table: Table, clause: ColumnElement[bool] | None) -> list[dict[str, Any]]:
        statement = select(table)
        if clause is not None:
            statement = statement.where(clause)
        return [self._to_dict(mapping) for mapping in session.execute(statement).mappings()]

    def _run(self, work: Callable[[Session], T]) -> T:
        with self._lock:
            with self._sessions() as session:
                try:
                    result = work(session)
                    session.commit()
                    return result
                except IntegrityError as exc:
                    session.rollback()
                    if _is_unique_violation(exc):
                        raise DuplicateKeyError() from exc
                    raise RemoteStoreError("integrity constraint violated", code="23503") from exc
                except SQLAlchemyError as exc:
                    session.rollback()
                    logger.exception("Remote store operation failed")
                    raise RemoteStoreError("remote store operation failed") from exc

    async def _call(self, work: Callable[[Session], T]) -> T:
        return await asyncio.to_thread(self._run, work)

    def _publish(self, table: str, change: ChangeType, new: dict[str, Any] | None, old: dict[str, Any] | None) -> None:
        if self._hub is None:
            return
        self._hub.publish(
            ChangeEvent(
                table=table,
                type=change,
                new=new or {},
                old=old or {},
                commit_timestamp=datetime.now(timezone.utc),
            )
        )

    # -- RemoteStore -------------------------------------------------------

    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order: Sequence[Order] = (),
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        target = self._table(table)
        clauses = self._where(target, filters)
        statement = select(target).where(*clauses)
        for item in order:
            if item.column not in target.c:
                raise RemoteStoreError(f'column "{item.column}" does not exist', code="42703")
            column = target.c[item.column]
            statement = statement.order_by(column.asc() if item.ascending else column.desc())
        if offset:
            statement = statement.offset(offset)
        if limit is not None:
            statement = statement.limit(limit)

        def _work(session: Session) -> list[dict[str, Any]]:
            return [self._to_dict(mapping) for mapping in session.execute(statement).mappings()]

        return await self._call(_work)

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        target = self._table(table)
        values = self._coerce_row(target, row)

        def _work(session: Session) -> dict[str, Any]:
            result = session.execute(insert(target).values(**values))
            keys = dict(zip((column.name for column in target.primary_key.columns), result.inserted_primary_key or ()))
            rows = self._fetch_rows(session, target, self._pk_filter(target, keys))
            return rows[0]

        created = await self._call(_work)
        self._publish(table, ChangeType.INSERT, created, None)
        return created

    async def update(self, table: str, filters: Sequence[Filter], patch: dict[str, Any]) -> int:
        target = self._table(table)
        clauses = self._where(target, filters)
        values = self._coerce_row(target, patch)

        def _work(session: Session) -> list[tuple[dict[str, Any], dict[str, Any]]]:
            before = self._fetch_rows(session, target, and_(*clauses) if clauses else None)
            if not before:
                return []
            session.execute(update(target).where(*clauses).values(**values))
            changed: list[tuple[dict[str, Any], dict[str, Any]]] = []
            for old in before:
                after = self._fetch_rows(session, target, self._pk_filter(target, old))
                if after:
                    changed.append((old, after[0]))
            return changed

        changed = await self._call(_work)
        for old, new in changed:
            self._publish(table, ChangeType.UPDATE, new, old)
        return len(changed)

    async def delete(self, table: str, filters: Sequence[Filter]) -> int:
        target = self._table(table)
        clauses = self._where(target, filters)

        def _work(session: Session) -> list[dict[str, Any]]:
            before = self._fetch_rows(session, target, and_(*clauses) if clauses else None)
            if before:
                session.execute(delete(target).where(*clauses))
            return before

        removed = await self._call(_work)
        for old in removed:
            self._publish(table, ChangeType.DELETE, None, old)
        return len(removed)

    async def upsert_ignore(self, table: str, rows: Sequence[dict[str, Any]]) -> int:
        target = self._table(table)
        prepared = [self._coerce_row(target, row) for row in rows]

        def _work(session: Session) -> list[dict[str, Any]]:
            created: list[dict[str, Any]] = []
            for values in prepared:
                if all(column.name in values for column in target.primary_key.columns):
                    if self._fetch_rows(session, target, self._pk_filter(target, values)):
                        continue
                result = session.execute(insert(target).values(**values))
                keys = dict(zip((column.name for column in target.primary_key.columns), result.inserted_primary_key or ()))
                created.extend(self._fetch_rows(session, target, self._pk_filter(target, keys)))
            return created

        created = await self._call(_work)
        for row in created:
            self._publish(table, ChangeType.INSERT, row, None)
        return len(created)

    async def get_or_create_dm(self, user_id: str, target_user_id: str) -> str:
        chats = self._table("chats")
        participants = self._table("chat_participants")

        def _work(session: Session) -> tuple[str, list[tuple[str, dict[str, Any]]]]:
            mine = select(participants.c.chat_id).where(participants.c.user_id == user_id)
            theirs = select(participants.c.chat_id).where(participants.c.user_id == target_user_id)
            existing = session.execute(
                select(chats.c.id)
                .where(chats.c.is_group.is_(False), chats.c.id.in_(mine), chats.c.id.in_(theirs))
                .limit(1)
            ).scalar_one_or_none()
            if existing is not None:
                return existing, []
            result = session.execute(insert(chats).values(is_group=False))
            chat_id = (result.inserted_primary_key or (None,))[0]
            created = [("chats", self._fetch_rows(session, chats, chats.c.id == chat_id)[0])]
            for member in dict.fromkeys((user_id, target_user_id)):
                session.execute(insert(participants).values(chat_id=chat_id, user_id=member, status="accepted"))
                created.append(
                    (
                        "chat_participants",
                        self._fetch_rows(
                            session,
                            participants,
                            and_(participants.c.chat_id == chat_id, participants.c.user_id == member),
                        )[0],
                    )
                )
            return chat_id, created

        chat_id, created = await self._call(_work)
        for table, row in created:
            self._publish(table, ChangeType.INSERT, row, None)
        return chat_id


__all__ = ["SqlRemoteStore"]
