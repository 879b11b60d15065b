"""Chat backup export and non-destructive restore."""
from __future__ import annotations

import inspect
import json
import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Mapping

from pydantic import ValidationError

from ..clients.base import Filter, Order, RemoteStore, RemoteStoreError, eq, with_timeout
from ..models.base import utcnow
from ..schemas import BACKUP_VERSION, ChatBackup, RestoreSummary
from .chat_service import message_scope
from .local_mirror import LocalMirrorStore, MirrorError, to_json_safe

logger = logging.getLogger(__name__)

EXPORT_PAGE_SIZE = 1000
RESTORE_CHUNK_SIZE = 100
MESSAGE_COLUMNS = frozenset(
    {"id", "chat_id", "sender_id", "content", "type", "media_url", "details", "is_deleted", "created_at"}
)
REQUIRED_MESSAGE_FIELDS = ("id", "chat_id", "sender_id")

ProgressCallback = Callable[[int, int], Any]


class BackupFormatError(ValueError):
    """Raised when a backup document is malformed or of an unknown version."""


def parse_backup(document: Mapping[str, Any] | str | bytes) -> ChatBackup:
    if isinstance(document, (str, bytes)):
        try:
            document = json.loads(document)
        except ValueError as exc:
            raise BackupFormatError("Backup is not valid JSON") from exc
    if not isinstance(document, Mapping):
        raise BackupFormatError("Backup must be a JSON object")
    if document.get("version") != BACKUP_VERSION:
        raise BackupFormatError(f"Unsupported backup version {document.get('version')!r}")
    try:
        backup = ChatBackup.model_validate(document)
    except ValidationError as exc:
        raise BackupFormatError(f"Invalid backup document: {exc.error_count()} problem(s)") from exc
    for index, message in enumerate(backup.messages):
        missing = [field for field in REQUIRED_MESSAGE_FIELDS if not message.get(field)]
        if missing:
            raise BackupFormatError(f"Message {index} is missing {', '.join(missing)}")
    if backup.message_count != len(backup.messages):
        logger.warning("Backup declares %s messages but carries %s", backup.message_count, len(backup.messages))
    return backup


class BackupService:
    def __init__(
        self,
        store: RemoteStore,
        mirror: LocalMirrorStore | None = None,
        *,
        timeout: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._mirror = mirror
        self._timeout = timeout
        self._clock = clock

    async def _call(self, awaitable: Any) -> Any:
        return await with_timeout(awaitable, self._timeout)

    async def export_chats(self, user_id: str) -> ChatBackup:
        memberships = await self._call(self._store.select("chat_participants", [eq("user_id", user_id)]))
        chat_ids = sorted({str(row["chat_id"]) for row in memberships})
        messages: list[dict[str, Any]] = []
        offset = 0
        while chat_ids:
            page = await self._call(
                self._store.select(
                    "messages",
                    [Filter("chat_id", "in", chat_ids)],
                    [Order("created_at"), Order("id")],
                    limit=EXPORT_PAGE_SIZE,
                    offset=offset,
                )
            )
            messages.extend(to_json_safe(row) for row in page)
            if len(page) < EXPORT_PAGE_SIZE:
                break
            offset += EXPORT_PAGE_SIZE
        logger.info("Exported %s messages across %s chats for %s", len(messages), len(chat_ids), user_id)
        return ChatBackup(date=self._clock(), user_id=user_id, message_count=len(messages), messages=messages)

    async def restore(
        self,
        document: ChatBackup | Mapping[str, Any] | str | bytes,
        progress: ProgressCallback | None = None,
    ) -> RestoreSummary:
        """Insert messages that are absent remotely; existing rows are never overwritten."""

        backup = document if isinstance(document, ChatBackup) else parse_backup(document)
        rows = [{key: value for key, value in message.items() if key in MESSAGE_COLUMNS} for message in backup.messages]
        total = len(rows)
        inserted = 0
        stored: list[dict[str, Any]] = []
        for start in range(0, total, RESTORE_CHUNK_SIZE):
            chunk = rows[start : start + RESTORE_CHUNK_SIZE]
            inserted += await self._call(self._store.upsert_ignore("messages", chunk))
            if self._mirror is not None:
                stored.extend(await self._stored_rows(chunk))
            if progress is not None:
                outcome = progress(min(start + len(chunk), total), total)
                if inspect.isawaitable(outcome):
                    await outcome

        self._mirror_restored(stored)
        logger.info("Restored %s of %s messages (%s already present)", inserted, total, total - inserted)
        return RestoreSummary(total=total, inserted=inserted, skipped=total - inserted)

    async def _stored_rows(self, chunk: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Read back the server copy of a restored chunk, so skipped rows keep their current content."""

        ids = [str(row["id"]) for row in chunk]
        try:
            rows = await self._call(self._store.select("messages", [Filter("id", "in", ids)]))
        except RemoteStoreError as exc:
            logger.warning("Could not read back %s restored messages for the local mirror: %s", len(ids), exc)
            return []
        return [to_json_safe(row) for row in rows]

    def _mirror_restored(self, rows: list[dict[str, Any]]) -> None:
        if self._mirror is None or not rows:
            return
        by_chat: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for row in rows:
            by_chat[str(row["chat_id"])].append({**row, "status": "read"})
        try:
            for chat_id, chat_rows in by_chat.items():
                self._mirror.bulk_put(message_scope(chat_id), chat_rows)
        except MirrorError:
            logger.exception("Restored messages could not be mirrored locally")


__all__ = [
    "BackupFormatError",
    "BackupService",
    "EXPORT_PAGE_SIZE",
    "RESTORE_CHUNK_SIZE",
    "parse_backup",
]
