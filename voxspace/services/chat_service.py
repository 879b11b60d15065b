"""Offline-first chat message cache with optimistic sends."""
from __future__ import annotations

import logging
from typing import Any

from ..clients.base import ChangeFeed, Order, RemoteStore, RemoteStoreError, SubscriptionHandle, eq, with_timeout
from ..models.base import utcnow
from ..schemas import ChangeEvent, ChatMessage, SyncState, TemporaryId
from .local_mirror import LocalMirrorStore, MirrorError
from .mutation_service import CreateItem, ErrorNotifier, LocalView, MutationCoordinator, SyncQueueEntry
from .validation import ContentValidationError

logger = logging.getLogger(__name__)

MESSAGE_PAGE_SIZE = 200


def message_scope(chat_id: str) -> str:
    return f"messages:{chat_id}"


class ChatService:
    def __init__(
        self,
        store: RemoteStore,
        user_id: str,
        chat_id: str,
        *,
        mirror: LocalMirrorStore | None = None,
        feed: ChangeFeed | None = None,
        on_error: ErrorNotifier | None = None,
        timeout: float | None = None,
    ) -> None:
        self._store = store
        self.user_id = user_id
        self.chat_id = chat_id
        self._mirror = mirror
        self._feed = feed
        self._timeout = timeout
        self._handle: SubscriptionHandle | None = None
        self.view: LocalView[ChatMessage] = LocalView()
        self.coordinator: MutationCoordinator[ChatMessage] = MutationCoordinator(
            store, self.view, on_error=on_error, timeout=timeout
        )

    @property
    def scope(self) -> str:
        return message_scope(self.chat_id)

    def _mirror_rows(self, rows: list[dict[str, Any]]) -> None:
        if self._mirror is None or not rows:
            return
        try:
            self._mirror.bulk_put(self.scope, rows)
        except MirrorError:
            logger.exception("Could not cache %s messages for chat %s", len(rows), self.chat_id)

    async def load_messages(self, limit: int = MESSAGE_PAGE_SIZE) -> list[ChatMessage]:
        if self._mirror is not None:
            try:
                cached = self._mirror.all(self.scope, newest_first=False)
            except MirrorError:
                logger.exception("Message cache read failed for chat %s", self.chat_id)
                cached = []
            if cached:
                self.view.reset(ChatMessage.model_validate(row) for row in cached)

        try:
            rows = await with_timeout(
                self._store.select(
                    "messages", [eq("chat_id", self.chat_id)], [Order("created_at", ascending=False)], limit=limit
                ),
                self._timeout,
            )
        except RemoteStoreError as exc:
            logger.warning("Serving cached messages for chat %s: %s", self.chat_id, exc)
            return self.view.items

        remote = [ChatMessage.model_validate(row) for row in reversed(rows)]
        self._mirror_rows([message.model_dump(mode="json", exclude={"sync_state"}) for message in remote])
        remote_ids = {message.id for message in remote}
        in_flight = [
            message for message in self.view if message.sync_state is SyncState.PENDING and message.id not in remote_ids
        ]
        self.view.reset(remote + in_flight)
        return self.view.items

    def send_message(self, content: str, *, type: str = "text", media_url: str | None = None) -> SyncQueueEntry:
        text = (content or "").strip()
        if not text and not media_url:
            raise ContentValidationError("Message cannot be empty")
        row = {
            "chat_id": self.chat_id,
            "sender_id": self.user_id,
            "content": text,
            "type": type,
            "media_url": media_url,
        }
        placeholder = ChatMessage(
            id=str(TemporaryId.new()),
            chat_id=self.chat_id,
            sender_id=self.user_id,
            content=text,
            type=type,
            media_url=media_url,
            created_at=utcnow(),
            status="sending",
            sync_state=SyncState.PENDING,
        )
        return self.coordinator.apply(
            CreateItem(table="messages", row=row, placeholder=placeholder, resolve=self._confirmed, position="tail")
        )

    def _confirmed(self, row: dict[str, Any]) -> ChatMessage:
        message = ChatMessage.model_validate({**row, "status": "sent"})
        self._mirror_rows([message.model_dump(mode="json", exclude={"sync_state"})])
        return message

    def subscribe(self) -> SubscriptionHandle:
        if self._feed is None:
            raise RuntimeError("No change feed configured for this chat")
        if self._handle is None:
            self._handle = self._feed.subscribe(
                "messages",
                [eq("chat_id", self.chat_id)],
                on_insert=self.handle_incoming,
                on_update=self.handle_update,
            )
        return self._handle

    def unsubscribe(self) -> None:
        if self._feed is not None and self._handle is not None:
            self._feed.unsubscribe(self._handle)
            self._handle = None

    def handle_incoming(self, event: ChangeEvent) -> None:
        row = event.new
        # Own sends are reconciled by the coordinator.
        if str(row.get("sender_id")) == self.user_id:
            return
        row_id = event.row_id
        if row_id is None or self.view.contains(row_id):
            return
        message = ChatMessage.model_validate(row)
        self.view.append(message)
        self._mirror_rows([message.model_dump(mode="json", exclude={"sync_state"})])

    def handle_update(self, event: ChangeEvent) -> None:
        row_id = event.row_id
        current = self.view.get(row_id) if row_id else None
        if current is None:
            return
        changes = {key: value for key, value in event.new.items() if key in ChatMessage.model_fields and key != "id"}
        updated = ChatMessage.model_validate({**current.model_dump(), **changes})
        self.view.replace(row_id, updated)
        self._mirror_rows([updated.model_dump(mode="json", exclude={"sync_state"})])


__all__ = ["ChatService", "MESSAGE_PAGE_SIZE", "message_scope"]
