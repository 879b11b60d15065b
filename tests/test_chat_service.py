"""Tests for optimistic chat sends, the message cache and realtime delivery."""
from __future__ import annotations

import pytest

from conftest import FlakyRemoteStore
from voxspace.clients import SqlRemoteStore, eq
from voxspace.schemas import SyncState
from voxspace.services import ChatService, ContentValidationError, LocalMirrorStore, RealtimeHub
from voxspace.services.mutation_service import MutationFailed


@pytest.mark.asyncio
async def test_send_message_confirms_and_caches(store: SqlRemoteStore, mirror: LocalMirrorStore) -> None:
    chat = ChatService(store, "alice", "chat-1", mirror=mirror)

    entry = chat.send_message("  hi there ")
    placeholder = chat.view.items[-1]
    assert placeholder.id.startswith("temp-")
    assert placeholder.sync_state is SyncState.PENDING
    assert placeholder.content == "hi there"

    await chat.coordinator.wait_idle()

    assert entry.state is SyncState.SYNCED
    [sent] = chat.view.items
    assert sent.id == entry.server_id
    assert sent.status == "sent"
    assert mirror.get(chat.scope, sent.id)["content"] == "hi there"


def test_empty_messages_are_rejected(store: SqlRemoteStore) -> None:
    chat = ChatService(store, "alice", "chat-1")
    with pytest.raises(ContentValidationError):
        chat.send_message("   ")


@pytest.mark.asyncio
async def test_failed_send_rolls_back_and_notifies(flaky: FlakyRemoteStore) -> None:
    failures: list[MutationFailed] = []
    chat = ChatService(flaky, "alice", "chat-1", on_error=failures.append)
    flaky.fail("insert", "messages")

    entry = chat.send_message("lost")
    await chat.coordinator.wait_idle()

    assert chat.view.items == []
    assert entry.state is SyncState.FAILED
    assert [failure.entry for failure in failures] == [entry]


@pytest.mark.asyncio
async def test_load_messages_returns_last_page_oldest_first(store: SqlRemoteStore, mirror: LocalMirrorStore) -> None:
    writer = ChatService(store, "bob", "chat-1")
    for index in range(5):
        writer.send_message(f"message {index}")
        await writer.coordinator.wait_idle()

    chat = ChatService(store, "alice", "chat-1", mirror=mirror)
    messages = await chat.load_messages(limit=3)
    assert [message.content for message in messages] == ["message 2", "message 3", "message 4"]
    assert len(mirror.all(chat.scope)) == 3


@pytest.mark.asyncio
async def test_cached_messages_survive_a_remote_outage(flaky: FlakyRemoteStore, mirror: LocalMirrorStore) -> None:
    online = ChatService(flaky, "alice", "chat-1", mirror=mirror)
    online.send_message("first")
    await online.coordinator.wait_idle()

    flaky.fail("select", "messages")
    offline = ChatService(flaky, "alice", "chat-1", mirror=mirror)
    messages = await offline.load_messages()
    assert [message.content for message in messages] == ["first"]


@pytest.mark.asyncio
async def test_incoming_messages_arrive_once(store: SqlRemoteStore, hub: RealtimeHub) -> None:
    chat = ChatService(store, "alice", "chat-1", feed=hub)
    chat.subscribe()

    await store.insert("messages", {"id": "remote-1", "chat_id": "chat-1", "sender_id": "bob", "content": "yo"})
    await store.insert("messages", {"id": "other-chat", "chat_id": "chat-2", "sender_id": "bob", "content": "nope"})
    chat.send_message("mine")
    await chat.coordinator.wait_idle()
    await hub.drain()

    assert [message.content for message in chat.view.items] == ["yo", "mine"]

    await store.update("messages", [eq("chat_id", "chat-1")], {"is_deleted": True})
    assert all(message.is_deleted for message in chat.view.items)

    chat.unsubscribe()
    await store.insert("messages", {"id": "remote-2", "chat_id": "chat-1", "sender_id": "bob", "content": "late"})
    assert len(chat.view.items) == 2
