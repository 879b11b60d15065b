"""Tests for realtime fan-out into the in-memory feed."""
from __future__ import annotations

import pytest

from voxspace.clients import SqlRemoteStore, eq
from voxspace.schemas import ChangeEvent, ChangeType
from voxspace.services import PostService, RealtimeHub


async def _post(store: SqlRemoteStore, post_id: str, **fields: object) -> None:
    await store.insert("posts", {"id": post_id, "user_id": "author", "content": post_id, **fields})


@pytest.mark.asyncio
async def test_insert_event_is_refetched_and_prepended_once(store: SqlRemoteStore, hub: RealtimeHub) -> None:
    await store.insert("profiles", {"id": "author", "username": "ada", "full_name": "Ada"})
    service = PostService(store, "viewer", feed=hub)
    await _post(store, "p1")
    await service.load_feed()
    service.adapter.start()

    await _post(store, "p2")
    await hub.drain()
    assert service.view.ids() == ["p2", "p1"]
    assert service.view.get("p2").author.name == "Ada"

    row = await store.select_one("posts", [eq("id", "p2")])
    await service.adapter.handle_insert(
        ChangeEvent(table="posts", type=ChangeType.INSERT, new=row, commit_timestamp=row["created_at"])
    )
    assert service.view.ids() == ["p2", "p1"]


@pytest.mark.asyncio
async def test_space_posts_are_filtered_out_of_the_main_feed(store: SqlRemoteStore, hub: RealtimeHub) -> None:
    service = PostService(store, "viewer", feed=hub)
    service.adapter.start()
    await _post(store, "main")
    await _post(store, "spaced", space_id="space-1")
    await hub.drain()
    assert service.view.ids() == ["main"]


@pytest.mark.asyncio
async def test_update_patches_in_place_without_reordering(store: SqlRemoteStore, hub: RealtimeHub) -> None:
    service = PostService(store, "viewer", feed=hub)
    await _post(store, "old")
    await _post(store, "new")
    service.adapter.start()
    await service.load_feed()
    order_before = service.view.ids()

    await store.update("posts", [eq("id", "old")], {"content": "edited"})
    await store.update("posts", [eq("id", "never-loaded")], {"content": "ignored"})
    await hub.drain()

    assert service.view.ids() == order_before
    assert service.view.get("old").content == "edited"


@pytest.mark.asyncio
async def test_delete_removes_and_tolerates_absent_ids(store: SqlRemoteStore, hub: RealtimeHub) -> None:
    service = PostService(store, "viewer", feed=hub)
    await _post(store, "p1")
    await service.load_feed()
    service.adapter.start()

    service.view.remove("p1")
    await store.delete("posts", [eq("id", "p1")])
    await hub.drain()
    assert service.view.ids() == []


@pytest.mark.asyncio
async def test_stop_unsubscribes(store: SqlRemoteStore, hub: RealtimeHub) -> None:
    service = PostService(store, "viewer", feed=hub)
    service.adapter.start()
    assert hub.subscription_count == 1
    service.adapter.stop()
    assert hub.subscription_count == 0
    await _post(store, "late")
    await hub.drain()
    assert service.view.ids() == []


@pytest.mark.asyncio
async def test_optimistic_create_and_fan_out_converge_on_one_entry(store: SqlRemoteStore, hub: RealtimeHub) -> None:
    service = PostService(store, "viewer", feed=hub)
    service.adapter.start()

    entry = service.create_post("my own post")
    assert service.view.ids() == [entry.local_id]

    await service.coordinator.wait_idle()
    await hub.drain()

    assert service.view.ids() == [entry.server_id]
    assert service.view.get(entry.server_id).content == "my own post"
