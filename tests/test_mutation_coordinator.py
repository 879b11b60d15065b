"""Tests for optimistic apply, confirmation remap and exact rollback."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Sequence

import pytest

from conftest import FlakyRemoteStore
from voxspace.clients import Filter, RemoteStoreError, SqlRemoteStore, eq
from voxspace.schemas import AuthorSummary, Post, SyncState, TemporaryId
from voxspace.services import (
    CreateItem,
    DeleteItem,
    LocalView,
    MutationCoordinator,
    MutationFailed,
    ToggleRelation,
    UpdateItem,
)


def make_post(post_id: str, **fields: object) -> Post:
    return Post(
        id=post_id,
        author=AuthorSummary(id="u1"),
        created_at=datetime(2024, 3, 1, tzinfo=timezone.utc),
        **fields,
    )


def like(post_id: str, user_id: str = "viewer") -> ToggleRelation:
    return ToggleRelation(
        relation_table="post_likes",
        entity_id=post_id,
        relation_row={"post_id": post_id, "user_id": user_id},
    )


class GatedStore(FlakyRemoteStore):
    """Holds each insert's confirmation until the test opens the gate."""

    def __init__(self, inner: SqlRemoteStore) -> None:
        super().__init__(inner)
        self.gate = asyncio.Event()
        self.inserted = asyncio.Event()
        self.rows: list[dict[str, object]] = []

    async def insert(self, table: str, row: dict[str, object]) -> dict[str, object]:
        created = await self.inner.insert(table, row)
        self.rows.append(created)
        self.inserted.set()
        await self.gate.wait()
        return created


@pytest.mark.asyncio
async def test_create_applies_immediately_then_remaps_to_server_id(store: SqlRemoteStore) -> None:
    view: LocalView[Post] = LocalView([make_post("existing")])
    coordinator = MutationCoordinator(store, view)
    temp = str(TemporaryId.new())

    entry = coordinator.apply(
        CreateItem(table="posts", row={"user_id": "u1", "content": "hello"}, placeholder=make_post(temp, content="hello"))
    )
    assert view.ids() == [temp, "existing"]
    assert view.get(temp).sync_state is SyncState.PENDING

    await coordinator.wait_idle()
    assert entry.state is SyncState.SYNCED
    assert entry.server_id and not entry.server_id.startswith("temp-")
    assert view.ids() == [entry.server_id, "existing"]
    assert view.get(entry.server_id).sync_state is SyncState.SYNCED
    assert await store.select_one("posts", [eq("id", entry.server_id)]) is not None


@pytest.mark.asyncio
async def test_failed_create_removes_placeholder_and_notifies(flaky: FlakyRemoteStore) -> None:
    failures: list[MutationFailed] = []
    view: LocalView[Post] = LocalView()
    coordinator = MutationCoordinator(flaky, view, on_error=failures.append)
    flaky.fail("insert", "posts")
    temp = str(TemporaryId.new())

    entry = coordinator.apply(CreateItem(table="posts", row={"user_id": "u1"}, placeholder=make_post(temp)))
    await coordinator.wait_idle()

    assert view.ids() == []
    assert entry.state is SyncState.FAILED
    assert len(failures) == 1 and failures[0].entry is entry
    assert flaky.count("insert", "posts") == 1


@pytest.mark.asyncio
async def test_create_requires_a_placeholder_id(store: SqlRemoteStore) -> None:
    coordinator = MutationCoordinator(store, LocalView())
    with pytest.raises(ValueError):
        coordinator.apply(CreateItem(table="posts", row={}, placeholder=make_post("real-id")))


@pytest.mark.asyncio
async def test_like_rollback_restores_exact_count(flaky: FlakyRemoteStore) -> None:
    view: LocalView[Post] = LocalView([make_post("p1", likes_count=7, is_liked=False)])
    failures: list[MutationFailed] = []
    coordinator = MutationCoordinator(flaky, view, on_error=failures.append)
    flaky.fail("insert", "post_likes")

    coordinator.apply(like("p1"))
    assert (view.get("p1").likes_count, view.get("p1").is_liked) == (8, True)

    await coordinator.wait_idle()
    assert (view.get("p1").likes_count, view.get("p1").is_liked) == (7, False)
    assert len(failures) == 1


@pytest.mark.asyncio
async def test_unlike_rollback_restores_exact_count(flaky: FlakyRemoteStore) -> None:
    view: LocalView[Post] = LocalView([make_post("p1", likes_count=3, is_liked=True)])
    coordinator = MutationCoordinator(flaky, view)
    flaky.fail("delete", "post_likes")

    coordinator.apply(like("p1"))
    assert (view.get("p1").likes_count, view.get("p1").is_liked) == (2, False)
    await coordinator.wait_idle()
    assert (view.get("p1").likes_count, view.get("p1").is_liked) == (3, True)


@pytest.mark.asyncio
async def test_like_then_unlike_round_trips_remote_state(store: SqlRemoteStore) -> None:
    view: LocalView[Post] = LocalView([make_post("p1", likes_count=0)])
    coordinator = MutationCoordinator(store, view)

    coordinator.apply(like("p1"))
    await coordinator.wait_idle()
    assert len(await store.select("post_likes", [eq("post_id", "p1")])) == 1

    coordinator.apply(like("p1"))
    await coordinator.wait_idle()
    assert await store.select("post_likes", [eq("post_id", "p1")]) == []
    assert (view.get("p1").likes_count, view.get("p1").is_liked) == (0, False)


@pytest.mark.asyncio
async def test_duplicate_like_counts_as_success(store: SqlRemoteStore) -> None:
    await store.insert("post_likes", {"post_id": "p1", "user_id": "viewer"})
    failures: list[MutationFailed] = []
    view: LocalView[Post] = LocalView([make_post("p1", likes_count=1, is_liked=False)])
    coordinator = MutationCoordinator(store, view, on_error=failures.append)

    entry = coordinator.apply(like("p1"))
    await coordinator.wait_idle()
    assert entry.state is SyncState.SYNCED
    assert failures == []
    assert view.get("p1").is_liked is True


@pytest.mark.asyncio
async def test_failed_update_restores_snapshot_despite_interleaving(flaky: FlakyRemoteStore) -> None:
    view: LocalView[Post] = LocalView([make_post("p1", content="before"), make_post("p2", content="other")])
    coordinator = MutationCoordinator(flaky, view)
    flaky.fail("update", "posts")

    coordinator.apply(UpdateItem(table="posts", entity_id="p1", patch={"content": "after"}))
    view.patch("p2", {"content": "touched meanwhile"})
    await coordinator.wait_idle()

    assert view.get("p1").content == "before"
    assert view.get("p2").content == "touched meanwhile"


@pytest.mark.asyncio
async def test_failed_delete_reinserts_at_original_position(flaky: FlakyRemoteStore) -> None:
    view: LocalView[Post] = LocalView([make_post("a"), make_post("b"), make_post("c")])
    coordinator = MutationCoordinator(flaky, view)
    flaky.fail("delete", "posts")

    coordinator.apply(DeleteItem(table="posts", entity_id="b"))
    assert view.ids() == ["a", "c"]
    await coordinator.wait_idle()
    assert view.ids() == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_update_of_missing_row_is_silent(store: SqlRemoteStore) -> None:
    failures: list[MutationFailed] = []
    view: LocalView[Post] = LocalView()
    coordinator = MutationCoordinator(store, view, on_error=failures.append)
    entry = coordinator.apply(UpdateItem(table="posts", entity_id="gone", patch={"content": "x"}))
    await coordinator.wait_idle()
    assert entry.state is SyncState.SYNCED
    assert failures == []


@pytest.mark.asyncio
async def test_fan_out_arriving_before_confirmation_leaves_one_entry(store: SqlRemoteStore) -> None:
    gated = GatedStore(store)
    view: LocalView[Post] = LocalView()
    coordinator = MutationCoordinator(gated, view)
    temp = str(TemporaryId.new())

    entry = coordinator.apply(CreateItem(table="posts", row={"user_id": "u1", "content": "x"}, placeholder=make_post(temp)))
    await gated.inserted.wait()
    server_id = str(gated.rows[0]["id"])
    view.insert_head(make_post(server_id, content="x"))
    assert len(view) == 2

    gated.gate.set()
    await coordinator.wait_idle()
    assert view.ids() == [server_id]
    assert entry.server_id == server_id


@pytest.mark.asyncio
async def test_timeout_rolls_back(store: SqlRemoteStore) -> None:
    gated = GatedStore(store)
    failures: list[MutationFailed] = []
    view: LocalView[Post] = LocalView()
    coordinator = MutationCoordinator(gated, view, on_error=failures.append, timeout=0.05)

    coordinator.apply(CreateItem(table="posts", row={"user_id": "u1"}, placeholder=make_post(str(TemporaryId.new()))))
    await coordinator.wait_idle()
    assert view.ids() == []
    assert len(failures) == 1


class TracingStore(FlakyRemoteStore):
    """Records how many updates overlap; the first update waits for the gate."""

    def __init__(self, inner: SqlRemoteStore) -> None:
        super().__init__(inner)
        self.gate = asyncio.Event()
        self.entered = asyncio.Event()
        self.active = 0
        self.max_active = 0
        self.order: list[str] = []

    async def update(self, table: str, filters: Sequence[Filter], patch: dict[str, Any]) -> int:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.order.append(patch["content"])
        try:
            if len(self.order) == 1:
                self.entered.set()
                await self.gate.wait()
            await asyncio.sleep(0.01)
            return await self.inner.update(table, filters, patch)
        finally:
            self.active -= 1


@pytest.mark.asyncio
async def test_updates_to_one_entity_never_overlap(store: SqlRemoteStore) -> None:
    await store.insert("posts", {"id": "p1", "user_id": "u1", "content": "x"})
    tracing = TracingStore(store)
    view: LocalView[Post] = LocalView([make_post("p1", content="x")])
    coordinator = MutationCoordinator(tracing, view)

    first = coordinator.apply(UpdateItem(table="posts", entity_id="p1", patch={"content": "a"}))
    coordinator.apply(UpdateItem(table="posts", entity_id="p1", patch={"content": "b"}))
    await tracing.entered.wait()
    tracing.gate.set()
    # The second update has been handed the lock but may not have started sending yet.
    await first.task
    coordinator.apply(UpdateItem(table="posts", entity_id="p1", patch={"content": "c"}))
    await coordinator.wait_idle()

    assert tracing.max_active == 1
    assert tracing.order == ["a", "b", "c"]
    assert (await store.select_one("posts", [eq("id", "p1")]))["content"] == "c"
    assert view.get("p1").content == "c"
    assert coordinator._entity_locks == {}


@pytest.mark.asyncio
async def test_confirmed_create_survives_a_failed_hydration(store: SqlRemoteStore) -> None:
    failures: list[MutationFailed] = []
    view: LocalView[Post] = LocalView()
    coordinator = MutationCoordinator(store, view, on_error=failures.append)
    temp = str(TemporaryId.new())

    async def hydrate(row: dict[str, Any]) -> Post:
        raise RemoteStoreError("author lookup failed")

    entry = coordinator.apply(
        CreateItem(
            table="posts",
            row={"user_id": "u1", "content": "hello"},
            placeholder=make_post(temp, content="hello"),
            resolve=hydrate,
        )
    )
    await coordinator.wait_idle()

    assert entry.state is SyncState.SYNCED
    assert view.ids() == [entry.server_id]
    confirmed = view.get(entry.server_id)
    assert confirmed.sync_state is SyncState.SYNCED
    assert confirmed.content == "hello"
    assert failures == []
    assert await store.select_one("posts", [eq("id", entry.server_id)]) is not None
