"""Tests for story visibility, grouping, views, likes, replies and deletion."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from conftest import FakeBlobStorage, FlakyRemoteStore
from voxspace.clients import SqlRemoteStore, eq
from voxspace.schemas import PrivacyLevel, Story, StoryCreate, StoryKind
from voxspace.services import ContentValidationError, StoryEngine, StoryPermissionError
from voxspace.services.story_service import reply_context

NOW = datetime(2024, 7, 1, 12, 0, tzinfo=timezone.utc)


def engine_for(store, blobs: FakeBlobStorage | None = None) -> StoryEngine:
    return StoryEngine(store, blobs, clock=lambda: NOW)


async def add_story(
    store: SqlRemoteStore,
    story_id: str,
    owner: str,
    *,
    minute: int = 0,
    expires_in: timedelta = timedelta(hours=24),
    privacy: str = "public",
    kind: str = "text",
    content: str | None = "hello",
) -> None:
    created = NOW - timedelta(hours=1) + timedelta(minutes=minute)
    await store.insert(
        "stories",
        {
            "id": story_id,
            "user_id": owner,
            "type": kind,
            "content": content,
            "privacy_level": privacy,
            "created_at": created,
            "expires_at": NOW + expires_in,
        },
    )


@pytest.mark.asyncio
async def test_expired_stories_never_list_even_at_the_boundary(store: SqlRemoteStore) -> None:
    await add_story(store, "at-boundary", "alice", expires_in=timedelta(0))
    await add_story(store, "expired", "alice", expires_in=-timedelta(seconds=1))
    await add_story(store, "just-alive", "alice", expires_in=timedelta(microseconds=1))

    feed = await engine_for(store).list_active("viewer")
    listed = [story.id for group in feed.groups for story in group.stories]
    assert listed == ["just-alive"]

    later = await engine_for(store).list_active("viewer", now=NOW + timedelta(microseconds=1))
    assert later.groups == []


@pytest.mark.asyncio
async def test_groups_keep_first_seen_order_and_ascending_items(store: SqlRemoteStore) -> None:
    await add_story(store, "b1", "bob", minute=1)
    await add_story(store, "a1", "alice", minute=2)
    await add_story(store, "b2", "bob", minute=3)
    await add_story(store, "mine", "viewer", minute=4)

    feed = await engine_for(store).list_active("viewer")
    assert [group.owner_id for group in feed.groups] == ["bob", "alice"]
    assert [story.id for story in feed.groups[0].stories] == ["b1", "b2"]
    assert [story.id for story in feed.own] == ["mine"]


@pytest.mark.asyncio
async def test_privacy_and_blocks_filter_other_owners(store: SqlRemoteStore) -> None:
    await add_story(store, "public", "alice", privacy="public")
    await add_story(store, "secret", "alice", privacy="only_me")
    await add_story(store, "fans", "bob", privacy="followers")
    await add_story(store, "fans-followed", "carol", privacy="followers")
    await add_story(store, "blocked", "dave", privacy="public")
    await store.insert("follows", {"follower_id": "viewer", "following_id": "carol"})
    await store.insert("blocked_users", {"blocker_id": "dave", "blocked_id": "viewer"})
    await store.insert("blocked_users", {"blocker_id": "viewer", "blocked_id": "alice"})

    feed = await engine_for(store).list_active("viewer")
    visible = {story.id for group in feed.groups for story in group.stories}
    assert visible == {"public", "fans-followed"}


@pytest.mark.asyncio
async def test_owner_sees_own_only_me_story_with_counts(store: SqlRemoteStore) -> None:
    await add_story(store, "mine", "viewer", privacy="only_me")
    await store.insert("story_views", {"story_id": "mine", "user_id": "a"})
    await store.insert("story_views", {"story_id": "mine", "user_id": "b"})
    await store.insert("story_interactions", {"story_id": "mine", "user_id": "a", "reaction_type": "like"})

    feed = await engine_for(store).list_active("viewer")
    assert len(feed.own) == 1
    assert (feed.own[0].views_count, feed.own[0].reaction_count) == (2, 1)


@pytest.mark.asyncio
async def test_record_view_is_idempotent_and_skips_self(store: SqlRemoteStore) -> None:
    await add_story(store, "s1", "alice")
    engine = engine_for(store)
    story = await engine.get_story("s1")

    assert await engine.record_view(story, "viewer") is True
    assert await engine.record_view(story, "viewer") is False
    assert await engine.record_view(story, "alice") is False

    views = await store.select("story_views", [eq("story_id", "s1")])
    assert [row["user_id"] for row in views] == ["viewer"]

    feed = await engine.list_active("viewer")
    assert feed.groups[0].stories[0].is_viewed is True


@pytest.mark.asyncio
async def test_record_view_failure_is_not_fatal(flaky: FlakyRemoteStore) -> None:
    await add_story(flaky.inner, "s1", "alice")
    engine = engine_for(flaky)
    story = await engine.get_story("s1")
    flaky.fail("insert", "story_views")
    assert await engine.record_view(story, "viewer") is False


@pytest.mark.asyncio
async def test_create_story_validates_and_uploads_media(store: SqlRemoteStore, blobs: FakeBlobStorage) -> None:
    engine = engine_for(store, blobs)
    with pytest.raises(ContentValidationError):
        await engine.create_story("alice", StoryCreate(type=StoryKind.TEXT, content="hi", ttl_hours=6))
    with pytest.raises(ContentValidationError):
        await engine.create_story("alice", StoryCreate(type=StoryKind.TEXT, content="  "))
    with pytest.raises(ContentValidationError):
        await engine.create_story("alice", StoryCreate(type=StoryKind.POLL, content="Q?", poll_options=["yes"]))

    poll = await engine.create_story(
        "alice", StoryCreate(type=StoryKind.POLL, content="Q?", poll_options=["yes", "no"], ttl_hours=12)
    )
    assert [option.model_dump() for option in poll.poll_options] == [{"text": "yes", "count": 0}, {"text": "no", "count": 0}]
    assert poll.expires_at == NOW + timedelta(hours=12)
    assert poll.privacy_level is PrivacyLevel.FOLLOWERS

    photo = await engine.create_story(
        "alice",
        StoryCreate(type=StoryKind.IMAGE, ttl_hours=48),
        media=b"\x89PNG",
        media_name="beach day.png",
        content_type="image/png",
    )
    (bucket, path), = blobs.uploads.keys()
    assert bucket == "stories"
    assert path == f"alice/{int(NOW.timestamp() * 1000)}_beach-day.png"
    assert photo.media_url == f"https://cdn.test/stories/{path}"


@pytest.mark.asyncio
async def test_like_story_handles_duplicates_and_failures(flaky: FlakyRemoteStore) -> None:
    await add_story(flaky.inner, "s1", "alice")
    engine = engine_for(flaky)
    story = await engine.get_story("s1")

    liked = await engine.like_story(story, "viewer")
    assert liked.is_liked and liked.reaction_count == 1

    again = await engine.like_story(story, "viewer")
    assert again.is_liked

    flaky.fail("insert", "story_interactions")
    other = await engine.like_story(story, "someone-else")
    assert other is story and not other.is_liked


def test_reply_context_depends_on_kind() -> None:
    base = dict(id="s", user_id="o", created_at=NOW, expires_at=NOW)
    assert reply_context(Story(type=StoryKind.VIDEO, **base)) == "Replied to your story"
    text = Story(type=StoryKind.TEXT, content="A long story about the weekend", **base)
    assert reply_context(text) == 'Replied to your story: "A long story about t..."'


@pytest.mark.asyncio
async def test_reply_goes_to_the_direct_chat(store: SqlRemoteStore) -> None:
    await add_story(store, "s1", "alice", content="short")
    engine = engine_for(store)
    story = await engine.get_story("s1")

    first = await engine.reply_to_story(story, "viewer", "love it")
    second = await engine.reply_to_story(story, "viewer", "again")
    assert first["chat_id"] == second["chat_id"]
    assert first["sender_id"] == "viewer"
    assert first["content"] == 'Replied to your story: "short..."\n\nlove it'


@pytest.mark.asyncio
async def test_only_the_owner_can_delete(store: SqlRemoteStore) -> None:
    await add_story(store, "s1", "alice")
    engine = engine_for(store)
    with pytest.raises(StoryPermissionError):
        await engine.delete_story("s1", "mallory")
    assert await engine.delete_story("s1", "alice") is True
    assert await engine.delete_story("s1", "alice") is False
