"""Ephemeral stories: creation, visibility filtering, grouping and interactions.

Expiry is enforced at the query boundary (``expires_at > now`` is pushed to
the store) and re-checked on the validated rows, so an expired story never
reaches a listing even if the store's clock and ours disagree.
"""
from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

from ..clients.base import BlobStorage, DuplicateKeyError, Filter, Order, RemoteStore, RemoteStoreError, eq, with_timeout
from ..models.base import utcnow
from ..schemas import AuthorSummary, PrivacyLevel, Story, StoryCreate, StoryFeed, StoryGroup, StoryKind
from .storage_service import safe_object_name
from .validation import ContentValidationError, validate_story

logger = logging.getLogger(__name__)

STORY_BUCKET = "stories"
REPLY_PREVIEW_CHARS = 20


class StoryPermissionError(RuntimeError):
    """Raised when a user tries to delete a story they do not own."""


class StoryStorageUnavailable(RuntimeError):
    """Raised when a media story is created without a blob storage backend."""


def reply_context(story: Story) -> str:
    if story.type in (StoryKind.IMAGE, StoryKind.VIDEO):
        return "Replied to your story"
    preview = (story.content or "")[:REPLY_PREVIEW_CHARS]
    return f'Replied to your story: "{preview}..."'


class StoryEngine:
    def __init__(
        self,
        store: RemoteStore,
        storage: BlobStorage | None = None,
        *,
        timeout: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._storage = storage
        self._timeout = timeout
        self._clock = clock

    async def _call(self, awaitable: Any) -> Any:
        return await with_timeout(awaitable, self._timeout)

    async def _select_in(self, table: str, column: str, values: Iterable[str], *extra: Filter) -> list[dict[str, Any]]:
        values = sorted(set(values))
        if not values:
            return []
        return await self._call(self._store.select(table, [Filter(column, "in", values), *extra]))

    async def get_story(self, story_id: str) -> Story | None:
        row = await self._call(self._store.select_one("stories", [eq("id", story_id)]))
        return Story.model_validate(row) if row is not None else None

    async def list_active(self, viewer_id: str, *, now: datetime | None = None) -> StoryFeed:
        now = now or self._clock()
        rows = await self._call(
            self._store.select("stories", [Filter("expires_at", "gt", now)], [Order("created_at")])
        )
        stories = [story for story in (Story.model_validate(row) for row in rows) if story.is_active(now)]

        own = [story for story in stories if story.user_id == viewer_id]
        others = [story for story in stories if story.user_id != viewer_id]
        owners = {story.user_id for story in others}

        blockers = {
            str(row["blocker_id"])
            for row in await self._select_in("blocked_users", "blocker_id", owners, eq("blocked_id", viewer_id))
        }
        followed = {
            str(row["following_id"])
            for row in await self._select_in("follows", "following_id", owners, eq("follower_id", viewer_id))
        }

        def admits(story: Story) -> bool:
            if story.user_id in blockers or story.privacy_level is PrivacyLevel.ONLY_ME:
                return False
            if story.privacy_level is PrivacyLevel.FOLLOWERS:
                return story.user_id in followed
            return True

        visible = [story for story in others if admits(story)]
        profiles = {
            str(row["id"]): row
            for row in await self._select_in("profiles", "id", [viewer_id, *(s.user_id for s in visible)])
        }

        own_ids = [story.id for story in own]
        view_counts = Counter(str(row["story_id"]) for row in await self._select_in("story_views", "story_id", own_ids))
        reaction_counts = Counter(
            str(row["story_id"]) for row in await self._select_in("story_interactions", "story_id", own_ids)
        )
        me = AuthorSummary.from_profile(viewer_id, profiles.get(viewer_id))
        own = [
            story.model_copy(
                update={"views_count": view_counts[story.id], "reaction_count": reaction_counts[story.id], "author": me}
            )
            for story in own
        ]

        visible_ids = [story.id for story in visible]
        seen = {
            str(row["story_id"])
            for row in await self._select_in("story_views", "story_id", visible_ids, eq("user_id", viewer_id))
        }
        liked = {
            str(row["story_id"])
            for row in await self._select_in(
                "story_interactions", "story_id", visible_ids, eq("user_id", viewer_id), eq("reaction_type", "like")
            )
        }

        groups: dict[str, StoryGroup] = {}
        for story in visible:
            author = AuthorSummary.from_profile(story.user_id, profiles.get(story.user_id))
            enriched = story.model_copy(update={"is_viewed": story.id in seen, "is_liked": story.id in liked, "author": author})
            group = groups.get(story.user_id)
            if group is None:
                groups[story.user_id] = StoryGroup(owner_id=story.user_id, owner=author, stories=[enriched])
            else:
                group.stories.append(enriched)
        return StoryFeed(own=own, groups=list(groups.values()))

    async def create_story(
        self,
        owner_id: str,
        payload: StoryCreate,
        *,
        media: bytes | None = None,
        media_name: str | None = None,
        content_type: str = "application/octet-stream",
    ) -> Story:
        options = validate_story(
            payload.type,
            content=payload.content,
            ttl_hours=payload.ttl_hours,
            has_media=media is not None or bool(payload.media_url),
            poll_options=payload.poll_options,
        )
        now = self._clock()
        media_url = payload.media_url
        if media is not None:
            if self._storage is None:
                raise StoryStorageUnavailable("Blob storage is not configured")
            path = f"{owner_id}/{int(now.timestamp() * 1000)}_{safe_object_name(media_name or 'upload')}"
            await self._call(self._storage.upload(STORY_BUCKET, path, media, content_type=content_type))
            media_url = self._storage.get_public_url(STORY_BUCKET, path)

        row: dict[str, Any] = {
            "user_id": owner_id,
            "type": payload.type.value,
            "content": (payload.content or "").strip() or None,
            "media_url": media_url,
            "privacy_level": payload.privacy_level.value,
            "details": payload.details or {},
            "created_at": now,
            "expires_at": now + timedelta(hours=payload.ttl_hours),
        }
        if options is not None:
            row["poll_options"] = [{"text": text, "count": 0} for text in options]
        created = await self._call(self._store.insert("stories", row))
        logger.info("Story %s created by %s (expires %s)", created.get("id"), owner_id, row["expires_at"].isoformat())
        return Story.model_validate(created)

    async def record_view(self, story: Story, viewer_id: str) -> bool:
        """Record that ``viewer_id`` saw ``story``; returns whether a new record was written."""

        if story.user_id == viewer_id:
            return False
        try:
            await self._call(
                self._store.insert("story_views", {"story_id": story.id, "user_id": viewer_id, "viewed_at": self._clock()})
            )
        except DuplicateKeyError:
            return False
        except RemoteStoreError as exc:
            logger.warning("Failed to record view of story %s by %s: %s", story.id, viewer_id, exc)
            return False
        return True

    async def like_story(self, story: Story, viewer_id: str) -> Story:
        """Return ``story`` marked liked, or unchanged when the remote write fails."""

        if story.is_liked:
            return story
        liked = story.model_copy(update={"is_liked": True, "reaction_count": story.reaction_count + 1})
        try:
            await self._call(
                self._store.insert(
                    "story_interactions",
                    {"story_id": story.id, "user_id": viewer_id, "reaction_type": "like"},
                )
            )
        except DuplicateKeyError:
            return liked
        except RemoteStoreError as exc:
            logger.warning("Failed to like story %s: %s", story.id, exc)
            return story
        return liked

    async def reply_to_story(self, story: Story, sender_id: str, text: str) -> dict[str, Any]:
        body = (text or "").strip()
        if not body:
            raise ContentValidationError("Reply cannot be empty")
        chat_id = await self._call(self._store.get_or_create_dm(sender_id, story.user_id))
        return await self._call(
            self._store.insert(
                "messages",
                {
                    "chat_id": chat_id,
                    "sender_id": sender_id,
                    "content": f"{reply_context(story)}\n\n{body}",
                    "type": "text",
                },
            )
        )

    async def delete_story(self, story_id: str, actor_id: str) -> bool:
        story = await self.get_story(story_id)
        if story is None:
            return False
        if story.user_id != actor_id:
            raise StoryPermissionError("Only the owner can delete this story")
        removed = await self._call(self._store.delete("stories", [eq("id", story_id), eq("user_id", actor_id)]))
        return bool(removed)


__all__ = [
    "REPLY_PREVIEW_CHARS",
    "STORY_BUCKET",
    "StoryEngine",
    "StoryPermissionError",
    "StoryStorageUnavailable",
    "reply_context",
]
