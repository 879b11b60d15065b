"""Feed posts, likes, pins and threaded comments over the remote store."""
from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Iterable, Sequence

from ..clients.base import ChangeFeed, Filter, Order, RemoteStore, RemoteStoreError, eq, with_timeout
from ..models.base import utcnow
from ..schemas import AuthorSummary, Comment, PollOption, Post, SyncState, TemporaryId
from .feed_service import FeedAdapter
from .mutation_service import (
    CreateItem,
    DeleteItem,
    ErrorNotifier,
    LocalView,
    MutationCoordinator,
    SyncQueueEntry,
    ToggleRelation,
    UpdateItem,
)
from .validation import ContentValidationError, validate_post

logger = logging.getLogger(__name__)

FEED_PAGE_SIZE = 50


def build_comment_tree(comments: Iterable[Comment]) -> list[Comment]:
    """Nest comments under their parents, roots and siblings ordered by ``created_at``.

    Nodes are indexed by id first and attached by ``parent_id`` in a single
    pass; comments whose parent is missing are promoted to roots.
    """

    ordered = sorted(comments, key=lambda comment: comment.created_at)
    nodes = {comment.id: comment.model_copy(update={"children": []}) for comment in ordered}
    roots: list[Comment] = []
    for comment in ordered:
        node = nodes[comment.id]
        parent = nodes.get(comment.parent_id) if comment.parent_id else None
        if parent is None:
            roots.append(node)
        else:
            parent.children.append(node)
    return roots


class PostService:
    def __init__(
        self,
        store: RemoteStore,
        viewer_id: str,
        *,
        feed: ChangeFeed | None = None,
        on_error: ErrorNotifier | None = None,
        timeout: float | None = None,
        space_id: str | None = None,
    ) -> None:
        self._store = store
        self.viewer_id = viewer_id
        self.space_id = space_id
        self._timeout = timeout
        self.view: LocalView[Post] = LocalView()
        self.coordinator: MutationCoordinator[Post] = MutationCoordinator(
            store, self.view, on_error=on_error, timeout=timeout
        )
        self._viewer: AuthorSummary | None = None
        self.adapter: FeedAdapter[Post] | None = None
        if feed is not None:
            scope = eq("space_id", space_id) if space_id else Filter("space_id", "is", None)
            self.adapter = FeedAdapter(feed, self.view, table="posts", fetch_one=self.fetch_post, filters=[scope])

    async def _call(self, awaitable: Any) -> Any:
        return await with_timeout(awaitable, self._timeout)

    # -- reads -------------------------------------------------------------

    async def _profiles(self, user_ids: Iterable[str]) -> dict[str, dict[str, Any]]:
        ids = sorted(set(user_ids))
        if not ids:
            return {}
        rows = await self._call(self._store.select("profiles", [Filter("id", "in", ids)]))
        return {str(row["id"]): row for row in rows}

    async def _hydrate(self, rows: Sequence[dict[str, Any]]) -> list[Post]:
        if not rows:
            return []
        post_ids = [str(row["id"]) for row in rows]
        profiles = await self._profiles(str(row["user_id"]) for row in rows)
        likes = await self._call(self._store.select("post_likes", [Filter("post_id", "in", post_ids)]))
        comments = await self._call(self._store.select("comments", [Filter("post_id", "in", post_ids)]))
        like_counts = Counter(str(like["post_id"]) for like in likes)
        comment_counts = Counter(str(comment["post_id"]) for comment in comments)
        liked = {str(like["post_id"]) for like in likes if str(like["user_id"]) == self.viewer_id}

        posts: list[Post] = []
        for row in rows:
            post_id = str(row["id"])
            posts.append(
                Post.model_validate(
                    {
                        **row,
                        "author": AuthorSummary.from_profile(str(row["user_id"]), profiles.get(str(row["user_id"]))),
                        "likes_count": like_counts[post_id],
                        "comments_count": comment_counts[post_id],
                        "is_liked": post_id in liked,
                    }
                )
            )
        return posts

    async def load_feed(self, *, following_only: bool = False, limit: int = FEED_PAGE_SIZE) -> list[Post]:
        filters: list[Filter] = [eq("space_id", self.space_id) if self.space_id else Filter("space_id", "is", None)]
        if following_only:
            follows = await self._call(self._store.select("follows", [eq("follower_id", self.viewer_id)]))
            authors = [str(row["following_id"]) for row in follows] + [self.viewer_id]
            filters.append(Filter("user_id", "in", authors))
        order = [Order("is_pinned", ascending=False)] if self.space_id else []
        order.append(Order("created_at", ascending=False))
        rows = await self._call(self._store.select("posts", filters, order, limit=limit))
        posts = await self._hydrate(rows)
        self.view.reset(posts)
        return posts

    async def fetch_post(self, post_id: str) -> Post | None:
        row = await self._call(self._store.select_one("posts", [eq("id", post_id)]))
        if row is None:
            return None
        return (await self._hydrate([row]))[0]

    async def _viewer_summary(self) -> AuthorSummary:
        if self._viewer is None:
            profiles = await self._profiles([self.viewer_id])
            self._viewer = AuthorSummary.from_profile(self.viewer_id, profiles.get(self.viewer_id))
        return self._viewer

    # -- optimistic mutations ---------------------------------------------

    def create_post(
        self,
        content: str,
        *,
        author: AuthorSummary | None = None,
        media_url: str | None = None,
        media_type: str | None = None,
        poll_options: list[str] | None = None,
    ) -> SyncQueueEntry:
        options = validate_post(content, media_url=media_url, poll_options=poll_options)
        row: dict[str, Any] = {
            "user_id": self.viewer_id,
            "content": content.strip(),
            "media_url": media_url,
            "media_type": media_type,
            "space_id": self.space_id,
        }
        if options is not None:
            row["poll_options"] = [{"text": text, "count": 0} for text in options]
        placeholder = Post(
            id=str(TemporaryId.new()),
            author=author or self._viewer or AuthorSummary(id=self.viewer_id),
            content=row["content"],
            created_at=utcnow(),
            media_url=media_url,
            media_type=media_type,
            space_id=self.space_id,
            poll_options=[PollOption(text=text) for text in options] if options else None,
            sync_state=SyncState.PENDING,
        )
        return self.coordinator.apply(CreateItem(table="posts", row=row, placeholder=placeholder, resolve=self._resolve))

    async def _resolve(self, row: dict[str, Any]) -> Post:
        try:
            confirmed = await self.fetch_post(str(row["id"]))
        except RemoteStoreError:
            confirmed = None
        if confirmed is not None:
            return confirmed
        return Post.model_validate({**row, "author": await self._viewer_summary()})

    def edit_post(self, post_id: str, content: str) -> SyncQueueEntry:
        current = self.view.get(post_id)
        validate_post(content, media_url=current.media_url if current else None)
        return self.coordinator.apply(UpdateItem(table="posts", entity_id=post_id, patch={"content": content.strip()}))

    def delete_post(self, post_id: str) -> SyncQueueEntry:
        return self.coordinator.apply(DeleteItem(table="posts", entity_id=post_id))

    def toggle_like(self, post_id: str) -> SyncQueueEntry:
        return self.coordinator.apply(
            ToggleRelation(
                relation_table="post_likes",
                entity_id=post_id,
                relation_row={"post_id": post_id, "user_id": self.viewer_id},
                flag_field="is_liked",
                counter_field="likes_count",
            )
        )

    def toggle_pin(self, post_id: str) -> SyncQueueEntry:
        current = self.view.get(post_id)
        if current is None:
            raise LookupError(f"{post_id} is not in the local view")
        if not current.space_id:
            raise ContentValidationError("Only space posts can be pinned")
        return self.coordinator.apply(
            UpdateItem(table="posts", entity_id=post_id, patch={"is_pinned": not current.is_pinned})
        )

    # -- comments ----------------------------------------------------------

    async def load_comments(self, post_id: str) -> list[Comment]:
        rows = await self._call(
            self._store.select("comments", [eq("post_id", post_id)], [Order("created_at")])
        )
        profiles = await self._profiles(str(row["user_id"]) for row in rows)
        comments = [
            Comment.model_validate(
                {**row, "author": AuthorSummary.from_profile(str(row["user_id"]), profiles.get(str(row["user_id"])))}
            )
            for row in rows
        ]
        return build_comment_tree(comments)

    def _bump_comments(self, post_id: str, delta: int) -> None:
        current = self.view.get(post_id)
        if current is not None:
            self.view.patch(post_id, {"comments_count": max(0, current.comments_count + delta)})

    async def add_comment(self, post_id: str, content: str, *, parent_id: str | None = None) -> Comment:
        text = (content or "").strip()
        if not text:
            raise ContentValidationError("Comment cannot be empty")
        self._bump_comments(post_id, 1)
        try:
            row = await self._call(
                self._store.insert(
                    "comments",
                    {"post_id": post_id, "user_id": self.viewer_id, "parent_id": parent_id, "content": text},
                )
            )
        except RemoteStoreError:
            self._bump_comments(post_id, -1)
            raise
        return Comment.model_validate({**row, "author": await self._viewer_summary()})

    async def delete_comment(self, post_id: str, comment_id: str) -> bool:
        removed = await self._call(
            self._store.delete("comments", [eq("id", comment_id), eq("user_id", self.viewer_id)])
        )
        if removed:
            self._bump_comments(post_id, -removed)
        return bool(removed)


__all__ = ["FEED_PAGE_SIZE", "PostService", "build_comment_tree"]
