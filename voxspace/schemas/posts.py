"""Pydantic schemas for feed posts and threaded comments."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .common import SyncState, UtcDatetime


class AuthorSummary(BaseModel):
    id: str
    name: str = "Unknown"
    username: str = "user"
    avatar_url: str | None = None
    is_verified: bool = False
    badge_type: str | None = None

    @classmethod
    def from_profile(cls, user_id: str, profile: dict[str, Any] | None) -> "AuthorSummary":
        profile = profile or {}
        return cls(
            id=user_id,
            name=profile.get("full_name") or "Unknown",
            username=profile.get("username") or "user",
            avatar_url=profile.get("avatar_url"),
            is_verified=bool(profile.get("is_verified")),
            badge_type=profile.get("badge_type"),
        )


class PollOption(BaseModel):
    text: str
    count: int = 0


class Post(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    author: AuthorSummary
    content: str = ""
    created_at: UtcDatetime
    media_url: str | None = None
    media_type: str | None = None
    space_id: str | None = None
    is_pinned: bool = False
    likes_count: int = 0
    comments_count: int = 0
    is_liked: bool = False
    user_vote: int | None = None
    poll_options: list[PollOption] | None = None
    sync_state: SyncState = SyncState.SYNCED


class Comment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    post_id: str
    user_id: str
    content: str
    created_at: UtcDatetime
    parent_id: str | None = None
    author: AuthorSummary | None = None
    children: list["Comment"] = Field(default_factory=list)


class PostCreate(BaseModel):
    content: str = Field(default="", max_length=5000)
    media_url: str | None = None
    media_type: str | None = None
    space_id: str | None = None
    poll_options: list[str] | None = None


__all__ = ["AuthorSummary", "Comment", "PollOption", "Post", "PostCreate"]
