"""Pydantic schemas for ephemeral stories."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..config import get_settings
from .common import UtcDatetime
from .posts import AuthorSummary, PollOption


class StoryKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    TEXT = "text"
    VOICE = "voice"
    POLL = "poll"


# Kinds whose playback duration comes from the media itself
TIMED_MEDIA_KINDS = frozenset({StoryKind.VIDEO, StoryKind.VOICE})


class PrivacyLevel(str, Enum):
    PUBLIC = "public"
    FOLLOWERS = "followers"
    ONLY_ME = "only_me"


class Story(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: str
    type: StoryKind = StoryKind.TEXT
    content: str | None = None
    media_url: str | None = None
    privacy_level: PrivacyLevel = PrivacyLevel.FOLLOWERS
    poll_options: list[PollOption] | None = None
    details: dict[str, Any] | None = None
    created_at: UtcDatetime
    expires_at: UtcDatetime
    views_count: int = 0
    reaction_count: int = 0
    is_viewed: bool = False
    is_liked: bool = False
    author: AuthorSummary | None = None

    def is_active(self, now: datetime) -> bool:
        return now < self.expires_at


class StoryGroup(BaseModel):
    owner_id: str
    owner: AuthorSummary | None = None
    stories: list[Story]


class StoryFeed(BaseModel):
    own: list[Story] = Field(default_factory=list)
    groups: list[StoryGroup] = Field(default_factory=list)


class StoryCreate(BaseModel):
    type: StoryKind = StoryKind.TEXT
    content: str | None = Field(default=None, max_length=2000)
    media_url: str | None = None
    privacy_level: PrivacyLevel = PrivacyLevel.FOLLOWERS
    ttl_hours: int = Field(default_factory=lambda: get_settings().story_default_ttl_hours)
    poll_options: list[str] | None = None
    details: dict[str, Any] | None = None


class ViewRecordResponse(BaseModel):
    recorded: bool


__all__ = [
    "PrivacyLevel",
    "Story",
    "StoryCreate",
    "StoryFeed",
    "StoryGroup",
    "StoryKind",
    "TIMED_MEDIA_KINDS",
    "ViewRecordResponse",
]
