"""Convenience exports for Pydantic schemas."""
from .common import ChangeType, ContentKind, SyncState, UtcDatetime
from .ids import EntityId, PermanentId, TemporaryId, is_temporary, new_permanent_id, parse_entity_id
from .messages import BACKUP_VERSION, ChatBackup, ChatMessage, RestoreSummary
from .posts import AuthorSummary, Comment, PollOption, Post, PostCreate
from .realtime import ChangeEvent
from .stories import (
    TIMED_MEDIA_KINDS,
    PrivacyLevel,
    Story,
    StoryCreate,
    StoryFeed,
    StoryGroup,
    StoryKind,
    ViewRecordResponse,
)
from .vault import VaultItem, VaultItemCreate, VaultItemType, VaultPinChange, VaultUnlock, VaultUsage

__all__ = [
    "AuthorSummary",
    "BACKUP_VERSION",
    "ChangeEvent",
    "ChangeType",
    "ChatBackup",
    "ChatMessage",
    "Comment",
    "ContentKind",
    "EntityId",
    "PermanentId",
    "PollOption",
    "Post",
    "PostCreate",
    "PrivacyLevel",
    "RestoreSummary",
    "Story",
    "StoryCreate",
    "StoryFeed",
    "StoryGroup",
    "StoryKind",
    "SyncState",
    "TIMED_MEDIA_KINDS",
    "TemporaryId",
    "UtcDatetime",
    "VaultItem",
    "VaultItemCreate",
    "VaultItemType",
    "VaultPinChange",
    "VaultUnlock",
    "VaultUsage",
    "ViewRecordResponse",
    "is_temporary",
    "new_permanent_id",
    "parse_entity_id",
]
