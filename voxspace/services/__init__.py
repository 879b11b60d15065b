"""Convenience exports for the service layer."""
from .backup_service import BackupFormatError, BackupService, parse_backup
from .chat_service import ChatService
from .feed_service import FeedAdapter
from .local_mirror import LocalMirrorStore, MirrorError
from .mutation_service import (
    CreateItem,
    DeleteItem,
    LocalView,
    MutationCoordinator,
    MutationFailed,
    SyncQueueEntry,
    ToggleRelation,
    UpdateItem,
)
from .post_service import PostService, build_comment_tree
from .realtime import RealtimeHub, WebSocketManager
from .story_playback import PlaybackState, PlaybackTimer, StoryPlayback
from .story_service import StoryEngine, StoryPermissionError
from .validation import ContentValidationError
from .vault_service import (
    AuthMismatch,
    InvalidPinFormat,
    PinNotConfigured,
    PinStore,
    ProfilePinStore,
    QuotaExceeded,
    VaultController,
    VaultItemNotFound,
    VaultLockedError,
    VaultState,
)

__all__ = [
    "AuthMismatch",
    "BackupFormatError",
    "BackupService",
    "ChatService",
    "ContentValidationError",
    "CreateItem",
    "DeleteItem",
    "FeedAdapter",
    "InvalidPinFormat",
    "LocalMirrorStore",
    "LocalView",
    "MirrorError",
    "MutationCoordinator",
    "MutationFailed",
    "PinNotConfigured",
    "PinStore",
    "PlaybackState",
    "PlaybackTimer",
    "PostService",
    "ProfilePinStore",
    "QuotaExceeded",
    "RealtimeHub",
    "StoryEngine",
    "StoryPermissionError",
    "StoryPlayback",
    "SyncQueueEntry",
    "ToggleRelation",
    "UpdateItem",
    "VaultController",
    "VaultItemNotFound",
    "VaultLockedError",
    "VaultState",
    "WebSocketManager",
    "build_comment_tree",
    "parse_backup",
]
