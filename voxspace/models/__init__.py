"""Convenience exports for ORM models."""
from .bag import BagItem
from .message import Chat, ChatParticipant, Message
from .post import Comment, Post, PostLike
from .profile import BlockedUser, Follow, Profile
from .story import Story, StoryInteraction, StoryView

__all__ = [
    "BagItem",
    "BlockedUser",
    "Chat",
    "ChatParticipant",
    "Comment",
    "Follow",
    "Message",
    "Post",
    "PostLike",
    "Profile",
    "Story",
    "StoryInteraction",
    "StoryView",
]
