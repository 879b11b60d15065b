"""SQLAlchemy ORM models for feed posts, likes and threaded comments."""
from __future__ import annotations

from sqlalchemy import JSON, Boolean, Column, ForeignKey, String, Text

from voxspace.database import Base

from .base import CreatedAtMixin, new_uuid


class Post(CreatedAtMixin, Base):
    __tablename__ = "posts"

    id = Column(String(36), primary_key=True, default=new_uuid)
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False, default="")
    media_url = Column(String(2048), nullable=True)
    media_type = Column(String(16), nullable=True)
    space_id = Column(String(36), nullable=True, index=True)
    is_pinned = Column(Boolean, nullable=False, default=False)
    poll_options = Column(JSON, nullable=True)


class PostLike(CreatedAtMixin, Base):
    __tablename__ = "post_likes"

    post_id = Column(String(36), ForeignKey("posts.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True, index=True)


class Comment(CreatedAtMixin, Base):
    __tablename__ = "comments"

    id = Column(String(36), primary_key=True, default=new_uuid)
    post_id = Column(String(36), ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    parent_id = Column(String(36), ForeignKey("comments.id", ondelete="CASCADE"), nullable=True)
    content = Column(Text, nullable=False)


__all__ = ["Comment", "Post", "PostLike"]
