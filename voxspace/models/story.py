"""SQLAlchemy ORM models for ephemeral stories and their interactions."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, Text

from voxspace.database import Base

from .base import CreatedAtMixin, new_uuid, utcnow


class Story(CreatedAtMixin, Base):
    __tablename__ = "stories"

    id = Column(String(36), primary_key=True, default=new_uuid)
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(16), nullable=False, default="text")
    content = Column(Text, nullable=True)
    media_url = Column(String(2048), nullable=True)
    privacy_level = Column(String(16), nullable=False, default="followers")
    poll_options = Column(JSON, nullable=True)
    details = Column(JSON, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    def is_active(self, *, reference: datetime | None = None) -> bool:
        return (reference or utcnow()) < self.expires_at


class StoryView(Base):
    __tablename__ = "story_views"

    story_id = Column(String(36), ForeignKey("stories.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True, index=True)
    viewed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class StoryInteraction(CreatedAtMixin, Base):
    __tablename__ = "story_interactions"

    story_id = Column(String(36), ForeignKey("stories.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True)
    reaction_type = Column(String(16), primary_key=True, default="like")


__all__ = ["Story", "StoryInteraction", "StoryView"]
