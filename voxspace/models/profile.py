"""SQLAlchemy ORM models for profiles and the social graph."""
from __future__ import annotations

from sqlalchemy import Boolean, Column, ForeignKey, String

from voxspace.database import Base

from .base import CreatedAtMixin, new_uuid


class Profile(CreatedAtMixin, Base):
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=new_uuid)
    username = Column(String(64), unique=True, nullable=False, index=True)
    full_name = Column(String(120), nullable=True)
    avatar_url = Column(String(2048), nullable=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    badge_type = Column(String(32), nullable=True)
    # Four digit vault PIN; NULL means the owner has not configured one yet
    chat_lock_pin = Column(String(4), nullable=True)


class Follow(CreatedAtMixin, Base):
    __tablename__ = "follows"

    follower_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True)
    following_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True, index=True)


class BlockedUser(CreatedAtMixin, Base):
    __tablename__ = "blocked_users"

    blocker_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True)
    blocked_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True, index=True)


__all__ = ["BlockedUser", "Follow", "Profile"]
