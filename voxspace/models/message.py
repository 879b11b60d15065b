"""SQLAlchemy ORM models for chats and direct messages."""
from __future__ import annotations

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String, Text

from voxspace.database import Base

from .base import CreatedAtMixin, new_uuid


class Chat(CreatedAtMixin, Base):
    __tablename__ = "chats"

    id = Column(String(36), primary_key=True, default=new_uuid)
    name = Column(String(120), nullable=True)
    is_group = Column(Boolean, nullable=False, default=False)


class ChatParticipant(Base):
    __tablename__ = "chat_participants"

    chat_id = Column(String(36), ForeignKey("chats.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True, index=True)
    status = Column(String(16), nullable=False, default="accepted")
    last_read_at = Column(DateTime(timezone=True), nullable=True)


class Message(CreatedAtMixin, Base):
    __tablename__ = "messages"

    id = Column(String(64), primary_key=True, default=new_uuid)
    chat_id = Column(String(36), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False, default="")
    type = Column(String(16), nullable=False, default="text")
    media_url = Column(String(2048), nullable=True)
    details = Column(JSON, nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False)


__all__ = ["Chat", "ChatParticipant", "Message"]
