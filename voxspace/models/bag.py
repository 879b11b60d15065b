"""SQLAlchemy ORM model for private "My Bag" vault items."""
from __future__ import annotations

from sqlalchemy import JSON, Boolean, Column, ForeignKey, String, Text

from voxspace.database import Base

from .base import CreatedAtMixin, new_uuid


class BagItem(CreatedAtMixin, Base):
    __tablename__ = "my_bag_items"

    id = Column(String(64), primary_key=True, default=new_uuid)
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(16), nullable=False, default="note")
    content = Column(Text, nullable=False, default="")
    title = Column(String(255), nullable=True)
    category = Column(String(32), nullable=True)
    details = Column(JSON, nullable=True)
    is_locked = Column(Boolean, nullable=False, default=False)


__all__ = ["BagItem"]
