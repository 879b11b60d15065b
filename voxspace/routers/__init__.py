"""Aggregate router exports."""
from .backup import router as backup_router
from .bag import router as bag_router
from .realtime import router as realtime_router
from .stories import router as stories_router

__all__ = [
    "backup_router",
    "bag_router",
    "realtime_router",
    "stories_router",
]
