"""API endpoint modules for version 1."""

from .admin_moderation import router as admin_moderation_router
from .discussions import router as discussions_router
from .forum import router as forum_router
from .lessons import router as lessons_router

__all__ = [
    "admin_moderation_router",
    "discussions_router",
    "forum_router",
    "lessons_router",
]
