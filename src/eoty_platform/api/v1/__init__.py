"""Version 1 API endpoints."""

from .endpoints import (
    admin_moderation_router,
    discussions_router,
    forum_router,
    lessons_router,
)

__all__ = [
    "admin_moderation_router",
    "discussions_router",
    "forum_router",
    "lessons_router",
]
