# src/eoty_platform/services/forum.py
"""Forum read and write paths guarded by moderation state."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from sqlalchemy.orm import Session

from eoty_platform.core.errors import NotFoundError, ValidationError
from eoty_platform.core.roles import Permission, is_allowed
from eoty_platform.db.time import utcnow
from eoty_platform.models import ForumPost, ForumTopic, User
from eoty_platform.repositories.post_repo import PostRepository
from eoty_platform.services.authorization import require_permission


class ForumService:
    """Create and list forum posts."""

    def __init__(self, db: Session, *, clock: Callable[[], datetime] = utcnow) -> None:
        self.db = db
        self.clock = clock
        self.posts = PostRepository(db)

    def create_post(self, topic_id: int, author: User, content: str) -> ForumPost:
        require_permission(self.db, author.id, Permission.POST_CONTENT, self.clock())
        if self.db.get(ForumTopic, topic_id) is None:
            raise NotFoundError("Topic not found")
        if not content or not content.strip():
            raise ValidationError("Post content must not be empty")
        post = self.posts.create(author_id=author.id, content=content.strip(), topic_id=topic_id)
        self.db.commit()
        return post

    def list_posts(self, topic_id: int, viewer: User | None) -> list[ForumPost]:
        """Return a topic's posts; only admins see hidden, banned or deleted ones."""
        if self.db.get(ForumTopic, topic_id) is None:
            raise NotFoundError("Topic not found")
        include_moderated = viewer is not None and is_allowed(
            viewer.role, Permission.VIEW_HIDDEN_CONTENT
        )
        return self.posts.list_by_topic(topic_id, include_moderated=include_moderated)
