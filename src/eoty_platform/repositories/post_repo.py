"""Data access helpers for working with forum posts."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from eoty_platform.db.time import utcnow
from eoty_platform.models import ForumPost, PostStatus, Report, ReportResolution

__all__ = ["PostRepository"]


class PostRepository:
    """Thin wrapper around database access for post entities."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def get_by_id(self, post_id: int) -> ForumPost | None:
        """Return a post by identifier."""
        return self.session.get(ForumPost, post_id)

    def get_for_update(self, post_id: int) -> ForumPost | None:
        """Return a post with a row lock, refreshing any stale identity-map copy."""
        return self.session.scalars(
            select(ForumPost)
            .where(ForumPost.id == post_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).first()

    def list_by_topic(self, topic_id: int, *, include_moderated: bool = False) -> list[ForumPost]:
        """Return a topic's posts oldest first, hiding moderated posts unless asked."""
        stmt = select(ForumPost).where(ForumPost.topic_id == topic_id)
        if not include_moderated:
            stmt = stmt.where(ForumPost.status == PostStatus.VISIBLE)
        return list(self.session.scalars(stmt.order_by(ForumPost.created_at, ForumPost.id)))

    def pending_reports(self, post_id: int) -> list[Report]:
        """Return the pending reports on a post, locked for resolution."""
        return list(
            self.session.scalars(
                select(Report)
                .where(Report.post_id == post_id, Report.resolution == ReportResolution.PENDING)
                .order_by(Report.created_at, Report.id)
                .with_for_update()
            )
        )

    def create(
        self,
        *,
        author_id: str,
        content: str,
        topic_id: int | None = None,
        created_at: datetime | None = None,
    ) -> ForumPost:
        """Insert a new post and return the persisted ORM instance.

        Args:
            author_id: Opaque id of the author.
            content: Post body.
            topic_id: Forum topic, or None for lesson discussion posts.
            created_at: Creation time; defaults to now.
        """
        post = ForumPost(
            author_id=author_id,
            content=content,
            topic_id=topic_id,
            created_at=created_at or utcnow(),
        )
        self.session.add(post)
        self.session.flush()
        return post
