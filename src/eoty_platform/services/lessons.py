# src/eoty_platform/services/lessons.py
"""Lesson services backing the video-session engine.

Covers annotations, timestamp-anchored discussions and monotone progress.
Discussion entries are stored as forum posts so moderation decisions apply
to them directly.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from eoty_platform.core.errors import (
    ConflictError,
    NotFoundError,
    ValidationError,
)
from eoty_platform.core.roles import Permission, is_allowed
from eoty_platform.core.settings import settings
from eoty_platform.core.validation import validate_annotation, validate_timestamp
from eoty_platform.db.time import as_utc, utcnow
from eoty_platform.models import (
    Annotation,
    AnnotationKind,
    Discussion,
    DiscussionLike,
    ForumPost,
    Lesson,
    LessonProgress,
    PostStatus,
    User,
)
from eoty_platform.repositories.post_repo import PostRepository
from eoty_platform.services.authorization import require_permission

logger = logging.getLogger(__name__)


@dataclass
class DiscussionView:
    """A discussion entry prepared for a particular reader."""

    discussion: Discussion
    author: User | None
    placeholder: bool
    replies: list[DiscussionView] = field(default_factory=list)

    @property
    def post(self) -> ForumPost:
        return self.discussion.post


@dataclass
class ProgressResult:
    accepted: bool
    progress: LessonProgress


class LessonService:
    """Server side of the video-session engine."""

    def __init__(self, db: Session, *, clock: Callable[[], datetime] = utcnow) -> None:
        self.db = db
        self.clock = clock
        self.posts = PostRepository(db)

    def get_lesson(self, lesson_id: int) -> Lesson:
        lesson = self.db.get(Lesson, lesson_id)
        if lesson is None:
            raise NotFoundError("Lesson not found")
        return lesson

    # Annotations

    def create_annotation(
        self,
        lesson_id: int,
        user_id: str,
        *,
        timestamp: float,
        kind: AnnotationKind | str,
        content: str | None,
        is_public: bool = False,
        metadata: dict[str, Any] | None = None,
    ) -> Annotation:
        """Store an annotation at ``timestamp`` seconds into the lesson video."""
        lesson = self.get_lesson(lesson_id)
        kind, content = validate_annotation(kind, content)
        timestamp = validate_timestamp(timestamp, lesson.duration)

        annotation = Annotation(
            lesson_id=lesson.id,
            user_id=user_id,
            timestamp=timestamp,
            kind=AnnotationKind(kind),
            content=content,
            is_public=is_public,
            metadata_=metadata or None,
            created_at=self.clock(),
        )
        self.db.add(annotation)
        self.db.commit()
        return annotation

    def list_annotations(self, lesson_id: int, viewer_id: str) -> list[Annotation]:
        """Return the viewer's own and all public annotations in timeline order."""
        self.get_lesson(lesson_id)
        return list(
            self.db.scalars(
                select(Annotation)
                .where(
                    Annotation.lesson_id == lesson_id,
                    (Annotation.is_public.is_(True)) | (Annotation.user_id == viewer_id),
                )
                .order_by(Annotation.timestamp, Annotation.created_at, Annotation.id)
            )
        )

    def delete_annotation(self, lesson_id: int, annotation_id: int, user_id: str) -> None:
        """Delete one of the caller's own annotations."""
        annotation = self.db.get(Annotation, annotation_id)
        if annotation is None or annotation.lesson_id != lesson_id or annotation.user_id != user_id:
            raise NotFoundError("Annotation not found")
        self.db.delete(annotation)
        self.db.commit()

    # Discussions

    def create_discussion(
        self,
        lesson_id: int,
        author: User,
        *,
        content: str,
        video_timestamp: float | None = None,
        parent_id: int | None = None,
    ) -> Discussion:
        """Post a top-level discussion entry or a reply to one."""
        require_permission(self.db, author.id, Permission.POST_CONTENT, self.clock())
        lesson = self.get_lesson(lesson_id)
        content = (content or "").strip()
        if not content:
            raise ValidationError("Discussion content must not be empty")
        if video_timestamp is not None:
            video_timestamp = validate_timestamp(video_timestamp, lesson.duration, "video_timestamp")

        if parent_id is not None:
            parent = self.db.get(Discussion, parent_id)
            if parent is None or parent.lesson_id != lesson.id:
                raise NotFoundError("Parent discussion not found")
            if parent.parent_id is not None:
                raise ValidationError("Replies can only be added to top-level posts")
            if parent.post.status == PostStatus.DELETED:
                raise ValidationError("Cannot reply to a deleted post")

        post = self.posts.create(author_id=author.id, content=content, created_at=self.clock())
        discussion = Discussion(
            post_id=post.id,
            lesson_id=lesson.id,
            parent_id=parent_id,
            video_timestamp=video_timestamp,
        )
        self.db.add(discussion)
        self.db.commit()
        return discussion

    def get_discussion(self, discussion_id: int) -> Discussion:
        discussion = self.db.get(Discussion, discussion_id)
        if discussion is None:
            raise NotFoundError("Discussion not found")
        return discussion

    def list_discussions(self, lesson_id: int, viewer: User | None) -> list[DiscussionView]:
        """Return the lesson's discussion tree for ``viewer``.

        Top-level posts: pinned first, then newest first. Replies: oldest
        first. Posts that are not visible become placeholders unless the
        viewer may see moderated content.
        """
        self.get_lesson(lesson_id)
        moderator = viewer is not None and is_allowed(viewer.role, Permission.VIEW_HIDDEN_CONTENT)
        discussions = list(
            self.db.scalars(select(Discussion).where(Discussion.lesson_id == lesson_id))
        )
        author_ids = {discussion.post.author_id for discussion in discussions}
        authors = {
            user.id: user
            for user in self.db.scalars(select(User).where(User.id.in_(author_ids)))
        } if author_ids else {}

        views = {
            discussion.post_id: DiscussionView(
                discussion=discussion,
                author=authors.get(discussion.post.author_id),
                placeholder=(not moderator) and discussion.post.status != PostStatus.VISIBLE,
            )
            for discussion in discussions
        }
        roots: list[DiscussionView] = []
        for view in views.values():
            parent_id = view.discussion.parent_id
            if parent_id is None:
                roots.append(view)
            elif parent_id in views:
                views[parent_id].replies.append(view)

        for view in roots:
            view.replies.sort(key=lambda reply: (reply.post.created_at, reply.post.id))
        roots.sort(
            key=lambda view: (
                not view.discussion.is_pinned,
                -view.post.created_at.timestamp(),
                -view.post.id,
            )
        )
        return roots

    def pin_discussion(self, discussion_id: int, actor: User, pinned: bool = True) -> Discussion:
        """Pin or unpin a top-level discussion entry."""
        require_permission(self.db, actor.id, Permission.PIN_DISCUSSIONS, self.clock())
        discussion = self.get_discussion(discussion_id)
        if discussion.parent_id is not None:
            raise ValidationError("Only top-level posts can be pinned")
        discussion.is_pinned = pinned
        self.db.commit()
        return discussion

    def toggle_like(self, discussion_id: int, user_id: str) -> tuple[bool, int]:
        """Like or unlike a discussion entry; returns (liked, likes_count)."""
        discussion = self.get_discussion(discussion_id)
        like = self.db.get(DiscussionLike, (user_id, discussion_id))
        if like is not None:
            self.db.delete(like)
            discussion.likes_count = max(0, discussion.likes_count - 1)
            liked = False
        else:
            self.db.add(DiscussionLike(user_id=user_id, discussion_id=discussion_id, created_at=self.clock()))
            discussion.likes_count += 1
            liked = True
        self.db.commit()
        return liked, discussion.likes_count

    def discussion_stats(self, lesson_id: int) -> dict[str, int]:
        """Count the visible discussion entries of a lesson."""
        self.get_lesson(lesson_id)
        row = self.db.execute(
            select(
                func.count(Discussion.post_id),
                func.count(Discussion.parent_id),
                func.coalesce(func.sum(Discussion.likes_count), 0),
                func.coalesce(func.sum(case((Discussion.is_pinned.is_(True), 1), else_=0)), 0),
            )
            .join(ForumPost, ForumPost.id == Discussion.post_id)
            .where(Discussion.lesson_id == lesson_id, ForumPost.status == PostStatus.VISIBLE)
        ).one()
        total, replies, likes, pinned = row
        return {
            "total_discussions": total,
            "top_level_discussions": total - replies,
            "replies": replies,
            "total_likes": int(likes),
            "pinned_discussions": int(pinned),
        }

    # Progress

    def get_progress(self, lesson_id: int, user_id: str) -> LessonProgress | None:
        self.get_lesson(lesson_id)
        return self._progress_row(lesson_id, user_id)

    def record_progress(
        self,
        lesson_id: int,
        user_id: str,
        *,
        progress: float,
        last_watched_seconds: float,
        is_completed: bool = False,
        reported_at: datetime | None = None,
    ) -> ProgressResult:
        """Merge an at-least-once progress report into the stored row.

        Seconds and progress only move forward, completion latches, and a
        report older than the stored row by more than the clock-skew
        tolerance is ignored.
        """
        lesson = self.get_lesson(lesson_id)
        now = self.clock()
        reported_at = as_utc(reported_at) if reported_at is not None else now
        progress = min(max(float(progress), 0.0), 1.0)
        seconds = validate_timestamp(last_watched_seconds, 0.0, "last_watched_seconds")
        skew = timedelta(seconds=settings.progress_clock_skew_seconds)

        for attempt in range(2):
            row = self._progress_row(lesson.id, user_id, lock=True)
            if row is None:
                completed = progress >= settings.completion_threshold
                row = LessonProgress(
                    user_id=user_id,
                    lesson_id=lesson.id,
                    progress=progress,
                    last_watched_seconds=seconds,
                    is_completed=completed,
                    completed_at=reported_at if completed else None,
                    updated_at=reported_at,
                )
                self.db.add(row)
                try:
                    self.db.commit()
                except IntegrityError:
                    # Lost the first-insert race; merge into the winner's row.
                    self.db.rollback()
                    if attempt:
                        raise ConflictError("Progress row changed concurrently") from None
                    continue
                return ProgressResult(accepted=True, progress=row)

            if reported_at < row.updated_at - skew:
                logger.info(
                    "Ignoring stale progress for user %s lesson %s (%s < %s)",
                    user_id,
                    lesson.id,
                    reported_at.isoformat(),
                    row.updated_at.isoformat(),
                )
                return ProgressResult(accepted=False, progress=row)

            accepted = True
            if row.is_completed and not is_completed:
                accepted = False
            else:
                row.last_watched_seconds = max(row.last_watched_seconds, seconds)
                row.progress = max(row.progress, progress)
                if not row.is_completed and row.progress >= settings.completion_threshold:
                    row.is_completed = True
                    row.completed_at = reported_at
            row.updated_at = max(row.updated_at, reported_at)
            self.db.commit()
            return ProgressResult(accepted=accepted, progress=row)

        raise ConflictError("Progress row changed concurrently")

    def _progress_row(self, lesson_id: int, user_id: str, *, lock: bool = False) -> LessonProgress | None:
        stmt = select(LessonProgress).where(
            LessonProgress.lesson_id == lesson_id,
            LessonProgress.user_id == user_id,
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.db.scalars(stmt).first()
