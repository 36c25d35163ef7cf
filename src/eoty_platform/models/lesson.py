# src/eoty_platform/models/lesson.py
"""Lessons and the per-lesson interactive content around the video."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Enum,
    Float,
    ForeignKey,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from eoty_platform.db.session import Base
from eoty_platform.db.time import UTCDateTime, utcnow
from eoty_platform.models.post import ForumPost
from eoty_platform.models.user import enum_values


class VideoProvider(str, enum.Enum):
    ADAPTIVE_STREAM = "adaptive_stream"
    OBJECT_URL = "object_url"
    NONE = "none"


class AnnotationKind(str, enum.Enum):
    HIGHLIGHT = "highlight"
    COMMENT = "comment"
    BOOKMARK = "bookmark"


class Lesson(Base):
    """Lesson with its video descriptor."""

    __tablename__ = "lessons"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    # Null when the provider should be inferred from the references present.
    video_provider: Mapped[VideoProvider | None] = mapped_column(
        Enum(VideoProvider, native_enum=False, length=16, values_callable=enum_values),
        nullable=True,
    )
    stream_ref: Mapped[str | None] = mapped_column(Text, nullable=True)
    object_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)


class Annotation(Base):
    """Timestamped highlight, comment or bookmark on a lesson video."""

    __tablename__ = "annotations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    lesson_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("lessons.id"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[float] = mapped_column(Float, nullable=False)
    kind: Mapped[AnnotationKind] = mapped_column(
        Enum(AnnotationKind, native_enum=False, length=16, values_callable=enum_values),
        nullable=False,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Column is called "metadata"; the attribute avoids DeclarativeBase.metadata.
    metadata_: Mapped[dict[str, Any] | None] = mapped_column(
        JSON,
        nullable=True,
        name="metadata",
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class Discussion(Base):
    """Lesson discussion entry.

    Shares its primary key with the underlying ``posts`` row, which holds the
    author, content and moderation status.
    """

    __tablename__ = "discussions"

    post_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("posts.id"),
        primary_key=True,
    )
    lesson_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("lessons.id"),
        nullable=False,
        index=True,
    )
    parent_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("discussions.post_id"),
        nullable=True,
    )
    video_timestamp: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_pinned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    likes_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    post: Mapped[ForumPost] = relationship(ForumPost, lazy="joined")

    @property
    def id(self) -> int:
        return self.post_id


class DiscussionLike(Base):
    __tablename__ = "discussion_likes"

    user_id: Mapped[str] = mapped_column(Text, primary_key=True)
    discussion_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("discussions.post_id"),
        primary_key=True,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class LessonProgress(Base):
    """Monotone per-(user, lesson) viewing progress."""

    __tablename__ = "lesson_progress"
    __table_args__ = (UniqueConstraint("user_id", "lesson_id", name="uq_lesson_progress_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    lesson_id: Mapped[int] = mapped_column(Integer, ForeignKey("lessons.id"), nullable=False)
    progress: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    last_watched_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
