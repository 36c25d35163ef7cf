# src/eoty_platform/models/post.py
"""SQLAlchemy models for forum topics and posts."""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from eoty_platform.db.session import Base
from eoty_platform.db.time import UTCDateTime, utcnow
from eoty_platform.models.user import enum_values


class PostStatus(str, enum.Enum):
    VISIBLE = "visible"
    HIDDEN = "hidden"
    DELETED = "deleted"
    BANNED = "banned"


class ForumTopic(Base):
    """Forum topic grouping posts."""

    __tablename__ = "forum_topics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class ForumPost(Base):
    """Moderatable post.

    Forum replies and lesson discussion entries are both stored here, so a
    moderation decision is visible from every view of the post.
    """

    __tablename__ = "posts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    author_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    # Null for lesson discussion posts.
    topic_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("forum_topics.id"),
        nullable=True,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    status: Mapped[PostStatus] = mapped_column(
        Enum(PostStatus, native_enum=False, length=16, values_callable=enum_values),
        nullable=False,
        default=PostStatus.VISIBLE,
    )
    ban_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    report_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Set when report_count crosses the queue threshold.
    flagged_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    assigned_to: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Touched by every moderation action so each one bumps the version.
    last_action_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
