# src/eoty_platform/models/report.py
"""Reports filed by users against posts."""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from eoty_platform.db.session import Base
from eoty_platform.db.time import UTCDateTime, utcnow
from eoty_platform.models.user import enum_values


class ReportReason(str, enum.Enum):
    INAPPROPRIATE = "inappropriate"
    SPAM = "spam"
    HARASSMENT = "harassment"
    OFFENSIVE = "offensive"
    OTHER = "other"


class ReportResolution(str, enum.Enum):
    PENDING = "pending"
    RESOLVED_KEPT = "resolved_kept"
    RESOLVED_HIDDEN = "resolved_hidden"
    RESOLVED_DELETED = "resolved_deleted"
    RESOLVED_WARNED = "resolved_warned"


class Report(Base):
    """A single user's complaint about a post."""

    __tablename__ = "reports"
    __table_args__ = (
        Index("ix_reports_post_resolution", "post_id", "resolution"),
        Index("ix_reports_reporter_created", "reporter_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    reporter_id: Mapped[str] = mapped_column(Text, nullable=False)
    post_id: Mapped[int] = mapped_column(Integer, ForeignKey("posts.id"), nullable=False)
    reason: Mapped[ReportReason] = mapped_column(
        Enum(ReportReason, native_enum=False, length=16, values_callable=enum_values),
        nullable=False,
    )
    detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    reporter_ip: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    resolution: Mapped[ReportResolution] = mapped_column(
        Enum(ReportResolution, native_enum=False, length=24, values_callable=enum_values),
        nullable=False,
        default=ReportResolution.PENDING,
    )
    resolved_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
