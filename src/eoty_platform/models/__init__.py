# src/eoty_platform/models/__init__.py
"""SQLAlchemy models for the EOTY platform."""

from .lesson import (
    Annotation,
    AnnotationKind,
    Discussion,
    DiscussionLike,
    Lesson,
    LessonProgress,
    VideoProvider,
)
from .moderation import (
    AnomalyType,
    AuditAnomaly,
    AuditEntry,
    AuditImmutableError,
    ModerationAction,
    ModerationActionType,
    Severity,
    UserNotification,
)
from .post import ForumPost, ForumTopic, PostStatus
from .report import Report, ReportReason, ReportResolution
from .user import User

__all__ = [
    "Annotation", "AnnotationKind", "Discussion", "DiscussionLike",
    "Lesson", "LessonProgress", "VideoProvider",
    "AnomalyType", "AuditAnomaly", "AuditEntry", "AuditImmutableError",
    "ModerationAction", "ModerationActionType", "Severity", "UserNotification",
    "ForumPost", "ForumTopic", "PostStatus",
    "Report", "ReportReason", "ReportResolution",
    "User",
]
