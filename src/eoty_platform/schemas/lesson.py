# src/eoty_platform/schemas/lesson.py
"""Lesson, annotation, discussion and progress schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from eoty_platform.models import AnnotationKind, PostStatus, User, VideoProvider
from eoty_platform.services.lessons import DiscussionView


class LessonResponse(BaseModel):
    id: int
    title: str
    video_provider: VideoProvider | None
    stream_ref: str | None
    object_url: str | None
    duration: float

    model_config = ConfigDict(from_attributes=True)


class PlayableResponse(BaseModel):
    """Tagged playable resource; only the fields of its kind are set."""

    kind: str
    playback_id: str | None = None
    url: str | None = None
    reason: str | None = None


class AnnotationCreate(BaseModel):
    timestamp: float = Field(..., description="Seconds into the video")
    kind: AnnotationKind = Field(..., alias="type")
    content: str | None = Field(None, max_length=5000)
    is_public: bool = False
    metadata: dict[str, Any] | None = None

    model_config = ConfigDict(populate_by_name=True)


class AnnotationResponse(BaseModel):
    id: int
    lesson_id: int
    user_id: str
    timestamp: float
    type: AnnotationKind = Field(..., validation_alias=AliasChoices("kind", "type"))
    content: str
    is_public: bool
    metadata: dict[str, Any] | None = Field(None, validation_alias="metadata_")
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AnnotationList(BaseModel):
    annotations: list[AnnotationResponse]


class DiscussionCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)
    video_timestamp: float | None = None
    parent_id: int | None = None


class AuthorSummary(BaseModel):
    id: str
    first_name: str
    last_name: str

    model_config = ConfigDict(from_attributes=True)


def _author_summary(author_id: str, author: User | None, withheld: bool) -> AuthorSummary | None:
    if withheld:
        return None
    if author is None:
        return AuthorSummary(id=author_id, first_name="", last_name="")
    return AuthorSummary.model_validate(author)


class DiscussionResponse(BaseModel):
    """A discussion entry; placeholders carry no author or content."""

    id: int
    lesson_id: int
    parent_id: int | None
    video_timestamp: float | None
    pinned: bool
    likes_count: int
    created_at: datetime
    placeholder: bool
    status: PostStatus | None = None
    author: AuthorSummary | None = None
    author_name: str | None = None
    content: str | None = None
    replies: list[DiscussionResponse] = Field(default_factory=list)

    @classmethod
    def from_view(cls, view: DiscussionView, *, show_status: bool = False) -> DiscussionResponse:
        discussion = view.discussion
        post = view.post
        withheld = view.placeholder
        return cls(
            id=discussion.post_id,
            lesson_id=discussion.lesson_id,
            parent_id=discussion.parent_id,
            video_timestamp=discussion.video_timestamp,
            pinned=discussion.is_pinned,
            likes_count=discussion.likes_count,
            created_at=post.created_at,
            placeholder=withheld,
            status=PostStatus(post.status) if show_status else None,
            author=_author_summary(post.author_id, view.author, withheld),
            author_name=None if withheld or view.author is None else view.author.display_name,
            content=None if withheld else post.content,
            replies=[cls.from_view(reply, show_status=show_status) for reply in view.replies],
        )


DiscussionResponse.model_rebuild()


class DiscussionList(BaseModel):
    posts: list[DiscussionResponse]


class DiscussionStats(BaseModel):
    total_discussions: int
    top_level_discussions: int
    replies: int
    total_likes: int
    pinned_discussions: int


class PinRequest(BaseModel):
    pinned: bool = True


class LikeResponse(BaseModel):
    liked: bool
    likes_count: int


class ProgressReport(BaseModel):
    progress: float = Field(..., ge=0.0, le=1.0)
    last_watched_seconds: float = Field(..., ge=0.0)
    is_completed: bool = False
    reported_at: datetime | None = None


class ProgressResponse(BaseModel):
    lesson_id: int
    progress: float
    last_watched_seconds: float
    is_completed: bool
    completed_at: datetime | None
    updated_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class ProgressAck(BaseModel):
    accepted: bool
    stored_last_watched_seconds: float
    progress: float
    is_completed: bool
