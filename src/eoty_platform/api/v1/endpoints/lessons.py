"""Lesson endpoints backing the video-session engine."""

from __future__ import annotations

from fastapi import APIRouter, status

from eoty_platform.api.v1.dependencies import (
    CurrentUserDep,
    LessonServiceDep,
    OptionalUserDep,
)
from eoty_platform.core.roles import Permission, is_allowed
from eoty_platform.schemas.common import Envelope
from eoty_platform.schemas.lesson import (
    AnnotationCreate,
    AnnotationList,
    AnnotationResponse,
    AuthorSummary,
    DiscussionCreate,
    DiscussionList,
    DiscussionResponse,
    DiscussionStats,
    LessonResponse,
    PlayableResponse,
    ProgressAck,
    ProgressReport,
    ProgressResponse,
)
from eoty_platform.services.playback import resolve

router = APIRouter(prefix="/lessons", tags=["lessons"])


@router.get("/{lesson_id}", response_model=Envelope[LessonResponse])
def get_lesson(lesson_id: int, lessons: LessonServiceDep) -> Envelope[LessonResponse]:
    return Envelope(data=LessonResponse.model_validate(lessons.get_lesson(lesson_id)))


@router.get("/{lesson_id}/playback", response_model=Envelope[PlayableResponse])
def get_playback(lesson_id: int, lessons: LessonServiceDep) -> Envelope[PlayableResponse]:
    """Resolve the lesson's video descriptor to a playable resource."""
    playable = resolve(lessons.get_lesson(lesson_id))
    return Envelope(data=PlayableResponse(**playable.as_dict()))


@router.get("/{lesson_id}/annotations", response_model=Envelope[AnnotationList])
def list_annotations(
    lesson_id: int,
    current_user: CurrentUserDep,
    lessons: LessonServiceDep,
) -> Envelope[AnnotationList]:
    """The caller's annotations plus everyone's public ones, in timeline order."""
    annotations = lessons.list_annotations(lesson_id, current_user.id)
    return Envelope(
        data=AnnotationList(
            annotations=[AnnotationResponse.model_validate(item) for item in annotations]
        )
    )


@router.post(
    "/{lesson_id}/annotations",
    response_model=Envelope[AnnotationResponse],
    status_code=status.HTTP_201_CREATED,
)
def create_annotation(
    lesson_id: int,
    body: AnnotationCreate,
    current_user: CurrentUserDep,
    lessons: LessonServiceDep,
) -> Envelope[AnnotationResponse]:
    annotation = lessons.create_annotation(
        lesson_id,
        current_user.id,
        timestamp=body.timestamp,
        kind=body.kind,
        content=body.content,
        is_public=body.is_public,
        metadata=body.metadata,
    )
    return Envelope(data=AnnotationResponse.model_validate(annotation))


@router.delete("/{lesson_id}/annotations/{annotation_id}", response_model=Envelope[dict[str, int]])
def delete_annotation(
    lesson_id: int,
    annotation_id: int,
    current_user: CurrentUserDep,
    lessons: LessonServiceDep,
) -> Envelope[dict[str, int]]:
    lessons.delete_annotation(lesson_id, annotation_id, current_user.id)
    return Envelope(data={"id": annotation_id})


@router.get("/{lesson_id}/discussions", response_model=Envelope[DiscussionList])
def list_discussions(
    lesson_id: int,
    viewer: OptionalUserDep,
    lessons: LessonServiceDep,
) -> Envelope[DiscussionList]:
    """Discussion threads, pinned first; moderated entries become placeholders."""
    views = lessons.list_discussions(lesson_id, viewer)
    show_status = viewer is not None and is_allowed(viewer.role, Permission.VIEW_HIDDEN_CONTENT)
    return Envelope(
        data=DiscussionList(
            posts=[DiscussionResponse.from_view(view, show_status=show_status) for view in views]
        )
    )


@router.post(
    "/{lesson_id}/discussions",
    response_model=Envelope[DiscussionResponse],
    status_code=status.HTTP_201_CREATED,
)
def create_discussion(
    lesson_id: int,
    body: DiscussionCreate,
    current_user: CurrentUserDep,
    lessons: LessonServiceDep,
) -> Envelope[DiscussionResponse]:
    discussion = lessons.create_discussion(
        lesson_id,
        current_user,
        content=body.content,
        video_timestamp=body.video_timestamp,
        parent_id=body.parent_id,
    )
    return Envelope(
        data=DiscussionResponse(
            id=discussion.post_id,
            lesson_id=discussion.lesson_id,
            parent_id=discussion.parent_id,
            video_timestamp=discussion.video_timestamp,
            pinned=discussion.is_pinned,
            likes_count=discussion.likes_count,
            created_at=discussion.post.created_at,
            placeholder=False,
            author=AuthorSummary.model_validate(current_user),
            author_name=current_user.display_name,
            content=discussion.post.content,
        )
    )


@router.get("/{lesson_id}/discussions/stats", response_model=Envelope[DiscussionStats])
def discussion_stats(lesson_id: int, lessons: LessonServiceDep) -> Envelope[DiscussionStats]:
    return Envelope(data=DiscussionStats(**lessons.discussion_stats(lesson_id)))


@router.get("/{lesson_id}/progress", response_model=Envelope[ProgressResponse | None])
def get_progress(
    lesson_id: int,
    current_user: CurrentUserDep,
    lessons: LessonServiceDep,
) -> Envelope[ProgressResponse | None]:
    row = lessons.get_progress(lesson_id, current_user.id)
    return Envelope(data=ProgressResponse.model_validate(row) if row is not None else None)


@router.post("/{lesson_id}/progress", response_model=Envelope[ProgressAck])
def record_progress(
    lesson_id: int,
    body: ProgressReport,
    current_user: CurrentUserDep,
    lessons: LessonServiceDep,
) -> Envelope[ProgressAck]:
    """Merge a progress report; stale or regressing reports come back unaccepted."""
    result = lessons.record_progress(
        lesson_id,
        current_user.id,
        progress=body.progress,
        last_watched_seconds=body.last_watched_seconds,
        is_completed=body.is_completed,
        reported_at=body.reported_at,
    )
    row = result.progress
    return Envelope(
        data=ProgressAck(
            accepted=result.accepted,
            stored_last_watched_seconds=row.last_watched_seconds,
            progress=row.progress,
            is_completed=row.is_completed,
        )
    )
