"""Actions on a single lesson discussion entry."""

from __future__ import annotations

from fastapi import APIRouter, Header, Request, status

from eoty_platform.api.v1.dependencies import (
    CurrentUserDep,
    LessonServiceDep,
    ModerationServiceDep,
    client_ip,
)
from eoty_platform.schemas.common import Envelope
from eoty_platform.schemas.lesson import LikeResponse, PinRequest
from eoty_platform.schemas.moderation import ReportCreate, ReportCreated

router = APIRouter(prefix="/discussions", tags=["discussions"])


@router.post(
    "/{discussion_id}/report",
    response_model=Envelope[ReportCreated],
    status_code=status.HTTP_201_CREATED,
)
def report_discussion(
    discussion_id: int,
    body: ReportCreate,
    request: Request,
    current_user: CurrentUserDep,
    lessons: LessonServiceDep,
    moderation: ModerationServiceDep,
    x_forwarded_for: str | None = Header(None),
) -> Envelope[ReportCreated]:
    """Report a discussion entry into the forum moderation pipeline."""
    discussion = lessons.get_discussion(discussion_id)
    report_id = moderation.report(
        discussion.post_id,
        current_user.id,
        body.reason,
        body.detail,
        reporter_ip=client_ip(x_forwarded_for, request.client.host if request.client else None),
    )
    return Envelope(data=ReportCreated(report_id=report_id))


@router.post("/{discussion_id}/pin", response_model=Envelope[dict[str, bool | int]])
def pin_discussion(
    discussion_id: int,
    current_user: CurrentUserDep,
    lessons: LessonServiceDep,
    body: PinRequest | None = None,
) -> Envelope[dict[str, bool | int]]:
    pinned = body.pinned if body else True
    discussion = lessons.pin_discussion(discussion_id, current_user, pinned)
    return Envelope(data={"id": discussion.post_id, "pinned": discussion.is_pinned})


@router.post("/{discussion_id}/like", response_model=Envelope[LikeResponse])
def toggle_like(
    discussion_id: int,
    current_user: CurrentUserDep,
    lessons: LessonServiceDep,
) -> Envelope[LikeResponse]:
    liked, likes_count = lessons.toggle_like(discussion_id, current_user.id)
    return Envelope(data=LikeResponse(liked=liked, likes_count=likes_count))
