"""Forum endpoints: posting, reading and reporting."""

from __future__ import annotations

from fastapi import APIRouter, Header, Request, status

from eoty_platform.api.v1.dependencies import (
    CurrentUserDep,
    ModerationServiceDep,
    OptionalUserDep,
    SessionDep,
    client_ip,
)
from eoty_platform.schemas.common import Envelope, IdResponse
from eoty_platform.schemas.forum import PostCreate, PostResponse
from eoty_platform.schemas.moderation import ReportCreate, ReportCreated
from eoty_platform.services.forum import ForumService

router = APIRouter(prefix="/forum", tags=["forum"])


@router.post(
    "/topics/{topic_id}/posts",
    response_model=Envelope[IdResponse],
    status_code=status.HTTP_201_CREATED,
)
def create_post(
    topic_id: int,
    body: PostCreate,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> Envelope[IdResponse]:
    post = ForumService(db).create_post(topic_id, current_user, body.content)
    return Envelope(data=IdResponse(id=post.id))


@router.get("/topics/{topic_id}/posts", response_model=Envelope[list[PostResponse]])
def list_posts(
    topic_id: int,
    viewer: OptionalUserDep,
    db: SessionDep,
) -> Envelope[list[PostResponse]]:
    """List a topic's posts; moderated posts are only shown to admins."""
    posts = ForumService(db).list_posts(topic_id, viewer)
    return Envelope(data=[PostResponse.model_validate(post) for post in posts])


@router.post(
    "/posts/{post_id}/report",
    response_model=Envelope[ReportCreated],
    status_code=status.HTTP_201_CREATED,
)
def report_post(
    post_id: int,
    body: ReportCreate,
    request: Request,
    current_user: CurrentUserDep,
    moderation: ModerationServiceDep,
    x_forwarded_for: str | None = Header(None),
) -> Envelope[ReportCreated]:
    """File a report; repeats inside the dedup window return the same id."""
    report_id = moderation.report(
        post_id,
        current_user.id,
        body.reason,
        body.detail,
        reporter_ip=client_ip(x_forwarded_for, request.client.host if request.client else None),
    )
    return Envelope(data=ReportCreated(report_id=report_id))
