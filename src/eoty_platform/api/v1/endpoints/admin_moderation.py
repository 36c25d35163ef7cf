"""Admin moderation endpoints: reports, the reviewer queue and anomalies."""

from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Query

from eoty_platform.api.v1.dependencies import CurrentUserDep, ModerationServiceDep
from eoty_platform.core.roles import Permission
from eoty_platform.core.settings import settings
from eoty_platform.models import Severity
from eoty_platform.schemas.common import Envelope
from eoty_platform.schemas.moderation import (
    ActionTaken,
    AnomalyList,
    AnomalyResponse,
    BanRequest,
    ModerateRequest,
    ModerationStatsResponse,
    QueueEntryResponse,
    QueuePageResponse,
    ReportAuthor,
    ReportedPostResponse,
    ReportItem,
    ReportListingResponse,
    UnbanRequest,
)
from eoty_platform.services.moderation import (
    Assignee,
    QueueFilter,
    QueuePriority,
    ReportGroup,
)

router = APIRouter(prefix="/admin", tags=["moderation"])


def _group_response(group: ReportGroup) -> ReportedPostResponse:
    post = group.post
    author = group.author
    return ReportedPostResponse(
        id=group.report_id,
        post_id=post.id,
        content=post.content,
        author=ReportAuthor(
            first_name=author.first_name if author else "",
            last_name=author.last_name if author else "",
        ),
        topic_title=group.topic_title,
        report_count=post.report_count,
        reports=[ReportItem.model_validate(report) for report in group.reports],
        created_at=post.created_at,
        status=post.status,
        author_id=post.author_id,
        ban_reason=post.ban_reason,
        flagged=post.flagged_at is not None,
    )


@router.get("/forum/reports", response_model=Envelope[ReportListingResponse])
def list_reports(
    current_user: CurrentUserDep,
    moderation: ModerationServiceDep,
    status: str | None = Query(None, description="pending, resolved or all"),
    cursor: str | None = Query(None),
    limit: int = Query(25, ge=1, le=100),
) -> Envelope[ReportListingResponse]:
    """List reported posts with their reports, newest post first."""
    listing = moderation.list_reports(current_user.id, status=status, cursor=cursor, limit=limit)
    return Envelope(
        data=ReportListingResponse(
            reports=[_group_response(group) for group in listing.groups],
            total_reports=listing.total_reports,
            pending_reports=listing.pending_reports,
            resolved_reports=listing.resolved_reports,
            flagged_content=listing.flagged_content,
            next_cursor=listing.next_cursor,
        )
    )


@router.get("/forum/queue", response_model=Envelope[QueuePageResponse])
def get_queue(
    current_user: CurrentUserDep,
    moderation: ModerationServiceDep,
    assignee: Assignee = Query(Assignee.ANY),
    priority: QueuePriority | None = Query(None, description="Minimum priority"),
    min_age_minutes: int | None = Query(None, ge=0),
    flagged_only: bool = Query(False),
    cursor: str | None = Query(None),
    limit: int = Query(settings.queue_page_size, ge=1, le=100),
) -> Envelope[QueuePageResponse]:
    """Return one page of the reviewer queue, highest priority first."""
    page = moderation.list_queue(
        current_user.id,
        QueueFilter(
            assignee=assignee,
            min_priority=priority,
            min_age_minutes=min_age_minutes,
            flagged_only=flagged_only,
            cursor=cursor,
            limit=limit,
        ),
    )
    return Envelope(
        data=QueuePageResponse(
            entries=[
                QueueEntryResponse(
                    post_id=entry.post_id,
                    author_id=entry.author_id,
                    content=entry.content,
                    status=entry.status,
                    pending_reports=entry.pending_reports,
                    reason_summary=entry.reason_summary,
                    priority=entry.priority.value,
                    oldest_pending_at=entry.oldest_pending_at,
                    flagged=entry.flagged,
                    assigned_to=entry.assigned_to,
                )
                for entry in page.entries
            ],
            next_cursor=page.next_cursor,
        )
    )


@router.post("/forum/queue/{post_id}/claim", response_model=Envelope[dict[str, int]])
def claim_queue_entry(
    post_id: int,
    current_user: CurrentUserDep,
    moderation: ModerationServiceDep,
) -> Envelope[dict[str, int]]:
    moderation.claim(post_id, current_user.id)
    return Envelope(data={"post_id": post_id})


@router.post("/forum/reports/{report_id}/moderate", response_model=Envelope[ActionTaken])
def moderate_report(
    report_id: int,
    body: ModerateRequest,
    current_user: CurrentUserDep,
    moderation: ModerationServiceDep,
) -> Envelope[ActionTaken]:
    """Apply a moderator action to the post a report points at."""
    action_id = moderation.moderate_report(report_id, current_user.id, body.action, body.reason)
    return Envelope(data=ActionTaken(action_id=action_id))


@router.post("/forum/posts/{post_id}/ban", response_model=Envelope[ActionTaken])
def ban_post(
    post_id: int,
    body: BanRequest,
    current_user: CurrentUserDep,
    moderation: ModerationServiceDep,
) -> Envelope[ActionTaken]:
    action_id = moderation.ban_post(post_id, current_user.id, body.reason)
    return Envelope(data=ActionTaken(action_id=action_id))


@router.post("/forum/posts/{post_id}/unban", response_model=Envelope[ActionTaken])
def unban_post(
    post_id: int,
    current_user: CurrentUserDep,
    moderation: ModerationServiceDep,
    body: UnbanRequest | None = None,
) -> Envelope[ActionTaken]:
    action_id = moderation.unban_post(post_id, current_user.id, body.reason if body else None)
    return Envelope(data=ActionTaken(action_id=action_id))


@router.get("/forum/stats", response_model=Envelope[ModerationStatsResponse])
def moderation_stats(
    current_user: CurrentUserDep,
    moderation: ModerationServiceDep,
    window_hours: int = Query(24, ge=1, le=24 * 90),
) -> Envelope[ModerationStatsResponse]:
    """Report and action counts for the trailing window."""
    moderation.require(current_user.id, Permission.VIEW_MODERATION_QUEUE)
    stats = moderation.stats(timedelta(hours=window_hours))
    return Envelope(data=ModerationStatsResponse.model_validate(stats))


@router.get("/anomalies", response_model=Envelope[AnomalyList])
def list_anomalies(
    current_user: CurrentUserDep,
    moderation: ModerationServiceDep,
    resolved: bool = Query(False),
    min_severity: Severity | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
) -> Envelope[AnomalyList]:
    anomalies = moderation.list_anomalies(
        current_user.id,
        min_severity=min_severity,
        resolved=resolved,
        limit=limit,
    )
    return Envelope(
        data=AnomalyList(
            anomalies=[AnomalyResponse.model_validate(anomaly) for anomaly in anomalies]
        )
    )


@router.post("/anomalies/{anomaly_id}/dismiss", response_model=Envelope[AnomalyResponse])
def dismiss_anomaly(
    anomaly_id: int,
    current_user: CurrentUserDep,
    moderation: ModerationServiceDep,
) -> Envelope[AnomalyResponse]:
    anomaly = moderation.dismiss_anomaly(anomaly_id, current_user.id)
    return Envelope(data=AnomalyResponse.model_validate(anomaly))
