# src/eoty_platform/schemas/moderation.py
"""Moderation-related Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from eoty_platform.models import (
    AnomalyType,
    ModerationActionType,
    PostStatus,
    ReportReason,
    ReportResolution,
    Severity,
)


class ReportCreate(BaseModel):
    """Schema for filing a report against a post."""

    reason: ReportReason
    detail: str | None = Field(None, max_length=2000)


class ReportCreated(BaseModel):
    report_id: int


class ModerateRequest(BaseModel):
    """Schema for applying a moderator action to a reported post."""

    action: ModerationActionType
    reason: str | None = Field(None, max_length=2000, description="Required unless approving")


class BanRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class UnbanRequest(BaseModel):
    reason: str | None = Field(None, max_length=2000)


class ActionTaken(BaseModel):
    action_id: int


class ReportItem(BaseModel):
    id: int
    reporter_id: str
    reason: ReportReason
    detail: str | None
    created_at: datetime
    resolution: ReportResolution
    resolved_by: str | None
    resolved_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class ReportAuthor(BaseModel):
    first_name: str
    last_name: str


class ReportedPostResponse(BaseModel):
    """A reported post with its reports, as shown in the admin listing.

    ``id`` is the oldest report in the group and is what the moderate route
    takes.
    """

    id: int
    post_id: int
    content: str
    author: ReportAuthor
    topic_title: str | None
    report_count: int
    reports: list[ReportItem]
    created_at: datetime
    status: PostStatus
    author_id: str
    ban_reason: str | None
    flagged: bool


class ReportListingResponse(BaseModel):
    reports: list[ReportedPostResponse]
    total_reports: int
    pending_reports: int
    resolved_reports: int
    flagged_content: int
    next_cursor: str | None = None


class QueueEntryResponse(BaseModel):
    post_id: int
    author_id: str
    content: str
    status: PostStatus
    pending_reports: int
    reason_summary: list[str]
    priority: str
    oldest_pending_at: datetime
    flagged: bool
    assigned_to: str | None

    model_config = ConfigDict(from_attributes=True)


class QueuePageResponse(BaseModel):
    entries: list[QueueEntryResponse]
    next_cursor: str | None = None


class ModerationStatsResponse(BaseModel):
    window_seconds: int
    total_reports: int
    pending: int
    resolved: int
    actions_taken: int
    auto_flagged: int

    model_config = ConfigDict(from_attributes=True)


class AnomalyResponse(BaseModel):
    id: int
    anomaly_type: AnomalyType
    severity: Severity
    subject: str
    details: str
    created_at: datetime
    resolved: bool
    resolved_by: str | None
    resolved_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class AnomalyList(BaseModel):
    anomalies: list[AnomalyResponse]
