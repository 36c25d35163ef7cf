# src/eoty_platform/services/moderation.py
"""Moderation services: reports, the reviewer queue and moderator actions."""

from __future__ import annotations

import base64
import enum
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from eoty_platform.core.errors import (
    ConflictError,
    NotFoundError,
    RateLimitedError,
    ValidationError,
)
from eoty_platform.core.roles import Permission
from eoty_platform.core.settings import settings
from eoty_platform.db.time import as_utc, utcnow
from eoty_platform.models import (
    AuditAnomaly,
    AuditEntry,
    Discussion,
    ForumPost,
    ForumTopic,
    Lesson,
    ModerationAction,
    ModerationActionType,
    PostStatus,
    Report,
    ReportReason,
    ReportResolution,
    Severity,
    User,
    UserNotification,
)
from eoty_platform.repositories.post_repo import PostRepository
from eoty_platform.services.anomalies import AnomalyDetector
from eoty_platform.services.authorization import require_permission
from eoty_platform.services.transitions import next_status, resolution_for

logger = logging.getLogger(__name__)

ESCALATING_REASONS = frozenset({ReportReason.HARASSMENT, ReportReason.OFFENSIVE})


class QueuePriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return {"low": 0, "medium": 1, "high": 2}[self.value]


class Assignee(str, enum.Enum):
    ANY = "any"
    SELF = "self"
    UNASSIGNED = "unassigned"


@dataclass(frozen=True)
class QueueFilter:
    """Reviewer queue filter."""

    assignee: Assignee = Assignee.ANY
    min_priority: QueuePriority | None = None
    min_age_minutes: int | None = None
    flagged_only: bool = False
    cursor: str | None = None
    limit: int = 25


@dataclass
class QueueEntry:
    post_id: int
    author_id: str
    content: str
    status: PostStatus
    pending_reports: int
    reason_summary: list[str]
    priority: QueuePriority
    oldest_pending_at: datetime
    flagged: bool
    assigned_to: str | None


@dataclass
class QueuePage:
    entries: list[QueueEntry]
    next_cursor: str | None


@dataclass
class ModerationStats:
    window_seconds: int
    total_reports: int
    pending: int
    resolved: int
    actions_taken: int
    auto_flagged: int


@dataclass
class ReportGroup:
    """All reports against one post, as shown in the admin listing."""

    report_id: int
    post: ForumPost
    author: User | None
    topic_title: str | None
    reports: list[Report]


@dataclass
class ReportListing:
    groups: list[ReportGroup]
    total_reports: int
    pending_reports: int
    resolved_reports: int
    flagged_content: int
    next_cursor: str | None = None


def queue_priority(reasons: set[ReportReason], pending_count: int) -> QueuePriority:
    """Infer review priority from a post's pending reports."""
    if reasons & ESCALATING_REASONS:
        return QueuePriority.HIGH
    if pending_count >= settings.queue_medium_priority_reports:
        return QueuePriority.MEDIUM
    return QueuePriority.LOW


def encode_cursor(values: list[Any]) -> str:
    raw = json.dumps(values, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def decode_cursor(cursor: str, shape: tuple[type, ...]) -> list[Any]:
    """Decode a page cursor whose elements must match the types in ``shape``."""
    padding = "=" * (-len(cursor) % 4)
    try:
        values = json.loads(base64.urlsafe_b64decode(cursor + padding))
    except (ValueError, json.JSONDecodeError) as err:
        raise ValidationError("Malformed cursor") from err
    if not isinstance(values, list) or len(values) != len(shape):
        raise ValidationError("Malformed cursor")
    for value, expected in zip(values, shape):
        # bool is an int subclass; a cursor never carries one.
        if isinstance(value, bool) or not isinstance(value, expected):
            raise ValidationError("Malformed cursor")
    return values


def _parse_enum(enum_cls: type[enum.Enum], value: Any, label: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError as err:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {label} {value!r}; expected one of: {allowed}") from err


def _snapshot(post: ForumPost) -> dict[str, Any]:
    return {
        "status": PostStatus(post.status).value,
        "ban_reason": post.ban_reason,
        "report_count": post.report_count,
    }


class ModerationService:
    """Service handling reports, the reviewer queue and state transitions.

    One instance wraps one database session. Every write commits before the
    method returns; anomaly detection runs after the commit.
    """

    def __init__(
        self,
        db: Session,
        *,
        clock: Callable[[], datetime] = utcnow,
        detector: AnomalyDetector | None = None,
    ) -> None:
        self.db = db
        self.clock = clock
        self.posts = PostRepository(db)
        self.detector = detector or AnomalyDetector(db, clock)

    # Authorization

    def require(self, actor_id: str, permission: Permission) -> User:
        """Return the acting user or raise ForbiddenError (audited)."""
        return require_permission(self.db, actor_id, permission, self.clock())

    # Reporting

    def report(
        self,
        post_id: int,
        reporter_id: str,
        reason: ReportReason | str,
        detail: str | None = None,
        reporter_ip: str | None = None,
    ) -> int:
        """File a report against a post and return the report id.

        Repeated reports by the same reporter inside the dedup window return
        the original report id without touching counters.

        Raises:
            NotFoundError: If the post does not exist or was deleted.
            ValidationError: If the reason is unknown.
            RateLimitedError: If the reporter exceeds the flood limit.
        """
        self.require(reporter_id, Permission.REPORT_CONTENT)
        reason = _parse_enum(ReportReason, reason, "reason")
        now = self.clock()

        post = self.posts.get_by_id(post_id)
        if post is None or post.status == PostStatus.DELETED:
            raise NotFoundError("Post not found")

        dedup_since = now - timedelta(seconds=settings.report_dedup_window_seconds)
        existing = self.db.scalars(
            select(Report)
            .where(
                Report.reporter_id == reporter_id,
                Report.post_id == post_id,
                Report.created_at >= dedup_since,
            )
            .order_by(Report.created_at.desc())
        ).first()
        if existing is not None:
            return existing.id

        flood_since = now - timedelta(seconds=settings.report_flood_window_seconds)
        recent = self.db.scalar(
            select(func.count(Report.id)).where(
                Report.reporter_id == reporter_id,
                Report.created_at >= flood_since,
            )
        ) or 0
        if recent >= settings.report_flood_limit:
            raise RateLimitedError("Too many reports; please slow down")

        attempts = settings.moderation_retry_attempts + 1
        for attempt in range(attempts):
            try:
                report = self._insert_report(post_id, reporter_id, reason, detail, reporter_ip, now)
                self.db.commit()
                break
            except StaleDataError as err:
                self.db.rollback()
                if attempt + 1 >= attempts:
                    raise ConflictError("Post changed while filing the report") from err
                logger.info("Retrying report counter update for post %s", post_id)

        self._after_commit(lambda detector: detector.on_report(report))
        return report.id

    def _insert_report(
        self,
        post_id: int,
        reporter_id: str,
        reason: ReportReason,
        detail: str | None,
        reporter_ip: str | None,
        now: datetime,
    ) -> Report:
        post = self.posts.get_for_update(post_id)
        if post is None or post.status == PostStatus.DELETED:
            raise NotFoundError("Post not found")
        report = Report(
            reporter_id=reporter_id,
            post_id=post_id,
            reason=reason,
            detail=detail,
            reporter_ip=reporter_ip,
            created_at=now,
        )
        self.db.add(report)
        post.report_count += 1
        if post.flagged_at is None and post.report_count >= settings.report_queue_threshold:
            post.flagged_at = now
            self.db.add(
                AuditEntry(
                    actor_id=None,
                    event="auto_flagged",
                    target_type="post",
                    target_id=str(post_id),
                    before=None,
                    after={"report_count": post.report_count},
                    created_at=now,
                )
            )
            logger.info("Post %s flagged for review after %d reports", post_id, post.report_count)
        self.db.flush()
        return report

    # Reviewer queue

    def list_queue(self, actor_id: str, queue_filter: QueueFilter | None = None) -> QueuePage:
        """Return one page of the reviewer queue.

        The queue is a view over pending reports grouped by post, ordered by
        priority (high first) and then by the oldest pending report.
        """
        self.require(actor_id, Permission.VIEW_MODERATION_QUEUE)
        queue_filter = queue_filter or QueueFilter()
        after = decode_cursor(queue_filter.cursor, (int, str, int)) if queue_filter.cursor else None
        now = self.clock()

        rows = self.db.execute(
            select(Report.post_id, func.count(Report.id), func.min(Report.created_at))
            .where(Report.resolution == ReportResolution.PENDING)
            .group_by(Report.post_id)
        ).all()
        if not rows:
            return QueuePage(entries=[], next_cursor=None)

        post_ids = [row[0] for row in rows]
        reasons: dict[int, set[ReportReason]] = {post_id: set() for post_id in post_ids}
        for post_id, reason in self.db.execute(
            select(Report.post_id, Report.reason)
            .where(Report.resolution == ReportResolution.PENDING, Report.post_id.in_(post_ids))
            .distinct()
        ):
            reasons[post_id].add(ReportReason(reason))
        posts = {
            post.id: post
            for post in self.db.scalars(select(ForumPost).where(ForumPost.id.in_(post_ids)))
        }

        entries: list[QueueEntry] = []
        for post_id, pending_count, oldest in rows:
            post = posts[post_id]
            oldest = as_utc(oldest)
            entry = QueueEntry(
                post_id=post_id,
                author_id=post.author_id,
                content=post.content,
                status=PostStatus(post.status),
                pending_reports=pending_count,
                reason_summary=sorted(reason.value for reason in reasons[post_id]),
                priority=queue_priority(reasons[post_id], pending_count),
                oldest_pending_at=oldest,
                flagged=post.flagged_at is not None,
                assigned_to=post.assigned_to,
            )
            if self._matches(entry, queue_filter, actor_id, now):
                entries.append(entry)

        entries.sort(key=self._queue_key)
        if after is not None:
            entries = [entry for entry in entries if self._cursor_values(entry) > after]

        limit = max(1, queue_filter.limit)
        page = entries[:limit]
        next_cursor = None
        if len(entries) > limit:
            next_cursor = encode_cursor(self._cursor_values(page[-1]))
        return QueuePage(entries=page, next_cursor=next_cursor)

    @staticmethod
    def _matches(entry: QueueEntry, queue_filter: QueueFilter, actor_id: str, now: datetime) -> bool:
        if queue_filter.assignee == Assignee.SELF and entry.assigned_to != actor_id:
            return False
        if queue_filter.assignee == Assignee.UNASSIGNED and entry.assigned_to is not None:
            return False
        if queue_filter.min_priority and entry.priority.rank < queue_filter.min_priority.rank:
            return False
        if queue_filter.min_age_minutes is not None:
            if now - entry.oldest_pending_at < timedelta(minutes=queue_filter.min_age_minutes):
                return False
        if queue_filter.flagged_only and not entry.flagged:
            return False
        return True

    @staticmethod
    def _queue_key(entry: QueueEntry) -> tuple[int, datetime, int]:
        return (-entry.priority.rank, entry.oldest_pending_at, entry.post_id)

    @staticmethod
    def _cursor_values(entry: QueueEntry) -> list[Any]:
        return [-entry.priority.rank, entry.oldest_pending_at.isoformat(), entry.post_id]

    def claim(self, post_id: int, actor_id: str) -> None:
        """Assign a queue entry to the acting moderator."""
        self.require(actor_id, Permission.VIEW_MODERATION_QUEUE)
        post = self.posts.get_for_update(post_id)
        if post is None:
            raise NotFoundError("Post not found")
        post.assigned_to = actor_id
        try:
            self.db.commit()
        except StaleDataError as err:
            self.db.rollback()
            raise ConflictError("Post changed while claiming it") from err

    # Moderator actions

    def moderate(
        self,
        post_id: int,
        actor_id: str,
        action: ModerationActionType | str,
        reason: str | None = None,
    ) -> int:
        """Apply a moderator action to a post and return the action id.

        The transition, the action row, report resolution and the audit
        entry commit together. A lost optimistic race is retried once and
        then surfaces as ConflictError with the post's current state.

        Raises:
            ValidationError: Unknown action, or missing reason for a non-approve action.
            ForbiddenError: The actor is not a chapter or platform admin.
            NotFoundError: The post does not exist.
            InvalidTransitionError: The action is not allowed from the post's state.
            ConflictError: Concurrent moderation won twice.
        """
        action = _parse_enum(ModerationActionType, action, "action")
        self.require(actor_id, Permission.MODERATE_POSTS)
        reason = reason.strip() if reason else None
        if action != ModerationActionType.APPROVE and not reason:
            raise ValidationError(f"A reason is required to {action.value} a post")

        attempts = settings.moderation_retry_attempts + 1
        for attempt in range(attempts):
            try:
                record = self._apply(post_id, actor_id, action, reason)
                self.db.commit()
                break
            except StaleDataError as err:
                self.db.rollback()
                if attempt + 1 >= attempts:
                    current = self.posts.get_by_id(post_id)
                    current_state = PostStatus(current.status).value if current else None
                    raise ConflictError(
                        "Post was moderated concurrently",
                        current_state=current_state,
                    ) from err
                logger.info("Retrying %s on post %s after a concurrent update", action.value, post_id)
            except Exception:
                self.db.rollback()
                raise

        logger.info(
            "Moderator %s applied %s to post %s (action %s)",
            actor_id,
            action.value,
            post_id,
            record.id,
        )
        self._after_commit(lambda detector: detector.on_action(record))
        return record.id

    def _apply(
        self,
        post_id: int,
        actor_id: str,
        action: ModerationActionType,
        reason: str | None,
    ) -> ModerationAction:
        post = self.posts.get_for_update(post_id)
        if post is None:
            raise NotFoundError("Post not found")

        now = self.clock()
        before = _snapshot(post)
        new_status = next_status(PostStatus(post.status), action)

        record = ModerationAction(
            moderator_id=actor_id,
            post_id=post.id,
            target_user_id=post.author_id,
            action=action,
            reason=reason,
            created_at=now,
        )
        self.db.add(record)

        if action == ModerationActionType.DELETE:
            post.content = settings.redacted_content_marker
        if action == ModerationActionType.BAN_POST:
            post.ban_reason = reason
        elif action in (ModerationActionType.UNBAN_POST, ModerationActionType.DELETE):
            post.ban_reason = None
        post.status = new_status
        post.last_action_at = now

        resolution = resolution_for(action)
        resolved = 0
        if resolution is not None:
            for report in self.posts.pending_reports(post.id):
                report.resolution = resolution
                report.resolved_by = actor_id
                report.resolved_at = now
                resolved += 1
            post.report_count = 0
            post.flagged_at = None
            post.assigned_to = None

        if action == ModerationActionType.WARN:
            self.db.add(
                UserNotification(
                    user_id=post.author_id,
                    kind="moderation_warning",
                    message=f"A moderator warned you about post #{post.id}: {reason}",
                    created_at=now,
                )
            )

        self.db.flush()
        after = _snapshot(post)
        after.update({"action": action.value, "action_id": record.id, "resolved_reports": resolved})
        self.db.add(
            AuditEntry(
                actor_id=actor_id,
                event="moderate",
                target_type="post",
                target_id=str(post.id),
                before=before,
                after=after,
                created_at=now,
            )
        )
        self.db.flush()
        return record

    def moderate_report(
        self,
        report_id: int,
        actor_id: str,
        action: ModerationActionType | str,
        reason: str | None = None,
    ) -> int:
        """Apply ``action`` to the post a report points at."""
        report = self.db.get(Report, report_id)
        if report is None:
            raise NotFoundError("Report not found")
        return self.moderate(report.post_id, actor_id, action, reason)

    def ban_post(self, post_id: int, actor_id: str, reason: str) -> int:
        """Ban a post; banned posts disappear from non-admin read paths."""
        return self.moderate(post_id, actor_id, ModerationActionType.BAN_POST, reason)

    def unban_post(self, post_id: int, actor_id: str, reason: str | None = None) -> int:
        """Lift a ban, returning the post to ``visible``."""
        return self.moderate(
            post_id,
            actor_id,
            ModerationActionType.UNBAN_POST,
            reason or "ban lifted",
        )

    # Reporting views

    def stats(self, window: timedelta) -> ModerationStats:
        """Return report and action counts for the trailing ``window``."""
        since = self.clock() - window
        total = self.db.scalar(
            select(func.count(Report.id)).where(Report.created_at >= since)
        ) or 0
        pending = self.db.scalar(
            select(func.count(Report.id)).where(
                Report.created_at >= since,
                Report.resolution == ReportResolution.PENDING,
            )
        ) or 0
        actions = self.db.scalar(
            select(func.count(ModerationAction.id)).where(ModerationAction.created_at >= since)
        ) or 0
        flagged = self.db.scalar(
            select(func.count(AuditEntry.id)).where(
                AuditEntry.event == "auto_flagged",
                AuditEntry.created_at >= since,
            )
        ) or 0
        return ModerationStats(
            window_seconds=int(window.total_seconds()),
            total_reports=total,
            pending=pending,
            resolved=total - pending,
            actions_taken=actions,
            auto_flagged=flagged,
        )

    def list_reports(
        self,
        actor_id: str,
        *,
        status: str | None = None,
        cursor: str | None = None,
        limit: int = 25,
    ) -> ReportListing:
        """Group reports by post for the admin listing, newest post first.

        ``status`` is ``pending``, ``resolved`` or None for both.
        """
        self.require(actor_id, Permission.VIEW_MODERATION_QUEUE)
        stmt = select(Report.post_id).distinct()
        if status == "pending":
            stmt = stmt.where(Report.resolution == ReportResolution.PENDING)
        elif status == "resolved":
            stmt = stmt.where(Report.resolution != ReportResolution.PENDING)
        elif status not in (None, "", "all"):
            raise ValidationError(f"Invalid status filter {status!r}")
        if cursor:
            (before,) = decode_cursor(cursor, (int,))
            stmt = stmt.where(Report.post_id < before)
        post_ids = list(self.db.scalars(stmt.order_by(Report.post_id.desc()).limit(limit + 1)))
        next_cursor = None
        if len(post_ids) > limit:
            post_ids = post_ids[:limit]
            next_cursor = encode_cursor([post_ids[-1]])

        groups: list[ReportGroup] = []
        for post_id in post_ids:
            post = self.db.get(ForumPost, post_id)
            report_stmt = select(Report).where(Report.post_id == post_id)
            if status == "pending":
                report_stmt = report_stmt.where(Report.resolution == ReportResolution.PENDING)
            elif status == "resolved":
                report_stmt = report_stmt.where(Report.resolution != ReportResolution.PENDING)
            reports = list(self.db.scalars(report_stmt.order_by(Report.created_at, Report.id)))
            groups.append(
                ReportGroup(
                    report_id=reports[0].id,
                    post=post,
                    author=self.db.get(User, post.author_id),
                    topic_title=self._topic_title(post),
                    reports=reports,
                )
            )

        total = self.db.scalar(select(func.count(Report.id))) or 0
        pending = self.db.scalar(
            select(func.count(Report.id)).where(Report.resolution == ReportResolution.PENDING)
        ) or 0
        flagged = self.db.scalar(
            select(func.count(ForumPost.id)).where(ForumPost.flagged_at.is_not(None))
        ) or 0
        return ReportListing(
            groups=groups,
            total_reports=total,
            pending_reports=pending,
            resolved_reports=total - pending,
            flagged_content=flagged,
            next_cursor=next_cursor,
        )

    def _topic_title(self, post: ForumPost) -> str | None:
        if post.topic_id is not None:
            topic = self.db.get(ForumTopic, post.topic_id)
            return topic.title if topic else None
        discussion = self.db.get(Discussion, post.id)
        if discussion is not None:
            lesson = self.db.get(Lesson, discussion.lesson_id)
            return lesson.title if lesson else None
        return None

    # Anomalies

    def list_anomalies(
        self,
        actor_id: str,
        *,
        min_severity: Severity | str | None = None,
        resolved: bool = False,
        limit: int = 50,
    ) -> list[AuditAnomaly]:
        """Return anomalies ordered high to low severity, then newest first."""
        self.require(actor_id, Permission.MANAGE_ANOMALIES)
        floor = _parse_enum(Severity, min_severity, "severity").rank if min_severity else 0
        anomalies = [
            anomaly
            for anomaly in self.db.scalars(
                select(AuditAnomaly).where(AuditAnomaly.resolved.is_(resolved))
            )
            if Severity(anomaly.severity).rank >= floor
        ]
        anomalies.sort(
            key=lambda anomaly: (
                -Severity(anomaly.severity).rank,
                -anomaly.created_at.timestamp(),
                -anomaly.id,
            )
        )
        return anomalies[:limit]

    def dismiss_anomaly(self, anomaly_id: int, actor_id: str) -> AuditAnomaly:
        """Mark an anomaly resolved; the row itself is kept."""
        self.require(actor_id, Permission.MANAGE_ANOMALIES)
        anomaly = self.db.get(AuditAnomaly, anomaly_id)
        if anomaly is None:
            raise NotFoundError("Anomaly not found")
        if anomaly.resolved:
            return anomaly
        now = self.clock()
        anomaly.resolved = True
        anomaly.resolved_by = actor_id
        anomaly.resolved_at = now
        self.db.add(
            AuditEntry(
                actor_id=actor_id,
                event="dismiss_anomaly",
                target_type="anomaly",
                target_id=str(anomaly.id),
                before={"resolved": False},
                after={"resolved": True},
                created_at=now,
            )
        )
        self.db.commit()
        return anomaly

    def _after_commit(self, callback: Callable[[AnomalyDetector], object]) -> None:
        try:
            callback(self.detector)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.warning("Anomaly detection failed: %s", exc, exc_info=True)
