"""Anomaly detection over reports and moderation actions.

Detection runs after a report or moderation commit and periodically from
:class:`AnomalySweepWorker`. It is advisory: it only writes
``audit_anomalies`` rows and never blocks the operation that triggered it.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from eoty_platform.core.settings import settings
from eoty_platform.db.time import as_utc, utcnow
from eoty_platform.models import (
    AnomalyType,
    AuditAnomaly,
    ModerationAction,
    Report,
    ReportResolution,
    Severity,
)
from eoty_platform.services.transitions import PUNITIVE_ACTIONS

logger = logging.getLogger(__name__)


def ip_range(address: str | None) -> str | None:
    """Collapse an address to its /24 (IPv4) or /64 (IPv6) network."""
    if not address:
        return None
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return None
    prefix = 24 if ip.version == 4 else 64
    return str(ipaddress.ip_network(f"{ip}/{prefix}", strict=False))


def backlog_severity(
    queue_size: int,
    oldest_age: timedelta | None,
    *,
    size_threshold: int,
    age_threshold: timedelta,
) -> Severity | None:
    """Band the backlog: over the threshold is low, 2x medium, 4x high."""
    size_band = 0
    for multiplier, band in ((4, 3), (2, 2), (1, 1)):
        if queue_size > size_threshold * multiplier:
            size_band = band
            break
    age_band = 0
    if oldest_age is not None:
        for multiplier, band in ((4, 3), (2, 2), (1, 1)):
            if oldest_age > age_threshold * multiplier:
                age_band = band
                break
    band = max(size_band, age_band)
    if band == 0:
        return None
    return (Severity.LOW, Severity.MEDIUM, Severity.HIGH)[band - 1]


class AnomalyDetector:
    """Detect suspicious moderation patterns and record them idempotently."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow) -> None:
        self.db = db
        self.clock = clock

    def on_report(self, report: Report) -> list[AuditAnomaly]:
        """Checks triggered by a newly stored report."""
        now = self.clock()
        found = [
            self._check_reporter_burst(report.reporter_id, now),
            self._check_ip_burst(report.reporter_ip, now),
            self._check_backlog(now),
        ]
        return self._commit([anomaly for anomaly in found if anomaly is not None])

    def on_action(self, action: ModerationAction) -> list[AuditAnomaly]:
        """Checks triggered by a newly stored moderation action."""
        now = self.clock()
        found = [
            self._check_rapid_actions(action.moderator_id, now),
            self._check_backlog(now),
        ]
        if action.target_user_id and action.action in PUNITIVE_ACTIONS:
            found.append(self._check_repeat_offender(action.target_user_id, now))
        return self._commit([anomaly for anomaly in found if anomaly is not None])

    def sweep(self) -> list[AuditAnomaly]:
        """Re-run every check over recent activity."""
        now = self.clock()
        found: list[AuditAnomaly | None] = [self._check_backlog(now)]

        burst_since = now - timedelta(seconds=settings.burst_report_window_seconds)
        recent_reports = self.db.execute(
            select(Report.reporter_id, Report.reporter_ip).where(Report.created_at >= burst_since)
        ).all()
        for reporter_id in {row.reporter_id for row in recent_reports}:
            found.append(self._check_reporter_burst(reporter_id, now))
        ranges = {ip_range(row.reporter_ip): row.reporter_ip for row in recent_reports}
        for address in ranges.values():
            found.append(self._check_ip_burst(address, now))

        rapid_since = now - timedelta(seconds=settings.rapid_action_window_seconds)
        moderators = self.db.scalars(
            select(ModerationAction.moderator_id)
            .where(ModerationAction.created_at >= rapid_since)
            .distinct()
        ).all()
        for moderator_id in moderators:
            found.append(self._check_rapid_actions(moderator_id, now))

        offender_since = now - timedelta(days=settings.repeat_offender_window_days)
        authors = self.db.scalars(
            select(ModerationAction.target_user_id)
            .where(
                ModerationAction.created_at >= offender_since,
                ModerationAction.target_user_id.is_not(None),
                ModerationAction.action.in_(list(PUNITIVE_ACTIONS)),
            )
            .distinct()
        ).all()
        for author_id in authors:
            found.append(self._check_repeat_offender(author_id, now))

        return self._commit([anomaly for anomaly in found if anomaly is not None])

    def _check_reporter_burst(self, reporter_id: str, now: datetime) -> AuditAnomaly | None:
        since = now - timedelta(seconds=settings.burst_report_window_seconds)
        distinct_posts = self.db.scalar(
            select(func.count(func.distinct(Report.post_id))).where(
                Report.reporter_id == reporter_id,
                Report.created_at >= since,
            )
        ) or 0
        if distinct_posts < settings.burst_report_threshold:
            return None
        return self._record(
            AnomalyType.BURST_REPORTS,
            Severity.MEDIUM,
            f"reporter:{reporter_id}",
            f"{distinct_posts} posts reported by {reporter_id} within "
            f"{settings.burst_report_window_seconds}s",
            now,
        )

    def _check_ip_burst(self, address: str | None, now: datetime) -> AuditAnomaly | None:
        network = ip_range(address)
        if network is None:
            return None
        since = now - timedelta(seconds=settings.burst_report_window_seconds)
        rows = self.db.execute(
            select(Report.reporter_id, Report.reporter_ip, Report.post_id).where(
                Report.created_at >= since,
                Report.reporter_ip.is_not(None),
            )
        ).all()
        posts: set[int] = set()
        reporters: set[str] = set()
        for row in rows:
            if ip_range(row.reporter_ip) == network:
                posts.add(row.post_id)
                reporters.add(row.reporter_id)
        # A single reporter is already covered by the per-reporter check.
        if len(posts) < settings.burst_report_threshold or len(reporters) < 2:
            return None
        return self._record(
            AnomalyType.BURST_REPORTS,
            Severity.HIGH,
            f"ip:{network}",
            f"{len(posts)} posts reported from {network} by {len(reporters)} accounts within "
            f"{settings.burst_report_window_seconds}s",
            now,
        )

    def _check_repeat_offender(self, author_id: str, now: datetime) -> AuditAnomaly | None:
        since = now - timedelta(days=settings.repeat_offender_window_days)
        count = self.db.scalar(
            select(func.count(ModerationAction.id)).where(
                ModerationAction.target_user_id == author_id,
                ModerationAction.action.in_(list(PUNITIVE_ACTIONS)),
                ModerationAction.created_at >= since,
            )
        ) or 0
        if count < settings.repeat_offender_threshold:
            return None
        return self._record(
            AnomalyType.REPEAT_OFFENDER,
            Severity.MEDIUM,
            f"author:{author_id}",
            f"{count} moderation actions against posts by {author_id} within "
            f"{settings.repeat_offender_window_days} days",
            now,
        )

    def _check_rapid_actions(self, moderator_id: str, now: datetime) -> AuditAnomaly | None:
        since = now - timedelta(seconds=settings.rapid_action_window_seconds)
        count = self.db.scalar(
            select(func.count(ModerationAction.id)).where(
                ModerationAction.moderator_id == moderator_id,
                ModerationAction.created_at >= since,
            )
        ) or 0
        if count < settings.rapid_action_threshold:
            return None
        return self._record(
            AnomalyType.MODERATOR_RAPID_ACTIONS,
            Severity.MEDIUM,
            f"moderator:{moderator_id}",
            f"{count} actions by moderator {moderator_id} within "
            f"{settings.rapid_action_window_seconds}s",
            now,
        )

    def _check_backlog(self, now: datetime) -> AuditAnomaly | None:
        queue_size, oldest = self.db.execute(
            select(func.count(func.distinct(Report.post_id)), func.min(Report.created_at)).where(
                Report.resolution == ReportResolution.PENDING
            )
        ).one()
        oldest_age = None
        if oldest is not None:
            oldest_age = now - as_utc(oldest)
        severity = backlog_severity(
            queue_size or 0,
            oldest_age,
            size_threshold=settings.backlog_size_threshold,
            age_threshold=timedelta(seconds=settings.backlog_age_threshold_seconds),
        )
        if severity is None:
            return None
        age_text = f"{int(oldest_age.total_seconds())}s" if oldest_age is not None else "n/a"
        return self._record(
            AnomalyType.UNRESOLVED_BACKLOG,
            severity,
            "queue",
            f"{queue_size} posts awaiting review; oldest pending report age {age_text}",
            now,
        )

    def _record(
        self,
        anomaly_type: AnomalyType,
        severity: Severity,
        subject: str,
        details: str,
        now: datetime,
    ) -> AuditAnomaly | None:
        day_bucket = now.date()
        existing = self.db.scalars(
            select(AuditAnomaly).where(
                AuditAnomaly.anomaly_type == anomaly_type,
                AuditAnomaly.subject == subject,
                AuditAnomaly.day_bucket == day_bucket,
                AuditAnomaly.resolved.is_(False),
            )
        ).first()
        if existing is not None:
            return None
        anomaly = AuditAnomaly(
            anomaly_type=anomaly_type,
            severity=severity,
            subject=subject,
            day_bucket=day_bucket,
            details=details,
            created_at=now,
        )
        self.db.add(anomaly)
        # Makes the row visible to the dedup query of later checks in this run.
        self.db.flush()
        logger.info("Recorded %s anomaly (%s) for %s", anomaly_type.value, severity.value, subject)
        return anomaly

    def _commit(self, anomalies: list[AuditAnomaly]) -> list[AuditAnomaly]:
        if anomalies:
            self.db.commit()
        return anomalies


class AnomalySweepWorker:
    """Periodically runs :meth:`AnomalyDetector.sweep` in the background."""

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        interval_seconds: float | None = None,
    ) -> None:
        if session_factory is None:
            from eoty_platform.db.session import SessionLocal

            session_factory = SessionLocal
        self._session_factory = session_factory
        self.interval = max(
            0.1,
            float(interval_seconds or settings.anomaly_sweep_interval_seconds),
        )
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    async def start(self) -> None:
        """Start the background sweep loop."""
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background sweep loop."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None

    def sweep_once(self) -> int:
        """Run one sweep in a fresh session and return the number of new anomalies."""
        with self._session_factory() as db:
            try:
                return len(AnomalyDetector(db).sweep())
            except SQLAlchemyError:
                db.rollback()
                raise

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                created = await asyncio.to_thread(self.sweep_once)
                if created:
                    logger.info("Anomaly sweep recorded %d new anomalies", created)
            except SQLAlchemyError as exc:
                logger.error("Anomaly sweep failed: %s", exc, exc_info=True)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except TimeoutError:
                continue
