# src/eoty_platform/models/moderation.py
"""Models tracking moderation actions, the audit trail and anomalies.

``moderation_actions`` and ``audit_log`` are append-only and
``audit_anomalies`` rows can be dismissed but never deleted. The guard is
installed twice: as mapper events for ORM flushes and as database triggers
created together with the tables.
"""

from __future__ import annotations

import enum
from datetime import date, datetime
from typing import Any

from sqlalchemy import DDL, JSON, Boolean, Date, Enum, Integer, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from eoty_platform.db.session import Base
from eoty_platform.db.time import UTCDateTime, utcnow
from eoty_platform.models.user import enum_values


class ModerationActionType(str, enum.Enum):
    APPROVE = "approve"
    HIDE = "hide"
    DELETE = "delete"
    WARN = "warn"
    BAN_POST = "ban_post"
    UNBAN_POST = "unban_post"


class AnomalyType(str, enum.Enum):
    BURST_REPORTS = "burst_reports"
    REPEAT_OFFENDER = "repeat_offender"
    MODERATOR_RAPID_ACTIONS = "moderator_rapid_actions"
    UNRESOLVED_BACKLOG = "unresolved_backlog"


class Severity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self]


SEVERITY_RANK = {Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2}


class AuditImmutableError(RuntimeError):
    """Raised when code tries to rewrite an append-only record."""


class ModerationAction(Base):
    """One atomic administrative decision applied to a post."""

    __tablename__ = "moderation_actions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    moderator_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    post_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    # Author of the post at action time; drives repeat-offender detection.
    target_user_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    action: Mapped[ModerationActionType] = mapped_column(
        Enum(ModerationActionType, native_enum=False, length=16, values_callable=enum_values),
        nullable=False,
    )
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class AuditEntry(Base):
    """Immutable audit trail entry with before/after snapshots."""

    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    event: Mapped[str] = mapped_column(Text, nullable=False)
    target_type: Mapped[str] = mapped_column(Text, nullable=False)
    target_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    before: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    after: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class UserNotification(Base):
    """User-facing notice produced by a moderation warning.

    Delivery is handled by another service that reads this table.
    """

    __tablename__ = "user_notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    kind: Mapped[str] = mapped_column(Text, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    read_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class AuditAnomaly(Base):
    """System-detected pattern worth human attention."""

    __tablename__ = "audit_anomalies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    anomaly_type: Mapped[AnomalyType] = mapped_column(
        Enum(AnomalyType, native_enum=False, length=32, values_callable=enum_values),
        nullable=False,
    )
    severity: Mapped[Severity] = mapped_column(
        Enum(Severity, native_enum=False, length=8, values_callable=enum_values),
        nullable=False,
    )
    # What the anomaly is about, e.g. "reporter:<id>" or "queue".
    subject: Mapped[str] = mapped_column(Text, nullable=False)
    day_bucket: Mapped[date] = mapped_column(Date, nullable=False)
    details: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


def _reject_mutation(mapper, connection, target) -> None:  # type: ignore[no-untyped-def]
    raise AuditImmutableError(f"{target.__tablename__} rows are append-only")


for _model in (ModerationAction, AuditEntry):
    event.listen(_model, "before_update", _reject_mutation)
    event.listen(_model, "before_delete", _reject_mutation)
event.listen(AuditAnomaly, "before_delete", _reject_mutation)


_PG_GUARD_FUNCTION = DDL(
    "CREATE OR REPLACE FUNCTION reject_audit_mutation() RETURNS trigger AS $$ "
    "BEGIN RAISE EXCEPTION '%% rows are append-only', TG_TABLE_NAME; END; "
    "$$ LANGUAGE plpgsql"
)


def _install_guards(table_name: str, operations: tuple[str, ...]) -> None:
    table = Base.metadata.tables[table_name]
    for operation in operations:
        event.listen(
            table,
            "after_create",
            DDL(
                f"CREATE TRIGGER {table_name}_no_{operation.lower()} "
                f"BEFORE {operation} ON {table_name} "
                f"BEGIN SELECT RAISE(ABORT, '{table_name} rows are append-only'); END"
            ).execute_if(dialect="sqlite"),
        )
    event.listen(table, "after_create", _PG_GUARD_FUNCTION.execute_if(dialect="postgresql"))
    event.listen(
        table,
        "after_create",
        DDL(
            f"CREATE TRIGGER {table_name}_append_only "
            f"BEFORE {' OR '.join(operations)} ON {table_name} "
            "FOR EACH ROW EXECUTE FUNCTION reject_audit_mutation()"
        ).execute_if(dialect="postgresql"),
    )


_install_guards("moderation_actions", ("UPDATE", "DELETE"))
_install_guards("audit_log", ("UPDATE", "DELETE"))
_install_guards("audit_anomalies", ("DELETE",))
