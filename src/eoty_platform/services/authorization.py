"""Role checks that leave an audit trail when they fail."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from eoty_platform.core.errors import ForbiddenError
from eoty_platform.core.roles import Permission, is_allowed
from eoty_platform.models import AuditEntry, User

logger = logging.getLogger(__name__)


def require_permission(db: Session, actor_id: str, permission: Permission, now: datetime) -> User:
    """Return the acting user, or record a ``forbidden`` audit entry and raise.

    Inactive and unknown actors are refused like any other role mismatch.
    """
    actor = db.get(User, actor_id)
    if actor is not None and actor.is_active and is_allowed(actor.role, permission):
        return actor
    db.add(
        AuditEntry(
            actor_id=actor_id,
            event="forbidden",
            target_type="permission",
            target_id=permission.value,
            before=None,
            after={"role": actor.role.value if actor is not None else None},
            created_at=now,
        )
    )
    db.commit()
    logger.warning("Denied %s to %s", permission.value, actor_id)
    raise ForbiddenError(f"{permission.value} is not granted to this account")
