# src/eoty_platform/services/transitions.py
"""Post moderation state machine and the report-resolution rule."""

from __future__ import annotations

from collections.abc import Iterable

from eoty_platform.core.errors import InvalidTransitionError
from eoty_platform.models import ModerationActionType, PostStatus, ReportResolution

_V = PostStatus.VISIBLE
_H = PostStatus.HIDDEN
_D = PostStatus.DELETED
_B = PostStatus.BANNED

# (current status, action) -> next status; missing pairs are invalid.
TRANSITIONS: dict[tuple[PostStatus, ModerationActionType], PostStatus] = {
    (_V, ModerationActionType.APPROVE): _V,
    (_V, ModerationActionType.HIDE): _H,
    (_V, ModerationActionType.DELETE): _D,
    (_V, ModerationActionType.WARN): _V,
    (_V, ModerationActionType.BAN_POST): _B,
    (_H, ModerationActionType.APPROVE): _V,
    (_H, ModerationActionType.HIDE): _H,
    (_H, ModerationActionType.DELETE): _D,
    (_H, ModerationActionType.WARN): _H,
    (_H, ModerationActionType.BAN_POST): _B,
    (_B, ModerationActionType.DELETE): _D,
    (_B, ModerationActionType.UNBAN_POST): _V,
}

REPORT_RESOLUTIONS: dict[ModerationActionType, ReportResolution] = {
    ModerationActionType.APPROVE: ReportResolution.RESOLVED_KEPT,
    ModerationActionType.HIDE: ReportResolution.RESOLVED_HIDDEN,
    ModerationActionType.DELETE: ReportResolution.RESOLVED_DELETED,
    ModerationActionType.WARN: ReportResolution.RESOLVED_WARNED,
    ModerationActionType.BAN_POST: ReportResolution.RESOLVED_HIDDEN,
}

# Actions that count against the post's author.
PUNITIVE_ACTIONS = frozenset(
    {
        ModerationActionType.HIDE,
        ModerationActionType.DELETE,
        ModerationActionType.WARN,
        ModerationActionType.BAN_POST,
    }
)


def next_status(current: PostStatus, action: ModerationActionType) -> PostStatus:
    """Return the status reached by applying ``action`` to a post in ``current``.

    Raises:
        InvalidTransitionError: If the action is not allowed from ``current``.
    """
    try:
        return TRANSITIONS[(PostStatus(current), ModerationActionType(action))]
    except KeyError:
        raise InvalidTransitionError(PostStatus(current).value, ModerationActionType(action).value) from None


def resolution_for(action: ModerationActionType) -> ReportResolution | None:
    """Return the resolution applied to pending reports, or None to leave them."""
    return REPORT_RESOLUTIONS.get(ModerationActionType(action))


def replay(actions: Iterable[ModerationActionType]) -> PostStatus:
    """Fold an action history starting from ``visible``."""
    status = PostStatus.VISIBLE
    for action in actions:
        status = next_status(status, action)
    return status
