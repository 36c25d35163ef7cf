"""Tests for the post state machine."""

import pytest

from eoty_platform.core.errors import InvalidTransitionError
from eoty_platform.models import ModerationActionType, PostStatus, ReportResolution
from eoty_platform.services.transitions import (
    TRANSITIONS,
    next_status,
    replay,
    resolution_for,
)

A = ModerationActionType


@pytest.mark.parametrize(
    ("current", "action", "expected"),
    [
        (PostStatus.VISIBLE, A.APPROVE, PostStatus.VISIBLE),
        (PostStatus.VISIBLE, A.HIDE, PostStatus.HIDDEN),
        (PostStatus.VISIBLE, A.WARN, PostStatus.VISIBLE),
        (PostStatus.HIDDEN, A.APPROVE, PostStatus.VISIBLE),
        (PostStatus.HIDDEN, A.WARN, PostStatus.HIDDEN),
        (PostStatus.HIDDEN, A.BAN_POST, PostStatus.BANNED),
        (PostStatus.BANNED, A.DELETE, PostStatus.DELETED),
        (PostStatus.BANNED, A.UNBAN_POST, PostStatus.VISIBLE),
    ],
)
def test_allowed_transitions(current, action, expected) -> None:
    assert next_status(current, action) == expected


@pytest.mark.parametrize("action", list(A))
def test_deleted_is_terminal(action) -> None:
    with pytest.raises(InvalidTransitionError) as excinfo:
        next_status(PostStatus.DELETED, action)
    assert excinfo.value.current_state == "deleted"


@pytest.mark.parametrize("action", [A.APPROVE, A.HIDE, A.WARN, A.BAN_POST])
def test_banned_only_allows_delete_and_unban(action) -> None:
    with pytest.raises(InvalidTransitionError):
        next_status(PostStatus.BANNED, action)


def test_unban_requires_banned_post() -> None:
    with pytest.raises(InvalidTransitionError):
        next_status(PostStatus.VISIBLE, A.UNBAN_POST)
    with pytest.raises(InvalidTransitionError):
        next_status(PostStatus.HIDDEN, A.UNBAN_POST)


def test_table_covers_twelve_pairs() -> None:
    assert len(TRANSITIONS) == 12


def test_resolution_rule() -> None:
    assert resolution_for(A.APPROVE) == ReportResolution.RESOLVED_KEPT
    assert resolution_for(A.HIDE) == ReportResolution.RESOLVED_HIDDEN
    assert resolution_for(A.DELETE) == ReportResolution.RESOLVED_DELETED
    assert resolution_for(A.WARN) == ReportResolution.RESOLVED_WARNED
    assert resolution_for(A.BAN_POST) == ReportResolution.RESOLVED_HIDDEN
    assert resolution_for(A.UNBAN_POST) is None


def test_replay_folds_history_from_visible() -> None:
    assert replay([]) == PostStatus.VISIBLE
    assert replay([A.HIDE, A.APPROVE, A.BAN_POST]) == PostStatus.BANNED
    assert replay([A.BAN_POST, A.UNBAN_POST, A.WARN]) == PostStatus.VISIBLE
    with pytest.raises(InvalidTransitionError):
        replay([A.DELETE, A.APPROVE])
