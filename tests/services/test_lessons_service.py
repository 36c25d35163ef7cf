"""Tests for annotations, discussions and progress on the server side."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from eoty_platform.core.errors import ForbiddenError, NotFoundError, ValidationError
from eoty_platform.models import AuditEntry, Discussion, LessonProgress, PostStatus
from eoty_platform.services.lessons import LessonService
from eoty_platform.services.moderation import ModerationService


@pytest.fixture()
def lessons(db_session, clock):
    return LessonService(db_session, clock=clock)


# Annotations


def test_annotations_visible_in_timeline_order(lessons, clock, lesson, student, other_student) -> None:
    first = lessons.create_annotation(lesson.id, student.id, timestamp=10.0, kind="comment", content="first", is_public=True)
    clock.advance(milliseconds=1)
    second = lessons.create_annotation(lesson.id, other_student.id, timestamp=10.0, kind="comment", content="second", is_public=True)
    bookmark = lessons.create_annotation(lesson.id, student.id, timestamp=5.0, kind="bookmark", content=None)

    assert [item.id for item in lessons.list_annotations(lesson.id, student.id)] == [bookmark.id, first.id, second.id]
    assert [item.id for item in lessons.list_annotations(lesson.id, other_student.id)] == [first.id, second.id]


def test_annotation_timestamp_bounds(lessons, lesson, student) -> None:
    lessons.create_annotation(lesson.id, student.id, timestamp=300.4, kind="bookmark", content=None)
    with pytest.raises(ValidationError):
        lessons.create_annotation(lesson.id, student.id, timestamp=301.0, kind="bookmark", content=None)
    with pytest.raises(ValidationError):
        lessons.create_annotation(lesson.id, student.id, timestamp=-1, kind="bookmark", content=None)


def test_annotation_content_rules(lessons, lesson, student) -> None:
    with pytest.raises(ValidationError):
        lessons.create_annotation(lesson.id, student.id, timestamp=1.0, kind="highlight", content="  ")
    with pytest.raises(ValidationError):
        lessons.create_annotation(lesson.id, student.id, timestamp=1.0, kind="sticker", content="x")
    with pytest.raises(NotFoundError):
        lessons.create_annotation(9999, student.id, timestamp=1.0, kind="bookmark", content=None)


def test_only_owner_deletes_annotation(lessons, lesson, student, other_student) -> None:
    note = lessons.create_annotation(lesson.id, student.id, timestamp=3.0, kind="comment", content="mine", is_public=True)
    with pytest.raises(NotFoundError):
        lessons.delete_annotation(lesson.id, note.id, other_student.id)
    lessons.delete_annotation(lesson.id, note.id, student.id)
    assert lessons.list_annotations(lesson.id, student.id) == []


# Discussions


def test_discussion_tree_ordering(lessons, db_session, clock, lesson, student, other_student, teacher) -> None:
    older = lessons.create_discussion(lesson.id, student, content="older", video_timestamp=12.5)
    clock.advance(minutes=1)
    newer = lessons.create_discussion(lesson.id, other_student, content="newer")
    clock.advance(minutes=1)
    pinned = lessons.create_discussion(lesson.id, student, content="pin me")
    lessons.pin_discussion(pinned.post_id, teacher)
    clock.advance(minutes=1)
    reply_one = lessons.create_discussion(lesson.id, other_student, content="reply 1", parent_id=older.post_id)
    clock.advance(minutes=1)
    reply_two = lessons.create_discussion(lesson.id, student, content="reply 2", parent_id=older.post_id)

    views = lessons.list_discussions(lesson.id, student)
    assert [view.discussion.post_id for view in views] == [pinned.post_id, newer.post_id, older.post_id]
    assert [reply.discussion.post_id for reply in views[2].replies] == [reply_one.post_id, reply_two.post_id]
    assert views[2].author.id == student.id
    assert views[2].discussion.video_timestamp == 12.5


def test_replies_cannot_nest(lessons, lesson, student) -> None:
    top = lessons.create_discussion(lesson.id, student, content="top")
    reply = lessons.create_discussion(lesson.id, student, content="reply", parent_id=top.post_id)
    with pytest.raises(ValidationError):
        lessons.create_discussion(lesson.id, student, content="nested", parent_id=reply.post_id)


def test_discussion_depth_never_exceeds_one(lessons, db_session, lesson, student) -> None:
    top = lessons.create_discussion(lesson.id, student, content="top")
    for index in range(3):
        lessons.create_discussion(lesson.id, student, content=f"reply {index}", parent_id=top.post_id)
    by_id = {item.post_id: item for item in db_session.scalars(select(Discussion))}
    for item in by_id.values():
        if item.parent_id is not None:
            assert by_id[item.parent_id].parent_id is None


def test_reply_parent_must_belong_to_lesson(lessons, db_session, lesson, student) -> None:
    from eoty_platform.models import Lesson

    other = Lesson(title="Other", stream_ref="x", duration=10.0)
    db_session.add(other)
    db_session.commit()
    top = lessons.create_discussion(other.id, student, content="elsewhere")
    with pytest.raises(NotFoundError):
        lessons.create_discussion(lesson.id, student, content="reply", parent_id=top.post_id)


def test_moderated_discussions_become_placeholders(lessons, db_session, clock, lesson, student, other_student, admin) -> None:
    moderation = ModerationService(db_session, clock=clock)
    entry = lessons.create_discussion(lesson.id, student, content="rude words")
    moderation.ban_post(entry.post_id, admin.id, "violates rules")

    public = lessons.list_discussions(lesson.id, other_student)
    assert public[0].placeholder is True
    anonymous = lessons.list_discussions(lesson.id, None)
    assert anonymous[0].placeholder is True
    moderator_view = lessons.list_discussions(lesson.id, admin)
    assert moderator_view[0].placeholder is False
    assert moderator_view[0].post.status == PostStatus.BANNED

    moderation.unban_post(entry.post_id, admin.id)
    assert lessons.list_discussions(lesson.id, other_student)[0].placeholder is False


def test_only_teachers_and_admins_pin_top_level_posts(lessons, lesson, student, teacher) -> None:
    top = lessons.create_discussion(lesson.id, student, content="top")
    reply = lessons.create_discussion(lesson.id, student, content="reply", parent_id=top.post_id)
    with pytest.raises(ForbiddenError):
        lessons.pin_discussion(top.post_id, student)
    with pytest.raises(ValidationError):
        lessons.pin_discussion(reply.post_id, teacher)
    assert lessons.pin_discussion(top.post_id, teacher).is_pinned is True
    assert lessons.pin_discussion(top.post_id, teacher, pinned=False).is_pinned is False


def test_refused_pin_is_audited(lessons, db_session, lesson, student) -> None:
    top = lessons.create_discussion(lesson.id, student, content="top")
    with pytest.raises(ForbiddenError):
        lessons.pin_discussion(top.post_id, student)

    denied = list(db_session.scalars(select(AuditEntry).where(AuditEntry.event == "forbidden")))
    assert [(entry.actor_id, entry.target_id) for entry in denied] == [(student.id, "pin_discussions")]
    assert denied[0].after == {"role": "student"}
    assert db_session.get(Discussion, top.post_id).is_pinned is False


def test_inactive_user_cannot_post(lessons, db_session, lesson, make_user) -> None:
    dormant = make_user(is_active=False)
    with pytest.raises(ForbiddenError):
        lessons.create_discussion(lesson.id, dormant, content="hello")
    assert db_session.scalars(select(Discussion)).all() == []
    denied = db_session.scalars(select(AuditEntry).where(AuditEntry.event == "forbidden")).one()
    assert denied.target_id == "post_content"


def test_like_toggles(lessons, lesson, student, other_student) -> None:
    top = lessons.create_discussion(lesson.id, student, content="top")
    assert lessons.toggle_like(top.post_id, other_student.id) == (True, 1)
    assert lessons.toggle_like(top.post_id, student.id) == (True, 2)
    assert lessons.toggle_like(top.post_id, other_student.id) == (False, 1)


def test_discussion_stats_skip_moderated_posts(lessons, db_session, clock, lesson, student, other_student, teacher, admin) -> None:
    top = lessons.create_discussion(lesson.id, student, content="top")
    lessons.create_discussion(lesson.id, other_student, content="reply", parent_id=top.post_id)
    hidden = lessons.create_discussion(lesson.id, other_student, content="spam")
    lessons.pin_discussion(top.post_id, teacher)
    lessons.toggle_like(top.post_id, other_student.id)
    ModerationService(db_session, clock=clock).moderate(hidden.post_id, admin.id, "hide", "spam")

    assert lessons.discussion_stats(lesson.id) == {
        "total_discussions": 2,
        "top_level_discussions": 1,
        "replies": 1,
        "total_likes": 1,
        "pinned_discussions": 1,
    }


# Progress


def _progress(lessons, lesson, user, seconds, progress, completed=False, reported_at=None):
    return lessons.record_progress(
        lesson.id,
        user.id,
        progress=progress,
        last_watched_seconds=seconds,
        is_completed=completed,
        reported_at=reported_at,
    )


def test_progress_is_monotone_and_completion_latches(lessons, clock, lesson, student) -> None:
    assert _progress(lessons, lesson, student, 120, 0.30).accepted
    clock.advance(seconds=10)
    result = _progress(lessons, lesson, student, 60, 0.15)
    assert result.accepted
    assert (result.progress.last_watched_seconds, result.progress.progress) == (120, 0.30)

    clock.advance(seconds=10)
    result = _progress(lessons, lesson, student, 285, 0.95, completed=True)
    row = result.progress
    assert (row.last_watched_seconds, row.progress, row.is_completed) == (285, 0.95, True)
    assert row.completed_at == clock.now

    clock.advance(seconds=10)
    result = _progress(lessons, lesson, student, 10, 0.03, completed=False)
    assert result.accepted is False
    row = result.progress
    assert (row.last_watched_seconds, row.progress, row.is_completed) == (285, 0.95, True)
    assert row.updated_at == clock.now


def test_stale_reports_are_ignored(lessons, clock, lesson, student) -> None:
    _progress(lessons, lesson, student, 100, 0.33)
    stored_at = clock.now
    result = _progress(lessons, lesson, student, 200, 0.66, reported_at=stored_at - timedelta(seconds=6))
    assert result.accepted is False
    assert result.progress.last_watched_seconds == 100

    within_skew = _progress(lessons, lesson, student, 150, 0.5, reported_at=stored_at - timedelta(seconds=4))
    assert within_skew.accepted is True
    assert within_skew.progress.last_watched_seconds == 150
    assert within_skew.progress.updated_at == stored_at


def test_one_progress_row_per_user_and_lesson(lessons, db_session, lesson, student, other_student) -> None:
    _progress(lessons, lesson, student, 10, 0.1)
    _progress(lessons, lesson, student, 20, 0.2)
    _progress(lessons, lesson, other_student, 5, 0.05)
    rows = list(db_session.scalars(select(LessonProgress).order_by(LessonProgress.user_id)))
    assert len(rows) == 2
    assert lessons.get_progress(lesson.id, student.id).last_watched_seconds == 20


def test_progress_needs_existing_lesson(lessons, student) -> None:
    with pytest.raises(NotFoundError):
        lessons.record_progress(404, student.id, progress=0.1, last_watched_seconds=1)
