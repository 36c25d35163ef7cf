"""Lesson playback, annotation, discussion and progress endpoints."""

from fastapi import status

from eoty_platform.models import Lesson, VideoProvider


def test_playback_resolution(client, db_session, lesson) -> None:
    response = client.get(f"/api/v1/lessons/{lesson.id}/playback")
    assert response.json()["data"] == {
        "kind": "adaptive_stream",
        "playback_id": "playback-abc123",
        "url": None,
        "reason": None,
    }

    broken = Lesson(title="Broken", video_provider=VideoProvider.OBJECT_URL, duration=10.0)
    db_session.add(broken)
    db_session.commit()
    data = client.get(f"/api/v1/lessons/{broken.id}/playback").json()["data"]
    assert (data["kind"], data["reason"]) == ("none", "missing_url")


def test_annotations_round_trip(client, lesson, student, other_student, auth_headers) -> None:
    url = f"/api/v1/lessons/{lesson.id}/annotations"
    created = client.post(
        url,
        json={"timestamp": 42.0, "type": "highlight", "content": "key point", "is_public": True},
        headers=auth_headers(student),
    )
    assert created.status_code == status.HTTP_201_CREATED
    annotation = created.json()["data"]
    assert annotation["type"] == "highlight"
    assert annotation["user_id"] == student.id

    client.post(url, json={"timestamp": 7.5, "type": "bookmark"}, headers=auth_headers(other_student))

    mine = client.get(url, headers=auth_headers(other_student)).json()["data"]["annotations"]
    assert [item["timestamp"] for item in mine] == [7.5, 42.0]

    too_late = client.post(url, json={"timestamp": 400, "type": "bookmark"}, headers=auth_headers(student))
    assert too_late.status_code == status.HTTP_400_BAD_REQUEST

    deleted = client.delete(f"{url}/{annotation['id']}", headers=auth_headers(other_student))
    assert deleted.status_code == status.HTTP_404_NOT_FOUND
    deleted = client.delete(f"{url}/{annotation['id']}", headers=auth_headers(student))
    assert deleted.json()["data"] == {"id": annotation["id"]}


def test_discussion_thread_and_nesting(client, lesson, student, other_student, auth_headers) -> None:
    url = f"/api/v1/lessons/{lesson.id}/discussions"
    top = client.post(url, json={"content": "Why?", "video_timestamp": 30}, headers=auth_headers(student))
    assert top.status_code == status.HTTP_201_CREATED
    top_id = top.json()["data"]["id"]
    assert top.json()["data"]["author"] == {"id": student.id, "first_name": "Sam", "last_name": "User"}

    reply = client.post(url, json={"content": "Because.", "parent_id": top_id}, headers=auth_headers(other_student))
    reply_id = reply.json()["data"]["id"]
    nested = client.post(url, json={"content": "No.", "parent_id": reply_id}, headers=auth_headers(student))
    assert nested.status_code == status.HTTP_400_BAD_REQUEST

    thread = client.get(url).json()["data"]["posts"]
    assert len(thread) == 1
    assert thread[0]["id"] == top_id
    assert thread[0]["status"] is None
    assert [item["id"] for item in thread[0]["replies"]] == [reply_id]


def test_banned_discussion_becomes_placeholder(client, lesson, student, other_student, admin, auth_headers) -> None:
    url = f"/api/v1/lessons/{lesson.id}/discussions"
    post_id = client.post(url, json={"content": "offensive"}, headers=auth_headers(student)).json()["data"]["id"]
    report = client.post(
        f"/api/v1/discussions/{post_id}/report",
        json={"reason": "offensive"},
        headers=auth_headers(other_student),
    )
    assert report.status_code == status.HTTP_201_CREATED

    banned = client.post(
        f"/api/v1/admin/forum/posts/{post_id}/ban",
        json={"reason": "hate speech"},
        headers=auth_headers(admin),
    )
    assert banned.status_code == status.HTTP_200_OK

    entry = client.get(url, headers=auth_headers(other_student)).json()["data"]["posts"][0]
    assert entry["placeholder"] is True
    assert entry["content"] is None
    assert entry["author"] is None

    moderator_entry = client.get(url, headers=auth_headers(admin)).json()["data"]["posts"][0]
    assert moderator_entry["placeholder"] is False
    assert moderator_entry["content"] == "offensive"
    assert moderator_entry["status"] == "banned"

    stats = client.get(f"{url}/stats").json()["data"]
    assert stats["total_discussions"] == 0


def test_pin_and_like(client, lesson, student, teacher, auth_headers) -> None:
    url = f"/api/v1/lessons/{lesson.id}/discussions"
    first = client.post(url, json={"content": "first"}, headers=auth_headers(student)).json()["data"]["id"]
    client.post(url, json={"content": "second"}, headers=auth_headers(student))

    refused = client.post(f"/api/v1/discussions/{first}/pin", headers=auth_headers(student))
    assert refused.status_code == status.HTTP_403_FORBIDDEN
    pinned = client.post(f"/api/v1/discussions/{first}/pin", headers=auth_headers(teacher))
    assert pinned.json()["data"] == {"id": first, "pinned": True}
    assert client.get(url).json()["data"]["posts"][0]["id"] == first

    liked = client.post(f"/api/v1/discussions/{first}/like", headers=auth_headers(teacher))
    assert liked.json()["data"] == {"liked": True, "likes_count": 1}
    unliked = client.post(f"/api/v1/discussions/{first}/like", headers=auth_headers(teacher))
    assert unliked.json()["data"] == {"liked": False, "likes_count": 0}

    unpinned = client.post(
        f"/api/v1/discussions/{first}/pin",
        json={"pinned": False},
        headers=auth_headers(teacher),
    )
    assert unpinned.json()["data"]["pinned"] is False


def test_progress_endpoints(client, lesson, student, auth_headers) -> None:
    url = f"/api/v1/lessons/{lesson.id}/progress"
    assert client.get(url, headers=auth_headers(student)).json()["data"] is None

    ack = client.post(url, json={"progress": 0.4, "last_watched_seconds": 120}, headers=auth_headers(student))
    assert ack.json()["data"] == {
        "accepted": True,
        "stored_last_watched_seconds": 120.0,
        "progress": 0.4,
        "is_completed": False,
    }
    regress = client.post(url, json={"progress": 0.1, "last_watched_seconds": 30}, headers=auth_headers(student))
    assert regress.json()["data"]["stored_last_watched_seconds"] == 120.0

    done = client.post(
        url,
        json={"progress": 0.97, "last_watched_seconds": 291, "is_completed": True},
        headers=auth_headers(student),
    ).json()["data"]
    assert done["is_completed"] is True

    stored = client.get(url, headers=auth_headers(student)).json()["data"]
    assert stored["last_watched_seconds"] == 291.0
    assert stored["completed_at"] is not None

    invalid = client.post(url, json={"progress": 1.5, "last_watched_seconds": 1}, headers=auth_headers(student))
    assert invalid.status_code == status.HTTP_400_BAD_REQUEST


def test_listing_envelopes(client, lesson, student, auth_headers) -> None:
    base = f"/api/v1/lessons/{lesson.id}"
    client.post(
        f"{base}/annotations",
        json={"timestamp": 10.0, "type": "comment", "content": "look", "is_public": True},
        headers=auth_headers(student),
    )
    client.post(f"{base}/discussions", json={"content": "Question", "video_timestamp": 12}, headers=auth_headers(student))

    annotations = client.get(f"{base}/annotations", headers=auth_headers(student)).json()
    assert annotations["success"] is True
    assert list(annotations["data"]) == ["annotations"]
    item = annotations["data"]["annotations"][0]
    assert {"id", "user_id", "timestamp", "content", "type", "is_public", "created_at"} <= set(item)
    assert "kind" not in item
    assert (item["type"], item["content"], item["is_public"]) == ("comment", "look", True)

    discussions = client.get(f"{base}/discussions").json()
    assert list(discussions["data"]) == ["posts"]
    post = discussions["data"]["posts"][0]
    assert {"id", "author", "content", "video_timestamp", "pinned", "created_at", "replies"} <= set(post)
    assert "is_pinned" not in post
    assert post["author"]["first_name"] == "Sam"
    assert (post["content"], post["video_timestamp"], post["pinned"], post["replies"]) == (
        "Question",
        12.0,
        False,
        [],
    )
