"""Envelope and error-mapping behaviour of the HTTP surface."""

from fastapi import status
from fastapi.testclient import TestClient

from eoty_platform.services.lessons import LessonService


def test_health_check(client) -> None:
    response = client.get("/health")
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"status": "ok"}


def test_request_id_is_echoed(client, lesson) -> None:
    response = client.get(f"/api/v1/lessons/{lesson.id}", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"
    assert response.json()["success"] is True
    assert response.json()["data"]["stream_ref"] == "playback-abc123"


def test_missing_token_is_unauthenticated(client, topic) -> None:
    response = client.post(f"/api/v1/forum/topics/{topic.id}/posts", json={"content": "hi"})
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "unauthenticated"


def test_invalid_token_is_unauthenticated(client, lesson) -> None:
    response = client.get(
        f"/api/v1/lessons/{lesson.id}/annotations",
        headers={"Authorization": "Bearer not-a-jwt"},
    )
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["message"] == "unauthenticated"


def test_malformed_body_is_validation_error(client, student, auth_headers, make_post, other_student) -> None:
    post = make_post(other_student)
    response = client.post(
        f"/api/v1/forum/posts/{post.id}/report",
        json={"reason": "boring"},
        headers=auth_headers(student),
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    body = response.json()
    assert body["message"] == "validation"
    assert "reason" in body["detail"]


def test_unknown_lesson_is_not_found(client) -> None:
    response = client.get("/api/v1/lessons/999")
    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json() == {"success": False, "message": "not_found", "detail": "Lesson not found"}


def test_unknown_route_uses_error_envelope(client) -> None:
    response = client.get("/api/v1/does-not-exist")
    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json()["message"] == "not_found"


def test_students_cannot_reach_admin_endpoints(client, student, auth_headers) -> None:
    response = client.get("/api/v1/admin/forum/queue", headers=auth_headers(student))
    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json()["message"] == "forbidden"


def test_invalid_transition_reports_current_state(client, admin, other_student, auth_headers, make_post) -> None:
    post = make_post(other_student)
    response = client.post(f"/api/v1/admin/forum/posts/{post.id}/unban", headers=auth_headers(admin))
    assert response.status_code == status.HTTP_409_CONFLICT
    body = response.json()
    assert body["message"] == "invalid_transition"
    assert body["current_state"] == "visible"


def test_unexpected_errors_carry_correlation_id(app, lesson, mocker) -> None:
    mocker.patch.object(LessonService, "get_lesson", side_effect=RuntimeError("boom"))
    with TestClient(app, base_url="http://test", raise_server_exceptions=False) as client:
        response = client.get(f"/api/v1/lessons/{lesson.id}", headers={"X-Request-ID": "corr-42"})
    assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    body = response.json()
    assert body["message"] == "internal"
    assert body["correlation_id"] == "corr-42"
    assert "boom" not in body["detail"]


def test_openapi_documents_error_envelope(client) -> None:
    schema = client.get("/openapi.json").json()
    assert "ErrorEnvelope" in schema["components"]["schemas"]
    responses = schema["paths"]["/api/v1/lessons/{lesson_id}"]["get"]["responses"]
    assert responses["404"]["content"]["application/json"]["schema"]["$ref"].endswith("/ErrorEnvelope")
