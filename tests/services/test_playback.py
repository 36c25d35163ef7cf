"""Tests for provider-agnostic playback resolution."""

import pytest

from eoty_platform.models import Lesson, VideoProvider
from eoty_platform.services.playback import PlayableKind, VideoDescriptor, resolve


@pytest.mark.parametrize(
    ("descriptor", "expected"),
    [
        (
            {"video_provider": "adaptive_stream", "stream_ref": "abc"},
            {"kind": "adaptive_stream", "playback_id": "abc"},
        ),
        (
            {"video_provider": "adaptive_stream", "object_url": "https://cdn.example/v.mp4"},
            {"kind": "none", "reason": "missing_stream_ref"},
        ),
        (
            {"video_provider": "object_url", "object_url": "https://cdn.example/v.mp4"},
            {"kind": "direct_url", "url": "https://cdn.example/v.mp4"},
        ),
        (
            {"video_provider": "object_url", "stream_ref": "abc"},
            {"kind": "none", "reason": "missing_url"},
        ),
        (
            {"video_provider": None, "stream_ref": "abc", "object_url": "https://cdn.example/v.mp4"},
            {"kind": "adaptive_stream", "playback_id": "abc"},
        ),
        (
            {"object_url": "https://cdn.example/v.mp4"},
            {"kind": "direct_url", "url": "https://cdn.example/v.mp4"},
        ),
        ({}, {"kind": "none", "reason": "unconfigured"}),
        ({"video_provider": "none", "stream_ref": "abc"}, {"kind": "none", "reason": "unconfigured"}),
        ({"video_provider": "vimeo", "stream_ref": "abc"}, {"kind": "none", "reason": "unsupported_provider"}),
    ],
)
def test_resolve_payloads(descriptor, expected) -> None:
    assert resolve(descriptor).as_dict() == expected


def test_resolve_orm_lesson() -> None:
    lesson = Lesson(
        title="Lesson",
        video_provider=VideoProvider.OBJECT_URL,
        object_url="https://cdn.example/lesson.mp4",
        duration=60.0,
    )
    playable = resolve(lesson)
    assert playable.kind == PlayableKind.DIRECT_URL
    assert playable.is_playable


def test_empty_references_count_as_missing() -> None:
    playable = resolve(VideoDescriptor(provider="adaptive_stream", stream_ref=""))
    assert not playable.is_playable
    assert playable.reason == "missing_stream_ref"
