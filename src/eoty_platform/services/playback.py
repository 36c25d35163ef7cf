# src/eoty_platform/services/playback.py
"""Provider-agnostic playback resolution.

A lesson's video descriptor is a tagged variant; :func:`resolve` maps it to
the playable resource the player needs. Resolvers are pure functions, so the
same code runs in the API and in the client session engine. A new provider
is one more :class:`PlayableKind` member, one resolver and one entry in
``_RESOLVERS``.
"""

from __future__ import annotations

import enum
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


class PlayableKind(str, enum.Enum):
    ADAPTIVE_STREAM = "adaptive_stream"
    DIRECT_URL = "direct_url"
    NONE = "none"


@dataclass(frozen=True)
class VideoDescriptor:
    """The provider fields of a lesson."""

    provider: str | None
    stream_ref: str | None = None
    object_url: str | None = None

    @classmethod
    def from_lesson(cls, lesson: Any) -> VideoDescriptor:
        """Build a descriptor from an ORM lesson or a lesson payload mapping."""
        if isinstance(lesson, dict):
            provider = lesson.get("video_provider")
            stream_ref = lesson.get("stream_ref")
            object_url = lesson.get("object_url")
        else:
            provider = lesson.video_provider
            stream_ref = lesson.stream_ref
            object_url = lesson.object_url
        if isinstance(provider, enum.Enum):
            provider = provider.value
        return cls(provider=provider or None, stream_ref=stream_ref or None, object_url=object_url or None)


@dataclass(frozen=True)
class Playable:
    kind: PlayableKind
    playback_id: str | None = None
    url: str | None = None
    reason: str | None = None

    @property
    def is_playable(self) -> bool:
        return self.kind != PlayableKind.NONE

    def as_dict(self) -> dict[str, str]:
        if self.kind == PlayableKind.ADAPTIVE_STREAM:
            return {"kind": self.kind.value, "playback_id": self.playback_id or ""}
        if self.kind == PlayableKind.DIRECT_URL:
            return {"kind": self.kind.value, "url": self.url or ""}
        return {"kind": self.kind.value, "reason": self.reason or "unconfigured"}


def unplayable(reason: str) -> Playable:
    return Playable(kind=PlayableKind.NONE, reason=reason)


def _resolve_adaptive_stream(descriptor: VideoDescriptor) -> Playable:
    if not descriptor.stream_ref:
        return unplayable("missing_stream_ref")
    return Playable(kind=PlayableKind.ADAPTIVE_STREAM, playback_id=descriptor.stream_ref)


def _resolve_object_url(descriptor: VideoDescriptor) -> Playable:
    if not descriptor.object_url:
        return unplayable("missing_url")
    return Playable(kind=PlayableKind.DIRECT_URL, url=descriptor.object_url)


def _resolve_inferred(descriptor: VideoDescriptor) -> Playable:
    if descriptor.stream_ref:
        return _resolve_adaptive_stream(descriptor)
    if descriptor.object_url:
        return _resolve_object_url(descriptor)
    return unplayable("unconfigured")


_RESOLVERS: dict[str | None, Callable[[VideoDescriptor], Playable]] = {
    "adaptive_stream": _resolve_adaptive_stream,
    "object_url": _resolve_object_url,
    "none": lambda descriptor: unplayable("unconfigured"),
    None: _resolve_inferred,
}


def resolve(lesson: Any) -> Playable:
    """Return the playable resource for a lesson, its payload, or a descriptor."""
    descriptor = lesson if isinstance(lesson, VideoDescriptor) else VideoDescriptor.from_lesson(lesson)
    resolver = _RESOLVERS.get(descriptor.provider)
    if resolver is None:
        return unplayable("unsupported_provider")
    return resolver(descriptor)
