"""Input checks shared by the lesson service and the client session engine."""

from __future__ import annotations

import math

from eoty_platform.core.errors import ValidationError
from eoty_platform.core.settings import settings

ANNOTATION_KINDS = ("highlight", "comment", "bookmark")
# Bookmarks may be empty; the other kinds need text.
CONTENT_REQUIRED_KINDS = frozenset({"highlight", "comment"})


def validate_timestamp(value: float, duration: float, label: str = "timestamp") -> float:
    """Check ``0 <= value <= duration + epsilon``; unknown durations only bound below."""
    try:
        value = float(value)
    except (TypeError, ValueError) as err:
        raise ValidationError(f"{label} must be a number") from err
    if not math.isfinite(value) or value < 0:
        raise ValidationError(f"{label} must be a non-negative number of seconds")
    if duration and value > duration + settings.annotation_timestamp_epsilon:
        raise ValidationError(f"{label} {value:.3f}s is past the end of the video ({duration:.3f}s)")
    return value


def validate_annotation(kind: str, content: str | None) -> tuple[str, str]:
    """Return the normalized ``(kind, content)`` of an annotation."""
    kind = getattr(kind, "value", kind)
    if kind not in ANNOTATION_KINDS:
        raise ValidationError(f"Unknown annotation type {kind!r}")
    content = (content or "").strip()
    if kind in CONTENT_REQUIRED_KINDS and not content:
        raise ValidationError(f"A {kind} needs content")
    return kind, content
