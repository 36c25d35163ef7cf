"""Error kinds shared by the services, the HTTP surface and the client.

Each error carries a stable ``code`` (sent as the envelope ``message``) and
the HTTP status it maps to.
"""

from __future__ import annotations

from typing import Any


class PlatformError(Exception):
    """Base class for every expected failure."""

    code = "internal"
    status_code = 500

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.code.replace("_", " ")
        super().__init__(self.detail)

    def extra(self) -> dict[str, Any]:
        """Additional envelope fields for this error."""
        return {}


class ValidationError(PlatformError):
    """Malformed input; not retryable."""

    code = "validation"
    status_code = 400


class UnauthenticatedError(PlatformError):
    code = "unauthenticated"
    status_code = 401


class ForbiddenError(PlatformError):
    """Role check failed."""

    code = "forbidden"
    status_code = 403


class NotFoundError(PlatformError):
    code = "not_found"
    status_code = 404


class InvalidTransitionError(PlatformError):
    """Moderation action not allowed from the post's current state."""

    code = "invalid_transition"
    status_code = 409

    def __init__(self, current_state: str, action: str | None = None, detail: str | None = None) -> None:
        self.current_state = current_state
        self.action = action
        super().__init__(detail or f"cannot apply {action} to a {current_state} post")

    def extra(self) -> dict[str, Any]:
        return {"current_state": self.current_state}


class ConflictError(PlatformError):
    """Optimistic-concurrency loss after the single retry."""

    code = "conflict"
    status_code = 409

    def __init__(self, detail: str | None = None, current_state: str | None = None) -> None:
        self.current_state = current_state
        super().__init__(detail)

    def extra(self) -> dict[str, Any]:
        return {"current_state": self.current_state}


class RateLimitedError(PlatformError):
    code = "rate_limited"
    status_code = 429


class UnavailableError(PlatformError):
    """A dependency timed out or failed."""

    code = "unavailable"
    status_code = 503

    def __init__(self, detail: str | None = None, retry_after: int | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(detail)

    def extra(self) -> dict[str, Any]:
        return {"retry_after": self.retry_after}


class InternalError(PlatformError):
    code = "internal"
    status_code = 500


ERRORS_BY_CODE: dict[str, type[PlatformError]] = {
    cls.code: cls
    for cls in (
        ValidationError,
        UnauthenticatedError,
        ForbiddenError,
        NotFoundError,
        InvalidTransitionError,
        ConflictError,
        RateLimitedError,
        UnavailableError,
        InternalError,
    )
}
