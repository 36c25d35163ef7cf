"""HTTP client for the platform API used by the video-session engine.

Wraps ``httpx.AsyncClient`` with:

- per-call timeouts (store calls and provider resolution differ)
- a circuit breaker so a dead API fails fast
- per-outcome call counts
- translation of error envelopes back into :mod:`eoty_platform.core.errors`
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from eoty_platform.core.errors import (
    ERRORS_BY_CODE,
    ConflictError,
    InternalError,
    InvalidTransitionError,
    PlatformError,
    UnavailableError,
)
from eoty_platform.core.settings import settings

# Configure logger for this module
logger = logging.getLogger(__name__)

HTTP_INTERNAL_SERVER_ERROR = 500

_CODES_BY_STATUS = {
    400: "validation",
    401: "unauthenticated",
    403: "forbidden",
    404: "not_found",
    409: "conflict",
    429: "rate_limited",
    503: "unavailable",
}


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"  # calls fail fast with UnavailableError
    HALF_OPEN = "half_open"  # one trial call is let through


@dataclass
class ClientMetrics:
    """Outcome counts for the calls this client has made."""

    request_count: int = 0
    success_count: int = 0
    errors_by_type: Counter[str] = field(default_factory=Counter)

    def record(self, error_type: str | None = None) -> None:
        self.request_count += 1
        if error_type is None:
            self.success_count += 1
        else:
            self.errors_by_type[error_type] += 1

    def success_rate(self) -> float:
        """Percentage of calls that returned a success envelope."""
        return (self.success_count / self.request_count * 100) if self.request_count else 0.0


@dataclass
class CircuitBreaker:
    """Opens after repeated transport or 5xx failures; lets a trial call through after a cool-down."""

    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    success_threshold: int = 1

    _state: CircuitState = CircuitState.CLOSED
    _failure_count: int = 0
    _success_count: int = 0
    _last_failure_time: float = 0.0

    def is_open(self) -> bool:
        if self._state == CircuitState.OPEN:
            if time.monotonic() - self._last_failure_time > self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0
            return self._state == CircuitState.OPEN
        return False

    def record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.success_threshold:
                self._state = CircuitState.CLOSED
                self._failure_count = 0
        elif self._state == CircuitState.CLOSED:
            self._failure_count = 0

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()
        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN

    def get_state(self) -> CircuitState:
        return self._state


@dataclass(frozen=True)
class ClientConfig:
    """Immutable configuration for API calls."""

    base_url: str
    store_timeout_seconds: float
    provider_timeout_seconds: float
    retry_after_seconds: int


def load_client_config() -> ClientConfig:
    """Build configuration object from global settings."""
    return ClientConfig(
        base_url=settings.api_base_url,
        store_timeout_seconds=settings.store_timeout_seconds,
        provider_timeout_seconds=settings.provider_timeout_seconds,
        retry_after_seconds=settings.unavailable_retry_after_seconds,
    )


def error_from_envelope(status_code: int, body: Any) -> PlatformError:
    """Rebuild the platform error an API error envelope describes."""
    if not isinstance(body, dict):
        body = {}
    code = body.get("message") or _CODES_BY_STATUS.get(status_code, "internal")
    detail = body.get("detail")
    error_cls = ERRORS_BY_CODE.get(code, InternalError)
    if error_cls is InvalidTransitionError:
        return InvalidTransitionError(body.get("current_state") or "unknown", detail=detail)
    if error_cls is ConflictError:
        return ConflictError(detail, current_state=body.get("current_state"))
    if error_cls is UnavailableError:
        return UnavailableError(detail, retry_after=body.get("retry_after"))
    return error_cls(detail)


class PlatformClient:
    """Async client for the lesson and discussion endpoints.

    One client serves one authenticated user; pass the bearer token issued
    for that user.
    """

    def __init__(
        self,
        token: str,
        config: ClientConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or load_client_config()
        self._token = token
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self._circuit_breaker = CircuitBreaker(recovery_timeout=float(self.config.retry_after_seconds))
        self._metrics = ClientMetrics()

    @property
    def metrics(self) -> ClientMetrics:
        return self._metrics

    @property
    def circuit_state(self) -> CircuitState:
        return self._circuit_breaker.get_state()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url,
                    timeout=httpx.Timeout(self.config.store_timeout_seconds),
                    headers={"Authorization": f"Bearer {self._token}"},
                    transport=self._transport,
                )
        return self._client

    async def close(self) -> None:
        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None
        if self._metrics.request_count:
            logger.debug(
                "Platform client closed after %d calls (%.1f%% ok, errors: %s)",
                self._metrics.request_count,
                self._metrics.success_rate(),
                dict(self._metrics.errors_by_type) or "none",
            )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_data: Any | None = None,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Send a request and return the envelope's ``data``.

        Raises:
            UnavailableError: On timeouts, transport failures, 5xx responses
                or while the circuit is open.
            PlatformError: The subclass named by any other error envelope.
        """
        if self._circuit_breaker.is_open():
            raise UnavailableError(
                "Platform API circuit breaker is open",
                retry_after=self.config.retry_after_seconds,
            )

        client = await self._ensure_client()
        endpoint = f"{method} {path}"
        error_type: str | None = None

        try:
            response = await client.request(
                method,
                path,
                json=json_data,
                params=params,
                timeout=httpx.Timeout(timeout) if timeout is not None else httpx.USE_CLIENT_DEFAULT,
            )
        except httpx.TimeoutException as exc:
            self._circuit_breaker.record_failure()
            error_type = "timeout"
            raise UnavailableError(
                f"{endpoint} timed out",
                retry_after=self.config.retry_after_seconds,
            ) from exc
        except httpx.TransportError as exc:
            self._circuit_breaker.record_failure()
            error_type = "network_error"
            raise UnavailableError(
                f"{endpoint} failed: {exc}",
                retry_after=self.config.retry_after_seconds,
            ) from exc
        finally:
            if error_type is not None:
                self._metrics.record(error_type)

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code >= HTTP_INTERNAL_SERVER_ERROR:
            self._circuit_breaker.record_failure()
        else:
            self._circuit_breaker.record_success()

        if response.is_success and isinstance(body, dict) and body.get("success"):
            self._metrics.record()
            return body.get("data")

        error = error_from_envelope(response.status_code, body)
        if response.status_code >= HTTP_INTERNAL_SERVER_ERROR and not isinstance(error, UnavailableError):
            logger.warning("%s returned %s: %s", endpoint, response.status_code, error.detail)
        self._metrics.record(f"http_{response.status_code}")
        raise error

    # Lessons

    async def get_lesson(self, lesson_id: int) -> dict[str, Any]:
        return await self._request("GET", f"/lessons/{lesson_id}")

    async def get_playback(self, lesson_id: int) -> dict[str, Any]:
        """Resolve the lesson's playable resource server-side."""
        return await self._request(
            "GET",
            f"/lessons/{lesson_id}/playback",
            timeout=self.config.provider_timeout_seconds,
        )

    # Annotations

    async def list_annotations(self, lesson_id: int) -> list[dict[str, Any]]:
        data = await self._request("GET", f"/lessons/{lesson_id}/annotations")
        return data["annotations"]

    async def create_annotation(
        self,
        lesson_id: int,
        *,
        timestamp: float,
        kind: str,
        content: str | None,
        is_public: bool,
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/lessons/{lesson_id}/annotations",
            json_data={
                "timestamp": timestamp,
                "type": kind,
                "content": content,
                "is_public": is_public,
            },
        )

    # Discussions

    async def list_discussions(self, lesson_id: int) -> list[dict[str, Any]]:
        data = await self._request("GET", f"/lessons/{lesson_id}/discussions")
        return data["posts"]

    async def create_discussion(
        self,
        lesson_id: int,
        *,
        content: str,
        video_timestamp: float | None = None,
        parent_id: int | None = None,
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/lessons/{lesson_id}/discussions",
            json_data={
                "content": content,
                "video_timestamp": video_timestamp,
                "parent_id": parent_id,
            },
        )

    async def report_discussion(
        self,
        discussion_id: int,
        *,
        reason: str,
        detail: str | None = None,
    ) -> int:
        data = await self._request(
            "POST",
            f"/discussions/{discussion_id}/report",
            json_data={"reason": reason, "detail": detail},
        )
        return int(data["report_id"])

    # Progress

    async def get_progress(self, lesson_id: int) -> dict[str, Any] | None:
        return await self._request("GET", f"/lessons/{lesson_id}/progress")

    async def post_progress(self, lesson_id: int, report: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", f"/lessons/{lesson_id}/progress", json_data=report)
