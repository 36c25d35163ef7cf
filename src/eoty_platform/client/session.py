"""Client-side video-session engine.

A :class:`SessionEngine` tracks one :class:`ViewingSession` per
(user, lesson). It resolves the lesson's playable resource, loads the
interactive features around the video, accrues watch time from heartbeats
and reports progress to the platform API. While the API is unavailable the
session is degraded and progress reports queue up in a bounded FIFO buffer.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol

from eoty_platform.client.api import PlatformClient
from eoty_platform.core.errors import PlatformError, UnavailableError, ValidationError
from eoty_platform.core.settings import settings
from eoty_platform.core.validation import validate_annotation, validate_timestamp
from eoty_platform.services.playback import Playable, resolve

# Configure logger for this module
logger = logging.getLogger(__name__)

FEATURES = ("annotations", "discussions", "progress")


class SessionState(str, Enum):
    IDLE = "idle"
    PLAYING = "playing"
    PAUSED = "paused"
    DEGRADED = "degraded"
    FAILED = "failed"
    COMPLETED = "completed"
    CLOSED = "closed"


class ProviderError(RuntimeError):
    """Raised by a playback provider that could not prepare the stream."""


class PlaybackProvider(Protocol):
    """The player integration for one kind of playable resource."""

    async def prepare(self, playable: Playable) -> None:
        """Get ``playable`` ready to play; raise :class:`ProviderError` on failure."""


def _wall_clock() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ProgressReport:
    progress: float
    last_watched_seconds: float
    is_completed: bool
    reported_at: datetime
    # Monotonic time the report was produced; bounds how long it may wait in the buffer.
    queued_at: float

    def as_payload(self) -> dict[str, Any]:
        return {
            "progress": self.progress,
            "last_watched_seconds": self.last_watched_seconds,
            "is_completed": self.is_completed,
            "reported_at": self.reported_at.isoformat(),
        }


@dataclass
class ViewingSession:
    """In-memory state of one play of one lesson."""

    user_id: str
    lesson_id: int
    lesson: dict[str, Any]
    playable: Playable
    started_at: datetime
    state: SessionState = SessionState.IDLE
    degraded: bool = False
    error: str | None = None
    playhead: float = 0.0
    watch_seconds: float = 0.0
    last_heartbeat: float | None = None
    last_flush_at: float = 0.0
    last_reported_seconds: float = 0.0
    is_completed: bool = False
    annotations: list[dict[str, Any]] = field(default_factory=list)
    discussions: list[dict[str, Any]] = field(default_factory=list)
    progress: dict[str, Any] | None = None
    load_errors: dict[str, BaseException] = field(default_factory=dict)
    pending: deque[ProgressReport] = field(default_factory=deque)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    loads: list[asyncio.Task[Any]] = field(default_factory=list)

    @property
    def duration(self) -> float:
        return float(self.lesson.get("duration") or 0.0)

    @property
    def status(self) -> SessionState:
        """The session state, reporting ``degraded`` over the live playback states."""
        if self.degraded and self.state in (SessionState.IDLE, SessionState.PLAYING, SessionState.PAUSED):
            return SessionState.DEGRADED
        return self.state

    @property
    def progress_fraction(self) -> float:
        if self.duration <= 0:
            return 0.0
        return min(max(self.playhead / self.duration, 0.0), 1.0)


class SessionEngine:
    """Drive viewing sessions for the user a :class:`PlatformClient` is authenticated as.

    ``clock`` is a monotonic clock in seconds, ``now`` the wall clock used to
    stamp progress reports and ``sleep`` the coroutine used for retry
    backoff; all three are injectable for tests.
    """

    def __init__(
        self,
        client: PlatformClient,
        *,
        provider: PlaybackProvider | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _wall_clock,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        close_flush_timeout: float | None = None,
    ) -> None:
        self.client = client
        self.provider = provider
        self.clock = clock
        self.now = now
        self.sleep = sleep
        self.close_flush_timeout = (
            settings.close_flush_timeout_seconds if close_flush_timeout is None else close_flush_timeout
        )
        self._sessions: dict[tuple[str, int], ViewingSession] = {}

    def get_session(self, user_id: str, lesson_id: int) -> ViewingSession | None:
        return self._sessions.get((user_id, lesson_id))

    # Lifecycle

    async def open_session(self, user_id: str, lesson_id: int) -> ViewingSession:
        """Open a session, replacing any active one for the same lesson.

        Feature loads run concurrently; a failed load is recorded in
        ``session.load_errors`` and does not fail the open.
        """
        key = (user_id, lesson_id)
        previous = self._sessions.pop(key, None)
        if previous is not None:
            self._cancel_loads(previous)
            previous.state = SessionState.CLOSED

        lesson = await self.client.get_lesson(lesson_id)
        session = ViewingSession(
            user_id=user_id,
            lesson_id=lesson_id,
            lesson=lesson,
            playable=resolve(lesson),
            started_at=self.now(),
            last_flush_at=self.clock(),
        )
        self._sessions[key] = session

        loaders = {
            "annotations": self.client.list_annotations(lesson_id),
            "discussions": self.client.list_discussions(lesson_id),
            "progress": self.client.get_progress(lesson_id),
        }
        session.loads = [asyncio.ensure_future(coro) for coro in loaders.values()]
        results = await asyncio.gather(*session.loads, return_exceptions=True)
        session.loads = []

        for feature, result in zip(loaders, results):
            if isinstance(result, BaseException):
                session.load_errors[feature] = result
                if isinstance(result, UnavailableError):
                    session.degraded = True
                if not isinstance(result, asyncio.CancelledError):
                    logger.warning("Could not load %s for lesson %s: %s", feature, lesson_id, result)
                continue
            if feature == "progress":
                self._apply_stored_progress(session, result)
            else:
                setattr(session, feature, list(result or []))
        return session

    async def start(self, session: ViewingSession) -> bool:
        """Prepare playback, retrying provider errors with exponential backoff.

        Returns False and leaves the session ``failed`` (after reporting the
        progress made so far) when the lesson cannot be played.
        """
        if not session.playable.is_playable:
            return await self._fail(session, f"unplayable: {session.playable.reason}")

        attempts = max(1, settings.provider_max_attempts)
        for attempt in range(attempts):
            try:
                if self.provider is not None:
                    await asyncio.wait_for(
                        self.provider.prepare(session.playable),
                        timeout=settings.provider_timeout_seconds,
                    )
            except (ProviderError, asyncio.TimeoutError) as exc:
                logger.warning(
                    "Provider failed to prepare lesson %s (attempt %d/%d): %s",
                    session.lesson_id,
                    attempt + 1,
                    attempts,
                    exc,
                )
                if attempt + 1 >= attempts:
                    return await self._fail(session, str(exc) or exc.__class__.__name__)
                await self.sleep(settings.provider_backoff_base_seconds * (2 ** attempt))
                continue
            break

        async with session.lock:
            session.state = SessionState.PLAYING
            session.last_heartbeat = self.clock()
        return True

    async def close_session(self, session: ViewingSession) -> None:
        """Cancel outstanding loads and flush once, waiting a bounded time for the flush."""
        self._cancel_loads(session)
        if session.state == SessionState.CLOSED:
            return

        flush = asyncio.ensure_future(self._locked_flush(session))
        done, _ = await asyncio.wait({flush}, timeout=self.close_flush_timeout)
        if flush in done:
            if not flush.cancelled() and flush.exception() is not None:
                logger.warning("Final flush for lesson %s failed: %s", session.lesson_id, flush.exception())
        else:
            flush.cancel()
            logger.warning(
                "Abandoned final flush for lesson %s after %.1fs",
                session.lesson_id,
                self.close_flush_timeout,
            )

        session.state = SessionState.CLOSED
        key = (session.user_id, session.lesson_id)
        if self._sessions.get(key) is session:
            del self._sessions[key]

    async def reconnect(self, session: ViewingSession) -> bool:
        """Retry the buffered reports; True once the buffer is empty."""
        async with session.lock:
            return await self._drain(session)

    # Playback

    async def heartbeat(self, session: ViewingSession, current_seconds: float, playing: bool) -> None:
        """Record the playhead and accrue watch time.

        Elapsed time since the previous heartbeat counts only while playing
        and is clamped so a suspended tab cannot catch up in one burst.
        """
        async with session.lock:
            if session.state in (SessionState.CLOSED, SessionState.FAILED):
                return
            now = self.clock()
            was_playing = session.state == SessionState.PLAYING
            if was_playing and session.last_heartbeat is not None:
                elapsed = min(max(now - session.last_heartbeat, 0.0), settings.heartbeat_max_elapsed_seconds)
                session.watch_seconds += elapsed
            session.last_heartbeat = now
            session.playhead = self._clamp_playhead(session, current_seconds)

            new_state = SessionState.PLAYING if playing else SessionState.PAUSED
            state_changed = was_playing != playing
            session.state = new_state
            if state_changed or now - session.last_flush_at >= settings.progress_flush_interval_seconds:
                await self._flush(session)

    async def seek(self, session: ViewingSession, to_seconds: float) -> None:
        """Jump the playhead; the skipped interval is not watch time."""
        to_seconds = validate_timestamp(to_seconds, session.duration, "seek position")
        async with session.lock:
            session.playhead = self._clamp_playhead(session, to_seconds)
            session.last_heartbeat = self.clock()
            await self._flush(session)

    async def complete(self, session: ViewingSession) -> bool:
        """Final flush; the lesson counts as completed at 95% progress."""
        async with session.lock:
            if session.progress_fraction >= settings.completion_threshold:
                session.is_completed = True
            await self._flush(session)
            if session.is_completed:
                session.state = SessionState.COMPLETED
            return session.is_completed

    # Interactive features

    async def annotate(
        self,
        session: ViewingSession,
        kind: str,
        content: str | None = None,
        public: bool = False,
    ) -> int:
        """Annotate the current playhead position and return the annotation id."""
        kind, content = validate_annotation(kind, content)
        async with session.lock:
            timestamp = validate_timestamp(session.playhead, session.duration)
            data = await self._call(
                session,
                self.client.create_annotation(
                    session.lesson_id,
                    timestamp=timestamp,
                    kind=kind,
                    content=content,
                    is_public=public,
                ),
            )
            session.annotations.append(data)
            session.annotations.sort(
                key=lambda item: (item["timestamp"], item.get("created_at") or "", item["id"])
            )
            return int(data["id"])

    async def post_discussion(
        self,
        session: ViewingSession,
        content: str,
        *,
        parent_id: int | None = None,
        with_timestamp: bool = False,
    ) -> int:
        """Post to the lesson discussion, optionally anchored at the playhead."""
        content = (content or "").strip()
        if not content:
            raise ValidationError("Discussion content must not be empty")
        async with session.lock:
            parent = None
            if parent_id is not None:
                parent = self._find_discussion(session.discussions, parent_id)
                if parent is not None and parent.get("parent_id") is not None:
                    raise ValidationError("Replies can only be added to top-level posts")
            data = await self._call(
                session,
                self.client.create_discussion(
                    session.lesson_id,
                    content=content,
                    video_timestamp=session.playhead if with_timestamp else None,
                    parent_id=parent_id,
                ),
            )
            if parent is not None:
                parent.setdefault("replies", []).append(data)
            elif parent_id is None:
                pinned = sum(1 for item in session.discussions if item.get("pinned"))
                session.discussions.insert(pinned, data)
            return int(data["id"])

    async def report_discussion(self, post_id: int, reason: str, detail: str | None = None) -> int:
        """Report a discussion entry to the moderation pipeline."""
        return await self.client.report_discussion(post_id, reason=reason, detail=detail)

    # Internals

    async def _call(self, session: ViewingSession, request: Awaitable[Any]) -> Any:
        try:
            result = await request
        except UnavailableError:
            session.degraded = True
            raise
        if session.pending:
            await self._drain(session)
        else:
            session.degraded = False
        return result

    async def _locked_flush(self, session: ViewingSession) -> None:
        async with session.lock:
            await self._flush(session)

    async def _flush(self, session: ViewingSession) -> None:
        """Queue a progress report for the current playhead and try to send it."""
        session.last_flush_at = self.clock()
        session.pending.append(
            ProgressReport(
                progress=session.progress_fraction,
                last_watched_seconds=session.playhead,
                is_completed=session.is_completed,
                reported_at=self.now(),
                queued_at=session.last_flush_at,
            )
        )
        await self._drain(session)

    async def _drain(self, session: ViewingSession) -> bool:
        """Send buffered reports oldest first until one fails."""
        self._prune(session)
        while session.pending:
            report = session.pending[0]
            try:
                ack = await self.client.post_progress(session.lesson_id, report.as_payload())
            except UnavailableError as exc:
                if not session.degraded:
                    logger.warning("Progress reporting degraded for lesson %s: %s", session.lesson_id, exc)
                session.degraded = True
                return False
            except PlatformError as exc:
                # Rejected outright; retrying would fail the same way.
                logger.warning("Dropping progress report for lesson %s: %s", session.lesson_id, exc)
                session.pending.popleft()
                continue
            session.pending.popleft()
            if session.degraded:
                logger.info("Progress reporting recovered for lesson %s", session.lesson_id)
            session.degraded = False
            if ack:
                session.last_reported_seconds = float(ack.get("stored_last_watched_seconds", report.last_watched_seconds))
                if ack.get("is_completed"):
                    session.is_completed = True
        return True

    def _prune(self, session: ViewingSession) -> None:
        horizon = self.clock() - settings.offline_buffer_seconds
        dropped = 0
        while session.pending and session.pending[0].queued_at < horizon:
            session.pending.popleft()
            dropped += 1
        if dropped:
            logger.info("Dropped %d buffered progress reports for lesson %s", dropped, session.lesson_id)

    async def _fail(self, session: ViewingSession, reason: str) -> bool:
        async with session.lock:
            session.state = SessionState.FAILED
            session.error = reason
            await self._flush(session)
        return False

    @staticmethod
    def _apply_stored_progress(session: ViewingSession, progress: dict[str, Any] | None) -> None:
        session.progress = progress
        if not progress:
            return
        stored = float(progress.get("last_watched_seconds") or 0.0)
        session.playhead = stored
        session.last_reported_seconds = stored
        session.is_completed = bool(progress.get("is_completed"))

    @staticmethod
    def _clamp_playhead(session: ViewingSession, seconds: float) -> float:
        seconds = max(float(seconds), 0.0)
        if session.duration > 0:
            seconds = min(seconds, session.duration)
        return seconds

    @staticmethod
    def _find_discussion(discussions: list[dict[str, Any]], discussion_id: int) -> dict[str, Any] | None:
        for item in discussions:
            if item.get("id") == discussion_id:
                return item
            for reply in item.get("replies") or []:
                if reply.get("id") == discussion_id:
                    return reply
        return None

    @staticmethod
    def _cancel_loads(session: ViewingSession) -> None:
        for task in session.loads:
            if not task.done():
                task.cancel()
        session.loads = []
