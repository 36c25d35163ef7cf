"""Client side of the video-session engine."""

from .api import PlatformClient
from .session import (
    PlaybackProvider,
    ProgressReport,
    ProviderError,
    SessionEngine,
    SessionState,
    ViewingSession,
)

__all__ = [
    "PlatformClient",
    "PlaybackProvider",
    "ProgressReport",
    "ProviderError",
    "SessionEngine",
    "SessionState",
    "ViewingSession",
]
