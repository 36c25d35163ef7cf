"""Shared API dependencies for authentication and common functionality."""

from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from eoty_platform.core.errors import UnauthenticatedError
from eoty_platform.core.security import decode_subject
from eoty_platform.db.session import get_db
from eoty_platform.models import User
from eoty_platform.services.lessons import LessonService
from eoty_platform.services.moderation import ModerationService

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer(auto_error=False)

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def _user_from_credentials(
    credentials: HTTPAuthorizationCredentials | None,
    db: Session,
) -> User:
    if credentials is None:
        raise UnauthenticatedError("Not authenticated")
    user_id = decode_subject(credentials.credentials)
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise UnauthenticatedError("User not found")
    return user


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    db: SessionDep,
) -> User:
    """Get the current authenticated user from the bearer token.

    Raises:
        UnauthenticatedError: If the token is missing or invalid, or the user is unknown.
    """
    return _user_from_credentials(credentials, db)


def get_optional_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    db: SessionDep,
) -> User | None:
    """Like :func:`get_current_user` but anonymous requests yield None."""
    if credentials is None:
        return None
    return _user_from_credentials(credentials, db)


def get_moderation_service(db: SessionDep) -> ModerationService:
    return ModerationService(db)


def get_lesson_service(db: SessionDep) -> LessonService:
    return LessonService(db)


# Type alias for current user dependency
CurrentUserDep = Annotated[User, Depends(get_current_user)]
OptionalUserDep = Annotated[User | None, Depends(get_optional_user)]
ModerationServiceDep = Annotated[ModerationService, Depends(get_moderation_service)]
LessonServiceDep = Annotated[LessonService, Depends(get_lesson_service)]


def client_ip(forwarded_for: str | None, fallback: str | None) -> str | None:
    """Return the originating client address, preferring ``X-Forwarded-For``."""
    if forwarded_for:
        return forwarded_for.split(",")[0].strip() or fallback
    return fallback
