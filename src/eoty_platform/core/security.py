"""JWT helpers for the opaque user identity issued upstream."""

from __future__ import annotations

from datetime import timedelta

from jose import JWTError, jwt

from eoty_platform.core.errors import UnauthenticatedError
from eoty_platform.core.settings import settings
from eoty_platform.db.time import utcnow


def create_access_token(user_id: str, extra_claims: dict[str, str] | None = None) -> str:
    """Create a JWT access token whose subject is the opaque user id."""
    to_encode: dict[str, object] = {"sub": user_id}
    if extra_claims:
        to_encode.update(extra_claims)
    to_encode["exp"] = utcnow() + timedelta(minutes=settings.access_token_expire_minutes)
    encoded_jwt: str = jwt.encode(
        to_encode,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return encoded_jwt


def decode_subject(token: str) -> str:
    """Return the ``sub`` claim of a valid token.

    Raises:
        UnauthenticatedError: If the token is invalid, expired or has no subject.
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as err:
        raise UnauthenticatedError("Could not validate credentials") from err
    subject = payload.get("sub")
    if not subject:
        raise UnauthenticatedError("Could not validate credentials")
    return str(subject)
