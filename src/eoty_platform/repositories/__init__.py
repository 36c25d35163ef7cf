"""Repository layer for the EOTY platform."""

from .post_repo import PostRepository

__all__ = ["PostRepository"]
