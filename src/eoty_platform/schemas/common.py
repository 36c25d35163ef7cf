"""Shared Pydantic schemas for common API elements."""
from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    """Successful response wrapper."""

    success: bool = True
    data: T


class ErrorEnvelope(BaseModel):
    """Error response body; optional fields are omitted when unset."""

    success: bool = False
    message: str = Field(..., description="Stable error code.")
    detail: str | None = None
    retry_after: int | None = None
    current_state: str | None = None
    correlation_id: str | None = None


class IdResponse(BaseModel):
    id: int

