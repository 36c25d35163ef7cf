# src/eoty_platform/schemas/forum.py
"""Forum post schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from eoty_platform.models import PostStatus


class PostCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=10000)


class PostResponse(BaseModel):
    """Schema for post information returned by the API."""

    id: int
    topic_id: int | None
    author_id: str
    content: str
    status: PostStatus
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
