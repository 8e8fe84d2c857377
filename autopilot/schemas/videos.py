"""Video response schemas."""
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class VideoOut(BaseModel):
    """GET /api/videos/{video_id}."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    topic: str
    style: str
    duration: int
    aspect_ratio: str
    generation_mode: str
    status: str
    video_url: Optional[str] = None
    error_message: Optional[str] = None
    provider: Optional[str] = None
    provider_model: Optional[str] = None
    provider_task_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CheckStatusRequest(BaseModel):
    """Body for POST /api/videos/{video_id}/check_status; both fields default to the stored task."""

    task_id: Optional[str] = Field(None, description="Provider task id")
    provider: Optional[str] = Field(None, description="kie | poyo")


class CheckStatusResponse(BaseModel):
    video_id: UUID
    status: str
    video_url: Optional[str] = None
    error_message: Optional[str] = None
