"""Plan item request/response schemas."""
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class PlanItemOut(BaseModel):
    """GET /api/plan_items/{item_id} and every state-changing action on an item."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    plan_id: UUID
    slot_index: int
    scheduled_date: date
    scheduled_time: Optional[str] = None
    topic: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    research_data: Optional[Dict[str, Any]] = None
    caption: Optional[str] = None
    platforms: Optional[List[str]] = None
    script: Optional[str] = None
    script_status: Optional[str] = None
    status: str
    video_id: Optional[UUID] = None
    scheduled_post_id: Optional[UUID] = None
    error_message: Optional[str] = None
    failed_stage: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PipelineEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    event_type: str
    actor: str
    video_id: Optional[UUID] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="metadata_")
    created_at: Optional[datetime] = None


class PlanItemEventsResponse(BaseModel):
    item_id: UUID
    events: List[PipelineEventOut]


class ScheduledPostOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    platform: str
    account_handle: str
    scheduled_time: datetime
    status: str
    upload_request_id: Optional[str] = None
    platform_post_id: Optional[str] = None
    posted_at: Optional[datetime] = None
    error_message: Optional[str] = None


class ActorRequest(BaseModel):
    """Optional body for approve / generate / retry: who triggered the action."""

    actor: str = Field("HUMAN", description="SYSTEM | HUMAN")


class RejectScriptRequest(ActorRequest):
    """Body for POST /api/plan_items/{item_id}/reject_script."""

    reason: Optional[str] = Field(None, max_length=2000, description="Why the draft was rejected")


class GenerateVideoResponse(BaseModel):
    """202 response: the video record exists and generation runs in the background."""

    item_id: UUID
    video_id: UUID
    status: str


class DistributeResponse(BaseModel):
    item_id: UUID
    status: str
    posts: List[ScheduledPostOut]
