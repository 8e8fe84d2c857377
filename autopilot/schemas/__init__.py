"""Pydantic request/response schemas."""
from autopilot.schemas.common import ErrorResponse
from autopilot.schemas.plan_items import (
    ActorRequest,
    DistributeResponse,
    GenerateVideoResponse,
    PipelineEventOut,
    PlanItemEventsResponse,
    PlanItemOut,
    RejectScriptRequest,
    ScheduledPostOut,
)
from autopilot.schemas.scheduler import SchedulerStatusResponse, TickResponse
from autopilot.schemas.videos import CheckStatusRequest, CheckStatusResponse, VideoOut

__all__ = [
    "ErrorResponse",
    "ActorRequest",
    "DistributeResponse",
    "GenerateVideoResponse",
    "PipelineEventOut",
    "PlanItemEventsResponse",
    "PlanItemOut",
    "RejectScriptRequest",
    "ScheduledPostOut",
    "SchedulerStatusResponse",
    "TickResponse",
    "CheckStatusRequest",
    "CheckStatusResponse",
    "VideoOut",
]
