"""Pipeline services."""
from autopilot.services.pipeline_context import PipelineContext
from autopilot.services.pipeline_service import run_tick
from autopilot.services.video_generation_service import VideoGenerationService

__all__ = [
    "PipelineContext",
    "run_tick",
    "VideoGenerationService",
]
