"""Shared router dependencies."""
from fastapi import Request

from autopilot.config import get_settings
from autopilot.services.pipeline_context import PipelineContext


def get_pipeline(request: Request) -> PipelineContext:
    """Pipeline context built in the lifespan; created lazily when the app runs without it."""
    ctx = getattr(request.app.state, "pipeline", None)
    if ctx is None:
        ctx = PipelineContext.from_settings(get_settings())
        request.app.state.pipeline = ctx
    return ctx
