"""Scheduler status and manual tick API."""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from autopilot.db import get_db
from autopilot.routers.dependencies import get_pipeline
from autopilot.schemas.scheduler import SchedulerStatusResponse, TickResponse
from autopilot.services.pipeline_context import PipelineContext
from autopilot.services.scheduler_service import get_scheduler_status_with_pending, run_tick_now

router = APIRouter(prefix="/scheduler", tags=["scheduler"])


@router.get("/status", response_model=SchedulerStatusResponse)
async def get_scheduler_status(
    db: AsyncSession = Depends(get_db),
) -> SchedulerStatusResponse:
    """Scheduler worker state plus plan item counts per status."""
    status = await get_scheduler_status_with_pending(db)
    return SchedulerStatusResponse(**status)


@router.post("/tick", response_model=TickResponse)
async def post_scheduler_tick(ctx: PipelineContext = Depends(get_pipeline)) -> TickResponse:
    """Run one tick now and wait for it (operations / debugging)."""
    summary = await run_tick_now(ctx)
    return TickResponse(**summary)
