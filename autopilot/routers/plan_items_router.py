"""API plan_items: read, script approval (HITL), manual stage triggers, retry."""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from autopilot.db import get_db
from autopilot.routers.dependencies import get_pipeline
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
from autopilot.services.audit_service import ACTOR_HUMAN, list_item_events
from autopilot.services.distribution_service import distribute_item, get_item_posts
from autopilot.services.generation_settings import MODE_MANUAL
from autopilot.services.pipeline_context import PipelineContext
from autopilot.services.plan_item_service import (
    ITEM_GENERATING,
    ITEM_READY,
    approve_script,
    get_item,
    reject_script,
    retry_item,
)
from autopilot.services.stage_service import generate_item_script, run_item_video, start_item_video

router = APIRouter(
    prefix="/api/plan_items",
    tags=["plan_items"],
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)

NOT_FOUND_CODES = {"plan_item_not_found", "plan_not_found", "video_not_found"}
CONFLICT_CODES = {
    "script_not_draft",
    "plan_item_conflict",
    "plan_item_busy",
    "plan_item_not_failed",
    "plan_item_not_completed",
    "plan_item_not_ready_for_video",
    "plan_item_not_ready_for_script",
}


def _http_error(e: ValueError) -> HTTPException:
    code = str(e)
    if code in NOT_FOUND_CODES:
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=code)
    if code in CONFLICT_CODES:
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=code)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=code)


def _actor(payload: Optional[ActorRequest]) -> str:
    return payload.actor if payload else ACTOR_HUMAN


@router.get("/{item_id}", response_model=PlanItemOut)
async def get_plan_item(item_id: UUID, db: AsyncSession = Depends(get_db)) -> PlanItemOut:
    try:
        item = await get_item(db, item_id)
    except ValueError as e:
        raise _http_error(e)
    return PlanItemOut.model_validate(item)


@router.get("/{item_id}/events", response_model=PlanItemEventsResponse)
async def get_plan_item_events(item_id: UUID, db: AsyncSession = Depends(get_db)) -> PlanItemEventsResponse:
    """Audit trail of the item, newest first."""
    try:
        await get_item(db, item_id)
    except ValueError as e:
        raise _http_error(e)
    events = await list_item_events(db, item_id)
    return PlanItemEventsResponse(item_id=item_id, events=[PipelineEventOut.model_validate(ev) for ev in events])


@router.post("/{item_id}/approve_script", response_model=PlanItemOut)
async def post_approve_script(
    item_id: UUID,
    payload: Optional[ActorRequest] = None,
    db: AsyncSession = Depends(get_db),
) -> PlanItemOut:
    """draft -> approved (script_status=approved)."""
    try:
        item = await approve_script(db, item_id, actor=_actor(payload))
    except ValueError as e:
        raise _http_error(e)
    return PlanItemOut.model_validate(item)


@router.post("/{item_id}/reject_script", response_model=PlanItemOut)
async def post_reject_script(
    item_id: UUID,
    payload: Optional[RejectScriptRequest] = None,
    db: AsyncSession = Depends(get_db),
) -> PlanItemOut:
    """draft -> ready with the script cleared; the next tick writes a new one."""
    try:
        item = await reject_script(
            db,
            item_id,
            reason=payload.reason if payload else None,
            actor=_actor(payload),
        )
    except ValueError as e:
        raise _http_error(e)
    return PlanItemOut.model_validate(item)


@router.post("/{item_id}/generate_script", response_model=PlanItemOut)
async def post_generate_script(
    item_id: UUID,
    payload: Optional[ActorRequest] = None,
    db: AsyncSession = Depends(get_db),
    ctx: PipelineContext = Depends(get_pipeline),
) -> PlanItemOut:
    """Run the script stage for one ready item now. A generation error leaves the item failed."""
    try:
        item = await get_item(db, item_id)
        if item.status != ITEM_READY or item.script is not None:
            raise ValueError("plan_item_not_ready_for_script")
        won = await generate_item_script(ctx, item_id, actor=_actor(payload))
        item = await get_item(db, item_id)
        if not won and item.status == ITEM_READY:
            raise ValueError("plan_item_busy")
    except ValueError as e:
        raise _http_error(e)
    return PlanItemOut.model_validate(item)


@router.post(
    "/{item_id}/generate_video",
    response_model=GenerateVideoResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def post_generate_video(
    item_id: UUID,
    background_tasks: BackgroundTasks,
    payload: Optional[ActorRequest] = None,
    db: AsyncSession = Depends(get_db),
    ctx: PipelineContext = Depends(get_pipeline),
) -> GenerateVideoResponse:
    """
    approved -> generating: the Video is created and linked in this request, generation runs after
    the response. Poll GET /api/videos/{video_id} for the outcome.
    """
    try:
        video = await start_item_video(db, item_id, generation_mode=MODE_MANUAL, actor=_actor(payload))
    except ValueError as e:
        raise _http_error(e)
    if video is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="plan_item_conflict")
    await db.commit()
    background_tasks.add_task(run_item_video, ctx, item_id, video.id)
    return GenerateVideoResponse(item_id=item_id, video_id=video.id, status=ITEM_GENERATING)


@router.post("/{item_id}/distribute", response_model=DistributeResponse)
async def post_distribute(
    item_id: UUID,
    payload: Optional[ActorRequest] = None,
    db: AsyncSession = Depends(get_db),
    ctx: PipelineContext = Depends(get_pipeline),
) -> DistributeResponse:
    """completed -> posted | scheduled (or failed with the distribution error)."""
    if ctx.uploader is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Missing UPLOADPOST_API_KEY")
    try:
        new_status = await distribute_item(ctx, item_id, actor=_actor(payload))
        posts = await get_item_posts(db, item_id)
    except ValueError as e:
        raise _http_error(e)
    return DistributeResponse(
        item_id=item_id,
        status=new_status,
        posts=[ScheduledPostOut.model_validate(p) for p in posts],
    )


@router.post("/{item_id}/retry", response_model=PlanItemOut)
async def post_retry(
    item_id: UUID,
    payload: Optional[ActorRequest] = None,
    db: AsyncSession = Depends(get_db),
) -> PlanItemOut:
    """failed -> the status the failed stage starts from (research, script and distribution only)."""
    try:
        item = await retry_item(db, item_id, actor=_actor(payload))
    except ValueError as e:
        raise _http_error(e)
    return PlanItemOut.model_validate(item)
