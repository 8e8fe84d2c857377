"""API videos: read, provider status re-check."""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from autopilot.db import get_db
from autopilot.errors import ConfigurationError, ProviderError
from autopilot.models import Video, VideoPlanItem
from autopilot.routers.dependencies import get_pipeline
from autopilot.schemas.videos import CheckStatusRequest, CheckStatusResponse, VideoOut
from autopilot.services.pipeline_context import PipelineContext
from autopilot.services.plan_item_service import ITEM_GENERATING
from autopilot.services.stage_service import finish_item_video

router = APIRouter(prefix="/api/videos", tags=["videos"])


@router.get("/{video_id}", response_model=VideoOut)
async def get_video(video_id: UUID, db: AsyncSession = Depends(get_db)) -> VideoOut:
    video = await db.get(Video, video_id)
    if video is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="video_not_found")
    return VideoOut.model_validate(video)


@router.post("/{video_id}/check_status", response_model=CheckStatusResponse)
async def post_check_status(
    video_id: UUID,
    payload: Optional[CheckStatusRequest] = None,
    db: AsyncSession = Depends(get_db),
    ctx: PipelineContext = Depends(get_pipeline),
) -> CheckStatusResponse:
    """Re-fetch the provider task; terminal states are saved and mirrored onto the linked plan item."""
    payload = payload or CheckStatusRequest()
    try:
        video_status = await ctx.videos.check_task_status(
            db, video_id, task_id=payload.task_id, provider=payload.provider
        )
    except ValueError as e:
        code = str(e)
        if code == "video_not_found":
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=code)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=code)
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except ProviderError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    video = await db.get(Video, video_id)
    r = await db.execute(
        select(VideoPlanItem.id).where(
            VideoPlanItem.video_id == video_id,
            VideoPlanItem.status == ITEM_GENERATING,
        )
    )
    item_id = r.scalar_one_or_none()
    if item_id is not None:
        await finish_item_video(db, item_id, video)
    return CheckStatusResponse(
        video_id=video_id,
        status=video_status,
        video_url=video.video_url,
        error_message=video.error_message,
    )
