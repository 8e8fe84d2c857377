"""
Per-item stage runners: research, script, video.
Each runner opens its own session, re-checks eligibility, does its external call and writes the outcome
with a conditional transition. Stage errors are recorded on the item (failed + message), never raised
to the scheduler; only unexpected infrastructure errors propagate.
"""
from typing import Any, Dict, Iterable, Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from autopilot.db import async_session_factory
from autopilot.logging_config import get_logger
from autopilot.models import Video, VideoPlan, VideoPlanItem
from autopilot.services.audit_service import ACTOR_SYSTEM, log_pipeline_event
from autopilot.services.generation_settings import MODE_AUTOMATION
from autopilot.services.pipeline_context import PipelineContext
from autopilot.services.plan_item_service import (
    ITEM_APPROVED,
    ITEM_COMPLETED,
    ITEM_DRAFT,
    ITEM_GENERATING,
    ITEM_PENDING,
    ITEM_READY,
    SCRIPT_APPROVED,
    SCRIPT_DRAFT,
    STAGE_RESEARCH,
    STAGE_SCRIPT,
    STAGE_VIDEO,
    claim_item,
    get_item,
    get_plan,
    mark_item_failed,
    transition_item,
)
from autopilot.services.video_generation_service import VIDEO_COMPLETED, VIDEO_FAILED

logger = get_logger(__name__)


async def record_stage_failure(
    db: AsyncSession,
    item_id: UUID,
    stage: str,
    message: str,
    from_statuses: Iterable[str],
) -> None:
    """Roll back whatever the stage left open, then fail the item in a clean transaction."""
    await db.rollback()
    await mark_item_failed(db, item_id, stage, message, from_statuses)
    await db.commit()


def script_fields(item: VideoPlanItem, plan: VideoPlan) -> Dict[str, Any]:
    """Inputs for the script prompt; item values win over research, research over plan defaults."""
    research = item.research_data or {}
    return {
        "idea": item.topic or research.get("idea"),
        "description": item.description or research.get("description"),
        "why_it_matters": research.get("why_it_matters"),
        "useful_tips": research.get("useful_tips"),
        "category": item.category or research.get("category") or plan.default_category,
        "persona": plan.persona,
    }


async def research_item(ctx: PipelineContext, item_id: UUID) -> bool:
    """pending -> ready. Returns True when this call advanced the item."""
    async with async_session_factory() as db:
        item = await get_item(db, item_id)
        if item.status != ITEM_PENDING:
            return False
        plan = await get_plan(db, item.plan_id)
        has_topic = bool(item.topic and item.topic.strip())

        if not plan.auto_research:
            if not has_topic:
                return False
            won = await transition_item(db, item_id, ITEM_PENDING, ITEM_READY)
            await db.commit()
            return won

        if not await claim_item(db, item_id, ITEM_PENDING, ctx.settings.item_lease_seconds):
            return False
        await db.commit()

        category = item.category or plan.default_category
        try:
            research, usage = await ctx.llm.generate_research(item.topic, category)
        except Exception as e:
            await record_stage_failure(db, item_id, STAGE_RESEARCH, str(e), [ITEM_PENDING])
            return False

        won = await transition_item(
            db,
            item_id,
            ITEM_PENDING,
            ITEM_READY,
            research_data=research,
            topic=item.topic if has_topic else research["idea"],
            category=category or research.get("category") or None,
            error_message=None,
        )
        if won:
            await log_pipeline_event(
                db,
                event_type="RESEARCHED",
                plan_item_id=item_id,
                metadata_={"idea": research["idea"], "total_tokens": usage.get("total_tokens", 0)},
            )
        await db.commit()
        return won


async def generate_item_script(ctx: PipelineContext, item_id: UUID, actor: str = ACTOR_SYSTEM) -> bool:
    """ready (script IS NULL) -> approved if the plan auto-approves, else draft."""
    async with async_session_factory() as db:
        item = await get_item(db, item_id)
        if item.status != ITEM_READY or item.script is not None:
            return False
        plan = await get_plan(db, item.plan_id)
        no_script = (VideoPlanItem.script.is_(None),)
        if not await claim_item(db, item_id, ITEM_READY, ctx.settings.item_lease_seconds, where=no_script):
            return False
        await db.commit()

        try:
            script, usage = await ctx.llm.generate_script(script_fields(item, plan))
        except Exception as e:
            await record_stage_failure(db, item_id, STAGE_SCRIPT, str(e), [ITEM_READY])
            return False

        approved = bool(plan.auto_approve)
        won = await transition_item(
            db,
            item_id,
            ITEM_READY,
            ITEM_APPROVED if approved else ITEM_DRAFT,
            where=no_script,
            script=script,
            script_status=SCRIPT_APPROVED if approved else SCRIPT_DRAFT,
            error_message=None,
        )
        if won:
            await log_pipeline_event(
                db,
                event_type="SCRIPT_GENERATED",
                actor=actor,
                plan_item_id=item_id,
                metadata_={"auto_approved": approved, "total_tokens": usage.get("total_tokens", 0)},
            )
        await db.commit()
        return won


async def start_item_video(
    db: AsyncSession,
    item_id: UUID,
    generation_mode: str = MODE_AUTOMATION,
    actor: str = ACTOR_SYSTEM,
) -> Optional[Video]:
    """
    approved -> generating, create the Video and link it, all in the caller's transaction.
    Returns None when a concurrent caller already claimed the item. Caller commits.
    """
    item = await get_item(db, item_id)
    if (
        item.status != ITEM_APPROVED
        or item.script_status != SCRIPT_APPROVED
        or item.video_id is not None
        or not item.script
    ):
        raise ValueError("plan_item_not_ready_for_video")
    plan = await get_plan(db, item.plan_id)

    won = await transition_item(
        db,
        item_id,
        ITEM_APPROVED,
        ITEM_GENERATING,
        where=(VideoPlanItem.video_id.is_(None), VideoPlanItem.script_status == SCRIPT_APPROVED),
    )
    if not won:
        return None

    research = item.research_data or {}
    video = Video(
        user_id=plan.user_id,
        topic=item.topic or research.get("idea") or "Untitled",
        script=item.script,
        style=plan.video_style,
        duration=plan.video_duration,
        aspect_ratio=plan.aspect_ratio,
        generation_mode=generation_mode,
    )
    db.add(video)
    await db.flush()
    linked = await db.execute(
        update(VideoPlanItem)
        .where(VideoPlanItem.id == item_id, VideoPlanItem.video_id.is_(None))
        .values(video_id=video.id)
        .execution_options(synchronize_session=False)
    )
    if linked.rowcount != 1:
        raise ValueError("plan_item_conflict")
    await log_pipeline_event(
        db,
        event_type="VIDEO_REQUESTED",
        actor=actor,
        plan_item_id=item_id,
        video_id=video.id,
        metadata_={"generation_mode": generation_mode},
    )
    logger.info("plan_item.video_started", item_id=str(item_id), video_id=str(video.id))
    return video


async def finish_item_video(db: AsyncSession, item_id: UUID, video: Video) -> bool:
    """Mirror a terminal Video status onto its generating item. Caller commits."""
    if video.status == VIDEO_COMPLETED:
        won = await transition_item(db, item_id, ITEM_GENERATING, ITEM_COMPLETED, error_message=None)
        if won:
            await log_pipeline_event(
                db,
                event_type="VIDEO_COMPLETED",
                plan_item_id=item_id,
                video_id=video.id,
                metadata_={"provider": video.provider, "model": video.provider_model},
            )
        return won
    if video.status == VIDEO_FAILED:
        return await mark_item_failed(
            db, item_id, STAGE_VIDEO, video.error_message or "Video generation failed", [ITEM_GENERATING]
        )
    return False


async def run_item_video(ctx: PipelineContext, item_id: UUID, video_id: UUID) -> bool:
    """Drive the linked Video through the orchestrator, then settle the item."""
    async with async_session_factory() as db:
        video = await db.get(Video, video_id)
        if video is None:
            await record_stage_failure(db, item_id, STAGE_VIDEO, "Linked video record is missing", [ITEM_GENERATING])
            return False
        try:
            await ctx.videos.generate_video(db, video)
        except Exception as e:
            await record_stage_failure(db, item_id, STAGE_VIDEO, str(e), [ITEM_GENERATING])
            return False
        won = await finish_item_video(db, item_id, video)
        await db.commit()
        return won


async def advance_item_video(ctx: PipelineContext, item_id: UUID) -> bool:
    """Scheduler path: claim + create Video in one transaction, then generate."""
    async with async_session_factory() as db:
        try:
            video = await start_item_video(db, item_id, generation_mode=MODE_AUTOMATION)
        except ValueError as e:
            logger.info("plan_item.video_skipped", item_id=str(item_id), reason=str(e))
            await db.rollback()
            return False
        if video is None:
            await db.rollback()
            return False
        video_id = video.id
        await db.commit()
    return await run_item_video(ctx, item_id, video_id)
