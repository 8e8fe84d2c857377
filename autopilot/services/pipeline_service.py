"""
One scheduler tick over every due plan.
Per plan, sequentially: materialize the trigger date's items -> research pending -> scripts -> videos (auto_create).
Then global stages: catch-up sweep of daily plans (items that re-entered a stage after the window),
stale video reconciliation, distribution, due posts, async upload status, scheduled items.
Items inside a stage fan out concurrently (all-settled, bounded by PIPELINE_MAX_CONCURRENCY);
correctness across overlapping ticks comes from status-scoped selects plus conditional writes.
"""
import asyncio
from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from autopilot.db import async_session_factory
from autopilot.logging_config import get_logger
from autopilot.models import Video, VideoPlan, VideoPlanItem
from autopilot.services.distribution_service import (
    distribute_item,
    refresh_submitted_posts,
    send_due_posts,
    sync_scheduled_items,
)
from autopilot.services.pipeline_context import PipelineContext
from autopilot.services.plan_item_service import (
    ITEM_APPROVED,
    ITEM_COMPLETED,
    ITEM_GENERATING,
    ITEM_PENDING,
    ITEM_READY,
    SCRIPT_APPROVED,
    get_plan,
    utcnow,
)
from autopilot.services.stage_service import (
    advance_item_video,
    finish_item_video,
    generate_item_script,
    research_item,
    run_item_video,
)
from autopilot.services.trigger_service import (
    TRIGGER_DAILY,
    catch_up_date_for,
    evaluate_due_plans,
    trigger_date_for,
)
from autopilot.services.video_generation_service import (
    VIDEO_COMPLETED,
    VIDEO_FAILED,
    VIDEO_GENERATING,
    VIDEO_PENDING,
)

logger = get_logger(__name__)

ItemRunner = Callable[[PipelineContext, UUID], Awaitable[bool]]

STALE_VIDEO_GRACE_SECONDS = 60


def _lease_free(now: datetime) -> Any:
    return or_(VideoPlanItem.claimed_until.is_(None), VideoPlanItem.claimed_until < now)


async def fan_out(
    ctx: PipelineContext,
    stage: str,
    item_ids: Sequence[UUID],
    runner: ItemRunner,
) -> Dict[str, int]:
    """Run runner for every item, all-settled. One item's exception never affects its siblings."""
    if not item_ids:
        return {"selected": 0, "advanced": 0, "errors": 0}
    semaphore = asyncio.Semaphore(max(1, ctx.settings.pipeline_max_concurrency))

    async def run_one(item_id: UUID) -> bool:
        async with semaphore:
            return await runner(ctx, item_id)

    results = await asyncio.gather(*(run_one(i) for i in item_ids), return_exceptions=True)
    advanced = errors = 0
    for item_id, result in zip(item_ids, results):
        if isinstance(result, Exception):
            errors += 1
            logger.warning("pipeline.item_error", stage=stage, item_id=str(item_id), error=str(result))
        elif result:
            advanced += 1
    logger.info("pipeline.stage_done", stage=stage, selected=len(item_ids), advanced=advanced, errors=errors)
    return {"selected": len(item_ids), "advanced": advanced, "errors": errors}


async def materialize_items(db: AsyncSession, plan: VideoPlan, scheduled_date: date) -> int:
    """
    Ensure videos_per_day items exist for scheduled_date. Idempotent: existing slots are kept and a
    concurrent insert of the same slot is absorbed by the unique constraint. Returns the number created.
    """
    plan_id = plan.id
    slots = max(1, plan.videos_per_day or 1)
    trigger_time = plan.trigger_time
    category = plan.default_category

    r = await db.execute(
        select(VideoPlanItem.slot_index).where(
            VideoPlanItem.plan_id == plan_id,
            VideoPlanItem.scheduled_date == scheduled_date,
        )
    )
    existing = {row[0] for row in r.all()}
    created = 0
    for slot in range(slots):
        if slot in existing:
            continue
        db.add(
            VideoPlanItem(
                plan_id=plan_id,
                slot_index=slot,
                scheduled_date=scheduled_date,
                scheduled_time=trigger_time,
                category=category,
                status=ITEM_PENDING,
            )
        )
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            logger.info("pipeline.materialize_duplicate", plan_id=str(plan_id), slot_index=slot)
            continue
        created += 1
    if created:
        logger.info(
            "pipeline.items_materialized",
            plan_id=str(plan_id),
            scheduled_date=scheduled_date.isoformat(),
            created=created,
        )
    return created


async def _select_item_ids(ctx: PipelineContext, *criteria: Any) -> List[UUID]:
    async with async_session_factory() as db:
        r = await db.execute(
            select(VideoPlanItem.id)
            .where(*criteria)
            .order_by(VideoPlanItem.scheduled_date, VideoPlanItem.slot_index)
            .limit(ctx.settings.stage_batch_limit)
        )
        return [row[0] for row in r.all()]


async def advance_pending_items(
    ctx: PipelineContext, plan_id: UUID, target_date: date, now: datetime, topic_required: bool = False
) -> Dict[str, int]:
    """Pending items up to target_date. Without auto research only items carrying a topic can move."""
    criteria = [
        VideoPlanItem.plan_id == plan_id,
        VideoPlanItem.status == ITEM_PENDING,
        VideoPlanItem.scheduled_date <= target_date,
        _lease_free(now),
    ]
    if topic_required:
        criteria.append(VideoPlanItem.topic.isnot(None))
    ids = await _select_item_ids(ctx, *criteria)
    return await fan_out(ctx, "research", ids, research_item)


async def generate_scripts(ctx: PipelineContext, plan_id: UUID, target_date: date, now: datetime) -> Dict[str, int]:
    """Ready items without a script up to target_date: fresh research, rejected drafts and retries."""
    ids = await _select_item_ids(
        ctx,
        VideoPlanItem.plan_id == plan_id,
        VideoPlanItem.status == ITEM_READY,
        VideoPlanItem.script.is_(None),
        VideoPlanItem.scheduled_date <= target_date,
        _lease_free(now),
    )
    return await fan_out(ctx, "script", ids, generate_item_script)


async def generate_videos(ctx: PipelineContext, plan_id: UUID, target_date: date) -> Dict[str, int]:
    """Approved items up to target_date, so a late manual approval still gets its video."""
    ids = await _select_item_ids(
        ctx,
        VideoPlanItem.plan_id == plan_id,
        VideoPlanItem.status == ITEM_APPROVED,
        VideoPlanItem.script_status == SCRIPT_APPROVED,
        VideoPlanItem.video_id.is_(None),
        VideoPlanItem.scheduled_date <= target_date,
    )
    return await fan_out(ctx, "video", ids, advance_item_video)


async def run_plan_stages(
    ctx: PipelineContext,
    plan_id: UUID,
    target_date: date,
    now: datetime,
    auto_research: bool,
    auto_create: bool,
) -> Dict[str, Any]:
    summary: Dict[str, Any] = {
        "research": await advance_pending_items(ctx, plan_id, target_date, now, topic_required=not auto_research),
        "script": await generate_scripts(ctx, plan_id, target_date, now),
    }
    if auto_create:
        summary["video"] = await generate_videos(ctx, plan_id, target_date)
    return summary


async def process_plan(ctx: PipelineContext, plan_id: UUID, now: datetime) -> Dict[str, Any]:
    async with async_session_factory() as db:
        plan = await get_plan(db, plan_id)
        target_date = trigger_date_for(plan, now)
        auto_research = bool(plan.auto_research)
        auto_create = bool(plan.auto_create)
        created = await materialize_items(db, plan, target_date)

    summary: Dict[str, Any] = {"scheduled_date": target_date.isoformat(), "materialized": created}
    summary.update(await run_plan_stages(ctx, plan_id, target_date, now, auto_research, auto_create))
    return summary


async def catch_up_plans(ctx: PipelineContext, now: Optional[datetime] = None) -> Dict[str, int]:
    """
    Every tick, for enabled daily plans: advance items that re-entered a stage after the trigger window
    closed (rejected drafts, retried items, late approvals), up to catch_up_date_for. No materialization.
    """
    now = now or utcnow()
    async with async_session_factory() as db:
        r = await db.execute(
            select(VideoPlan)
            .where(VideoPlan.enabled.is_(True), VideoPlan.trigger_mode == TRIGGER_DAILY)
            .order_by(VideoPlan.created_at)
        )
        plans = list(r.scalars().all())

    out = {"plans": 0, "selected": 0, "advanced": 0, "errors": 0}
    for plan in plans:
        try:
            through = catch_up_date_for(plan, now)
        except Exception as e:
            logger.warning("pipeline.catch_up_skipped", plan_id=str(plan.id), error=str(e))
            continue
        if through is None:
            continue
        stages = await run_plan_stages(ctx, plan.id, through, now, bool(plan.auto_research), bool(plan.auto_create))
        out["plans"] += 1
        for counts in stages.values():
            for key in ("selected", "advanced", "errors"):
                out[key] += counts[key]
    return out


async def _settle_item_video(ctx: PipelineContext, item_id: UUID, video_id: UUID) -> bool:
    async with async_session_factory() as db:
        video = await db.get(Video, video_id)
        if video is None:
            return False
        if video.status in (VIDEO_PENDING, VIDEO_GENERATING) and video.provider_task_id:
            await ctx.videos.check_task_status(db, video_id)
        won = await finish_item_video(db, item_id, video)
        await db.commit()
        return won


async def reconcile_stale_videos(ctx: PipelineContext, now: Optional[datetime] = None) -> Dict[str, int]:
    """
    Generating items whose video outlived the whole poll window (the tick that drove it died):
    re-check the provider task, re-run videos that never got one, and mirror terminal video states.
    """
    now = now or utcnow()
    settings = ctx.settings
    window = settings.video_poll_interval_seconds * settings.video_poll_max_attempts + STALE_VIDEO_GRACE_SECONDS
    cutoff = now - timedelta(seconds=window)
    last_touched = func.coalesce(Video.updated_at, Video.created_at)
    async with async_session_factory() as db:
        r = await db.execute(
            select(VideoPlanItem.id, Video.id, Video.status, Video.provider_task_id)
            .join(Video, VideoPlanItem.video_id == Video.id)
            .where(
                VideoPlanItem.status == ITEM_GENERATING,
                or_(Video.status.in_([VIDEO_COMPLETED, VIDEO_FAILED]), last_touched < cutoff),
            )
            .limit(settings.stage_batch_limit)
        )
        rows = list(r.all())

    rerun = {item_id: video_id for item_id, video_id, status, task_id in rows if status == VIDEO_PENDING and not task_id}
    settle = {item_id: video_id for item_id, video_id, _, _ in rows if item_id not in rerun}

    async def rerun_one(c: PipelineContext, item_id: UUID) -> bool:
        return await run_item_video(c, item_id, rerun[item_id])

    async def settle_one(c: PipelineContext, item_id: UUID) -> bool:
        return await _settle_item_video(c, item_id, settle[item_id])

    out = await fan_out(ctx, "video_settle", list(settle), settle_one)
    rerun_out = await fan_out(ctx, "video_rerun", list(rerun), rerun_one)
    out["rerun"] = rerun_out["selected"]
    return out


async def distribute_completed_items(ctx: PipelineContext, now: Optional[datetime] = None) -> Dict[str, int]:
    now = now or utcnow()
    if ctx.uploader is None:
        logger.info("pipeline.distribution_disabled", reason="missing_uploadpost_api_key")
        return {"selected": 0, "advanced": 0, "errors": 0}
    ids = await _select_item_ids(
        ctx,
        VideoPlanItem.status == ITEM_COMPLETED,
        VideoPlanItem.video_id.isnot(None),
        _lease_free(now),
    )

    async def distribute_one(c: PipelineContext, item_id: UUID) -> bool:
        try:
            await distribute_item(c, item_id, now=now)
        except ValueError as e:
            logger.info("pipeline.distribution_skipped", item_id=str(item_id), reason=str(e))
            return False
        return True

    return await fan_out(ctx, "distribution", ids, distribute_one)


GLOBAL_STAGES = (
    ("catch_up", catch_up_plans),
    ("reconcile_videos", reconcile_stale_videos),
    ("distribute", distribute_completed_items),
    ("send_due_posts", send_due_posts),
    ("refresh_submitted_posts", refresh_submitted_posts),
    ("sync_scheduled_items", sync_scheduled_items),
)


async def run_tick(ctx: PipelineContext, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Run one full tick. Errors are isolated per plan and per global stage; returns a summary."""
    now = now or utcnow()
    async with async_session_factory() as db:
        due = await evaluate_due_plans(db, now, ctx.settings.trigger_window_minutes)

    summary: Dict[str, Any] = {"at": now.isoformat(), "due_plans": len(due), "plans": {}, "stages": {}}
    for plan_id in due:
        try:
            summary["plans"][str(plan_id)] = await process_plan(ctx, plan_id, now)
        except Exception as e:
            logger.warning("pipeline.plan_failed", plan_id=str(plan_id), error=str(e))
            summary["plans"][str(plan_id)] = {"error": str(e)}

    for name, stage in GLOBAL_STAGES:
        try:
            summary["stages"][name] = await stage(ctx, now)
        except Exception as e:
            logger.warning("pipeline.stage_failed", stage=name, error=str(e))
            summary["stages"][name] = {"error": str(e)}
    logger.info("pipeline.tick_finished", due_plans=len(due), at=now.isoformat())
    return summary
