"""
Distribution: completed items -> upload-post.com.
- distribute_item: post now when the item's time has passed (item -> posted), otherwise create pending
  scheduled_posts (item -> scheduled). Times are plan-local, stored in UTC.
  Rows are committed before uploading and each upload result right after it; a retry skips platforms
  that already have a posted or submitted row.
- send_due_posts: sends pending posts whose time is due (30s buffer), a few videos per run.
- refresh_submitted_posts / sync_scheduled_items: follow async uploads and settle scheduled items.
"""
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from autopilot.db import async_session_factory
from autopilot.errors import DistributionError, UploadPostRateLimitError
from autopilot.logging_config import get_logger
from autopilot.models import ScheduledPost, SocialAccount, Video, VideoPlan, VideoPlanItem
from autopilot.services.audit_service import ACTOR_SYSTEM, log_pipeline_event
from autopilot.services.pipeline_context import PipelineContext
from autopilot.services.plan_item_service import (
    ITEM_COMPLETED,
    ITEM_FAILED,
    ITEM_POSTED,
    ITEM_SCHEDULED,
    STAGE_DISTRIBUTION,
    claim_item,
    get_item,
    get_plan,
    mark_item_failed,
    transition_item,
)
from autopilot.services.stage_service import record_stage_failure
from autopilot.services.trigger_service import has_scheduled_time_passed, parse_time_of_day, plan_zone
from autopilot.services.uploadpost_service import RESULT_FAILED, RESULT_SUCCESS, UploadResponse
from autopilot.services.video_generation_service import VIDEO_COMPLETED

logger = get_logger(__name__)

POST_PENDING = "pending"
POST_SUBMITTED = "submitted"
POST_POSTED = "posted"
POST_FAILED = "failed"

ACCOUNT_CONNECTED = "connected"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_post_time(item: VideoPlanItem, plan: VideoPlan) -> Optional[datetime]:
    """scheduled_date + scheduled_time in the plan timezone, as UTC. None when the item has no time."""
    if item.scheduled_time is None:
        return None
    try:
        local_time = parse_time_of_day(item.scheduled_time)
    except ValueError as e:
        raise DistributionError(f"Invalid scheduled_time: {item.scheduled_time!r}") from e
    local = datetime.combine(item.scheduled_date, local_time, tzinfo=plan_zone(plan.timezone))
    return local.astimezone(timezone.utc)


def should_post_now(item: VideoPlanItem, plan: VideoPlan, now: datetime) -> bool:
    local_now = now.astimezone(plan_zone(plan.timezone))
    if item.scheduled_time is None or item.scheduled_date < local_now.date():
        return True
    if item.scheduled_date > local_now.date():
        return False
    return has_scheduled_time_passed(item.scheduled_time, local_now)


def build_caption(item: VideoPlanItem) -> str:
    if item.caption and item.caption.strip():
        return item.caption.strip()
    research = item.research_data or {}
    return (item.topic or research.get("idea") or "").strip()


async def _connected_accounts(db: AsyncSession, user_id: UUID, platforms: Sequence[str]) -> Dict[str, str]:
    """platform -> upload-post profile name, for connected accounts only."""
    r = await db.execute(
        select(SocialAccount).where(
            SocialAccount.user_id == user_id,
            SocialAccount.platform.in_(list(platforms)),
            SocialAccount.status == ACCOUNT_CONNECTED,
        )
    )
    return {acc.platform: acc.account_handle for acc in r.scalars().all()}


def _group_by_handle(accounts: Dict[str, str], platforms: Sequence[str]) -> Dict[str, List[str]]:
    groups: Dict[str, List[str]] = defaultdict(list)
    for platform in platforms:
        groups[accounts[platform]].append(platform)
    return groups


def result_values(platform: str, response: UploadResponse, now: datetime) -> Dict[str, Any]:
    """Column values for one platform's post after an upload-post response."""
    values: Dict[str, Any] = {}
    if response.upload_id:
        values["upload_request_id"] = response.upload_id
    result = response.result_for(platform)
    status = result.status if result is not None else response.status
    if status == RESULT_SUCCESS:
        values.update(status=POST_POSTED, posted_at=now, error_message=None)
        if result is not None and result.post_id:
            values["platform_post_id"] = result.post_id
    elif status == RESULT_FAILED:
        error = (result.error if result is not None else None) or response.error or "Upload failed"
        values.update(status=POST_FAILED, error_message=error)
    else:
        values["status"] = POST_SUBMITTED
    return values


def _apply_result(post: ScheduledPost, response: UploadResponse, now: datetime) -> None:
    for key, value in result_values(post.platform, response, now).items():
        setattr(post, key, value)


def _overall_item_status(posts: Sequence[ScheduledPost]) -> Optional[str]:
    """posted when nothing is in flight and at least one post went out; failed when all failed."""
    statuses = {p.status for p in posts}
    if not posts or statuses & {POST_PENDING, POST_SUBMITTED}:
        return None
    if statuses == {POST_FAILED}:
        return POST_FAILED
    return POST_POSTED


async def distribute_item(
    ctx: PipelineContext,
    item_id: UUID,
    now: Optional[datetime] = None,
    actor: str = ACTOR_SYSTEM,
) -> str:
    """
    completed -> posted (immediate) | scheduled (future or async upload). Returns the new item status.
    Raises ValueError for items that are not distributable right now; distribution errors fail the item.
    """
    now = now or utcnow()
    async with async_session_factory() as db:
        item = await get_item(db, item_id)
        if item.status != ITEM_COMPLETED:
            raise ValueError("plan_item_not_completed")
        if not await claim_item(db, item_id, ITEM_COMPLETED, ctx.settings.item_lease_seconds, now=now):
            raise ValueError("plan_item_busy")
        await db.commit()

        try:
            new_status = await _distribute_claimed(db, ctx, item, now, actor)
        except Exception as e:
            await record_stage_failure(db, item_id, STAGE_DISTRIBUTION, str(e), [ITEM_COMPLETED])
            return ITEM_FAILED
        await db.commit()
        return new_status


async def _delivered_posts(db: AsyncSession, video_id: UUID) -> List[ScheduledPost]:
    """Posts of this video that went out or may have: a retry never uploads those platforms again."""
    r = await db.execute(
        select(ScheduledPost).where(
            ScheduledPost.video_id == video_id,
            ScheduledPost.status.in_([POST_POSTED, POST_SUBMITTED]),
        )
    )
    return list(r.scalars().all())


async def _upload_groups(
    db: AsyncSession,
    ctx: PipelineContext,
    video: Video,
    item: VideoPlanItem,
    posts: Sequence[ScheduledPost],
    accounts: Dict[str, str],
    caption: str,
    scheduled_time: Optional[datetime],
    now: datetime,
) -> None:
    """
    One upload per account handle, each result committed as soon as it arrives. On an error the posts
    not sent yet are marked failed and the error is re-raised; posts already sent keep their result.
    """
    uploader = ctx.require_uploader()
    item_id = item.id
    post_ids = {post.id: post.platform for post in posts}
    sent: List[UUID] = []
    try:
        for handle, group in _group_by_handle(accounts, [p.platform for p in posts]).items():
            response = await uploader.post_video(
                handle,
                video.video_url,
                group,
                caption=caption,
                title=item.topic,
                scheduled_time=scheduled_time,
            )
            for post in posts:
                if post.platform in group:
                    _apply_result(post, response, now)
                    sent.append(post.id)
            await db.commit()
    except Exception as e:
        await db.rollback()
        unsent = [post_id for post_id in post_ids if post_id not in sent]
        logger.warning(
            "distribution.upload_failed",
            item_id=str(item_id),
            sent=[post_ids[i] for i in sent],
            unsent=[post_ids[i] for i in unsent],
            error=str(e),
        )
        if unsent:
            await _update_posts(db, unsent, status=POST_FAILED, error_message=str(e))
            await db.commit()
        raise


async def _distribute_claimed(
    db: AsyncSession,
    ctx: PipelineContext,
    item: VideoPlanItem,
    now: datetime,
    actor: str,
) -> str:
    plan = await get_plan(db, item.plan_id)
    video = await db.get(Video, item.video_id) if item.video_id else None
    if video is None or video.status != VIDEO_COMPLETED or not video.video_url:
        raise DistributionError("Video is not completed or has no URL")

    platforms = list(item.platforms or plan.default_platforms or [])
    if not platforms:
        raise DistributionError("No target platforms configured for this item or its plan")
    accounts = await _connected_accounts(db, plan.user_id, platforms)
    missing = [p for p in platforms if p not in accounts]
    if missing:
        raise DistributionError(f"No connected social account for: {', '.join(missing)}")

    post_time = compute_post_time(item, plan)
    immediate = should_post_now(item, plan, now)
    caption = build_caption(item)
    upload_now = immediate or not ctx.settings.uploadpost_skip_scheduling

    delivered = await _delivered_posts(db, video.id)
    done = {p.platform for p in delivered}
    if done:
        logger.info("distribution.platforms_already_delivered", item_id=str(item.id), platforms=sorted(done))

    # Rows the upload below will send are created as submitted so send_due_posts never picks them up.
    posts: List[ScheduledPost] = []
    for platform in platforms:
        if platform in done:
            continue
        post = ScheduledPost(
            video_id=video.id,
            user_id=plan.user_id,
            platform=platform,
            account_handle=accounts[platform],
            caption=caption,
            scheduled_time=now if immediate or post_time is None else post_time,
            status=POST_SUBMITTED if upload_now else POST_PENDING,
        )
        db.add(post)
        posts.append(post)
    await db.commit()

    if posts and upload_now:
        await _upload_groups(
            db,
            ctx,
            video,
            item,
            posts,
            accounts,
            caption,
            None if immediate else post_time,
            now,
        )

    all_posts = delivered + posts
    outcome = _overall_item_status(all_posts) if immediate else None
    if outcome == POST_FAILED:
        raise DistributionError("All posts failed: " + "; ".join(p.error_message or p.platform for p in all_posts))
    new_status = ITEM_POSTED if outcome == POST_POSTED else ITEM_SCHEDULED

    won = await transition_item(
        db,
        item.id,
        ITEM_COMPLETED,
        new_status,
        scheduled_post_id=all_posts[0].id,
        error_message=None,
    )
    if not won:
        raise ValueError("plan_item_conflict")
    await log_pipeline_event(
        db,
        event_type="POSTED" if new_status == ITEM_POSTED else "DISTRIBUTED",
        actor=actor,
        plan_item_id=item.id,
        video_id=video.id,
        metadata_={
            "platforms": platforms,
            "scheduled_time": None if immediate or post_time is None else post_time.isoformat(),
        },
    )
    logger.info(
        "distribution.item_distributed",
        item_id=str(item.id),
        status=new_status,
        platforms=platforms,
        immediate=immediate,
    )
    return new_status


async def send_due_posts(ctx: PipelineContext, now: Optional[datetime] = None) -> int:
    """
    Send pending posts due within the buffer, grouped per video and profile, at most
    UPLOADPOST_MAX_POSTS_PER_RUN videos per call. Rate limits leave posts pending. Returns posts sent.
    """
    now = now or utcnow()
    settings = ctx.settings
    if ctx.uploader is None:
        return 0
    due_before = now + timedelta(seconds=settings.uploadpost_due_buffer_seconds)
    async with async_session_factory() as db:
        r = await db.execute(
            select(
                ScheduledPost.id,
                ScheduledPost.video_id,
                ScheduledPost.account_handle,
                ScheduledPost.platform,
                ScheduledPost.caption,
            )
            .where(ScheduledPost.status == POST_PENDING, ScheduledPost.scheduled_time <= due_before)
            .order_by(ScheduledPost.scheduled_time)
        )
        groups: Dict[Tuple[UUID, str], List[Tuple[UUID, str, Optional[str]]]] = defaultdict(list)
        for post_id, video_id, handle, platform, caption in r.all():
            key = (video_id, handle)
            if key not in groups and len(groups) >= settings.uploadpost_max_posts_per_run:
                continue
            groups[key].append((post_id, platform, caption))

        sent = 0
        for (video_id, handle), posts in groups.items():
            ids = [post_id for post_id, _, _ in posts]
            claimed = await db.execute(
                update(ScheduledPost)
                .where(ScheduledPost.id.in_(ids), ScheduledPost.status == POST_PENDING)
                .values(status=POST_SUBMITTED)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != len(ids):
                # Another tick is sending part of this group.
                await db.rollback()
                continue
            await db.commit()

            vr = await db.execute(select(Video.video_url).where(Video.id == video_id))
            video_url = vr.scalar_one_or_none()
            try:
                if not video_url:
                    raise DistributionError("Video has no URL")
                response = await ctx.uploader.post_video(
                    handle,
                    video_url,
                    [platform for _, platform, _ in posts],
                    caption=posts[0][2],
                )
            except UploadPostRateLimitError as e:
                logger.warning("distribution.rate_limited", video_id=str(video_id), error=str(e))
                await _update_posts(db, ids, status=POST_PENDING)
                await db.commit()
                break
            except Exception as e:
                logger.warning("distribution.send_failed", video_id=str(video_id), error=str(e))
                await _update_posts(db, ids, status=POST_FAILED, error_message=str(e))
                await db.commit()
                continue
            for post_id, platform, _ in posts:
                await _update_posts(db, [post_id], **result_values(platform, response, now))
            await db.commit()
            sent += len(posts)
        logger.info("distribution.due_posts_sent", sent=sent, groups=len(groups))
        return sent


async def _update_posts(db: AsyncSession, ids: Sequence[UUID], **values: Any) -> None:
    await db.execute(
        update(ScheduledPost)
        .where(ScheduledPost.id.in_(list(ids)))
        .values(**values)
        .execution_options(synchronize_session=False)
    )


async def refresh_submitted_posts(ctx: PipelineContext, now: Optional[datetime] = None) -> int:
    """Poll upload-post for async uploads still in flight. Returns rows updated."""
    now = now or utcnow()
    if ctx.uploader is None:
        return 0
    async with async_session_factory() as db:
        r = await db.execute(
            select(ScheduledPost).where(
                ScheduledPost.status == POST_SUBMITTED,
                ScheduledPost.upload_request_id.isnot(None),
                ScheduledPost.scheduled_time <= now,
            )
        )
        by_request: Dict[str, List[ScheduledPost]] = defaultdict(list)
        for post in r.scalars().all():
            by_request[post.upload_request_id].append(post)

        updated = 0
        for request_id, posts in by_request.items():
            try:
                response = await ctx.uploader.get_upload_status(request_id)
            except Exception as e:
                logger.warning("distribution.status_check_failed", request_id=request_id, error=str(e))
                continue
            for post in posts:
                before = post.status
                _apply_result(post, response, now)
                if post.status != before:
                    updated += 1
            await db.commit()
        return updated


async def sync_scheduled_items(ctx: PipelineContext, now: Optional[datetime] = None) -> int:
    """scheduled items -> posted when all posts went out, failed when all failed. Returns items settled."""
    async with async_session_factory() as db:
        r = await db.execute(
            select(VideoPlanItem.id, VideoPlanItem.video_id).where(
                VideoPlanItem.status == ITEM_SCHEDULED,
                VideoPlanItem.video_id.isnot(None),
            )
        )
        rows = list(r.all())
        settled = 0
        for item_id, video_id in rows:
            pr = await db.execute(select(ScheduledPost).where(ScheduledPost.video_id == video_id))
            outcome = _overall_item_status(list(pr.scalars().all()))
            if outcome == POST_POSTED:
                if await transition_item(db, item_id, ITEM_SCHEDULED, ITEM_POSTED):
                    await log_pipeline_event(db, event_type="POSTED", plan_item_id=item_id, video_id=video_id)
                    settled += 1
            elif outcome == POST_FAILED:
                if await mark_item_failed(db, item_id, STAGE_DISTRIBUTION, "All posts failed", [ITEM_SCHEDULED]):
                    settled += 1
            await db.commit()
        return settled


async def get_item_posts(db: AsyncSession, item_id: UUID) -> List[ScheduledPost]:
    item = await get_item(db, item_id)
    if item.video_id is None:
        return []
    r = await db.execute(select(ScheduledPost).where(ScheduledPost.video_id == item.video_id))
    return list(r.scalars().all())
