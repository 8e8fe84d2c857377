"""
Plan item state machine.

pending -> ready -> draft | approved -> approved -> generating -> completed -> scheduled | posted
Any stage error -> failed (error_message + failed_stage). Rejecting a draft script returns the item to ready.

Every write is a conditional UPDATE ... WHERE status = <expected>; the rowcount tells the caller whether it
won, so overlapping scheduler ticks cannot both advance the same item. Stages that call external services
before writing first take a short lease (claimed_until) the same way.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional, Sequence
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from autopilot.logging_config import get_logger
from autopilot.models import VideoPlan, VideoPlanItem
from autopilot.services.audit_service import ACTOR_HUMAN, log_pipeline_event

logger = get_logger(__name__)

ITEM_PENDING = "pending"
ITEM_READY = "ready"
ITEM_DRAFT = "draft"
ITEM_APPROVED = "approved"
ITEM_GENERATING = "generating"
ITEM_COMPLETED = "completed"
ITEM_SCHEDULED = "scheduled"
ITEM_POSTED = "posted"
ITEM_FAILED = "failed"

SCRIPT_DRAFT = "draft"
SCRIPT_APPROVED = "approved"
SCRIPT_REJECTED = "rejected"

STAGE_RESEARCH = "research"
STAGE_SCRIPT = "script"
STAGE_VIDEO = "video"
STAGE_DISTRIBUTION = "distribution"

ALLOWED_TRANSITIONS: Dict[str, frozenset] = {
    ITEM_PENDING: frozenset({ITEM_READY, ITEM_FAILED}),
    ITEM_READY: frozenset({ITEM_DRAFT, ITEM_APPROVED, ITEM_FAILED}),
    ITEM_DRAFT: frozenset({ITEM_APPROVED, ITEM_READY, ITEM_FAILED}),
    ITEM_APPROVED: frozenset({ITEM_GENERATING, ITEM_FAILED}),
    ITEM_GENERATING: frozenset({ITEM_COMPLETED, ITEM_FAILED}),
    ITEM_COMPLETED: frozenset({ITEM_SCHEDULED, ITEM_POSTED, ITEM_FAILED}),
    ITEM_SCHEDULED: frozenset({ITEM_POSTED, ITEM_FAILED}),
    # Manual retry only.
    ITEM_FAILED: frozenset({ITEM_PENDING, ITEM_READY, ITEM_COMPLETED}),
    ITEM_POSTED: frozenset(),
}

# failed_stage -> status the item is returned to by retry_item.
RETRY_TARGETS = {
    STAGE_RESEARCH: ITEM_PENDING,
    STAGE_SCRIPT: ITEM_READY,
    STAGE_DISTRIBUTION: ITEM_COMPLETED,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


async def get_item(db: AsyncSession, item_id: UUID) -> VideoPlanItem:
    """Fresh copy of the item (bypasses stale identity-map state after conditional updates)."""
    r = await db.execute(
        select(VideoPlanItem).where(VideoPlanItem.id == item_id).execution_options(populate_existing=True)
    )
    item = r.scalar_one_or_none()
    if not item:
        raise ValueError("plan_item_not_found")
    return item


async def get_plan(db: AsyncSession, plan_id: UUID) -> VideoPlan:
    plan = await db.get(VideoPlan, plan_id)
    if not plan:
        raise ValueError("plan_not_found")
    return plan


async def transition_item(
    db: AsyncSession,
    item_id: UUID,
    from_status: str,
    to_status: str,
    where: Sequence[Any] = (),
    **values: Any,
) -> bool:
    """
    Move item from_status -> to_status if it is still in from_status (and matches the extra predicates).
    Clears the lease. Returns False when another writer got there first.
    """
    if not can_transition(from_status, to_status):
        raise ValueError("invalid_transition")
    stmt = (
        update(VideoPlanItem)
        .where(VideoPlanItem.id == item_id, VideoPlanItem.status == from_status, *where)
        .values(status=to_status, updated_at=utcnow(), claimed_until=None, **values)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    won = result.rowcount == 1
    if won:
        logger.info("plan_item.transition", item_id=str(item_id), from_status=from_status, to_status=to_status)
    else:
        logger.info("plan_item.transition_lost", item_id=str(item_id), from_status=from_status, to_status=to_status)
    return won


async def claim_item(
    db: AsyncSession,
    item_id: UUID,
    expected_status: str,
    lease_seconds: int,
    where: Sequence[Any] = (),
    now: Optional[datetime] = None,
) -> bool:
    """Take the per-item lease if the item is in expected_status and not leased by someone else."""
    now = now or utcnow()
    stmt = (
        update(VideoPlanItem)
        .where(
            VideoPlanItem.id == item_id,
            VideoPlanItem.status == expected_status,
            or_(VideoPlanItem.claimed_until.is_(None), VideoPlanItem.claimed_until < now),
            *where,
        )
        .values(claimed_until=now + timedelta(seconds=lease_seconds))
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount == 1


async def release_item(db: AsyncSession, item_id: UUID) -> None:
    await db.execute(
        update(VideoPlanItem)
        .where(VideoPlanItem.id == item_id)
        .values(claimed_until=None)
        .execution_options(synchronize_session=False)
    )


async def mark_item_failed(
    db: AsyncSession,
    item_id: UUID,
    stage: str,
    message: str,
    from_statuses: Iterable[str],
) -> bool:
    """Fail the item if it is still in one of from_statuses; keeps the error for the user."""
    statuses = [s for s in from_statuses if can_transition(s, ITEM_FAILED)]
    stmt = (
        update(VideoPlanItem)
        .where(VideoPlanItem.id == item_id, VideoPlanItem.status.in_(statuses))
        .values(
            status=ITEM_FAILED,
            error_message=(message or "Unknown error")[:2000],
            failed_stage=stage,
            claimed_until=None,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    won = result.rowcount == 1
    if won:
        await log_pipeline_event(
            db,
            event_type="ITEM_FAILED",
            plan_item_id=item_id,
            metadata_={"stage": stage, "error": message},
        )
        logger.warning("plan_item.failed", item_id=str(item_id), stage=stage, error=message)
    return won


async def approve_script(db: AsyncSession, item_id: UUID, actor: str = ACTOR_HUMAN) -> VideoPlanItem:
    """draft -> approved. Only a draft script can be approved."""
    item = await get_item(db, item_id)
    if item.status != ITEM_DRAFT or item.script_status != SCRIPT_DRAFT:
        raise ValueError("script_not_draft")
    won = await transition_item(
        db,
        item_id,
        ITEM_DRAFT,
        ITEM_APPROVED,
        where=(VideoPlanItem.script_status == SCRIPT_DRAFT,),
        script_status=SCRIPT_APPROVED,
        error_message=None,
    )
    if not won:
        raise ValueError("plan_item_conflict")
    await log_pipeline_event(db, event_type="SCRIPT_APPROVED", actor=actor, plan_item_id=item_id)
    logger.info("plan_item.script_approved", item_id=str(item_id), actor=actor)
    return await get_item(db, item_id)


async def reject_script(
    db: AsyncSession,
    item_id: UUID,
    reason: Optional[str] = None,
    actor: str = ACTOR_HUMAN,
) -> VideoPlanItem:
    """draft -> ready with the script cleared and script_status=rejected; the next script run regenerates it."""
    item = await get_item(db, item_id)
    if item.status != ITEM_DRAFT or item.script_status != SCRIPT_DRAFT:
        raise ValueError("script_not_draft")
    won = await transition_item(
        db,
        item_id,
        ITEM_DRAFT,
        ITEM_READY,
        where=(VideoPlanItem.script_status == SCRIPT_DRAFT,),
        script=None,
        script_status=SCRIPT_REJECTED,
    )
    if not won:
        raise ValueError("plan_item_conflict")
    await log_pipeline_event(
        db,
        event_type="SCRIPT_REJECTED",
        actor=actor,
        plan_item_id=item_id,
        metadata_={"reason": reason},
    )
    logger.info("plan_item.script_rejected", item_id=str(item_id), actor=actor)
    return await get_item(db, item_id)


async def retry_item(db: AsyncSession, item_id: UUID, actor: str = ACTOR_HUMAN) -> VideoPlanItem:
    """
    Manual re-trigger of a failed item from the stage that failed.
    Video-stage failures cannot be retried: video_id is written once per item.
    """
    item = await get_item(db, item_id)
    if item.status != ITEM_FAILED:
        raise ValueError("plan_item_not_failed")
    target = RETRY_TARGETS.get(item.failed_stage or "")
    if target is None:
        raise ValueError("plan_item_not_retryable")
    won = await transition_item(db, item_id, ITEM_FAILED, target, error_message=None, failed_stage=None)
    if not won:
        raise ValueError("plan_item_conflict")
    await log_pipeline_event(
        db,
        event_type="ITEM_RETRIED",
        actor=actor,
        plan_item_id=item_id,
        metadata_={"stage": item.failed_stage, "status": target},
    )
    return await get_item(db, item_id)
