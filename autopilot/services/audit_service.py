"""
Pipeline audit log.
event_type: RESEARCHED | SCRIPT_GENERATED | SCRIPT_APPROVED | SCRIPT_REJECTED | VIDEO_REQUESTED |
VIDEO_COMPLETED | DISTRIBUTED | POSTED | ITEM_FAILED | ITEM_RETRIED.
"""
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from autopilot.models import PipelineEvent

ACTOR_SYSTEM = "SYSTEM"
ACTOR_HUMAN = "HUMAN"


async def log_pipeline_event(
    db: AsyncSession,
    event_type: str,
    actor: str = ACTOR_SYSTEM,
    plan_item_id: Optional[UUID] = None,
    video_id: Optional[UUID] = None,
    metadata_: Optional[Dict[str, Any]] = None,
) -> PipelineEvent:
    """Add one audit row (flushed, committed with the caller's transaction)."""
    ev = PipelineEvent(
        plan_item_id=plan_item_id,
        video_id=video_id,
        event_type=event_type,
        actor=actor,
        metadata_=metadata_ or {},
    )
    db.add(ev)
    await db.flush()
    return ev


async def list_item_events(db: AsyncSession, plan_item_id: UUID, limit: int = 50) -> List[PipelineEvent]:
    """Events of one plan item, newest first."""
    q = (
        select(PipelineEvent)
        .where(PipelineEvent.plan_item_id == plan_item_id)
        .order_by(PipelineEvent.created_at.desc())
        .limit(limit)
    )
    r = await db.execute(q)
    return list(r.scalars().all())
