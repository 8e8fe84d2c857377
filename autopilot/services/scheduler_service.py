"""
In-process scheduler: every SCHEDULER_INTERVAL_SECONDS spawn one pipeline tick as its own task,
so a tick stuck in a long provider poll never delays the next one.
ENV: SCHEDULER_ENABLED, SCHEDULER_INTERVAL_SECONDS, SCHEDULER_MAX_IN_FLIGHT_TICKS.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from autopilot.config import get_settings
from autopilot.logging_config import get_logger
from autopilot.models import VideoPlanItem
from autopilot.services.pipeline_context import PipelineContext
from autopilot.services.pipeline_service import run_tick
from autopilot.services.plan_item_service import ITEM_FAILED, ITEM_POSTED

logger = get_logger(__name__)

TERMINAL_ITEM_STATUSES = (ITEM_POSTED, ITEM_FAILED)

_scheduler_task: Optional[asyncio.Task[None]] = None
_stop_event: Optional[asyncio.Event] = None
_last_tick_at: Optional[datetime] = None
_enabled = False
_ticks: Set[asyncio.Task[Any]] = set()


def get_scheduler_status() -> dict:
    """enabled, interval_seconds, last_tick_at, in_flight_ticks. Counts need a db (see below)."""
    settings = get_settings()
    return {
        "enabled": _enabled,
        "interval_seconds": settings.scheduler_interval_seconds,
        "last_tick_at": _last_tick_at.isoformat() if _last_tick_at else None,
        "in_flight_ticks": len(_ticks),
        "pending_count": None,
        "status_counts": None,
    }


async def _status_counts(db: AsyncSession) -> Dict[str, int]:
    r = await db.execute(select(VideoPlanItem.status, func.count(VideoPlanItem.id)).group_by(VideoPlanItem.status))
    return {status: count for status, count in r.all()}


async def run_tick_now(ctx: PipelineContext) -> Dict[str, Any]:
    """One tick, awaited. Used by the loop and by POST /scheduler/tick."""
    global _last_tick_at
    _last_tick_at = datetime.now(timezone.utc)
    logger.info("scheduler.tick", at=_last_tick_at.isoformat())
    return await run_tick(ctx, _last_tick_at)


async def _tick(ctx: PipelineContext) -> None:
    try:
        summary = await run_tick_now(ctx)
    except Exception as e:
        logger.warning("scheduler.tick_error", error=str(e))
        return
    logger.info("scheduler.tick_done", due_plans=summary["due_plans"])


def _spawn_tick(ctx: PipelineContext) -> bool:
    """Start one tick unless SCHEDULER_MAX_IN_FLIGHT_TICKS are already running."""
    limit = max(1, get_settings().scheduler_max_in_flight_ticks)
    if len(_ticks) >= limit:
        logger.warning("scheduler.tick_skipped", in_flight_ticks=len(_ticks), limit=limit)
        return False
    task = asyncio.create_task(_tick(ctx))
    _ticks.add(task)
    task.add_done_callback(_ticks.discard)
    return True


async def _scheduler_loop(ctx: PipelineContext) -> None:
    settings = get_settings()
    interval = max(1, settings.scheduler_interval_seconds)
    while _stop_event is not None and not _stop_event.is_set():
        try:
            _spawn_tick(ctx)
        except Exception as e:
            logger.warning("scheduler.loop_error", error=str(e))
        await asyncio.sleep(interval)


async def start_scheduler(app: Any) -> None:
    """Start the loop (lifespan startup). The pipeline context is taken from app.state.pipeline."""
    global _scheduler_task, _stop_event, _enabled
    settings = get_settings()
    if _scheduler_task is not None:
        return
    _enabled = settings.scheduler_enabled
    if not _enabled:
        logger.info("scheduler.disabled")
        return
    ctx: PipelineContext = app.state.pipeline
    _stop_event = asyncio.Event()
    _scheduler_task = asyncio.create_task(_scheduler_loop(ctx))
    logger.info("scheduler.started", interval_seconds=settings.scheduler_interval_seconds)


async def stop_scheduler() -> None:
    """Stop the loop and cancel ticks still in flight."""
    global _scheduler_task, _stop_event, _enabled
    _enabled = False
    if _stop_event:
        _stop_event.set()
    tasks = [t for t in (_scheduler_task,) if t] + list(_ticks)
    for task in tasks:
        task.cancel()
    for task in tasks:
        try:
            await task
        except asyncio.CancelledError:
            pass
    _ticks.clear()
    _scheduler_task = None
    _stop_event = None
    logger.info("scheduler.stopped")


async def get_scheduler_status_with_pending(db: AsyncSession) -> dict:
    """Status plus item counts per status; pending_count is every item not yet posted or failed."""
    counts = await _status_counts(db)
    out = get_scheduler_status()
    out["status_counts"] = counts
    out["pending_count"] = sum(n for status, n in counts.items() if status not in TERMINAL_ITEM_STATUSES)
    return out
