"""
Trigger evaluation: which enabled plans are due at a given instant.
daily: plan-local time within ±window minutes of trigger_time (circular, so 23:58 vs 00:05 is 7 minutes).
time_based / immediate: due on every tick.
Outside the window, items of a daily plan up to catch_up_date_for are swept by the pipeline's catch-up stage.
"""
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from autopilot.logging_config import get_logger
from autopilot.models import VideoPlan

logger = get_logger(__name__)

TRIGGER_DAILY = "daily"
TRIGGER_TIME_BASED = "time_based"
TRIGGER_IMMEDIATE = "immediate"
ALWAYS_DUE_MODES = (TRIGGER_TIME_BASED, TRIGGER_IMMEDIATE)

DEFAULT_WINDOW_MINUTES = 15
MINUTES_PER_DAY = 24 * 60

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


def parse_time_of_day(value: str) -> time:
    """Parse H:MM, HH:MM or HH:MM:SS. Raises ValueError on anything else or out-of-range parts."""
    match = _TIME_RE.match((value or "").strip())
    if not match:
        raise ValueError(f"invalid time of day: {value!r}")
    hour, minute = int(match.group(1)), int(match.group(2))
    second = int(match.group(3)) if match.group(3) is not None else 0
    if hour > 23 or minute > 59 or second > 59:
        raise ValueError(f"time of day out of range: {value!r}")
    return time(hour, minute, second)


def plan_zone(tz_name: Optional[str]) -> ZoneInfo:
    """ZoneInfo for the plan; raises on unknown names so the plan is skipped, not silently moved to UTC."""
    return ZoneInfo((tz_name or "UTC").strip() or "UTC")


def circular_minute_distance(a: int, b: int) -> int:
    delta = abs(a - b) % MINUTES_PER_DAY
    return min(delta, MINUTES_PER_DAY - delta)


def _signed_minute_offset(now_minute: int, trigger_minute: int) -> int:
    """Minutes from now to the nearest occurrence of the trigger (negative when it just passed)."""
    delta = (trigger_minute - now_minute) % MINUTES_PER_DAY
    return delta - MINUTES_PER_DAY if delta > MINUTES_PER_DAY // 2 else delta


def is_plan_due(plan: VideoPlan, now: datetime, window_minutes: int = DEFAULT_WINDOW_MINUTES) -> bool:
    """Raises ValueError / ZoneInfoNotFoundError for malformed plans; callers isolate per plan."""
    if plan.trigger_mode in ALWAYS_DUE_MODES:
        return True
    if plan.trigger_mode != TRIGGER_DAILY:
        raise ValueError(f"unknown trigger_mode: {plan.trigger_mode!r}")
    if not plan.trigger_time:
        raise ValueError("daily plan without trigger_time")
    trigger = parse_time_of_day(plan.trigger_time)
    local = now.astimezone(plan_zone(plan.timezone))
    now_minute = local.hour * 60 + local.minute
    trigger_minute = trigger.hour * 60 + trigger.minute
    return circular_minute_distance(now_minute, trigger_minute) <= window_minutes


def trigger_date_for(plan: VideoPlan, now: datetime) -> date:
    """
    Plan-local date the current trigger belongs to. At 23:58 with a 00:05 trigger that is tomorrow;
    at 00:03 with a 23:55 trigger it is yesterday.
    """
    local = now.astimezone(plan_zone(plan.timezone))
    if plan.trigger_mode != TRIGGER_DAILY or not plan.trigger_time:
        return local.date()
    trigger = parse_time_of_day(plan.trigger_time)
    offset = _signed_minute_offset(local.hour * 60 + local.minute, trigger.hour * 60 + trigger.minute)
    return (local + timedelta(minutes=offset)).date()


def catch_up_date_for(plan: VideoPlan, now: datetime) -> Optional[date]:
    """
    Latest plan-local scheduled_date whose items are overdue at now, for daily plans: today once the
    trigger time has passed, otherwise yesterday. None for modes that are processed on every tick.
    """
    if plan.trigger_mode in ALWAYS_DUE_MODES:
        return None
    if plan.trigger_mode != TRIGGER_DAILY:
        raise ValueError(f"unknown trigger_mode: {plan.trigger_mode!r}")
    if not plan.trigger_time:
        raise ValueError("daily plan without trigger_time")
    parse_time_of_day(plan.trigger_time)
    local = now.astimezone(plan_zone(plan.timezone))
    if has_scheduled_time_passed(plan.trigger_time, local):
        return local.date()
    return local.date() - timedelta(days=1)


async def evaluate_due_plans(
    db: AsyncSession,
    now: Optional[datetime] = None,
    window_minutes: int = DEFAULT_WINDOW_MINUTES,
) -> List[UUID]:
    """Ids of enabled plans due at now. A plan that fails to evaluate is logged and skipped."""
    now = now or datetime.now(timezone.utc)
    r = await db.execute(select(VideoPlan).where(VideoPlan.enabled.is_(True)).order_by(VideoPlan.created_at))
    due: List[UUID] = []
    for plan in r.scalars().all():
        try:
            if is_plan_due(plan, now, window_minutes):
                due.append(plan.id)
        except Exception as e:
            logger.warning(
                "trigger.plan_evaluation_failed",
                plan_id=str(plan.id),
                trigger_time=plan.trigger_time,
                timezone=plan.timezone,
                error=str(e),
            )
    logger.info("trigger.evaluated", due_count=len(due), at=now.isoformat())
    return due


def has_scheduled_time_passed(scheduled_time: Optional[str], reference: datetime) -> bool:
    """
    Whether the wall-clock time on reference's day has been reached.
    None means "no schedule": passed. Blank, out-of-range or unparsable input is not passed,
    so nothing is distributed on ambiguous data. Seconds are compared only when given.
    """
    if scheduled_time is None:
        return True
    value = scheduled_time.strip()
    if not value:
        return False
    try:
        parsed = parse_time_of_day(value)
    except ValueError:
        return False
    if value.count(":") == 2:
        return (reference.hour, reference.minute, reference.second) >= (parsed.hour, parsed.minute, parsed.second)
    return (reference.hour, reference.minute) >= (parsed.hour, parsed.minute)
