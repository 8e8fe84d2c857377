"""Scheduler status / tick responses."""
from typing import Any, Dict, Optional

from pydantic import BaseModel


class SchedulerStatusResponse(BaseModel):
    """GET /scheduler/status."""

    enabled: bool
    interval_seconds: int
    last_tick_at: Optional[str] = None
    in_flight_ticks: int = 0
    pending_count: Optional[int] = None
    status_counts: Optional[Dict[str, int]] = None


class TickResponse(BaseModel):
    """POST /scheduler/tick: summary of one tick run in the request."""

    at: str
    due_plans: int
    plans: Dict[str, Any]
    stages: Dict[str, Any]
