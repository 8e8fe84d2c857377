"""API routers."""
from autopilot.routers.api_health_router import router as api_health_router
from autopilot.routers.health_router import router as health_router
from autopilot.routers.plan_items_router import router as plan_items_router
from autopilot.routers.scheduler_router import router as scheduler_router
from autopilot.routers.videos_router import router as videos_router

__all__ = [
    "api_health_router",
    "health_router",
    "plan_items_router",
    "scheduler_router",
    "videos_router",
]
