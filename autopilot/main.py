"""FastAPI application entrypoint."""
from contextlib import asynccontextmanager

from fastapi import FastAPI

from autopilot import __version__
from autopilot.config import get_settings
from autopilot.logging_config import configure_logging, get_logger
from autopilot.middleware.correlation_id import CorrelationIdMiddleware
from autopilot.routers import (
    api_health_router,
    health_router,
    plan_items_router,
    scheduler_router,
    videos_router,
)
from autopilot.services.pipeline_context import PipelineContext
from autopilot.services.scheduler_service import start_scheduler, stop_scheduler

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown: logging, pipeline clients, scheduler worker, teardown."""
    configure_logging()
    settings = get_settings()
    app.state.pipeline = PipelineContext.from_settings(settings)
    logger.info(
        "app_started",
        version=__version__,
        env=settings.app_env,
        providers=app.state.pipeline.videos.providers.names(),
        distribution=app.state.pipeline.uploader is not None,
    )
    await start_scheduler(app)
    yield
    await stop_scheduler()
    await app.state.pipeline.aclose()
    logger.info("app_shutdown")


app = FastAPI(
    title="Video Autopilot",
    version=__version__,
    lifespan=lifespan,
)
app.add_middleware(CorrelationIdMiddleware)

app.include_router(health_router)
app.include_router(api_health_router)
app.include_router(scheduler_router)
app.include_router(plan_items_router)
app.include_router(videos_router)


@app.get("/")
def root() -> dict[str, str]:
    """Root endpoint: app name and version."""
    return {"name": "video_autopilot", "version": __version__}
