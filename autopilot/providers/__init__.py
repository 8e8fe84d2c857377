"""Video generation provider clients (KIE, Poyo)."""
from autopilot.providers.base import (
    TASK_COMPLETED,
    TASK_FAILED,
    TASK_GENERATING,
    CreatedTask,
    CreateTaskOptions,
    TaskDetail,
    VideoProviderClient,
)
from autopilot.providers.registry import PROVIDER_KIE, PROVIDER_POYO, ProviderRegistry
from autopilot.providers.result_extractors import extract_result_url

__all__ = [
    "TASK_COMPLETED",
    "TASK_FAILED",
    "TASK_GENERATING",
    "CreatedTask",
    "CreateTaskOptions",
    "TaskDetail",
    "VideoProviderClient",
    "PROVIDER_KIE",
    "PROVIDER_POYO",
    "ProviderRegistry",
    "extract_result_url",
]
