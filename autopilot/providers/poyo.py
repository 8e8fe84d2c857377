"""Poyo (api.poyo.ai) Sora 2 client: generate/submit + task status with legacy fallback path."""
from typing import Any, Dict, List

from autopilot.errors import ProviderError, ProviderTaskNotFoundError
from autopilot.logging_config import get_logger
from autopilot.providers.base import (
    ASPECT_LANDSCAPE,
    ASPECT_PORTRAIT,
    TASK_COMPLETED,
    TASK_FAILED,
    TASK_GENERATING,
    CreatedTask,
    CreateTaskOptions,
    TaskDetail,
    VideoProviderClient,
)

logger = get_logger(__name__)

CREATE_PATH = "/api/generate/submit"
STATUS_PATHS: List[str] = ["/api/task/status", "/api/task-management/status"]

MODEL_MAP = {
    "sora-2-stable": "sora-2",
}

STATE_MAP = {
    "not_started": TASK_GENERATING,
    "in_progress": TASK_GENERATING,
    "finished": TASK_COMPLETED,
    "success": TASK_COMPLETED,
    "failed": TASK_FAILED,
    "fail": TASK_FAILED,
}


def poyo_model_name(model: str) -> str:
    return MODEL_MAP.get(model, model)


def poyo_duration(duration: int) -> int:
    """Poyo accepts 10 or 15 seconds only."""
    return 15 if duration > 10 else 10


def poyo_aspect_ratio(aspect_ratio: str) -> str:
    return ASPECT_LANDSCAPE if aspect_ratio in (ASPECT_LANDSCAPE, "landscape") else ASPECT_PORTRAIT


def map_poyo_state(raw_state: Any) -> str:
    return STATE_MAP.get(str(raw_state or "not_started").lower(), TASK_GENERATING)


class PoyoClient(VideoProviderClient):
    """Poyo answers {code, msg, data:{task_id, status, result_url?}, error?}."""

    name = "poyo"

    async def create_task(self, prompt: str, aspect_ratio: str, options: CreateTaskOptions) -> CreatedTask:
        body: Dict[str, Any] = {
            "model": poyo_model_name(options.model),
            "input": {
                "prompt": prompt,
                "duration": poyo_duration(options.duration),
                "aspect_ratio": poyo_aspect_ratio(aspect_ratio),
            },
        }
        if options.callback_url:
            body["callback_url"] = options.callback_url
        raw = await self._request("POST", CREATE_PATH, json=body)
        code = raw.get("code", 200)
        if code != 200:
            raise ProviderError(f"poyo: create task rejected: {raw.get('msg') or 'unknown error'}")
        task_id = (raw.get("data") or {}).get("task_id")
        if not task_id:
            raise ProviderError("poyo: missing task id in create task response")
        logger.info("poyo.task_created", task_id=task_id, model=body["model"])
        return CreatedTask(task_id=str(task_id), raw=raw)

    async def get_task_status(self, task_id: str) -> TaskDetail:
        raw: Dict[str, Any] = {}
        for path in STATUS_PATHS:
            try:
                raw = await self._request("GET", path, params={"task_id": task_id})
                break
            except ProviderTaskNotFoundError:
                logger.debug("poyo.status_path_not_found", path=path, task_id=task_id)
                continue
        else:
            raise ProviderTaskNotFoundError(f"poyo: task not found: {task_id}")

        data = raw.get("data") or {}
        raw_state = data.get("status") or data.get("state")
        state = map_poyo_state(raw_state)
        error_message = None
        if state == TASK_FAILED:
            error = raw.get("error") or {}
            if isinstance(error, str):
                error = {"message": error}
            error_message = error.get("message") or data.get("error_message") or "Video generation failed"
        return TaskDetail(
            task_id=task_id,
            state=state,
            raw_state=str(raw_state) if raw_state is not None else None,
            payload=data,
            error_message=error_message,
        )
