"""KIE (api.kie.ai) Sora 2 client: jobs/createTask + jobs/recordInfo."""
import json
from typing import Any, Dict, Optional

from autopilot.errors import ProviderError
from autopilot.logging_config import get_logger
from autopilot.providers.base import (
    ASPECT_LANDSCAPE,
    TASK_COMPLETED,
    TASK_FAILED,
    TASK_GENERATING,
    CreatedTask,
    CreateTaskOptions,
    TaskDetail,
    VideoProviderClient,
)

logger = get_logger(__name__)

MODEL_MAP = {
    "sora-2": "sora-2-text-to-video",
    "sora-2-private": "sora-2-text-to-video-private",
    "sora-2-stable": "sora-2-text-to-video-stable",
}

STATE_MAP = {
    "waiting": TASK_GENERATING,
    "queuing": TASK_GENERATING,
    "generating": TASK_GENERATING,
    "success": TASK_COMPLETED,
    "fail": TASK_FAILED,
}

MAX_FRAMES = 15
RECORD_NOT_READY_MSG = "recordInfo is null"


def kie_model_name(model: str) -> str:
    """Internal model key -> KIE model id; unknown keys pass through."""
    return MODEL_MAP.get(model, model)


def kie_aspect_ratio(aspect_ratio: str) -> str:
    return "landscape" if aspect_ratio in (ASPECT_LANDSCAPE, "landscape") else "portrait"


def frames_for_duration(duration: int) -> str:
    """n_frames is sent as a string and capped at 15."""
    return str(min(max(1, duration), MAX_FRAMES))


def map_kie_state(raw_state: Optional[str]) -> str:
    return STATE_MAP.get((raw_state or "").lower(), TASK_GENERATING)


class KieClient(VideoProviderClient):
    """KIE wraps responses as {code, msg, data}; code != 200 is an error even on HTTP 200."""

    name = "kie"

    async def create_task(self, prompt: str, aspect_ratio: str, options: CreateTaskOptions) -> CreatedTask:
        body: Dict[str, Any] = {
            "model": kie_model_name(options.model),
            "input": {
                "prompt": prompt,
                "aspect_ratio": kie_aspect_ratio(aspect_ratio),
                "n_frames": frames_for_duration(options.duration),
                "remove_watermark": options.remove_watermark,
            },
        }
        if options.callback_url:
            body["callBackUrl"] = options.callback_url
        raw = await self._request("POST", "/jobs/createTask", json=body)
        if raw.get("code") != 200:
            raise ProviderError(f"kie: create task rejected: {raw.get('msg') or 'unknown error'}")
        task_id = (raw.get("data") or {}).get("taskId")
        if not task_id:
            raise ProviderError("kie: missing task id in create task response")
        logger.info("kie.task_created", task_id=task_id, model=body["model"])
        return CreatedTask(task_id=str(task_id), raw=raw)

    async def get_task_status(self, task_id: str) -> TaskDetail:
        raw = await self._request("GET", "/jobs/recordInfo", params={"taskId": task_id})
        if raw.get("code") != 200:
            msg = raw.get("msg") or ""
            # Record not visible yet right after creation.
            if RECORD_NOT_READY_MSG in msg:
                return TaskDetail(task_id=task_id, state=TASK_GENERATING, raw_state="waiting", payload={})
            raise ProviderError(f"kie: status query failed: {msg or 'unknown error'}")
        data = raw.get("data") or {}
        raw_state = data.get("state")
        state = map_kie_state(raw_state)
        error_message = None
        if state == TASK_FAILED:
            error_message = data.get("failMsg") or data.get("failCode") or "Video generation failed"
        return TaskDetail(
            task_id=task_id,
            state=state,
            raw_state=raw_state,
            payload=data,
            error_message=error_message,
            progress=_parse_progress(data.get("progress")),
        )


def _parse_progress(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def parse_result_json(value: Any) -> Dict[str, Any]:
    """resultJson arrives as a JSON string; tolerate an already-decoded dict."""
    if isinstance(value, dict):
        return value
    if not isinstance(value, str) or not value.strip():
        return {}
    try:
        decoded = json.loads(value)
    except json.JSONDecodeError:
        return {}
    return decoded if isinstance(decoded, dict) else {}
