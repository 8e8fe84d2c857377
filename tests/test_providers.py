"""
KIE / Poyo clients against httpx.MockTransport: payloads, status mapping, retry policy, polling.
"""
import json

import httpx
import pytest

from autopilot.errors import PollTimeoutError, ProviderError, ProviderTaskNotFoundError, TaskFailedError
from autopilot.providers.base import TASK_COMPLETED, TASK_FAILED, TASK_GENERATING, CreateTaskOptions
from autopilot.providers.kie import KieClient, frames_for_duration, map_kie_state
from autopilot.providers.poyo import PoyoClient, map_poyo_state


def _kie(handler) -> KieClient:
    return KieClient("kie-key", "https://api.kie.ai/api/v1", retry_delay_seconds=0, transport=httpx.MockTransport(handler))


def _poyo(handler) -> PoyoClient:
    return PoyoClient("poyo-key", "https://api.poyo.ai", retry_delay_seconds=0, transport=httpx.MockTransport(handler))


def test_state_mapping() -> None:
    assert map_kie_state("waiting") == TASK_GENERATING
    assert map_kie_state("success") == TASK_COMPLETED
    assert map_kie_state("fail") == TASK_FAILED
    assert map_kie_state(None) == TASK_GENERATING
    assert map_poyo_state("not_started") == TASK_GENERATING
    assert map_poyo_state("in_progress") == TASK_GENERATING
    assert map_poyo_state("finished") == TASK_COMPLETED
    assert map_poyo_state("failed") == TASK_FAILED


def test_frames_capped() -> None:
    assert frames_for_duration(10) == "10"
    assert frames_for_duration(30) == "15"


@pytest.mark.asyncio
async def test_kie_create_task_payload() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"code": 200, "msg": "success", "data": {"taskId": "t-1"}})

    client = _kie(handler)
    created = await client.create_task(
        "a prompt",
        "16:9",
        CreateTaskOptions(model="sora-2-stable", duration=10, callback_url="https://cb.example.com/kie"),
    )
    await client.aclose()

    assert created.task_id == "t-1"
    assert seen["auth"] == "Bearer kie-key"
    assert seen["path"] == "/api/v1/jobs/createTask"
    assert seen["body"] == {
        "model": "sora-2-text-to-video-stable",
        "input": {"prompt": "a prompt", "aspect_ratio": "landscape", "n_frames": "10", "remove_watermark": True},
        "callBackUrl": "https://cb.example.com/kie",
    }


@pytest.mark.asyncio
async def test_kie_business_error_code_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"code": 402, "msg": "credits insufficient"})

    client = _kie(handler)
    with pytest.raises(ProviderError, match="credits insufficient"):
        await client.create_task("p", "9:16", CreateTaskOptions(model="sora-2"))
    await client.aclose()


@pytest.mark.asyncio
async def test_kie_record_not_ready_is_generating() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"code": 422, "msg": "recordInfo is null"})

    client = _kie(handler)
    detail = await client.get_task_status("t-1")
    await client.aclose()
    assert detail.state == TASK_GENERATING


@pytest.mark.asyncio
async def test_kie_failed_task_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        data = {"taskId": "t-1", "state": "fail", "failMsg": "policy violation"}
        return httpx.Response(200, json={"code": 200, "data": data})

    client = _kie(handler)
    detail = await client.get_task_status("t-1")
    await client.aclose()
    assert detail.state == TASK_FAILED
    assert detail.error_message == "policy violation"
    assert detail.raw_state == "fail"


@pytest.mark.asyncio
async def test_retries_server_errors_then_succeeds() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] < 3:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, json={"code": 200, "data": {"taskId": "t-9"}})

    client = _kie(handler)
    created = await client.create_task("p", "9:16", CreateTaskOptions(model="sora-2"))
    await client.aclose()
    assert created.task_id == "t-9"
    assert calls["n"] == 3


@pytest.mark.asyncio
async def test_client_errors_not_retried() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(401, json={"msg": "bad key"})

    client = _kie(handler)
    with pytest.raises(ProviderError, match="authentication failed") as exc_info:
        await client.create_task("p", "9:16", CreateTaskOptions(model="sora-2"))
    await client.aclose()
    assert calls["n"] == 1
    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_rate_limit_exhausts_retries() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(429, headers={"Retry-After": "0"})

    client = _kie(handler)
    with pytest.raises(ProviderError, match="rate limit") as exc_info:
        await client.get_task_status("t-1")
    await client.aclose()
    assert calls["n"] == 3
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_zero_attempts_raises_provider_error() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(200, json={"code": 200, "data": {}})

    client = _kie(handler)
    client.max_retries = 0
    with pytest.raises(ProviderError, match="no request attempted"):
        await client.get_task_status("t-1")
    await client.aclose()
    assert calls["n"] == 0


@pytest.mark.asyncio
async def test_kie_404_is_task_not_found() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    client = _kie(handler)
    with pytest.raises(ProviderTaskNotFoundError):
        await client.get_task_status("missing")
    await client.aclose()


@pytest.mark.asyncio
async def test_poyo_status_falls_back_to_legacy_path() -> None:
    paths = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        if request.url.path == "/api/task/status":
            return httpx.Response(404)
        data = {"task_id": "p-1", "status": "finished", "video_url": "https://poyo/v.mp4"}
        return httpx.Response(200, json={"code": 200, "data": data})

    client = _poyo(handler)
    detail = await client.get_task_status("p-1")
    await client.aclose()
    assert paths == ["/api/task/status", "/api/task-management/status"]
    assert detail.state == TASK_COMPLETED
    assert detail.payload["video_url"] == "https://poyo/v.mp4"


@pytest.mark.asyncio
async def test_poyo_both_paths_missing_is_not_found() -> None:
    client = _poyo(lambda request: httpx.Response(404))
    with pytest.raises(ProviderTaskNotFoundError):
        await client.get_task_status("p-1")
    await client.aclose()


@pytest.mark.asyncio
async def test_poyo_create_payload() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"code": 200, "data": {"task_id": "p-7"}})

    client = _poyo(handler)
    created = await client.create_task("p", "9:16", CreateTaskOptions(model="sora-2-stable", duration=30))
    await client.aclose()
    assert created.task_id == "p-7"
    assert seen["body"] == {"model": "sora-2", "input": {"prompt": "p", "duration": 15, "aspect_ratio": "9:16"}}


@pytest.mark.asyncio
async def test_poll_tolerates_not_found_then_completes() -> None:
    answers = [httpx.Response(404), httpx.Response(404)]

    def handler(request: httpx.Request) -> httpx.Response:
        if answers:
            return answers.pop(0)
        return httpx.Response(200, json={"code": 200, "data": {"taskId": "t-1", "state": "success"}})

    progress = []
    client = _kie(handler)
    detail = await client.poll_until_complete(
        "t-1", max_attempts=5, poll_interval=0, on_progress=lambda n, d: progress.append(d.state)
    )
    await client.aclose()
    assert detail.state == TASK_COMPLETED
    assert progress == [TASK_GENERATING, TASK_GENERATING, TASK_COMPLETED]


@pytest.mark.asyncio
async def test_poll_failed_task_raises_immediately() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(200, json={"code": 200, "data": {"taskId": "t-1", "state": "fail", "failCode": "500"}})

    client = _kie(handler)
    with pytest.raises(TaskFailedError):
        await client.poll_until_complete("t-1", max_attempts=5, poll_interval=0)
    await client.aclose()
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_poll_timeout() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"code": 200, "data": {"taskId": "t-1", "state": "generating"}})

    client = _kie(handler)
    with pytest.raises(PollTimeoutError):
        await client.poll_until_complete("t-1", max_attempts=3, poll_interval=0)
    await client.aclose()
