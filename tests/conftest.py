"""
Shared fixtures. DATABASE_URL points at a throwaway SQLite file before any autopilot import,
so autopilot.db builds its engine against it.
"""
import json
import os
import tempfile
import uuid
from datetime import date
from typing import Any, Callable, Dict, List, Optional

_DB_DIR = tempfile.mkdtemp(prefix="autopilot-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'autopilot_test.db')}"
os.environ["APP_ENV"] = "test"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["PIPELINE_MAX_CONCURRENCY"] = "1"

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

import autopilot.models  # noqa: E402,F401
from autopilot.config import Settings  # noqa: E402
from autopilot.db import Base, async_session_factory, engine  # noqa: E402
from autopilot.models import Video, VideoPlan, VideoPlanItem  # noqa: E402
from autopilot.providers.registry import ProviderRegistry  # noqa: E402
from autopilot.services.pipeline_context import PipelineContext  # noqa: E402
from autopilot.services.uploadpost_service import PlatformResult, UploadResponse  # noqa: E402
from autopilot.services.video_generation_service import VideoGenerationService  # noqa: E402

VIDEO_URL = "https://cdn.example.com/videos/result.mp4"


@pytest_asyncio.fixture
async def db_schema():
    """Fresh tables per test; the engine is disposed so pooled connections never cross event loops."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


def build_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "app_env": "test",
        "openai_api_key": None,
        "kie_api_key": "test-kie-key",
        "poyo_api_key": None,
        "uploadpost_api_key": None,
        "provider_retry_delay_seconds": 0,
        "video_poll_interval_seconds": 0,
        "video_poll_max_attempts": 3,
        "pipeline_max_concurrency": 1,
        "scheduler_enabled": False,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    return build_settings


class KieStub:
    """
    In-memory KIE API for httpx.MockTransport.
    outcomes: one entry per created task, "success" | "fail" | "no_url"; status_404s: not-found answers
    before the real state is served.
    """

    def __init__(self, outcomes: Optional[List[str]] = None, status_404s: int = 0) -> None:
        self.outcomes = list(outcomes or ["success"])
        self.status_404s = status_404s
        self.created: List[Dict[str, Any]] = []
        self.status_calls = 0
        self.requests: List[httpx.Request] = []
        self._task_outcome: Dict[str, str] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/jobs/createTask"):
            body = json.loads(request.content)
            self.created.append(body)
            task_id = f"task-{len(self.created)}"
            outcome = self.outcomes[min(len(self.created), len(self.outcomes)) - 1]
            self._task_outcome[task_id] = outcome
            return httpx.Response(200, json={"code": 200, "msg": "success", "data": {"taskId": task_id}})
        if request.url.path.endswith("/jobs/recordInfo"):
            self.status_calls += 1
            if self.status_404s > 0:
                self.status_404s -= 1
                return httpx.Response(404, json={"code": 404, "msg": "not found"})
            task_id = request.url.params["taskId"]
            outcome = self._task_outcome.get(task_id, "success")
            data: Dict[str, Any] = {"taskId": task_id}
            if outcome == "fail":
                data.update(state="fail", failMsg="content policy violation")
            elif outcome == "no_url":
                data.update(state="success", resultJson=json.dumps({"resultUrls": []}))
            else:
                data.update(state="success", resultJson=json.dumps({"resultUrls": [VIDEO_URL]}))
            return httpx.Response(200, json={"code": 200, "msg": "success", "data": data})
        return httpx.Response(404, json={"code": 404, "msg": "unknown path"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def kie_stub() -> KieStub:
    return KieStub()


class FakeLLM:
    """Stands in for LLMService; fail_research_calls lists 1-based research calls that raise."""

    def __init__(self, fail_research_calls: Optional[List[int]] = None) -> None:
        self.fail_research_calls = set(fail_research_calls or [])
        self.research_calls: List[Any] = []
        self.script_calls: List[Dict[str, Any]] = []

    async def generate_research(self, topic, category):
        self.research_calls.append((topic, category))
        if len(self.research_calls) in self.fail_research_calls:
            raise RuntimeError("research backend unavailable")
        idea = topic or f"Idea {len(self.research_calls)}"
        return (
            {
                "idea": idea,
                "description": f"About {idea}.",
                "why_it_matters": "It saves time.",
                "useful_tips": "Start small; stay consistent.",
                "category": category or "Lifestyle",
            },
            {"total_tokens": 42},
        )

    async def generate_script(self, fields):
        self.script_calls.append(dict(fields))
        return f"[0:00-0:03] Script about {fields.get('idea')}.", {"total_tokens": 84}


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


class FakeUploader:
    """
    Stands in for UploadPostClient; every platform succeeds unless failing_platforms, raise_error or
    failing_handles (handle -> exception raised for that profile's uploads) say otherwise.
    """

    def __init__(
        self,
        failing_platforms: Optional[List[str]] = None,
        raise_error: Optional[Exception] = None,
        failing_handles: Optional[Dict[str, Exception]] = None,
    ) -> None:
        self.failing_platforms = set(failing_platforms or [])
        self.raise_error = raise_error
        self.failing_handles = dict(failing_handles or {})
        self.calls: List[Dict[str, Any]] = []
        self.status_calls: List[str] = []

    async def post_video(self, account_handle, video_url, platforms, caption=None, title=None, scheduled_time=None, async_upload=True):
        self.calls.append(
            {
                "account_handle": account_handle,
                "video_url": video_url,
                "platforms": list(platforms),
                "caption": caption,
                "scheduled_time": scheduled_time,
            }
        )
        if self.raise_error is not None:
            raise self.raise_error
        if account_handle in self.failing_handles:
            raise self.failing_handles[account_handle]
        results = [
            PlatformResult(platform=p, status="failed", error="rejected")
            if p in self.failing_platforms
            else PlatformResult(platform=p, status="success", post_id=f"{p}-post-1")
            for p in platforms
        ]
        return UploadResponse(upload_id=f"req-{len(self.calls)}", status="success", results=results)

    async def get_upload_status(self, upload_id):
        self.status_calls.append(upload_id)
        return UploadResponse(upload_id=upload_id, status="pending")

    async def aclose(self) -> None:
        return None


def build_context(settings: Settings, llm: Any, kie: KieStub, uploader: Any = None) -> PipelineContext:
    providers = ProviderRegistry.from_settings(settings, transport=kie.transport)
    return PipelineContext(
        settings=settings,
        llm=llm,
        videos=VideoGenerationService(providers, settings),
        uploader=uploader,
    )


@pytest.fixture
def make_context() -> Callable[..., PipelineContext]:
    return build_context


async def create_plan(**overrides: Any) -> VideoPlan:
    values: Dict[str, Any] = {
        "user_id": uuid.uuid4(),
        "name": "Daily tips",
        "enabled": True,
        "trigger_mode": "daily",
        "trigger_time": "09:00",
        "timezone": "UTC",
        "videos_per_day": 1,
        "auto_research": True,
        "auto_approve": False,
        "auto_create": False,
        "default_platforms": ["tiktok"],
        "default_category": "Lifestyle",
        "video_style": "professional",
        "video_duration": 10,
        "aspect_ratio": "9:16",
    }
    values.update(overrides)
    async with async_session_factory() as session:
        plan = VideoPlan(**values)
        session.add(plan)
        await session.commit()
        return plan


async def create_item(plan: VideoPlan, **overrides: Any) -> VideoPlanItem:
    values: Dict[str, Any] = {
        "plan_id": plan.id,
        "slot_index": 0,
        "scheduled_date": date(2026, 10, 19),
        "scheduled_time": plan.trigger_time,
        "status": "pending",
    }
    values.update(overrides)
    async with async_session_factory() as session:
        item = VideoPlanItem(**values)
        session.add(item)
        await session.commit()
        return item


async def create_video(**overrides: Any) -> Video:
    values: Dict[str, Any] = {
        "user_id": uuid.uuid4(),
        "topic": "Morning routines",
        "script": "Wake up, hydrate, move.",
        "style": "professional",
        "duration": 10,
        "aspect_ratio": "9:16",
        "generation_mode": "automation",
        "status": "pending",
    }
    values.update(overrides)
    async with async_session_factory() as session:
        video = Video(**values)
        session.add(video)
        await session.commit()
        return video


@pytest.fixture
def factories() -> Dict[str, Callable[..., Any]]:
    return {"plan": create_plan, "item": create_item, "video": create_video}
