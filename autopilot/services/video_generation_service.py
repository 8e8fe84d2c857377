"""
Video generation orchestrator.
- Idempotency: a Video with provider_task_id is never sent to a provider again.
- Attempt plan: primary (provider, model) twice, then the stable fallback twice ([M, M, S, S] or [M, M]).
- Each created task id is committed before polling so a crash mid-poll can be resumed by check_task_status.
"""
from datetime import datetime, timezone
from typing import List, Optional, Set
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from autopilot.config import Settings
from autopilot.errors import ConfigurationError, ProviderError, ProviderTaskNotFoundError, ResultExtractionError
from autopilot.logging_config import get_logger
from autopilot.models import Video
from autopilot.providers.base import ASPECT_PORTRAIT, TASK_COMPLETED, TASK_FAILED, CreateTaskOptions, TaskDetail
from autopilot.providers.registry import ProviderRegistry
from autopilot.providers.result_extractors import extract_result_url
from autopilot.services.generation_settings import (
    DEFAULT_PROVIDER,
    AttemptTarget,
    build_attempt_plan,
    resolve_primary_target,
    stable_target,
)
from autopilot.services.video_prompt import build_video_prompt

logger = get_logger(__name__)

VIDEO_PENDING = "pending"
VIDEO_GENERATING = "generating"
VIDEO_COMPLETED = "completed"
VIDEO_FAILED = "failed"

PROGRESS_LOG_EVERY = 6  # polls; one line per minute at the default interval
NO_URL_MESSAGE = "Task completed but no video URL was returned"


class VideoGenerationService:
    """Drives one Video through the attempt plan. Provider clients are injected via the registry."""

    def __init__(self, providers: ProviderRegistry, settings: Settings) -> None:
        self.providers = providers
        self.settings = settings
        self.poll_interval = settings.video_poll_interval_seconds
        self.max_poll_attempts = settings.video_poll_max_attempts
        self.attempts_per_model = settings.video_attempts_per_model
        self.callback_url = settings.video_callback_url

    def attempt_plan_for(self, generation_mode: str) -> List[AttemptTarget]:
        primary = resolve_primary_target(self.settings, generation_mode)
        return build_attempt_plan(primary, stable_target(self.settings), self.attempts_per_model)

    async def generate_video(
        self,
        db: AsyncSession,
        video: Video,
        aspect_ratio: Optional[str] = None,
        callback_url: Optional[str] = None,
        generation_mode: Optional[str] = None,
    ) -> Video:
        """
        Generate the video in place. On success status=completed with video_url.
        When every attempt fails the Video is marked failed with the last error, and that error is raised.
        """
        if video.provider_task_id:
            logger.info(
                "video.generation_skipped",
                video_id=str(video.id),
                task_id=video.provider_task_id,
                reason="task_already_created",
            )
            return video

        prompt = build_video_prompt(video.style, video.topic, video.script, video.duration)
        plan = self.attempt_plan_for(generation_mode or video.generation_mode)
        aspect = aspect_ratio or video.aspect_ratio or ASPECT_PORTRAIT
        callback = callback_url or self.callback_url
        logger.info(
            "video.generation_started",
            video_id=str(video.id),
            attempts=[f"{t.provider}:{t.model}" for t in plan],
            prompt_length=len(prompt),
        )

        last_error: Optional[Exception] = None
        unusable_providers: Set[str] = set()
        try:
            for index, target in enumerate(plan, start=1):
                if target.provider in unusable_providers:
                    continue
                try:
                    url = await self._run_attempt(db, video, target, prompt, aspect, callback)
                except ConfigurationError as e:
                    # Missing credentials: skip the remaining attempts on this provider.
                    last_error = e
                    unusable_providers.add(target.provider)
                    logger.warning("video.provider_unavailable", video_id=str(video.id), provider=target.provider, error=str(e))
                    continue
                except ProviderError as e:
                    last_error = e
                    logger.warning(
                        "video.attempt_failed",
                        video_id=str(video.id),
                        attempt=index,
                        of=len(plan),
                        provider=target.provider,
                        model=target.model,
                        error=str(e),
                    )
                    continue
                await self._mark_completed(db, video, url)
                logger.info(
                    "video.completed",
                    video_id=str(video.id),
                    attempt=index,
                    provider=target.provider,
                    model=target.model,
                )
                return video
            raise last_error or ProviderError("No video generation attempt could be started")
        except Exception as e:
            await self._mark_failed(db, video, str(e) or e.__class__.__name__)
            raise

    async def _run_attempt(
        self,
        db: AsyncSession,
        video: Video,
        target: AttemptTarget,
        prompt: str,
        aspect_ratio: str,
        callback_url: Optional[str],
    ) -> str:
        client = self.providers.get(target.provider)
        created = await client.create_task(
            prompt,
            aspect_ratio,
            CreateTaskOptions(
                model=target.model,
                duration=video.duration,
                remove_watermark=True,
                callback_url=callback_url,
            ),
        )
        await self._record_task(db, video, created.task_id, target)

        video_id = str(video.id)

        def on_progress(attempt: int, detail: TaskDetail) -> None:
            if attempt == 1 or attempt % PROGRESS_LOG_EVERY == 0:
                logger.info(
                    "video.poll",
                    video_id=video_id,
                    task_id=detail.task_id,
                    attempt=attempt,
                    max_attempts=self.max_poll_attempts,
                    state=detail.raw_state,
                )

        detail = await client.poll_until_complete(
            created.task_id,
            max_attempts=self.max_poll_attempts,
            poll_interval=self.poll_interval,
            on_progress=on_progress,
        )
        url = extract_result_url(detail.payload)
        if not url:
            raise ResultExtractionError(f"{target.provider}: {NO_URL_MESSAGE}")
        return url

    async def _record_task(self, db: AsyncSession, video: Video, task_id: str, target: AttemptTarget) -> None:
        """Committed before polling: the task id must survive a crash."""
        video.provider_task_id = task_id
        video.provider = target.provider
        video.provider_model = target.model
        video.status = VIDEO_GENERATING
        video.error_message = None
        video.updated_at = datetime.now(timezone.utc)
        await db.commit()
        logger.info(
            "video.task_recorded",
            video_id=str(video.id),
            task_id=task_id,
            provider=target.provider,
            model=target.model,
        )

    async def _mark_completed(self, db: AsyncSession, video: Video, url: str) -> None:
        video.status = VIDEO_COMPLETED
        video.video_url = url
        video.error_message = None
        video.updated_at = datetime.now(timezone.utc)
        await db.commit()

    async def _mark_failed(self, db: AsyncSession, video: Video, message: str) -> None:
        video.status = VIDEO_FAILED
        video.error_message = message
        video.updated_at = datetime.now(timezone.utc)
        await db.commit()
        logger.warning("video.failed", video_id=str(video.id), error=message)

    async def check_task_status(
        self,
        db: AsyncSession,
        video_id: UUID,
        task_id: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> str:
        """
        Re-fetch the provider task outside the creation flow and apply terminal states.
        Not-found keeps the video generating. Returns the video status after the check.
        """
        video = await db.get(Video, video_id)
        if video is None:
            raise ValueError("video_not_found")
        task_id = task_id or video.provider_task_id
        if not task_id:
            raise ValueError("video_has_no_task")
        if video.status not in (VIDEO_PENDING, VIDEO_GENERATING):
            return video.status

        client = self.providers.get(provider or video.provider or DEFAULT_PROVIDER)
        try:
            detail = await client.get_task_status(task_id)
        except ProviderTaskNotFoundError:
            logger.info("video.status_not_found", video_id=str(video_id), task_id=task_id)
            return video.status

        if detail.state == TASK_COMPLETED:
            url = extract_result_url(detail.payload)
            if url:
                await self._mark_completed(db, video, url)
                logger.info("video.completed", video_id=str(video_id), task_id=task_id, via="status_check")
            else:
                await self._mark_failed(db, video, NO_URL_MESSAGE)
        elif detail.state == TASK_FAILED:
            await self._mark_failed(db, video, detail.error_message or "Video generation failed")
        return video.status
