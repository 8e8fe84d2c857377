"""Long-lived collaborators of the pipeline, built once at startup from Settings."""
from dataclasses import dataclass
from typing import Optional

import httpx

from autopilot.config import Settings
from autopilot.errors import ConfigurationError
from autopilot.providers.registry import ProviderRegistry
from autopilot.services.llm_service import LLMService
from autopilot.services.uploadpost_service import UploadPostClient
from autopilot.services.video_generation_service import VideoGenerationService


@dataclass
class PipelineContext:
    settings: Settings
    llm: LLMService
    videos: VideoGenerationService
    uploader: Optional[UploadPostClient] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "PipelineContext":
        providers = ProviderRegistry.from_settings(settings, transport=transport)
        uploader = None
        if settings.uploadpost_api_key:
            uploader = UploadPostClient(
                settings.uploadpost_api_key,
                settings.uploadpost_api_url,
                retry_delay_seconds=settings.provider_retry_delay_seconds,
                transport=transport,
            )
        return cls(
            settings=settings,
            llm=LLMService(settings),
            videos=VideoGenerationService(providers, settings),
            uploader=uploader,
        )

    def require_uploader(self) -> UploadPostClient:
        if self.uploader is None:
            raise ConfigurationError("Missing UPLOADPOST_API_KEY environment variable")
        return self.uploader

    async def aclose(self) -> None:
        await self.videos.providers.aclose()
        if self.uploader is not None:
            await self.uploader.aclose()
