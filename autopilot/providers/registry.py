"""Provider registry: clients built once at startup from Settings and injected into the orchestrator."""
from typing import Dict, Mapping, Optional

import httpx

from autopilot.config import Settings
from autopilot.errors import ConfigurationError
from autopilot.logging_config import get_logger
from autopilot.providers.base import VideoProviderClient
from autopilot.providers.kie import KieClient
from autopilot.providers.poyo import PoyoClient

logger = get_logger(__name__)

PROVIDER_KIE = "kie"
PROVIDER_POYO = "poyo"
KNOWN_PROVIDERS = (PROVIDER_KIE, PROVIDER_POYO)

_MISSING_KEY_ENV = {
    PROVIDER_KIE: "KIE_API_KEY",
    PROVIDER_POYO: "POYO_API_KEY",
}


class ProviderRegistry:
    """Name -> configured client. Providers without credentials are absent, not broken."""

    def __init__(self, clients: Mapping[str, VideoProviderClient]) -> None:
        self._clients: Dict[str, VideoProviderClient] = dict(clients)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ProviderRegistry":
        common = {
            "timeout_seconds": settings.provider_http_timeout_seconds,
            "max_retries": settings.provider_http_retries,
            "retry_delay_seconds": settings.provider_retry_delay_seconds,
            "transport": transport,
        }
        clients: Dict[str, VideoProviderClient] = {}
        if settings.kie_api_key:
            clients[PROVIDER_KIE] = KieClient(settings.kie_api_key, settings.kie_api_url, **common)
        if settings.poyo_api_key:
            clients[PROVIDER_POYO] = PoyoClient(settings.poyo_api_key, settings.poyo_api_url, **common)
        logger.info("providers.configured", providers=sorted(clients))
        return cls(clients)

    def get(self, name: str) -> VideoProviderClient:
        """Configured client for name; ConfigurationError if unknown or missing credentials."""
        client = self._clients.get(name)
        if client is not None:
            return client
        env = _MISSING_KEY_ENV.get(name)
        if env is None:
            raise ConfigurationError(f"Unknown video provider: {name}")
        raise ConfigurationError(f"Missing {env} environment variable")

    def names(self) -> list:
        return sorted(self._clients)

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()
