"""Resolve (provider, model) for a generation mode and build the provider attempt plan."""
from dataclasses import dataclass
from typing import List

from autopilot.config import Settings
from autopilot.providers.registry import KNOWN_PROVIDERS, PROVIDER_KIE, PROVIDER_POYO

MODE_MANUAL = "manual"
MODE_AUTOMATION = "automation"

MODEL_SORA_2 = "sora-2"
MODEL_SORA_2_PRIVATE = "sora-2-private"
MODEL_SORA_2_STABLE = "sora-2-stable"
KNOWN_MODELS = (MODEL_SORA_2, MODEL_SORA_2_PRIVATE, MODEL_SORA_2_STABLE)

DEFAULT_PROVIDER = PROVIDER_KIE
DEFAULT_MODEL = MODEL_SORA_2_STABLE


@dataclass(frozen=True)
class AttemptTarget:
    provider: str
    model: str


def normalize_target(provider: str, model: str) -> AttemptTarget:
    """Unknown values fall back to defaults; sora-2-private exists on poyo only."""
    provider = provider if provider in KNOWN_PROVIDERS else DEFAULT_PROVIDER
    model = model if model in KNOWN_MODELS else DEFAULT_MODEL
    if model == MODEL_SORA_2_PRIVATE and provider != PROVIDER_POYO:
        model = MODEL_SORA_2
    return AttemptTarget(provider=provider, model=model)


def resolve_primary_target(settings: Settings, mode: str) -> AttemptTarget:
    if not settings.video_settings_enabled:
        return AttemptTarget(provider=DEFAULT_PROVIDER, model=DEFAULT_MODEL)
    if mode == MODE_AUTOMATION:
        return normalize_target(settings.automation_video_provider, settings.automation_video_model)
    return normalize_target(settings.manual_video_provider, settings.manual_video_model)


def build_attempt_plan(primary: AttemptTarget, stable: AttemptTarget, attempts_per_model: int = 2) -> List[AttemptTarget]:
    """
    Primary repeated attempts_per_model times, then the stable fallback the same number of times
    unless the primary model already is the stable one: [M, M, S, S] or [M, M].
    """
    attempts = max(1, attempts_per_model)
    plan = [primary] * attempts
    if primary.model != stable.model:
        plan.extend([stable] * attempts)
    return plan


def stable_target(settings: Settings) -> AttemptTarget:
    return AttemptTarget(provider=settings.stable_video_provider, model=settings.stable_video_model)
