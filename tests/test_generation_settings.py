"""Attempt plan shape and primary target resolution."""
from autopilot.services.generation_settings import (
    MODE_AUTOMATION,
    MODE_MANUAL,
    AttemptTarget,
    build_attempt_plan,
    normalize_target,
    resolve_primary_target,
    stable_target,
)

KIE_STABLE = AttemptTarget("kie", "sora-2-stable")


def test_attempt_plan_primary_then_stable() -> None:
    primary = AttemptTarget("poyo", "sora-2-private")
    plan = build_attempt_plan(primary, KIE_STABLE)
    assert plan == [primary, primary, KIE_STABLE, KIE_STABLE]


def test_attempt_plan_collapses_when_primary_is_stable() -> None:
    assert build_attempt_plan(KIE_STABLE, KIE_STABLE) == [KIE_STABLE, KIE_STABLE]


def test_attempt_plan_respects_attempts_per_model() -> None:
    primary = AttemptTarget("kie", "sora-2")
    assert build_attempt_plan(primary, KIE_STABLE, attempts_per_model=1) == [primary, KIE_STABLE]
    assert len(build_attempt_plan(primary, KIE_STABLE, attempts_per_model=0)) == 2


def test_private_model_only_on_poyo() -> None:
    assert normalize_target("kie", "sora-2-private") == AttemptTarget("kie", "sora-2")
    assert normalize_target("poyo", "sora-2-private") == AttemptTarget("poyo", "sora-2-private")
    assert normalize_target("unknown", "mystery") == KIE_STABLE


def test_disabled_settings_use_kie_stable(make_settings) -> None:
    settings = make_settings(
        video_settings_enabled=False,
        manual_video_provider="poyo",
        manual_video_model="sora-2-private",
    )
    assert resolve_primary_target(settings, MODE_MANUAL) == KIE_STABLE


def test_primary_target_by_mode(make_settings) -> None:
    settings = make_settings(
        manual_video_provider="poyo",
        manual_video_model="sora-2-private",
        automation_video_provider="kie",
        automation_video_model="sora-2",
    )
    assert resolve_primary_target(settings, MODE_MANUAL) == AttemptTarget("poyo", "sora-2-private")
    assert resolve_primary_target(settings, MODE_AUTOMATION) == AttemptTarget("kie", "sora-2")
    assert stable_target(settings) == KIE_STABLE
