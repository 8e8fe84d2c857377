"""
Distribution against a fake upload-post client: immediate vs scheduled posting, due-post sender,
rate limits, missing accounts and settling scheduled items.
"""
from datetime import date, datetime, timezone

import pytest

from autopilot.db import async_session_factory
from autopilot.errors import UploadPostError, UploadPostRateLimitError
from autopilot.models import SocialAccount, VideoPlan, VideoPlanItem
from autopilot.services.distribution_service import (
    build_caption,
    compute_post_time,
    distribute_item,
    get_item_posts,
    send_due_posts,
    should_post_now,
    sync_scheduled_items,
)
from autopilot.services.plan_item_service import get_item, retry_item

from conftest import VIDEO_URL, FakeLLM, FakeUploader, KieStub


def _at(hour: int, minute: int = 0, day: int = 19) -> datetime:
    return datetime(2026, 10, day, hour, minute, tzinfo=timezone.utc)


async def _completed_item(factories, platforms=("tiktok",), connect=("tiktok",), **plan_overrides):
    plan = await factories["plan"](default_platforms=list(platforms), **plan_overrides)
    video = await factories["video"](user_id=plan.user_id, status="completed", video_url=VIDEO_URL, provider="kie")
    item = await factories["item"](
        plan,
        status="completed",
        topic="Two-minute tidy",
        script="s",
        script_status="approved",
        video_id=video.id,
    )
    async with async_session_factory() as db:
        for platform in connect:
            db.add(SocialAccount(user_id=plan.user_id, platform=platform, account_handle="creator"))
        await db.commit()
    return plan, video, item


async def _load_item(item_id):
    async with async_session_factory() as db:
        return await get_item(db, item_id)


async def _posts(item_id):
    async with async_session_factory() as db:
        return await get_item_posts(db, item_id)


def test_post_time_uses_plan_timezone() -> None:
    plan = VideoPlan(timezone="Asia/Ho_Chi_Minh")
    item = VideoPlanItem(scheduled_date=date(2026, 10, 19), scheduled_time="09:30")
    assert compute_post_time(item, plan) == _at(2, 30)
    assert should_post_now(item, plan, _at(2, 29)) is False
    assert should_post_now(item, plan, _at(2, 30)) is True
    assert should_post_now(item, plan, _at(2, 0, day=20)) is True


def test_caption_prefers_item_caption() -> None:
    assert build_caption(VideoPlanItem(caption="  Tidy up!  ", topic="t")) == "Tidy up!"
    assert build_caption(VideoPlanItem(topic="Two-minute tidy")) == "Two-minute tidy"
    assert build_caption(VideoPlanItem(research_data={"idea": "From research"})) == "From research"


@pytest.mark.asyncio
async def test_immediate_post(db_schema, make_settings, make_context, factories) -> None:
    _, _, item = await _completed_item(factories, platforms=("tiktok", "instagram"), connect=("tiktok", "instagram"))
    uploader = FakeUploader()
    ctx = make_context(make_settings(), FakeLLM(), KieStub(), uploader=uploader)

    assert await distribute_item(ctx, item.id, now=_at(10)) == "posted"

    assert len(uploader.calls) == 1
    call = uploader.calls[0]
    assert call["account_handle"] == "creator"
    assert call["video_url"] == VIDEO_URL
    assert call["platforms"] == ["tiktok", "instagram"]
    assert call["caption"] == "Two-minute tidy"
    assert call["scheduled_time"] is None

    saved = await _load_item(item.id)
    assert saved.status == "posted"
    posts = await _posts(item.id)
    assert saved.scheduled_post_id in {p.id for p in posts}
    assert {p.platform: p.status for p in posts} == {"tiktok": "posted", "instagram": "posted"}
    assert {p.platform_post_id for p in posts} == {"tiktok-post-1", "instagram-post-1"}
    assert {p.upload_request_id for p in posts} == {"req-1"}


@pytest.mark.asyncio
async def test_future_post_is_scheduled_then_sent(db_schema, make_settings, make_context, factories) -> None:
    _, _, item = await _completed_item(factories)
    uploader = FakeUploader()
    ctx = make_context(make_settings(), FakeLLM(), KieStub(), uploader=uploader)

    assert await distribute_item(ctx, item.id, now=_at(7)) == "scheduled"
    assert uploader.calls == []
    (post,) = await _posts(item.id)
    assert post.status == "pending"
    assert post.scheduled_time.replace(tzinfo=timezone.utc) == _at(9)

    # Not yet within the 30s buffer.
    assert await send_due_posts(ctx, now=_at(8, 59)) == 0
    assert await send_due_posts(ctx, now=_at(9)) == 1
    assert uploader.calls[0]["platforms"] == ["tiktok"]
    (post,) = await _posts(item.id)
    assert post.status == "posted"
    assert post.platform_post_id == "tiktok-post-1"

    assert await sync_scheduled_items(ctx, now=_at(9)) == 1
    assert (await _load_item(item.id)).status == "posted"


@pytest.mark.asyncio
async def test_rate_limit_keeps_posts_pending(db_schema, make_settings, make_context, factories) -> None:
    _, _, item = await _completed_item(factories)
    ctx = make_context(make_settings(), FakeLLM(), KieStub(), uploader=FakeUploader())
    assert await distribute_item(ctx, item.id, now=_at(7)) == "scheduled"

    limited = FakeUploader(raise_error=UploadPostRateLimitError("Upload-Post API: rate limit exceeded", status_code=429))
    limited_ctx = make_context(make_settings(), FakeLLM(), KieStub(), uploader=limited)
    assert await send_due_posts(limited_ctx, now=_at(9)) == 0

    assert len(limited.calls) == 1
    (post,) = await _posts(item.id)
    assert post.status == "pending"
    assert post.error_message is None
    assert await sync_scheduled_items(limited_ctx, now=_at(9)) == 0
    assert (await _load_item(item.id)).status == "scheduled"


@pytest.mark.asyncio
async def test_missing_account_fails_item(db_schema, make_settings, make_context, factories) -> None:
    _, _, item = await _completed_item(factories, platforms=("tiktok", "youtube"), connect=("tiktok",))
    uploader = FakeUploader()
    ctx = make_context(make_settings(), FakeLLM(), KieStub(), uploader=uploader)

    assert await distribute_item(ctx, item.id, now=_at(10)) == "failed"

    assert uploader.calls == []
    saved = await _load_item(item.id)
    assert saved.status == "failed"
    assert saved.failed_stage == "distribution"
    assert "youtube" in saved.error_message
    assert await _posts(item.id) == []


@pytest.mark.asyncio
async def test_all_immediate_posts_failing_fails_item(db_schema, make_settings, make_context, factories) -> None:
    _, _, item = await _completed_item(factories)
    ctx = make_context(make_settings(), FakeLLM(), KieStub(), uploader=FakeUploader(failing_platforms=["tiktok"]))

    assert await distribute_item(ctx, item.id, now=_at(10)) == "failed"

    saved = await _load_item(item.id)
    assert saved.status == "failed"
    assert "All posts failed" in saved.error_message


@pytest.mark.asyncio
async def test_only_completed_items_are_distributed(db_schema, make_settings, make_context, factories) -> None:
    plan = await factories["plan"]()
    item = await factories["item"](plan, status="approved")
    ctx = make_context(make_settings(), FakeLLM(), KieStub(), uploader=FakeUploader())
    with pytest.raises(ValueError, match="plan_item_not_completed"):
        await distribute_item(ctx, item.id, now=_at(10))


@pytest.mark.asyncio
async def test_partial_upload_failure_keeps_sent_posts(db_schema, make_settings, make_context, factories) -> None:
    """Second profile's upload fails: the first profile's post is kept, and a retry only sends the rest."""
    plan, _, item = await _completed_item(factories, platforms=("tiktok", "instagram"), connect=())
    async with async_session_factory() as db:
        db.add(SocialAccount(user_id=plan.user_id, platform="tiktok", account_handle="first"))
        db.add(SocialAccount(user_id=plan.user_id, platform="instagram", account_handle="second"))
        await db.commit()
    broken = FakeUploader(failing_handles={"second": UploadPostError("Upload-Post API: server error", status_code=502)})
    ctx = make_context(make_settings(), FakeLLM(), KieStub(), uploader=broken)

    assert await distribute_item(ctx, item.id, now=_at(10)) == "failed"

    assert [(c["account_handle"], c["platforms"]) for c in broken.calls] == [
        ("first", ["tiktok"]),
        ("second", ["instagram"]),
    ]
    saved = await _load_item(item.id)
    assert saved.status == "failed"
    assert saved.failed_stage == "distribution"
    posts = {p.platform: p for p in await _posts(item.id)}
    assert posts["tiktok"].status == "posted"
    assert posts["tiktok"].platform_post_id == "tiktok-post-1"
    assert posts["instagram"].status == "failed"
    assert posts["instagram"].error_message == "Upload-Post API: server error"

    # Rows of an immediate upload are never left pending for the due-post sender.
    assert await send_due_posts(ctx, now=_at(10)) == 0

    async with async_session_factory() as db:
        await retry_item(db, item.id)
        await db.commit()
    healthy = FakeUploader()
    retry_ctx = make_context(make_settings(), FakeLLM(), KieStub(), uploader=healthy)

    assert await distribute_item(retry_ctx, item.id, now=_at(11)) == "posted"

    assert [(c["account_handle"], c["platforms"]) for c in healthy.calls] == [("second", ["instagram"])]
    statuses = sorted((p.platform, p.status) for p in await _posts(item.id))
    assert statuses == [("instagram", "failed"), ("instagram", "posted"), ("tiktok", "posted")]
    assert (await _load_item(item.id)).status == "posted"
