"""SQLAlchemy models for Video Autopilot."""
from autopilot.models.video_plan import VideoPlan
from autopilot.models.video import Video
from autopilot.models.video_plan_item import VideoPlanItem
from autopilot.models.scheduled_post import ScheduledPost
from autopilot.models.social_account import SocialAccount
from autopilot.models.pipeline_event import PipelineEvent

__all__ = [
    "VideoPlan",
    "Video",
    "VideoPlanItem",
    "ScheduledPost",
    "SocialAccount",
    "PipelineEvent",
]
