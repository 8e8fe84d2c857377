"""Video generation job record."""
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from autopilot.db import Base


class Video(Base):
    """
    status: pending | generating | completed | failed.
    provider / provider_model / provider_task_id link the record to the provider task;
    once provider_task_id is set no second task is ever created for this video.
    """

    __tablename__ = "videos"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    topic: Mapped[str] = mapped_column(Text, nullable=False)
    script: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    style: Mapped[str] = mapped_column(String(64), default="professional", nullable=False)
    duration: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    aspect_ratio: Mapped[str] = mapped_column(String(8), default="9:16", nullable=False)
    generation_mode: Mapped[str] = mapped_column(String(16), default="manual", nullable=False)
    status: Mapped[str] = mapped_column(String(32), default="pending", nullable=False, index=True)
    video_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    provider: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    provider_model: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    provider_task_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    plan_item = relationship("VideoPlanItem", back_populates="video", uselist=False)
    scheduled_posts = relationship("ScheduledPost", back_populates="video")
