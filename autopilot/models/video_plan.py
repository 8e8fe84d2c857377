"""Video plan: recurring per-user automation configuration."""
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import Boolean, DateTime, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from autopilot.db import Base, JSONVariant


class VideoPlan(Base):
    """
    Plan owned by a user.
    trigger_mode: daily (trigger_time in timezone, ±window) | time_based | immediate (due every tick).
    auto_research / auto_approve / auto_create drive how far the scheduler advances items on its own.
    """

    __tablename__ = "video_plans"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    trigger_mode: Mapped[str] = mapped_column(String(32), default="daily", nullable=False)
    trigger_time: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC", nullable=False)
    videos_per_day: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    auto_research: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    auto_approve: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    auto_create: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    default_platforms: Mapped[Optional[List[str]]] = mapped_column(JSONVariant, nullable=True)
    default_category: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    persona: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    video_style: Mapped[str] = mapped_column(String(64), default="professional", nullable=False)
    video_duration: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    aspect_ratio: Mapped[str] = mapped_column(String(8), default="9:16", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    items = relationship("VideoPlanItem", back_populates="plan")
