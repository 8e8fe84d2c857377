"""Plan item: one day's video slot of a plan, advanced by the pipeline stages."""
import uuid
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from autopilot.db import Base, JSONVariant


class VideoPlanItem(Base):
    """
    status: pending | ready | draft | approved | generating | completed | scheduled | posted | failed.
    script_status: draft | approved | rejected.
    video_id is written once (conditional update), never replaced.
    claimed_until: short lease taken before a stage does network work.
    """

    __tablename__ = "video_plan_items"
    __table_args__ = (
        UniqueConstraint("plan_id", "scheduled_date", "slot_index", name="uq_video_plan_items_slot"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    plan_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("video_plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    slot_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    scheduled_time: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    topic: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    research_data: Mapped[Optional[dict]] = mapped_column(JSONVariant, nullable=True)
    caption: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    platforms: Mapped[Optional[List[str]]] = mapped_column(JSONVariant, nullable=True)
    script: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    script_status: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    status: Mapped[str] = mapped_column(String(32), default="pending", nullable=False, index=True)
    video_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("videos.id", ondelete="SET NULL"),
        nullable=True,
        unique=True,
    )
    scheduled_post_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    failed_stage: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    claimed_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    plan = relationship("VideoPlan", back_populates="items")
    video = relationship("Video", back_populates="plan_item")
    events = relationship("PipelineEvent", back_populates="plan_item")
