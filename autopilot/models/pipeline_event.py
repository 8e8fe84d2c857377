"""Audit log model: pipeline stage transitions and user actions."""
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from autopilot.db import Base, JSONVariant


class PipelineEvent(Base):
    """
    One audit row per stage outcome (RESEARCHED, SCRIPT_GENERATED, SCRIPT_APPROVED, ...).
    plan_item_id is nullable for video-only events (manual generation).
    """

    __tablename__ = "pipeline_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    plan_item_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("video_plan_items.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    video_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    actor: Mapped[str] = mapped_column(String(32), nullable=False)  # SYSTEM | HUMAN
    metadata_: Mapped[Optional[dict]] = mapped_column("metadata", JSONVariant, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    plan_item = relationship("VideoPlanItem", back_populates="events")
