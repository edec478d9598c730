"""EngagementState model - derived per-identity engagement record"""
import enum
from datetime import datetime
from typing import Optional
from sqlalchemy import String, Integer, DateTime, Enum, CheckConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from src.hospitality_engine.models.base import Base
from src.hospitality_engine.timeutil import utcnow


class FunnelStage(str, enum.Enum):
    VISITOR = "visitor"
    INTERESTED = "interested"
    ENGAGED = "engaged"
    SUBSCRIBER = "subscriber"
    ADVOCATE = "advocate"


FUNNEL_ORDER = [
    FunnelStage.VISITOR,
    FunnelStage.INTERESTED,
    FunnelStage.ENGAGED,
    FunnelStage.SUBSCRIBER,
    FunnelStage.ADVOCATE,
]


def funnel_rank(stage: FunnelStage) -> int:
    return FUNNEL_ORDER.index(FunnelStage(stage))


class EngagementState(Base):
    __tablename__ = "engagement_states"
    __table_args__ = (
        CheckConstraint("engagement_score >= 0 AND engagement_score <= 100", name="ck_engagement_states_score_range"),
        CheckConstraint("(account_id IS NULL) <> (session_id IS NULL)", name="ck_engagement_states_has_identity"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[Optional[int]] = mapped_column(Integer, unique=True, nullable=True, index=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True, index=True)

    page_views: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_time_on_site_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    session_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    current_session_start: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    engagement_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    funnel_stage: Mapped[FunnelStage] = mapped_column(
        Enum(FunnelStage),
        nullable=False,
        default=FunnelStage.VISITOR,
        index=True
    )

    last_activity_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    last_page_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    last_persona_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    popups_shown_today: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    popups_dismissed_today: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_popup_shown_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_popup_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    global_cooldown_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False
    )
