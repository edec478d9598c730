"""EngagementEvent model - append-only behavioral signals"""
import enum
from datetime import datetime
from typing import Optional
from sqlalchemy import String, Integer, DateTime, Float, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from src.hospitality_engine.models.base import Base
from src.hospitality_engine.timeutil import utcnow


class EngagementEventType(str, enum.Enum):
    PAGE_VIEW = "page_view"
    TIME_ON_PAGE = "time_on_page"
    SESSION_START = "session_start"
    CHAT_START = "chat_start"
    CHAT_MESSAGE = "chat_message"
    PRAYER_REQUEST = "prayer_request"
    STUDY_INTERACTION = "study_interaction"
    SCROLL_DEPTH = "scroll_depth"


class EngagementEvent(Base):
    __tablename__ = "engagement_events"
    __table_args__ = (
        Index("ix_engagement_events_account_created", "account_id", "created_at"),
        Index("ix_engagement_events_session_created", "session_id", "created_at"),
        Index("ix_engagement_events_type_created", "event_type", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    page_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    metric_value: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    persona_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )
