"""Action model - triggered hospitality actions and their outcome lifecycle"""
import enum
from datetime import datetime
from typing import Optional
from sqlalchemy import String, Integer, DateTime, ForeignKey, Enum, JSON, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from src.hospitality_engine.models.base import Base
from src.hospitality_engine.models.rule import ActionType
from src.hospitality_engine.timeutil import utcnow


class ActionOutcome(str, enum.Enum):
    PENDING = "pending"
    SHOWN = "shown"
    DISMISSED = "dismissed"
    CLICKED = "clicked"
    CONVERTED = "converted"
    EXPIRED = "expired"


class Action(Base):
    __tablename__ = "hospitality_actions"
    __table_args__ = (
        Index("ix_hospitality_actions_account_outcome", "account_id", "outcome"),
        Index("ix_hospitality_actions_session_outcome", "session_id", "outcome"),
        Index("ix_hospitality_actions_outcome_created", "outcome", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    rule_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("hospitality_rules.id", ondelete="SET NULL"), nullable=True, index=True
    )
    action_type: Mapped[ActionType] = mapped_column(Enum(ActionType), nullable=False)
    action_subtype: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    persona_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    action_config: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    trigger_event_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("engagement_events.id", ondelete="SET NULL"), unique=True, nullable=True
    )
    page_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    outcome: Mapped[ActionOutcome] = mapped_column(
        Enum(ActionOutcome),
        nullable=False,
        default=ActionOutcome.PENDING
    )
    outcome_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False
    )
